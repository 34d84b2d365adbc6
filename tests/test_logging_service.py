"""Tests for the logging service."""

import json
import logging
import os
from io import StringIO
from pathlib import Path
from unittest.mock import patch

import pytest
import structlog
from hypothesis import given, strategies as st

from catalog_ingest.services.logging import ENVIRONMENT_VARIABLE, LoggingService, setup_logging

context_values = st.one_of(
    st.text(max_size=100),
    st.integers(),
    st.floats(allow_nan=False, allow_infinity=False),
    st.booleans(),
)
context_keys = st.text(
    min_size=1, max_size=20, alphabet=st.characters(whitelist_categories=("Ll",))
).filter(lambda x: x.isidentifier() and x not in {"event", "level", "logger", "timestamp"})


@pytest.fixture(autouse=True, scope="module")
def reset_logging():
    yield
    structlog.reset_defaults()
    logging.getLogger().handlers.clear()


def configure(environment: str, log_level: str = "INFO", log_dir: Path | None = None) -> tuple[LoggingService, StringIO]:
    stream = StringIO()
    with patch.dict(os.environ, {ENVIRONMENT_VARIABLE: environment}):
        service = LoggingService(log_level=log_level, log_dir=log_dir, stream=stream)
    service.configure()
    return service, stream


def json_lines(text: str) -> list[dict]:
    return [json.loads(line) for line in text.splitlines() if line.strip()]


class TestLoggingService:
    def test_development_logging_format(self) -> None:
        service, stream = configure("development")

        service.get_logger("test").info("test message", key="value")

        output = stream.getvalue()
        assert "test message" in output
        assert "key" in output
        assert not output.strip().startswith("{")

    def test_production_logging_format(self) -> None:
        service, stream = configure("production")

        service.get_logger("test").info("test message", key="value")

        parsed = json_lines(stream.getvalue())[0]
        assert parsed["event"] == "test message"
        assert parsed["key"] == "value"
        assert parsed["level"] == "info"
        assert "timestamp" in parsed

    def test_level_filtering(self) -> None:
        service, stream = configure("production", log_level="WARNING")
        logger = service.get_logger("test")

        logger.info("quiet")
        logger.warning("loud")

        assert [line["event"] for line in json_lines(stream.getvalue())] == ["loud"]

    def test_noisy_loggers_are_raised_to_warning(self) -> None:
        configure("production", log_level="DEBUG")

        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING

    def test_file_logging_is_json_even_in_development(self, tmp_path: Path) -> None:
        service, _ = configure("development", log_dir=tmp_path)

        service.get_logger("test").info("test file message", data="test")

        assert (tmp_path / "error.log").exists()
        parsed = json_lines((tmp_path / "app.log").read_text(encoding="utf-8"))[0]
        assert parsed["event"] == "test file message"
        assert parsed["data"] == "test"

    def test_errors_go_to_error_log(self, tmp_path: Path) -> None:
        service, _ = configure("production", log_level="DEBUG", log_dir=tmp_path)
        logger = service.get_logger("test")

        logger.info("routine")
        logger.error("test error message", error_code=500)

        errors = json_lines((tmp_path / "error.log").read_text(encoding="utf-8"))
        assert [e["event"] for e in errors] == ["test error message"]
        assert errors[0]["error_code"] == 500
        assert len(json_lines((tmp_path / "app.log").read_text(encoding="utf-8"))) == 2


class TestStructuredLoggingProperties:
    @given(
        log_level=st.sampled_from(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]),
        logger_name=st.sampled_from(["catalog_ingest.main", "catalog_ingest.services.import_orchestrator"]),
        message=st.text(min_size=1, max_size=200),
        context_data=st.dictionaries(keys=context_keys, values=context_values, max_size=5),
    )
    def test_structured_logging_consistency(
        self,
        log_level: str,
        logger_name: str,
        message: str,
        context_data: dict[str, str | int | float | bool],
    ) -> None:
        """Property: every event renders as one JSON object carrying its level, logger and context."""
        service, stream = configure("production", log_level="DEBUG")

        getattr(service.get_logger(logger_name), log_level.lower())(message, **context_data)

        parsed = json_lines(stream.getvalue())[0]
        assert parsed["event"] == message
        assert parsed["level"] == log_level.lower()
        assert parsed["logger"] == logger_name
        assert parsed["timestamp"].endswith("Z")
        for key, value in context_data.items():
            assert parsed[key] == value

    @given(
        error_message=st.text(min_size=1, max_size=200, alphabet=st.characters(whitelist_categories=("L", "Nd"))),
        exception_type=st.sampled_from([ValueError, RuntimeError, TypeError, OSError]),
    )
    def test_error_logging_includes_traceback(self, error_message: str, exception_type: type[Exception]) -> None:
        service, stream = configure("production", log_level="DEBUG")

        try:
            raise exception_type(error_message)
        except exception_type:
            service.get_logger("test").error("Error occurred", exc_info=True, error_type=exception_type.__name__)

        parsed = json_lines(stream.getvalue())[0]
        assert parsed["level"] == "error"
        assert parsed["error_type"] == exception_type.__name__
        assert "Traceback" in parsed["exception"]
        assert error_message in parsed["exception"]


def test_setup_logging_function(tmp_path: Path) -> None:
    stream = StringIO()

    with patch.dict(os.environ, {}, clear=False):
        service = setup_logging(log_level="DEBUG", log_dir=tmp_path, environment="production", stream=stream)
        assert os.environ[ENVIRONMENT_VARIABLE] == "production"

    assert isinstance(service, LoggingService)
    service.get_logger("test_setup").info("setup test", component="test")

    parsed = json_lines(stream.getvalue())[0]
    assert parsed["event"] == "setup test"
    assert parsed["component"] == "test"
