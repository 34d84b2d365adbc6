"""Logging configuration for the catalog importer."""

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Any, TextIO

import structlog

ENVIRONMENT_VARIABLE = "CATALOG_INGEST_ENV"

# Third-party loggers that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine")


class LoggingService:
    """Configures structlog on top of the standard library logging module."""

    def __init__(
        self,
        log_level: str = "INFO",
        log_dir: Path | None = None,
        stream: TextIO | None = None,
    ) -> None:
        """Initialize the logging service.

        Args:
            log_level: The minimum log level to capture
            log_dir: Directory for rotating log files (None for console only)
            stream: Console stream; stderr keeps stdout free for command output
        """
        self.log_level = log_level.upper()
        self.log_dir = log_dir
        self.stream = stream if stream is not None else sys.stderr
        self.is_development = os.getenv(ENVIRONMENT_VARIABLE, "development") == "development"

    def configure(self) -> None:
        """Configure stdlib handlers, then structlog processors."""
        self._configure_stdlib_logging()

        structlog.configure(
            processors=self._get_processors(),
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

    def _configure_stdlib_logging(self) -> None:
        root_logger = logging.getLogger()
        root_logger.handlers.clear()

        numeric_level = getattr(logging, self.log_level, logging.INFO)
        root_logger.setLevel(numeric_level)

        console_handler = logging.StreamHandler(self.stream)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(logging.Formatter("%(message)s"))
        root_logger.addHandler(console_handler)

        if self.log_dir:
            self._setup_file_logging(root_logger, numeric_level)

        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    def _setup_file_logging(self, root_logger: logging.Logger, level: int) -> None:
        """Add rotating app.log and error.log handlers."""
        self.log_dir.mkdir(parents=True, exist_ok=True)
        file_formatter = logging.Formatter("%(message)s")

        file_handler = logging.handlers.RotatingFileHandler(
            filename=self.log_dir / "app.log",
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)

        error_handler = logging.handlers.RotatingFileHandler(
            filename=self.log_dir / "error.log",
            maxBytes=5 * 1024 * 1024,  # 5MB
            backupCount=3,
            encoding="utf-8",
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(file_formatter)
        root_logger.addHandler(error_handler)

    def _get_processors(self) -> list[Any]:
        common_processors = [
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
        ]

        # Files are always JSON, so the console only gets colors without them
        if self.is_development and not self.log_dir:
            return common_processors + [structlog.dev.ConsoleRenderer(colors=self.stream.isatty())]
        return common_processors + [structlog.processors.JSONRenderer()]

    def get_logger(self, name: str | None = None) -> structlog.stdlib.BoundLogger:
        return structlog.stdlib.get_logger(name)


def setup_logging(
    log_level: str = "INFO",
    log_dir: Path | None = None,
    environment: str | None = None,
    stream: TextIO | None = None,
) -> LoggingService:
    """Set up application logging.

    Args:
        log_level: Minimum log level to capture
        log_dir: Directory for log files (None for console only)
        environment: Environment name (development/production)
        stream: Console stream, stderr by default

    Returns:
        Configured LoggingService instance
    """
    if environment:
        os.environ[ENVIRONMENT_VARIABLE] = environment

    service = LoggingService(log_level=log_level, log_dir=log_dir, stream=stream)
    service.configure()
    return service
