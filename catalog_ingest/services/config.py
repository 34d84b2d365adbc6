"""Configuration service for managing application settings."""

import json
import os
from dataclasses import replace
from pathlib import Path
from typing import Any

import structlog

from ..models import AppConfig, ImportConfig
from .catalog_client import DEFAULT_BASE_URL
from .errors import ConfigurationError

log = structlog.stdlib.get_logger()

API_KEY_VARIABLE = "CATALOG_API_KEY"
DATABASE_URL_VARIABLE = "CATALOG_DATABASE_URL"

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
DATA_DIRECTORY = Path.home() / ".local" / "share" / "catalog-ingest"


class ValidationResult:
    """Result of configuration validation."""

    def __init__(self, is_valid: bool, errors: list[str] | None = None) -> None:
        self.is_valid: bool = is_valid
        self.errors: list[str] = errors or []


class ConfigurationService:
    """Loads, validates and saves the JSON configuration file.

    ``CATALOG_API_KEY`` and ``CATALOG_DATABASE_URL`` take precedence over
    the file so secrets can stay out of it.
    """

    def __init__(self, config_path: Path | None = None) -> None:
        self.config_path: Path = config_path or Path.home() / ".config" / "catalog-ingest" / "config.json"
        log.debug("Configuration service initialized", config_path=str(self.config_path))

    def load_config(self) -> AppConfig:
        """Load configuration from file, falling back to defaults."""
        return self._apply_environment(self._load_file())

    def _load_file(self) -> AppConfig:
        if not self.config_path.exists():
            log.info("Configuration file not found, using defaults", config_path=str(self.config_path))
            return self._get_default_config()

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                data: dict[str, Any] = json.load(f)

            config = self._dict_to_config(data)
            validation_result = self.validate_config(config)

            if not validation_result.is_valid:
                log.warning("Invalid configuration loaded, using defaults", errors=validation_result.errors)
                return self._get_default_config()

            log.info("Configuration loaded successfully", config_path=str(self.config_path))
            return config

        except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
            log.error("Failed to load configuration, using defaults", error=str(e))
            return self._get_default_config()

    def save_config(self, config: AppConfig) -> None:
        """Save configuration to file.

        Raises:
            ConfigurationError: If the configuration does not validate
        """
        validation_result = self.validate_config(config)
        if not validation_result.is_valid:
            raise ConfigurationError(
                f"Invalid configuration: {', '.join(validation_result.errors)}",
                setting=str(self.config_path),
            )

        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            with open(self.config_path, "w", encoding="utf-8") as f:
                json.dump(self._config_to_dict(config), f, indent=2, ensure_ascii=False)

            log.info("Configuration saved successfully", config_path=str(self.config_path))

        except OSError as e:
            log.error("Failed to save configuration", error=str(e))
            raise

    def validate_config(self, config: AppConfig) -> ValidationResult:
        """Validate configuration settings."""
        errors = []

        if not isinstance(config.api_key, str):
            errors.append("api_key must be a string")

        if not isinstance(config.api_base_url, str) or not config.api_base_url.startswith(("http://", "https://")):
            errors.append("api_base_url must be an http(s) URL")

        if not isinstance(config.database_url, str) or "://" not in config.database_url:
            errors.append("database_url must be a SQLAlchemy database URL")

        if not isinstance(config.assets_directory, Path):
            errors.append("assets_directory must be a Path object")
        elif not config.assets_directory.is_absolute():
            errors.append("assets_directory must be an absolute path")

        if not isinstance(config.max_requests_per_window, int) or config.max_requests_per_window < 1:
            errors.append("max_requests_per_window must be a positive integer")

        if not _is_number(config.window_seconds) or config.window_seconds <= 0:
            errors.append("window_seconds must be a positive number")

        if not _is_number(config.min_request_delay) or config.min_request_delay < 0:
            errors.append("min_request_delay must be a non-negative number")

        # Waiting out a 429 for less than the window would just hit it again
        if not _is_number(config.throttle_cooldown) or (
            _is_number(config.window_seconds) and config.throttle_cooldown <= config.window_seconds
        ):
            errors.append("throttle_cooldown must be longer than window_seconds")

        if not _is_number(config.request_timeout) or config.request_timeout <= 0:
            errors.append("request_timeout must be a positive number")

        if not isinstance(config.download_attempts, int) or not 1 <= config.download_attempts <= 10:
            errors.append("download_attempts must be between 1 and 10")

        if not _is_number(config.download_base_delay) or config.download_base_delay < 0:
            errors.append("download_base_delay must be a non-negative number")

        if config.log_level not in VALID_LOG_LEVELS:
            errors.append(f"log_level must be one of: {', '.join(VALID_LOG_LEVELS)}")

        if not isinstance(config.default_import, ImportConfig):
            errors.append("default_import must be an ImportConfig")
        else:
            errors.extend(f"default_import.{e}" for e in config.default_import.validation_errors())

        return ValidationResult(len(errors) == 0, errors)

    @staticmethod
    def require_api_key(config: AppConfig) -> str:
        """Return the API key, raising when none is configured."""
        if not config.api_key:
            raise ConfigurationError(
                "No catalog API key configured",
                setting="api_key",
                expected=f"an API key in the config file or the {API_KEY_VARIABLE} environment variable",
            )
        return config.api_key

    def _apply_environment(self, config: AppConfig) -> AppConfig:
        overrides: dict[str, Any] = {}
        if os.getenv(API_KEY_VARIABLE):
            overrides["api_key"] = os.environ[API_KEY_VARIABLE]
        if os.getenv(DATABASE_URL_VARIABLE):
            overrides["database_url"] = os.environ[DATABASE_URL_VARIABLE]

        if overrides:
            log.debug("Configuration overridden from environment", settings=sorted(overrides))
            return replace(config, **overrides)
        return config

    def _get_default_config(self) -> AppConfig:
        return AppConfig(
            api_key="",
            api_base_url=DEFAULT_BASE_URL,
            database_url=f"sqlite:///{DATA_DIRECTORY / 'catalog.db'}",
            assets_directory=DATA_DIRECTORY / "screenshots",
        )

    def _config_to_dict(self, config: AppConfig) -> dict[str, Any]:
        """Convert AppConfig to dictionary for JSON serialization."""
        return {
            "api_key": config.api_key,
            "api_base_url": config.api_base_url,
            "database_url": config.database_url,
            "assets_directory": str(config.assets_directory),
            "public_asset_prefix": config.public_asset_prefix,
            "max_requests_per_window": config.max_requests_per_window,
            "window_seconds": config.window_seconds,
            "min_request_delay": config.min_request_delay,
            "throttle_cooldown": config.throttle_cooldown,
            "request_timeout": config.request_timeout,
            "download_attempts": config.download_attempts,
            "download_base_delay": config.download_base_delay,
            "log_level": config.log_level,
            "default_import": {
                "batch_size": config.default_import.batch_size,
                "screenshots_per_game": config.default_import.screenshots_per_game,
                "min_quality_threshold": config.default_import.min_quality_threshold,
                "target_candidates": config.default_import.target_candidates,
            },
        }

    def _dict_to_config(self, data: dict[str, Any]) -> AppConfig:
        """Convert dictionary to AppConfig; missing optional keys keep their defaults."""
        defaults = self._get_default_config()
        import_data = data.get("default_import") or {}
        import_defaults = ImportConfig()

        target_raw = import_data.get("target_candidates")
        default_import = ImportConfig(
            batch_size=int(import_data.get("batch_size", import_defaults.batch_size)),
            screenshots_per_game=int(import_data.get("screenshots_per_game", import_defaults.screenshots_per_game)),
            min_quality_threshold=int(import_data.get("min_quality_threshold", import_defaults.min_quality_threshold)),
            target_candidates=int(target_raw) if target_raw is not None else None,
        )

        return AppConfig(
            api_key=str(data.get("api_key") or ""),
            api_base_url=str(data.get("api_base_url", defaults.api_base_url)),
            database_url=str(data.get("database_url", defaults.database_url)),
            assets_directory=Path(str(data.get("assets_directory", defaults.assets_directory))).expanduser(),
            public_asset_prefix=str(data.get("public_asset_prefix", defaults.public_asset_prefix)),
            max_requests_per_window=int(data.get("max_requests_per_window", defaults.max_requests_per_window)),
            window_seconds=float(data.get("window_seconds", defaults.window_seconds)),
            min_request_delay=float(data.get("min_request_delay", defaults.min_request_delay)),
            throttle_cooldown=float(data.get("throttle_cooldown", defaults.throttle_cooldown)),
            request_timeout=float(data.get("request_timeout", defaults.request_timeout)),
            download_attempts=int(data.get("download_attempts", defaults.download_attempts)),
            download_base_delay=float(data.get("download_base_delay", defaults.download_base_delay)),
            log_level=str(data.get("log_level", defaults.log_level)).upper(),
            default_import=default_import,
        )


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
