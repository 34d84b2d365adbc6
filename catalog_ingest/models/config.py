"""Configuration data models."""

from dataclasses import dataclass, field
from pathlib import Path

# The catalog provider silently caps page_size at 40, which would break offset math.
MAX_BATCH_SIZE = 40
MAX_SCREENSHOTS_PER_GAME = 10


@dataclass(frozen=True)
class ImportConfig:
    """Per-job configuration, immutable once the import is created."""
    batch_size: int = 40  # Candidates per page (one page = one batch)
    screenshots_per_game: int = 3
    min_quality_threshold: int = 70  # 0-100 scale
    target_candidates: int | None = None  # Stop after this many candidates, None = all

    def validation_errors(self) -> list[str]:
        """Return every violated bound, empty when the configuration is valid."""
        errors: list[str] = []

        if not isinstance(self.batch_size, int) or not 1 <= self.batch_size <= MAX_BATCH_SIZE:
            errors.append(f"batch_size must be between 1 and {MAX_BATCH_SIZE}")
        if (
            not isinstance(self.screenshots_per_game, int)
            or not 1 <= self.screenshots_per_game <= MAX_SCREENSHOTS_PER_GAME
        ):
            errors.append(f"screenshots_per_game must be between 1 and {MAX_SCREENSHOTS_PER_GAME}")
        if not isinstance(self.min_quality_threshold, int) or not 0 <= self.min_quality_threshold <= 100:
            errors.append("min_quality_threshold must be between 0 and 100")
        if self.target_candidates is not None and (
            not isinstance(self.target_candidates, int) or self.target_candidates < 1
        ):
            errors.append("target_candidates must be a positive integer or None")

        return errors


@dataclass(frozen=True)
class AppConfig:
    """Application configuration settings."""
    api_key: str
    api_base_url: str
    database_url: str
    assets_directory: Path
    public_asset_prefix: str = "/uploads/screenshots"
    max_requests_per_window: int = 20
    window_seconds: float = 60.0
    min_request_delay: float = 3.0
    throttle_cooldown: float = 65.0  # Must exceed window_seconds
    request_timeout: float = 30.0
    download_attempts: int = 3
    download_base_delay: float = 1.0
    log_level: str = "INFO"
    default_import: ImportConfig = field(default_factory=ImportConfig)
