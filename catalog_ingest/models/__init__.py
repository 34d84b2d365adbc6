"""Data models for the catalog ingestion pipeline."""

from .catalog import (
    CatalogCandidate,
    CatalogPage,
    GameDetail,
    GameRecord,
    ScreenshotRecord,
    ScreenshotRef,
)
from .config import AppConfig, ImportConfig
from .import_state import (
    ACTIVE_STATUSES,
    FULL_IMPORT,
    TERMINAL_STATUSES,
    ImportProgress,
    ImportState,
    ImportStatus,
)
from .progress import ProgressSnapshot

__all__ = [
    "ACTIVE_STATUSES",
    "AppConfig",
    "CatalogCandidate",
    "CatalogPage",
    "FULL_IMPORT",
    "GameDetail",
    "GameRecord",
    "ImportConfig",
    "ImportProgress",
    "ImportState",
    "ImportStatus",
    "ProgressSnapshot",
    "ScreenshotRecord",
    "ScreenshotRef",
    "TERMINAL_STATUSES",
]
