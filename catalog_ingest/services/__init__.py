"""Service layer: catalog access, persistence and the import orchestrator."""

from .asset_downloader import AssetDownloader
from .catalog_client import CatalogClient
from .catalog_repository import CatalogRepository
from .config import ConfigurationService, ValidationResult
from .database import create_database_engine, create_session_factory, init_database
from .errors import (
    AppError,
    CatalogApiError,
    ConfigurationError,
    ErrorCategory,
    ErrorHandlingService,
    ErrorSeverity,
    ImportFailedError,
    ImportInProgressError,
    ImportNotFoundError,
    InvalidImportStateError,
    NetworkError,
    PersistenceError,
    UserFriendlyError,
    ValidationError,
    get_error_service,
    handle_error,
)
from .import_orchestrator import ImportOrchestrator
from .import_state_repository import ImportStateRepository
from .progress import (
    BroadcastProgressReporter,
    LoggingProgressReporter,
    ProgressReporter,
    estimate_remaining,
    format_duration,
)
from .rate_limiter import RateLimiter

__all__ = [
    "AppError",
    "AssetDownloader",
    "BroadcastProgressReporter",
    "CatalogApiError",
    "CatalogClient",
    "CatalogRepository",
    "ConfigurationError",
    "ConfigurationService",
    "ErrorCategory",
    "ErrorHandlingService",
    "ErrorSeverity",
    "ImportFailedError",
    "ImportInProgressError",
    "ImportNotFoundError",
    "ImportOrchestrator",
    "ImportStateRepository",
    "InvalidImportStateError",
    "LoggingProgressReporter",
    "NetworkError",
    "PersistenceError",
    "ProgressReporter",
    "RateLimiter",
    "UserFriendlyError",
    "ValidationError",
    "ValidationResult",
    "create_database_engine",
    "create_session_factory",
    "estimate_remaining",
    "format_duration",
    "get_error_service",
    "handle_error",
    "init_database",
]
