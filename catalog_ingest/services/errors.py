"""Error handling for the catalog ingestion pipeline.

This module provides:
- Exception classes for each failure class the pipeline distinguishes
  (provider, persistence, invalid operation, configuration)
- User-friendly error messages with suggested actions
- A centralized error handling service that classifies third-party exceptions
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx
import structlog
from sqlalchemy.exc import SQLAlchemyError

log = structlog.stdlib.get_logger()


class ErrorCategory(Enum):
    """Categories of errors for classification and handling."""
    NETWORK = "network"
    CATALOG_API = "catalog_api"
    PERSISTENCE = "persistence"
    FILE_SYSTEM = "file_system"
    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    IMPORT_STATE = "import_state"
    UNEXPECTED = "unexpected"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@dataclass(frozen=True)
class UserFriendlyError:
    """User-friendly error representation with suggested actions."""
    message: str
    category: ErrorCategory
    severity: ErrorSeverity
    suggested_actions: list[str]
    technical_details: str | None = None
    recoverable: bool = True


class AppError(Exception):
    """Base exception class for application errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNEXPECTED,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        suggested_actions: list[str] | None = None,
        technical_details: str | None = None,
        recoverable: bool = True,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.suggested_actions = suggested_actions or []
        self.technical_details = technical_details
        self.recoverable = recoverable

    def to_user_friendly(self) -> UserFriendlyError:
        """Convert to user-friendly error representation."""
        return UserFriendlyError(
            message=self.message,
            category=self.category,
            severity=self.severity,
            suggested_actions=self.suggested_actions,
            technical_details=self.technical_details,
            recoverable=self.recoverable,
        )


class NetworkError(AppError):
    """Exception for transport-level failures talking to a remote host."""

    def __init__(
        self,
        message: str,
        original_error: Exception | None = None,
        url: str | None = None,
    ) -> None:
        technical_details = None
        if original_error:
            technical_details = f"{type(original_error).__name__}: {original_error}"
        if url:
            technical_details = f"URL: {url}" + (f"\n{technical_details}" if technical_details else "")

        super().__init__(
            message=message,
            category=ErrorCategory.NETWORK,
            severity=ErrorSeverity.ERROR,
            suggested_actions=[
                "Check your internet connection",
                "Try again in a few moments",
            ],
            technical_details=technical_details,
        )
        self.original_error = original_error
        self.url = url


class CatalogApiError(AppError):
    """Non-success, non-throttle response from the catalog provider."""

    def __init__(self, status_code: int, url: str, reason: str | None = None) -> None:
        if status_code in (401, 403):
            suggested_actions = ["Verify the catalog API key in the configuration"]
        elif status_code == 404:
            suggested_actions = ["The requested catalog resource no longer exists"]
        elif status_code >= 500:
            suggested_actions = ["The catalog provider is having issues", "Try again later"]
        else:
            suggested_actions = ["Check the request parameters"]

        super().__init__(
            message=f"Catalog API error: {status_code}" + (f" {reason}" if reason else ""),
            category=ErrorCategory.CATALOG_API,
            severity=ErrorSeverity.ERROR,
            suggested_actions=suggested_actions,
            technical_details=f"Status: {status_code}\nURL: {url}",
            recoverable=False,
        )
        self.status_code = status_code
        self.url = url


class PersistenceError(AppError):
    """Exception for database failures."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        technical_details = None
        if operation:
            technical_details = f"Operation: {operation}"
        if original_error:
            technical_details = (technical_details or "") + f"\nError: {type(original_error).__name__}: {original_error}"

        super().__init__(
            message=message,
            category=ErrorCategory.PERSISTENCE,
            severity=ErrorSeverity.CRITICAL,
            suggested_actions=[
                "Check that the database is reachable",
                "Inspect the import state before resuming",
            ],
            technical_details=technical_details,
            recoverable=False,
        )
        self.operation = operation
        self.original_error = original_error


class ValidationError(AppError):
    """Exception for validation-related errors."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any = None,
        constraints: list[str] | None = None,
    ) -> None:
        suggested_actions = ["Review the input requirements"]
        if constraints:
            suggested_actions.extend([f"Ensure: {c}" for c in constraints])

        technical_details = None
        if field:
            technical_details = f"Field: {field}"
        if value is not None:
            value_str = str(value)[:100]
            technical_details = (technical_details or "") + f"\nValue: {value_str}"

        super().__init__(
            message=message,
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.WARNING,
            suggested_actions=suggested_actions,
            technical_details=technical_details,
        )
        self.field = field
        self.value = value
        self.constraints = constraints or []


class ConfigurationError(AppError):
    """Exception for configuration-related errors."""

    def __init__(
        self,
        message: str,
        setting: str | None = None,
        expected: str | None = None,
    ) -> None:
        suggested_actions = ["Check the configuration settings"]
        if expected:
            suggested_actions.append(f"Expected: {expected}")

        super().__init__(
            message=message,
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.ERROR,
            suggested_actions=suggested_actions,
            technical_details=f"Setting: {setting}" if setting else None,
        )
        self.setting = setting
        self.expected = expected


class ImportNotFoundError(AppError):
    """No import state exists with the requested id."""

    def __init__(self, import_state_id: int) -> None:
        super().__init__(
            message=f"Import state {import_state_id} not found",
            category=ErrorCategory.IMPORT_STATE,
            severity=ErrorSeverity.WARNING,
            suggested_actions=["List imports to find a valid id"],
        )
        self.import_state_id = import_state_id


class InvalidImportStateError(AppError):
    """An operation was requested against a job in the wrong status."""

    def __init__(
        self,
        import_state_id: int,
        operation: str,
        current_status: str,
        required_statuses: list[str],
    ) -> None:
        super().__init__(
            message=(
                f"Cannot {operation} import {import_state_id} with status: {current_status} "
                f"(requires {' or '.join(required_statuses)})"
            ),
            category=ErrorCategory.IMPORT_STATE,
            severity=ErrorSeverity.WARNING,
            suggested_actions=["Check the import status before retrying"],
        )
        self.import_state_id = import_state_id
        self.operation = operation
        self.current_status = current_status
        self.required_statuses = required_statuses


class ImportInProgressError(AppError):
    """A new import was requested while another one is active."""

    def __init__(self, active_import_state_id: int | None = None) -> None:
        super().__init__(
            message="An import is already in progress or paused",
            category=ErrorCategory.IMPORT_STATE,
            severity=ErrorSeverity.WARNING,
            suggested_actions=[
                "Resume or cancel the active import first",
            ],
            technical_details=(
                f"Active import: {active_import_state_id}" if active_import_state_id is not None else None
            ),
        )
        self.active_import_state_id = active_import_state_id


class ImportFailedError(AppError):
    """The batch loop aborted and the job was marked failed."""

    def __init__(self, import_state_id: int, reason: str) -> None:
        super().__init__(
            message=f"Import {import_state_id} failed: {reason}",
            category=ErrorCategory.IMPORT_STATE,
            severity=ErrorSeverity.ERROR,
            suggested_actions=[
                "Inspect the import state counters",
                "Start a new import once the cause is fixed; already imported games are skipped",
            ],
            recoverable=False,
        )
        self.import_state_id = import_state_id
        self.reason = reason


class ErrorHandlingService:
    """Centralized error handling service.

    Classifies exceptions into AppError instances, logs technical detail
    and keeps a bounded history of recent errors.
    """

    def __init__(self, max_history_size: int = 100) -> None:
        self._error_history: list[tuple[float, AppError]] = []
        self._max_history_size = max_history_size

    def handle_error(
        self,
        error: Exception,
        operation: str,
        component: str,
        context: dict[str, Any] | None = None,
    ) -> UserFriendlyError:
        """Handle an error and return a user-friendly representation.

        Args:
            error: The exception that occurred
            operation: The operation being performed
            component: The component where the error occurred
            context: Additional context information

        Returns:
            User-friendly error representation
        """
        app_error = self.to_app_error(error, context)
        self._log_error(app_error, operation, component, context)

        self._error_history.append((time.time(), app_error))
        if len(self._error_history) > self._max_history_size:
            self._error_history.pop(0)

        return app_error.to_user_friendly()

    def to_app_error(self, error: Exception, context: dict[str, Any] | None = None) -> AppError:
        """Convert a standard exception to an AppError."""
        if isinstance(error, AppError):
            return error

        url = context.get("url") if context else None

        if isinstance(error, httpx.ConnectError):
            return NetworkError(
                message="Unable to connect to the server. Please check your internet connection.",
                original_error=error,
                url=url,
            )
        if isinstance(error, httpx.TimeoutException):
            return NetworkError(
                message="The request timed out. The server may be slow or unavailable.",
                original_error=error,
                url=url,
            )
        if isinstance(error, httpx.HTTPStatusError):
            return CatalogApiError(
                status_code=error.response.status_code,
                url=str(error.request.url),
            )
        if isinstance(error, httpx.RequestError):
            return NetworkError(
                message="A network error occurred. Please check your connection.",
                original_error=error,
                url=url,
            )
        if isinstance(error, SQLAlchemyError):
            return PersistenceError(
                message="A database error occurred.",
                operation=context.get("operation") if context else None,
                original_error=error,
            )
        if isinstance(error, OSError):
            return AppError(
                message=f"A file system error occurred: {error}",
                category=ErrorCategory.FILE_SYSTEM,
                suggested_actions=["Check the assets directory permissions and free space"],
                technical_details=f"{type(error).__name__}: {error}",
            )
        if isinstance(error, (ValueError, TypeError)):
            return ValidationError(message=str(error))

        return AppError(
            message="An unexpected error occurred.",
            category=ErrorCategory.UNEXPECTED,
            technical_details=f"{type(error).__name__}: {error}",
        )

    def _log_error(
        self,
        error: AppError,
        operation: str,
        component: str,
        context: dict[str, Any] | None,
    ) -> None:
        """Log error with full technical details."""
        log_method = log.warning if error.severity == ErrorSeverity.WARNING else log.error

        log_method(
            "Error occurred",
            error_message=error.message,
            category=error.category.value,
            severity=error.severity.value,
            operation=operation,
            component=component,
            technical_details=error.technical_details,
            recoverable=error.recoverable,
            context=context,
        )

    def get_recent_errors(self, count: int = 10) -> list[AppError]:
        """Get the most recent errors, oldest first."""
        recent = self._error_history[-count:] if self._error_history else []
        return [error for _, error in recent]

    def create_user_message(self, error: UserFriendlyError, include_suggestions: bool = True) -> str:
        """Create a formatted message for terminal output."""
        parts = [error.message]

        if include_suggestions and error.suggested_actions:
            parts.append("Suggested actions:")
            for action in error.suggested_actions[:3]:
                parts.append(f"  - {action}")

        return "\n".join(parts)


_error_service: ErrorHandlingService | None = None


def get_error_service() -> ErrorHandlingService:
    """Get the global error handling service instance."""
    global _error_service
    if _error_service is None:
        _error_service = ErrorHandlingService()
    return _error_service


def handle_error(
    error: Exception,
    operation: str,
    component: str,
    context: dict[str, Any] | None = None,
) -> UserFriendlyError:
    """Convenience function to handle errors using the global service."""
    return get_error_service().handle_error(error, operation, component, context)
