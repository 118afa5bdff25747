"""Error taxonomy and error reporting for the VaultSync engine."""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional


class ErrorCategory(Enum):
    """Categories of errors for structured error handling."""
    GIT_SYNC = "git_sync"
    CONFIGURATION = "configuration"
    MIGRATION = "migration"
    VALIDATION = "validation"
    SYSTEM = "system"


class SyncEngineError(Exception):
    """Base class for every error the engine reports to its host."""

    code = "SYNC_ENGINE_ERROR"
    category = ErrorCategory.SYSTEM

    def __init__(self, message: str, code: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.context = context or {}


class ValidationError(SyncEngineError):
    """Bad migration target or bad configuration values."""
    code = "VALIDATION_ERROR"
    category = ErrorCategory.VALIDATION


class SyncDisabledError(SyncEngineError):
    code = "GIT_NOT_ENABLED"
    category = ErrorCategory.CONFIGURATION


class NotARepositoryError(SyncEngineError):
    code = "NOT_A_REPO"
    category = ErrorCategory.GIT_SYNC


class ToolUnavailableError(SyncEngineError):
    """The git executable could not be started."""
    code = "GIT_NOT_INSTALLED"
    category = ErrorCategory.GIT_SYNC


class GitCommandError(SyncEngineError):
    """A local git command exited non-zero or timed out."""
    code = "GIT_COMMAND_FAILED"
    category = ErrorCategory.GIT_SYNC


class CommitError(SyncEngineError):
    code = "COMMIT_FAILED"
    category = ErrorCategory.GIT_SYNC


class NoRemoteError(SyncEngineError):
    code = "NO_REMOTE"
    category = ErrorCategory.GIT_SYNC


class NetworkError(SyncEngineError):
    """Remote unreachable or authentication refused."""
    code = "NETWORK_ERROR"
    category = ErrorCategory.GIT_SYNC


class ConflictError(SyncEngineError):
    code = "MERGE_CONFLICT"
    category = ErrorCategory.GIT_SYNC


class SyncInProgressError(SyncEngineError):
    code = "SYNC_IN_PROGRESS"
    category = ErrorCategory.GIT_SYNC


class MigrationError(SyncEngineError):
    code = "MIGRATION_FAILED"
    category = ErrorCategory.MIGRATION


class ReindexError(SyncEngineError):
    code = "REINDEX_FAILED"
    category = ErrorCategory.MIGRATION


@dataclass
class ErrorResponse:
    """Standardized error response format for host-facing operations."""
    error: str
    error_code: str
    message: str
    timestamp: str
    category: str
    context: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert error response to dictionary format."""
        result = {
            "error": self.error,
            "error_code": self.error_code,
            "message": self.message,
            "timestamp": self.timestamp,
            "category": self.category
        }
        if self.context:
            result["context"] = self.context
        return result


class ErrorHandler:
    """Turns engine exceptions into structured responses for the host layer."""

    def __init__(self):
        self.logger = logging.getLogger('vaultsync.error_handler')

    def handle_engine_error(self, error: Exception, operation: str, context: Dict[str, Any] = None) -> ErrorResponse:
        """
        Handle an error raised by a host-facing engine operation.

        Args:
            error: The exception raised by the engine
            operation: Name of the operation that failed
            context: Additional context to attach to the response

        Returns:
            ErrorResponse carrying a stable error code
        """
        context = dict(context or {})

        if isinstance(error, SyncEngineError):
            error_code = error.code
            category = error.category
            message = error.message
            context.update(error.context)
        elif isinstance(error, PermissionError):
            error_code = "PERMISSION_DENIED"
            category = ErrorCategory.SYSTEM
            message = f"Permission denied: {error}"
        elif isinstance(error, OSError):
            error_code = "FILE_IO_ERROR"
            category = ErrorCategory.SYSTEM
            message = f"File system error: {error}"
        else:
            error_code = "UNEXPECTED_ERROR"
            category = ErrorCategory.SYSTEM
            message = f"{operation} failed: {error}"

        response = ErrorResponse(
            error=f"{operation} failed",
            error_code=error_code,
            message=message,
            timestamp=datetime.now().isoformat(),
            category=category.value,
            context={key: str(value) for key, value in context.items()} or None
        )

        # Validation problems are the caller's fault; everything else is ours
        log = self.logger.warning if category == ErrorCategory.VALIDATION else self.logger.error
        log(
            f"{operation} error: {message}",
            extra={
                'operation': operation,
                'error_code': error_code,
            }
        )

        return response

    def create_success_response(self, operation: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Create a standardized success response."""
        return {
            "success": True,
            "operation": operation,
            "timestamp": datetime.now().isoformat(),
            "data": data
        }
