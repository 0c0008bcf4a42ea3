"""Error taxonomy and error handling framework for dataset-sync."""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional


class ErrorCategory(Enum):
    """Categories of Git sync errors for appropriate handling."""
    NETWORK = "network"
    AUTHENTICATION = "authentication"
    REPOSITORY_ACCESS = "repository_access"
    BRANCH_DETECTION = "branch_detection"
    MERGE_CONFLICT = "merge_conflict"
    REPOSITORY_CORRUPTION = "repository_corruption"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


class GitSyncError(Exception):
    """Base class for every error raised by the synchronization layer."""

    error_code = "GIT_SYNC_ERROR"
    category = ErrorCategory.UNKNOWN

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class BackendError(GitSyncError):
    """I/O failure, corrupt or unreadable reference, or missing object."""
    error_code = "BACKEND_ERROR"
    category = ErrorCategory.REPOSITORY_CORRUPTION


class AuthExhausted(GitSyncError):
    """Every compatible credential strategy was tried and rejected."""
    error_code = "AUTH_EXHAUSTED"
    category = ErrorCategory.AUTHENTICATION


class NoRemote(GitSyncError):
    error_code = "NO_REMOTE"
    category = ErrorCategory.CONFIGURATION


class AmbiguousRemote(GitSyncError):
    error_code = "AMBIGUOUS_REMOTE"
    category = ErrorCategory.CONFIGURATION


class UnknownDefaultBranch(GitSyncError):
    error_code = "UNKNOWN_DEFAULT_BRANCH"
    category = ErrorCategory.BRANCH_DETECTION


class NotOnDefaultBranch(GitSyncError):
    error_code = "NOT_ON_DEFAULT_BRANCH"
    category = ErrorCategory.BRANCH_DETECTION


class DetachedHeadError(GitSyncError):
    error_code = "DETACHED_HEAD"
    category = ErrorCategory.BRANCH_DETECTION


class NoMergeTarget(GitSyncError):
    """The fetch produced no reference marked for merge."""
    error_code = "NO_MERGE_TARGET"
    category = ErrorCategory.BRANCH_DETECTION


class CannotFastForward(GitSyncError):
    """Local and fetched histories have diverged."""
    error_code = "CANNOT_FAST_FORWARD"
    category = ErrorCategory.MERGE_CONFLICT


class FetchFailed(GitSyncError):
    error_code = "FETCH_FAILED"
    category = ErrorCategory.NETWORK


class PushFailed(GitSyncError):
    error_code = "PUSH_FAILED"
    category = ErrorCategory.NETWORK


class CheckoutConflict(GitSyncError):
    """Uncommitted local changes would be overwritten by a checkout."""
    error_code = "CHECKOUT_CONFLICT"
    category = ErrorCategory.MERGE_CONFLICT


class Cancelled(GitSyncError):
    error_code = "CANCELLED"
    category = ErrorCategory.UNKNOWN


class InvalidRecord(ValueError):
    """A serialized Origin or Settings record could not be decoded."""


@dataclass
class ErrorResponse:
    """Standardized error response format for tool operations."""
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
    """Turns raised exceptions into structured responses for the tool surface."""

    def __init__(self):
        self.logger = logging.getLogger('dataset_sync.error_handler')

    def handle_git_sync_error(self, error: Exception, context: Dict[str, Any] = None) -> ErrorResponse:
        """
        Handle a failed synchronization operation.

        Args:
            error: The exception raised by the operation
            context: Additional context such as the repository path

        Returns:
            ErrorResponse describing the failure
        """
        context = context or {}

        if isinstance(error, GitSyncError):
            error_code = error.error_code
            category = error.category
            message = error.message
        elif isinstance(error, PermissionError):
            error_code = "GIT_PERMISSION_ERROR"
            category = ErrorCategory.REPOSITORY_ACCESS
            message = "Permission denied for Git operation"
        else:
            error_code = "GIT_GENERAL_ERROR"
            category = ErrorCategory.UNKNOWN
            message = f"Git operation failed: {error}"

        error_response = ErrorResponse(
            error="Git sync operation failed",
            error_code=error_code,
            message=message,
            timestamp=datetime.now().isoformat(),
            category=category.value,
            context=context
        )

        self.logger.warning(
            f"Git sync error: {message}",
            extra={
                'operation': 'git_sync_error',
                'error_code': error_code,
                'repository_path': context.get('repository_path')
            }
        )

        return error_response

    def handle_validation_error(self, error: Exception, context: Dict[str, Any] = None) -> ErrorResponse:
        """Handle malformed Origin/Settings input."""
        context = context or {}
        message = f"Input validation failed: {error}"

        self.logger.warning(
            f"Validation error: {message}",
            extra={'operation': 'validation_error', 'error_code': "VALIDATION_INVALID_RECORD"}
        )

        return ErrorResponse(
            error="Validation error",
            error_code="VALIDATION_INVALID_RECORD",
            message=message,
            timestamp=datetime.now().isoformat(),
            category=ErrorCategory.CONFIGURATION.value,
            context=context
        )

    def create_success_response(self, operation: str, data: Dict[str, Any], context: Dict[str, Any] = None) -> Dict[str, Any]:
        """Create a standardized success response."""
        response = {
            "success": True,
            "operation": operation,
            "timestamp": datetime.now().isoformat(),
            "data": data
        }

        if context:
            response["context"] = context

        return response


# Initialize global error handler
error_handler = ErrorHandler()
