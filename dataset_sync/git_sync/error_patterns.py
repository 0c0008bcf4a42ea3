"""Classification of git stderr output into error categories."""

from typing import Dict, Optional

from ..errors import ErrorCategory


def build_error_patterns() -> Dict[str, ErrorCategory]:
    """Build mapping of error patterns to categories."""
    return {
        # Authentication errors
        "authentication failed": ErrorCategory.AUTHENTICATION,
        "permission denied": ErrorCategory.AUTHENTICATION,
        "could not read username": ErrorCategory.AUTHENTICATION,
        "could not read password": ErrorCategory.AUTHENTICATION,
        "terminal prompts disabled": ErrorCategory.AUTHENTICATION,
        "invalid credentials": ErrorCategory.AUTHENTICATION,
        "invalid username or password": ErrorCategory.AUTHENTICATION,
        "host key verification failed": ErrorCategory.AUTHENTICATION,
        "the requested url returned error: 401": ErrorCategory.AUTHENTICATION,
        "the requested url returned error: 403": ErrorCategory.AUTHENTICATION,

        # Network errors
        "connection refused": ErrorCategory.NETWORK,
        "network is unreachable": ErrorCategory.NETWORK,
        "connection timed out": ErrorCategory.NETWORK,
        "no route to host": ErrorCategory.NETWORK,
        "could not resolve host": ErrorCategory.NETWORK,
        "temporary failure in name resolution": ErrorCategory.NETWORK,

        # Repository access errors
        "repository not found": ErrorCategory.REPOSITORY_ACCESS,
        "does not appear to be a git repository": ErrorCategory.REPOSITORY_ACCESS,
        "could not read from remote repository": ErrorCategory.REPOSITORY_ACCESS,

        # Branch detection errors
        "couldn't find remote ref": ErrorCategory.BRANCH_DETECTION,
        "src refspec": ErrorCategory.BRANCH_DETECTION,
        "unknown revision": ErrorCategory.BRANCH_DETECTION,

        # Checkout and merge conflicts
        "would be overwritten": ErrorCategory.MERGE_CONFLICT,
        "not uptodate": ErrorCategory.MERGE_CONFLICT,
        "non-fast-forward": ErrorCategory.MERGE_CONFLICT,
        "rejected": ErrorCategory.MERGE_CONFLICT,
        "unmerged": ErrorCategory.MERGE_CONFLICT,

        # Repository corruption
        "not a git repository": ErrorCategory.REPOSITORY_CORRUPTION,
        "corrupt": ErrorCategory.REPOSITORY_CORRUPTION,
        "bad object": ErrorCategory.REPOSITORY_CORRUPTION,
        "invalid object": ErrorCategory.REPOSITORY_CORRUPTION,
    }


_ERROR_PATTERNS = build_error_patterns()


def categorize_error(error_message: Optional[str]) -> ErrorCategory:
    """
    Categorize an error based on its message.

    Patterns are checked in declaration order, so authentication failures win
    over the generic "could not read from remote repository" line git prints
    after them.

    Args:
        error_message: The error message (usually git's stderr) to categorize

    Returns:
        ErrorCategory enum value
    """
    if not error_message:
        return ErrorCategory.UNKNOWN

    error_lower = error_message.lower()
    for pattern, category in _ERROR_PATTERNS.items():
        if pattern in error_lower:
            return category

    return ErrorCategory.UNKNOWN


def is_auth_failure(error_message: Optional[str]) -> bool:
    return categorize_error(error_message) == ErrorCategory.AUTHENTICATION
