"""Classification of local vs. fetched history and the non-merging updates it allows."""

import logging
from enum import Enum

from git import Repo
from git.exc import GitCommandError

from .backend import backend_operation, git_error_text
from .error_patterns import categorize_error
from ..errors import BackendError, CheckoutConflict, ErrorCategory


class MergeAnalysis(Enum):
    """Relationship between the local branch tip and the fetched tip."""
    UP_TO_DATE = "up_to_date"
    UNBORN = "unborn"
    FAST_FORWARD = "fast_forward"
    DIVERGED = "diverged"


def analyze_merge(repo: Repo, fetched_commit: str) -> MergeAnalysis:
    """
    Decide once how ``fetched_commit`` relates to HEAD.

    Args:
        repo: Local repository; HEAD must not be detached
        fetched_commit: Commit id of the fetched merge target

    Returns:
        MergeAnalysis value
    """
    with backend_operation("Analyzing merge"):
        if not repo.head.is_valid():
            return MergeAnalysis.UNBORN

        local_commit = repo.head.commit.hexsha
        if local_commit == fetched_commit or repo.is_ancestor(fetched_commit, local_commit):
            return MergeAnalysis.UP_TO_DATE
        if repo.is_ancestor(local_commit, fetched_commit):
            return MergeAnalysis.FAST_FORWARD
        return MergeAnalysis.DIVERGED


def create_unborn(repo: Repo, branch: str, fetched_commit: str) -> None:
    """Give the unborn ``branch`` its first commit and check it out by force."""
    logger = logging.getLogger('dataset_sync.git_sync.merge_analysis')

    with backend_operation(f"Creating branch {branch}"):
        repo.git.reset("--hard", fetched_commit)
    logger.info(f"Created branch '{branch}' at {fetched_commit[:8]}")


def fast_forward(repo: Repo, branch: str, fetched_commit: str) -> None:
    """
    Move ``branch`` to ``fetched_commit`` with a safe checkout.

    The working tree and index are updated first; the reference only moves
    once the checkout succeeded, and only if it still points at the old tip.
    When that reference update fails the tree is moved back to the old tip.

    Raises:
        CheckoutConflict: Local changes would be overwritten
        BackendError: Any other failure updating the tree or reference
    """
    logger = logging.getLogger('dataset_sync.git_sync.merge_analysis')

    with backend_operation(f"Fast-forwarding {branch}"):
        old_commit = repo.head.commit.hexsha
        # Stale stat info would make read-tree report clean files as "not uptodate"
        repo.git.update_index("-q", "--refresh")

    try:
        repo.git.read_tree("-m", "-u", old_commit, fetched_commit)
    except GitCommandError as e:
        message = git_error_text(e)
        if categorize_error(message) == ErrorCategory.MERGE_CONFLICT:
            raise CheckoutConflict(
                f"Cannot fast-forward '{branch}': local changes would be overwritten ({message})",
                cause=e
            ) from e
        raise BackendError(f"Checkout of {fetched_commit[:8]} failed: {message}", cause=e) from e

    try:
        move_branch(repo, branch, fetched_commit, old_commit)
    except GitCommandError as e:
        # Branch still names old_commit (or a concurrent writer's tip); put the tree back to match
        with backend_operation(f"Restoring working tree to {old_commit[:8]}"):
            repo.git.read_tree("-m", "-u", fetched_commit, old_commit)
        raise BackendError(
            f"Updating refs/heads/{branch} failed, working tree restored: {git_error_text(e)}",
            cause=e
        ) from e
    logger.info(f"Fast-forwarded '{branch}' from {old_commit[:8]} to {fetched_commit[:8]}")


def move_branch(repo: Repo, branch: str, new_commit: str, old_commit: str) -> None:
    """Compare-and-swap ``refs/heads/<branch>`` from ``old_commit`` to ``new_commit``."""
    repo.git.update_ref(
        "-m", f"dataset-sync: fast-forward to {new_commit[:8]}",
        f"refs/heads/{branch}", new_commit, old_commit
    )
