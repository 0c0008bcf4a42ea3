"""One-directional convergence: bring the local default branch up to the remote's."""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from git import Repo, Remote
from git.exc import GitCommandError

from .backend import backend_operation, git_error_text, raise_if_cancelled
from .error_patterns import categorize_error
from .merge_analysis import MergeAnalysis, analyze_merge, create_unborn, fast_forward
from .settings import Settings
from .status import DetachedHead, HeadStatus, RepositoryStatus, UnbornHead, default_remote
from .transport import ProgressSink, fetch, remote_default_branch
from ..errors import (
    BackendError, CannotFastForward, CheckoutConflict, DetachedHeadError, ErrorCategory,
    FetchFailed, NoMergeTarget, NotOnDefaultBranch, UnknownDefaultBranch
)


class PullState(Enum):
    UP_TO_DATE = "up_to_date"
    CREATED_UNBORN = "created_unborn"
    FAST_FORWARDED = "fast_forwarded"


@dataclass(frozen=True)
class PullOutcome:
    """What a successful pull did to ``branch``."""
    state: PullState
    branch: str

    @classmethod
    def up_to_date(cls, branch: str) -> "PullOutcome":
        return cls(PullState.UP_TO_DATE, branch)

    @classmethod
    def created_unborn(cls, branch: str) -> "PullOutcome":
        return cls(PullState.CREATED_UNBORN, branch)

    @classmethod
    def fast_forwarded(cls, branch: str) -> "PullOutcome":
        return cls(PullState.FAST_FORWARDED, branch)

    def to_dict(self) -> Dict[str, Any]:
        return {"state": self.state.value, "branch": self.branch}


def switch_branch(repo: Repo, head: HeadStatus, branch: str, remote: Remote) -> None:
    """
    Put HEAD on ``branch`` without merging anything.

    An unborn HEAD is simply re-pointed. A named branch is left through a
    safe checkout, creating ``branch`` from its remote-tracking branch when
    it only exists there.

    Raises:
        DetachedHeadError: HEAD is detached
        CheckoutConflict: Local changes would be overwritten by the checkout
        BackendError: ``branch`` exists neither locally nor as remote-tracking branch
    """
    logger = logging.getLogger('dataset_sync.git_sync.pull')

    if isinstance(head, DetachedHead):
        raise DetachedHeadError("Will not switch branch while HEAD is detached")

    if isinstance(head, UnbornHead):
        with backend_operation(f"Re-pointing HEAD to {branch}"):
            repo.git.symbolic_ref("HEAD", f"refs/heads/{branch}")
        logger.info(f"Re-pointed unborn HEAD from '{head.branch_name}' to '{branch}'")
        return

    try:
        if branch in repo.heads:
            repo.heads[branch].checkout()
        else:
            tracking_name = f"{remote.name}/{branch}"
            remote_branch = next((ref for ref in remote.refs if ref.name == tracking_name), None)
            if remote_branch is None:
                raise BackendError(f"Branch '{branch}' does not exist locally or on remote '{remote.name}'")
            new_branch = repo.create_head(branch, remote_branch)
            new_branch.set_tracking_branch(remote_branch)
            new_branch.checkout()
    except GitCommandError as e:
        message = git_error_text(e)
        if categorize_error(message) == ErrorCategory.MERGE_CONFLICT:
            raise CheckoutConflict(f"Cannot switch to '{branch}': {message}", cause=e) from e
        raise BackendError(f"Switching to '{branch}' failed: {message}", cause=e) from e

    logger.info(f"Switched to branch '{branch}'")


def pull(
    repo: Repo,
    settings: Settings,
    status: RepositoryStatus,
    remote: Optional[Remote] = None,
    switch: bool = False,
    progress: Optional[ProgressSink] = None,
    cancel: Optional[threading.Event] = None
) -> PullOutcome:
    """
    Fetch the remote and fast-forward the local default branch to it.

    Args:
        repo: Local repository
        settings: Settings resolved once for this operation
        status: Status computed just before the pull
        remote: Remote already contacted while computing ``status``
        switch: Switch to the default branch instead of failing when off it
        progress: Optional sink for transfer progress
        cancel: Optional event polled between stages

    Returns:
        PullOutcome

    Raises:
        NoRemote, AmbiguousRemote: No usable remote
        UnknownDefaultBranch: Neither settings nor remote name a default branch
        NotOnDefaultBranch, DetachedHeadError: Branch guard failed
        FetchFailed, AuthExhausted: Transport failures
        NoMergeTarget: Nothing fetched to merge
        CannotFastForward: Histories have diverged
        CheckoutConflict: Local changes block the update
    """
    logger = logging.getLogger('dataset_sync.git_sync.pull')

    if remote is None:
        remote = default_remote(repo, settings)

    default_branch = status.default_branch
    if default_branch is None:
        raise_if_cancelled(cancel, "connect")
        try:
            default_branch = remote_default_branch(repo, remote, settings)
        except FetchFailed as e:
            raise UnknownDefaultBranch(
                f"Default branch of remote '{remote.name}' could not be determined", cause=e
            ) from e
        if default_branch is None:
            raise UnknownDefaultBranch(f"Remote '{remote.name}' does not advertise a default branch")

    if not status.head.on_branch(default_branch):
        if not switch:
            raise NotOnDefaultBranch(f"HEAD is not on the default branch '{default_branch}'")
        switch_branch(repo, status.head, default_branch, remote)

    raise_if_cancelled(cancel, "fetch")
    logger.info(f"Pulling '{default_branch}' from '{remote.name}'")
    result = fetch(repo, remote, settings, default_branch, progress=progress)

    target = result.merge_target(default_branch)
    if target is None:
        raise NoMergeTarget(f"Fetch from '{remote.name}' found no branch to merge")

    analysis = analyze_merge(repo, target.commit_id)
    logger.debug(f"Merge analysis for '{default_branch}': {analysis.value}")

    if analysis is MergeAnalysis.UP_TO_DATE:
        return PullOutcome.up_to_date(default_branch)
    if analysis is MergeAnalysis.UNBORN:
        create_unborn(repo, default_branch, target.commit_id)
        return PullOutcome.created_unborn(default_branch)
    if analysis is MergeAnalysis.FAST_FORWARD:
        fast_forward(repo, default_branch, target.commit_id)
        return PullOutcome.fast_forwarded(default_branch)
    if analysis is MergeAnalysis.DIVERGED:
        raise CannotFastForward(
            f"Cannot fast-forward '{default_branch}': local and remote histories have diverged"
        )
    raise AssertionError(f"unhandled merge analysis {analysis}")
