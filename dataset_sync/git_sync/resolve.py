"""Bidirectional convergence of one local repository with one remote mirror."""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from git import Repo, Remote

from .backend import backend_operation, raise_if_cancelled
from .merge_analysis import MergeAnalysis, analyze_merge, create_unborn, fast_forward
from .origin import Origin
from .settings import Settings
from .status import DetachedHead, UnbornHead, default_remote, head_status
from .transport import ProgressSink, fetch, push
from ..errors import AuthExhausted, DetachedHeadError, FetchFailed, GitSyncError, NoRemote, PushFailed


@dataclass(frozen=True)
class ResolveResult:
    """Outcome of resolve/sync; ``ok`` is False only for unresolved divergence."""
    ok: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": self.ok}


def set_remote_url(repo: Repo, name: str, url: str) -> Remote:
    """Point remote ``name`` at ``url``, creating the remote if needed."""
    with backend_operation(f"Configuring remote {name}"):
        if name in [r.name for r in repo.remotes]:
            remote = repo.remote(name)
            if remote.url != url:
                remote.set_url(url)
            return remote
        return repo.create_remote(name, url)


def _head_branch(repo: Repo, settings: Settings) -> str:
    """Branch the converge flow works on; an unborn HEAD is moved to the default branch."""
    logger = logging.getLogger('dataset_sync.git_sync.resolve')

    head = head_status(repo)
    if isinstance(head, DetachedHead):
        raise DetachedHeadError("Cannot synchronize while HEAD is detached")

    if isinstance(head, UnbornHead):
        wanted = settings.default_branch or head.branch_name
        if wanted != head.branch_name:
            with backend_operation(f"Re-pointing HEAD to {wanted}"):
                repo.git.symbolic_ref("HEAD", f"refs/heads/{wanted}")
            logger.debug(f"Re-pointed unborn HEAD from '{head.branch_name}' to '{wanted}'")
        return wanted

    return head.name


def converge(
    repo: Repo,
    remote: Remote,
    settings: Settings,
    headers: Optional[Sequence[str]] = None,
    use_credentials: bool = True,
    progress: Optional[ProgressSink] = None,
    cancel: Optional[threading.Event] = None
) -> ResolveResult:
    """
    Fetch, classify, fast-forward when possible, then push.

    A failed fetch is taken to mean the remote has nothing to merge yet
    (typically a freshly created bare repository), so the push still runs.
    If that push fails too, the fetch error is the one raised.

    Raises:
        FetchFailed, AuthExhausted: Fetch and push both failed
        PushFailed: Push failed after a successful fetch
        CheckoutConflict: Local changes block the fast-forward
    """
    logger = logging.getLogger('dataset_sync.git_sync.resolve')

    branch = _head_branch(repo, settings)
    ok = True
    fetch_error: Optional[GitSyncError] = None

    raise_if_cancelled(cancel, "fetch")
    try:
        result = fetch(
            repo, remote, settings, branch,
            progress=progress, headers=headers, use_credentials=use_credentials
        )
    except (FetchFailed, AuthExhausted) as e:
        logger.info(f"Fetch from '{remote.name}' failed, treating remote as empty: {e.message}")
        fetch_error = e
    else:
        target = result.merge_target(branch)
        if target is None:
            logger.debug(f"Nothing to merge from '{remote.name}'")
        else:
            analysis = analyze_merge(repo, target.commit_id)
            logger.debug(f"Merge analysis for '{branch}': {analysis.value}")

            if analysis is MergeAnalysis.UP_TO_DATE:
                pass
            elif analysis is MergeAnalysis.UNBORN:
                create_unborn(repo, branch, target.commit_id)
            elif analysis is MergeAnalysis.FAST_FORWARD:
                fast_forward(repo, branch, target.commit_id)
            elif analysis is MergeAnalysis.DIVERGED:
                # TODO: three-way merge returning conflict hunks (path, base/local/remote ranges)
                logger.warning(f"Local '{branch}' and '{remote.name}/{branch}' have diverged")
                ok = False
            else:
                raise AssertionError(f"unhandled merge analysis {analysis}")

    raise_if_cancelled(cancel, "push")
    try:
        push(repo, remote, settings, branch, headers=headers, use_credentials=use_credentials)
    except (PushFailed, AuthExhausted) as e:
        if fetch_error is not None:
            logger.warning(f"Push to '{remote.name}' failed after fetch failure: {e.message}")
            raise fetch_error
        raise

    logger.info(f"Synchronized '{branch}' with '{remote.name}' (ok={ok})")
    return ResolveResult(ok=ok)


def resolve(
    repo: Repo,
    origin: Origin,
    settings: Settings,
    progress: Optional[ProgressSink] = None,
    cancel: Optional[threading.Event] = None
) -> ResolveResult:
    """
    Converge with ``origin`` using its token as the only credential.

    The default remote is (re)pointed at ``origin.url`` first.
    """
    raise_if_cancelled(cancel, "connect")
    if not settings.default_remote:
        raise NoRemote("No default remote configured to point at the origin")
    remote = set_remote_url(repo, settings.default_remote, origin.url)
    return converge(
        repo, remote, settings,
        headers=origin.auth_headers(), use_credentials=False,
        progress=progress, cancel=cancel
    )


def sync(
    repo: Repo,
    settings: Settings,
    remote: Optional[Remote] = None,
    progress: Optional[ProgressSink] = None,
    cancel: Optional[threading.Event] = None
) -> ResolveResult:
    """Converge with the default remote, authenticating through credential negotiation."""
    raise_if_cancelled(cancel, "connect")
    if remote is None:
        remote = default_remote(repo, settings)
    return converge(repo, remote, settings, use_credentials=True, progress=progress, cancel=cancel)
