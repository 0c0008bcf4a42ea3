"""Remote transport: read-only connect, fetch and push using GitPython."""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, TypeVar

from git import Repo, Remote, RemoteProgress
from git.exc import GitCommandError

from .backend import backend_operation, fetch_head_path, git_error_text, read_persisted_config
from .credentials import (
    Credential, CredentialRejected, CredentialsState, CredentialType,
    allowed_types_for_url, credential_environment, is_http_url, negotiate, username_from_url
)
from .error_patterns import is_auth_failure
from .performance_logger import get_performance_logger
from .settings import PrunePolicy, Settings
from ..errors import BackendError, FetchFailed, PushFailed

T = TypeVar('T')

_FETCH_HEAD_BRANCH = re.compile(r"^branch '(?P<branch>.+)' of ")


@dataclass(frozen=True)
class TransferProgress:
    """One progress update reported while talking to a remote."""
    stage: str
    received: int
    total: Optional[int] = None
    message: str = ""


ProgressSink = Callable[[TransferProgress], None]


class _ProgressAdapter(RemoteProgress):
    """Forward GitPython progress lines to a sink with monotonic counters."""

    _STAGES = {
        RemoteProgress.COUNTING: "counting",
        RemoteProgress.COMPRESSING: "compressing",
        RemoteProgress.WRITING: "writing",
        RemoteProgress.RECEIVING: "receiving",
        RemoteProgress.RESOLVING: "resolving",
        RemoteProgress.FINDING_SOURCES: "finding_sources",
        RemoteProgress.CHECKING_OUT: "checking_out",
    }

    def __init__(self, sink: ProgressSink):
        super().__init__()
        self.sink = sink
        self._last: Dict[str, int] = {}

    def update(self, op_code, cur_count, max_count=None, message=''):
        stage = self._STAGES.get(op_code & RemoteProgress.OP_MASK, "other")
        received = max(int(cur_count or 0), self._last.get(stage, 0))
        self._last[stage] = received
        total = int(max_count) if max_count else None
        self.sink(TransferProgress(stage=stage, received=received, total=total, message=message or ""))


@dataclass(frozen=True)
class FetchHeadEntry:
    """One line of FETCH_HEAD."""
    commit_id: str
    for_merge: bool
    description: str

    @property
    def branch(self) -> Optional[str]:
        match = _FETCH_HEAD_BRANCH.match(self.description)
        return match.group("branch") if match else None


@dataclass(frozen=True)
class FetchResult:
    """Outcome of a single connect+fetch+disconnect round trip."""
    remote_name: str
    url: str
    entries: List[FetchHeadEntry]

    def merge_target(self, branch: Optional[str] = None) -> Optional[FetchHeadEntry]:
        """The for-merge entry, preferring the one fetched from ``branch``."""
        candidates = [e for e in self.entries if e.for_merge]
        if branch is not None:
            for entry in candidates:
                if entry.branch == branch:
                    return entry
        return candidates[0] if candidates else None


def parse_fetch_head(text: str) -> List[FetchHeadEntry]:
    entries = []
    for line in text.splitlines():
        parts = line.split("\t", 2)
        if len(parts) < 3 or not parts[0]:
            continue
        commit_id, marker, description = parts
        entries.append(FetchHeadEntry(
            commit_id=commit_id.strip(),
            for_merge=marker.strip() != "not-for-merge",
            description=description.strip(),
        ))
    return entries


def header_environment(headers: Optional[Sequence[str]]) -> Dict[str, str]:
    """Pass extra HTTP headers to git through environment-based config."""
    env = {}
    headers = list(headers or [])
    if not headers:
        return env
    env["GIT_CONFIG_COUNT"] = str(len(headers))
    for i, header in enumerate(headers):
        env[f"GIT_CONFIG_KEY_{i}"] = "http.extraHeader"
        env[f"GIT_CONFIG_VALUE_{i}"] = header
    return env


def remote_url(remote: Remote) -> str:
    with backend_operation(f"Reading URL of remote {remote.name}"):
        return remote.url


def with_remote_auth(
    repo: Repo,
    remote: Remote,
    settings: Settings,
    call: Callable[[], T],
    headers: Optional[Sequence[str]] = None,
    use_credentials: bool = True
) -> T:
    """
    Run a git transport command against ``remote`` with authentication.

    When ``use_credentials`` is set and the URL's transport asks for
    credentials, strategies are negotiated through a fresh CredentialsState;
    every rejection advances the state. Otherwise the command runs once,
    carrying only ``headers`` (applied to HTTP(S) remotes alone).

    Raises:
        AuthExhausted: Every credential strategy was rejected
        GitCommandError: Any other transport failure
    """
    url = remote_url(remote)
    base_env = header_environment(headers) if is_http_url(url) else {}

    def attempt(credential: Optional[Credential]) -> T:
        with credential_environment(credential) as env:
            env.update(base_env)
            with repo.git.custom_environment(**env):
                try:
                    return call()
                except GitCommandError as e:
                    if credential is not None and is_auth_failure(git_error_text(e)):
                        raise CredentialRejected(git_error_text(e)) from e
                    raise

    allowed = allowed_types_for_url(url) if use_credentials else CredentialType.NONE
    if not allowed:
        return attempt(None)

    state = CredentialsState(
        settings,
        read_persisted_config(repo, remote.name),
        url,
        username_hint=username_from_url(url),
        remote_name=remote.name,
    )
    return negotiate(state, allowed, attempt)


def parse_symref_head(output: str) -> Optional[str]:
    """Branch named by ``ref: refs/heads/<name>\\tHEAD`` in ls-remote output."""
    for line in output.splitlines():
        if line.startswith("ref: refs/heads/") and line.endswith("\tHEAD"):
            return line[len("ref: refs/heads/"):-len("\tHEAD")].strip()
    return None


def remote_default_branch(
    repo: Repo,
    remote: Remote,
    settings: Settings,
    headers: Optional[Sequence[str]] = None,
    use_credentials: bool = True
) -> Optional[str]:
    """
    Ask the remote which branch its HEAD names, without fetching.

    Returns:
        Branch name, or None when the remote advertises no HEAD (e.g. empty)

    Raises:
        FetchFailed: The remote could not be contacted
    """
    logger = logging.getLogger('dataset_sync.git_sync.transport')

    try:
        with get_performance_logger().time_operation("connect", {"remote": remote.name}):
            output = with_remote_auth(
                repo, remote, settings,
                lambda: repo.git.ls_remote("--symref", remote.name, "HEAD"),
                headers=headers, use_credentials=use_credentials
            )
    except GitCommandError as e:
        raise FetchFailed(f"Could not connect to remote '{remote.name}': {git_error_text(e)}", cause=e) from e

    branch = parse_symref_head(output)
    logger.debug(f"Remote '{remote.name}' advertises default branch {branch!r}")
    return branch


def fetch_refspecs(remote_name: str, branch: str) -> List[str]:
    """The default branch first (so it is marked for merge), then every head."""
    return [
        f"+refs/heads/{branch}:refs/remotes/{remote_name}/{branch}",
        f"+refs/heads/*:refs/remotes/{remote_name}/*",
    ]


def fetch(
    repo: Repo,
    remote: Remote,
    settings: Settings,
    branch: str,
    progress: Optional[ProgressSink] = None,
    headers: Optional[Sequence[str]] = None,
    use_credentials: bool = True
) -> FetchResult:
    """
    Fetch all heads and tags from ``remote`` and read back FETCH_HEAD.

    Args:
        repo: Local repository
        remote: Remote to fetch from
        settings: Settings (prune policy, ssh options)
        branch: Branch whose fetched tip is the merge target
        progress: Optional sink for transfer progress
        headers: Extra HTTP headers (e.g. token authorization)
        use_credentials: Negotiate credentials through CredentialsState

    Raises:
        FetchFailed: Transport failure, including an empty remote
        AuthExhausted: Credentials were all rejected
    """
    logger = logging.getLogger('dataset_sync.git_sync.transport')

    kwargs = {"tags": True}
    policy = settings.prune_policy
    if policy is PrunePolicy.ON:
        kwargs["prune"] = True
    elif policy is PrunePolicy.OFF:
        kwargs["no_prune"] = True

    adapter = _ProgressAdapter(progress) if progress else None

    def run_fetch():
        return remote.fetch(refspec=fetch_refspecs(remote.name, branch), progress=adapter, **kwargs)

    context = {"remote": remote.name, "branch": branch, "prune": policy.value}
    try:
        with get_performance_logger().time_operation("fetch", context):
            with_remote_auth(repo, remote, settings, run_fetch, headers=headers, use_credentials=use_credentials)
    except GitCommandError as e:
        raise FetchFailed(f"Fetch from '{remote.name}' failed: {git_error_text(e)}", cause=e) from e

    path = fetch_head_path(repo)
    try:
        entries = parse_fetch_head(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        entries = []
    except OSError as e:
        raise BackendError(f"Reading {path.name} failed: {e}", cause=e) from e

    logger.debug(f"Fetched {len(entries)} reference(s) from '{remote.name}'")
    return FetchResult(remote_name=remote.name, url=remote_url(remote), entries=entries)


def push(
    repo: Repo,
    remote: Remote,
    settings: Settings,
    branch: str,
    headers: Optional[Sequence[str]] = None,
    use_credentials: bool = True
) -> None:
    """
    Push the local branch to the same name on ``remote``.

    Raises:
        PushFailed: The push was refused or the transport failed
        AuthExhausted: Credentials were all rejected
    """
    refspec = f"refs/heads/{branch}:refs/heads/{branch}"
    try:
        with get_performance_logger().time_operation("push", {"remote": remote.name, "branch": branch}):
            with_remote_auth(
                repo, remote, settings,
                lambda: repo.git.push(remote.name, refspec),
                headers=headers, use_credentials=use_credentials
            )
    except GitCommandError as e:
        raise PushFailed(f"Push of '{branch}' to '{remote.name}' failed: {git_error_text(e)}", cause=e) from e
