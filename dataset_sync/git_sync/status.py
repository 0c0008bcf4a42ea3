"""Repository status synthesis: head, upstream and working-tree snapshots."""

import logging
import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterator, List, Optional, Tuple, Union

from git import Repo, Remote

from .backend import backend_operation, remote_names
from .settings import Settings
from ..errors import AmbiguousRemote, BackendError, GitSyncError, NoRemote


@dataclass(frozen=True)
class UnbornHead:
    """HEAD names a branch that has no commit yet."""
    branch_name: str

    def on_branch(self, name: str) -> bool:
        return self.branch_name == name

    def to_dict(self) -> Dict[str, Any]:
        return {"state": "unborn", "branch": self.branch_name}


@dataclass(frozen=True)
class DetachedHead:
    """HEAD points directly at a commit."""
    commit_id: str

    def on_branch(self, name: str) -> bool:
        return False

    def to_dict(self) -> Dict[str, Any]:
        return {"state": "detached", "commit": self.commit_id}


@dataclass(frozen=True)
class BranchHead:
    """HEAD names a branch that resolves to a commit."""
    name: str

    def on_branch(self, name: str) -> bool:
        return self.name == name

    def to_dict(self) -> Dict[str, Any]:
        return {"state": "branch", "branch": self.name}


HeadStatus = Union[UnbornHead, DetachedHead, BranchHead]


@dataclass(frozen=True)
class Tracking:
    """Upstream comparison of the current branch.

    ``remote_name`` is the upstream's short name, e.g. ``origin/main``.
    """
    remote_name: str
    ahead: int
    behind: int

    def to_dict(self) -> Dict[str, Any]:
        return {"upstream": self.remote_name, "ahead": self.ahead, "behind": self.behind}


# None when the head is not on a branch or the branch has no upstream
UpstreamStatus = Optional[Tracking]


class FileFlag(Enum):
    NEW = "new"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"
    TYPECHANGE = "typechange"
    CONFLICTED = "conflicted"


_CONFLICT_CODES = {"DD", "AU", "UD", "UA", "DU", "AA", "UU"}

_STATUS_LETTERS = {
    "A": FileFlag.NEW,
    "C": FileFlag.NEW,
    "M": FileFlag.MODIFIED,
    "D": FileFlag.DELETED,
    "R": FileFlag.RENAMED,
    "T": FileFlag.TYPECHANGE,
}


def normalize_path(path: str, ignore_case: bool) -> str:
    """Comparison key for a repository path."""
    path = unicodedata.normalize("NFC", path)
    return path.casefold() if ignore_case else path


@dataclass(frozen=True)
class WorkingTreeStatus:
    """Point-in-time (path, flag) pairs for index and working directory changes."""
    entries: FrozenSet[Tuple[str, FileFlag]] = frozenset()
    ignore_case: bool = False

    def __iter__(self) -> Iterator[Tuple[str, FileFlag]]:
        return iter(sorted(self.entries, key=lambda e: (e[0], e[1].value)))

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def is_clean(self) -> bool:
        return not self.entries

    def flags_for(self, path: str) -> FrozenSet[FileFlag]:
        key = normalize_path(path, self.ignore_case)
        return frozenset(
            flag for entry_path, flag in self.entries
            if normalize_path(entry_path, self.ignore_case) == key
        )

    def paths(self, flag: Optional[FileFlag] = None) -> List[str]:
        return sorted({p for p, f in self.entries if flag is None or f == flag})

    def to_dict(self) -> Dict[str, List[str]]:
        result: Dict[str, List[str]] = {}
        for path, flag in self:
            result.setdefault(path, []).append(flag.value)
        return result


@dataclass(frozen=True)
class RepositoryStatus:
    """Head, upstream and working tree computed together from one snapshot."""
    head: HeadStatus
    upstream: UpstreamStatus
    working_tree: WorkingTreeStatus = field(default_factory=WorkingTreeStatus)
    default_branch: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "head": self.head.to_dict(),
            "upstream": self.upstream.to_dict() if self.upstream else None,
            "working_tree": self.working_tree.to_dict(),
            "default_branch": self.default_branch,
        }


def head_status(repo: Repo) -> HeadStatus:
    """
    Classify HEAD.

    Raises:
        BackendError: When HEAD or the reference it names cannot be read
    """
    with backend_operation("Reading HEAD"):
        head = repo.head
        if head.is_detached:
            return DetachedHead(commit_id=head.commit.hexsha)

        reference = head.reference
        if not reference.is_valid():
            return UnbornHead(branch_name=reference.name)
        return BranchHead(name=reference.name)


def upstream_status(repo: Repo, head: HeadStatus) -> UpstreamStatus:
    """
    Compare the current branch with its configured upstream.

    Raises:
        BackendError: When the configured upstream does not resolve
    """
    if not isinstance(head, BranchHead):
        return None

    with backend_operation(f"Reading upstream of {head.name}"):
        branch = repo.heads[head.name]
        tracking = branch.tracking_branch()
        if tracking is None:
            return None

        if not tracking.is_valid():
            raise BackendError(f"Upstream '{tracking.name}' of branch '{head.name}' does not resolve")

        counts = repo.git.rev_list("--left-right", "--count", f"{branch.path}...{tracking.path}")
        ahead, behind = (int(n) for n in counts.split())
        return Tracking(remote_name=tracking.name, ahead=ahead, behind=behind)


def _ignore_case(repo: Repo) -> bool:
    value = repo.config_reader().get_value("core", "ignorecase", default=False)
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "on", "1"}
    return bool(value)


def parse_porcelain_status(output: str, ignore_case: bool = False) -> WorkingTreeStatus:
    """
    Parse ``git status --porcelain=v1 -z`` output.

    Renames and copies carry their source path as a separate NUL-terminated
    record which is consumed and dropped.
    """
    entries = set()
    seen = {}
    records = output.split("\0")
    i = 0
    while i < len(records):
        record = records[i]
        i += 1
        if len(record) < 4:
            continue

        code, path = record[:2], record[3:]
        if "R" in code or "C" in code:
            i += 1

        # One spelling per path on case-insensitive filesystems
        key = normalize_path(path, ignore_case)
        path = seen.setdefault(key, path)

        if code == "??":
            entries.add((path, FileFlag.NEW))
        elif code in _CONFLICT_CODES:
            entries.add((path, FileFlag.CONFLICTED))
        else:
            for letter in code:
                flag = _STATUS_LETTERS.get(letter)
                if flag is not None:
                    entries.add((path, flag))

    return WorkingTreeStatus(entries=frozenset(entries), ignore_case=ignore_case)


def working_tree_status(repo: Repo) -> WorkingTreeStatus:
    """Diff of index and HEAD against the working directory, submodules excluded."""
    with backend_operation("Reading working tree status"):
        if repo.bare:
            return WorkingTreeStatus()
        output = repo.git.status("--porcelain=v1", "-z", "--untracked-files=all", "--ignore-submodules=all")
        return parse_porcelain_status(output, ignore_case=_ignore_case(repo))


def default_remote(repo: Repo, settings: Settings) -> Remote:
    """
    Pick the remote operations talk to.

    Raises:
        AmbiguousRemote: Several remotes and none selected by settings
        NoRemote: No remote configured
    """
    with backend_operation("Listing remotes"):
        names = remote_names(repo)

    if settings.default_remote and settings.default_remote in names:
        return repo.remote(settings.default_remote)
    if len(names) == 1:
        return repo.remote(names[0])
    if len(names) > 1:
        raise AmbiguousRemote(
            f"Cannot choose between remotes {', '.join(sorted(names))}; set a default remote"
        )
    raise NoRemote("No remote configured")


def try_default_branch(repo: Repo, settings: Settings) -> Tuple[Optional[str], Optional[Remote]]:
    """
    Resolve the default branch without ever failing.

    Order: ``settings.default_branch``, then the default remote's advertised
    HEAD (read-only connect, no fetch), then nothing.

    Returns:
        (branch name or None, remote that was contacted or None)
    """
    logger = logging.getLogger('dataset_sync.git_sync.status')

    if settings.default_branch:
        return settings.default_branch, None

    from .transport import remote_default_branch

    try:
        remote = default_remote(repo, settings)
        branch = remote_default_branch(repo, remote, settings)
    except GitSyncError as e:
        logger.debug(f"Default branch could not be determined: {e}")
        return None, None

    if branch is None:
        return None, None
    return branch, remote


def repository_status(repo: Repo, settings: Settings) -> Tuple[RepositoryStatus, Optional[Remote]]:
    """
    Compute a fresh RepositoryStatus.

    Head, upstream and working tree are read back to back without any
    mutation in between.

    Returns:
        (status, remote contacted while resolving the default branch)
    """
    head = head_status(repo)
    upstream = upstream_status(repo, head)
    working_tree = working_tree_status(repo)
    default_branch, remote = try_default_branch(repo, settings)

    return RepositoryStatus(
        head=head,
        upstream=upstream,
        working_tree=working_tree,
        default_branch=default_branch,
    ), remote
