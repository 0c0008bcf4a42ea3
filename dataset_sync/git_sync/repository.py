"""Repository facade tying the synchronization engines to one on-disk dataset."""

import logging
import threading
from pathlib import Path
from typing import Optional, Tuple, Union

from git import Actor, Repo
from git.exc import InvalidGitRepositoryError, NoSuchPathError

from ..config import Config
from .backend import backend_operation, remote_config_section, remote_names
from .origin import Origin
from .pull import PullOutcome, pull as run_pull
from .resolve import ResolveResult, resolve as run_resolve, set_remote_url, sync as run_sync
from .settings import Settings
from .status import (
    DetachedHead, RepositoryStatus, UnbornHead, WorkingTreeStatus,
    default_remote, head_status, repository_status, working_tree_status
)
from .transport import ProgressSink, header_environment, push as run_push
from ..errors import DetachedHeadError, NoRemote

PathLike = Union[str, Path]


class Repository:
    """
    A local dataset repository and the operations that keep it in sync.

    Every public operation resolves its Settings exactly once: the Config
    defaults overlaid with any explicit Settings argument.
    """

    def __init__(self, repo: Repo, config: Optional[Config] = None):
        self.repo = repo
        self.config = config or Config()
        self.logger = logging.getLogger('dataset_sync.git_sync.repository')

    @property
    def path(self) -> Path:
        return Path(self.repo.working_tree_dir or self.repo.git_dir)

    def __repr__(self) -> str:
        return f"Repository({str(self.path)!r})"

    def close(self) -> None:
        self.repo.close()

    def settings(self, settings: Optional[Settings] = None) -> Settings:
        return self.config.to_settings().overlay(settings)

    # Creation

    @classmethod
    def init(cls, path: PathLike, config: Optional[Config] = None) -> "Repository":
        """Create a repository with a working tree whose HEAD names the default branch."""
        config = config or Config()
        with backend_operation(f"Initializing repository at {path}"):
            repo = Repo.init(str(path), mkdir=True)
            repo.git.symbolic_ref("HEAD", f"refs/heads/{config.default_branch}")
        return cls(repo, config)

    @classmethod
    def init_bare(cls, path: PathLike, config: Optional[Config] = None) -> "Repository":
        """Create a bare repository, suitable as a remote peer."""
        config = config or Config()
        with backend_operation(f"Initializing bare repository at {path}"):
            repo = Repo.init(str(path), mkdir=True, bare=True)
            repo.git.symbolic_ref("HEAD", f"refs/heads/{config.default_branch}")
        return cls(repo, config)

    @classmethod
    def open(cls, path: PathLike, config: Optional[Config] = None) -> "Repository":
        """
        Open an existing repository.

        Raises:
            BackendError: ``path`` is not a readable repository
        """
        with backend_operation(f"Opening repository at {path}"):
            repo = Repo(str(path))
        return cls(repo, config)

    @classmethod
    def try_open(cls, path: PathLike, config: Optional[Config] = None) -> Optional["Repository"]:
        """Open ``path`` if it is a repository, otherwise return None."""
        try:
            repo = Repo(str(path))
        except (InvalidGitRepositoryError, NoSuchPathError):
            return None
        return cls(repo, config)

    @classmethod
    def clone(cls, path: PathLike, origin: Origin, config: Optional[Config] = None) -> "Repository":
        """
        Clone ``origin`` into ``path`` and persist its token.

        The token is sent as an HTTP header during the clone and stored as
        ``remote.<name>.token`` afterwards.
        """
        config = config or Config()
        logger = logging.getLogger('dataset_sync.git_sync.repository')

        env = header_environment(origin.auth_headers())
        env["GIT_TERMINAL_PROMPT"] = "0"
        with backend_operation(f"Cloning {origin.url}"):
            repo = Repo.clone_from(origin.url, str(path), origin=config.default_remote, env=env)

        repository = cls(repo, config)
        repository.set_origin(origin)
        logger.info(f"Cloned {origin.url} into {path}")
        return repository

    # Status

    def status(self, settings: Optional[Settings] = None) -> RepositoryStatus:
        status, _ = repository_status(self.repo, self.settings(settings))
        return status

    def working_tree_status(self) -> WorkingTreeStatus:
        return working_tree_status(self.repo)

    # Remote configuration

    def _remote_name(self, resolved: Settings) -> str:
        if not resolved.default_remote:
            raise NoRemote("No default remote configured")
        return resolved.default_remote

    def get_origin(self, settings: Optional[Settings] = None) -> Optional[Origin]:
        """The default remote as an Origin, or None when it is not configured."""
        name = self._remote_name(self.settings(settings))
        with backend_operation(f"Reading remote {name}"):
            if name not in remote_names(self.repo):
                return None
            url = self.repo.remote(name).url
            token = self.repo.config_reader().get_value(remote_config_section(name), "token", default="")
        return Origin(url=url, token=str(token) if token else None)

    def set_origin(self, origin: Origin, settings: Optional[Settings] = None) -> None:
        """Point the default remote at ``origin.url`` and persist (or clear) its token."""
        name = self._remote_name(self.settings(settings))
        set_remote_url(self.repo, name, origin.url)

        section = remote_config_section(name)
        with backend_operation(f"Writing token of remote {name}"):
            with self.repo.config_writer() as writer:
                if origin.token is not None:
                    writer.set_value(section, "token", origin.token)
                elif writer.has_option(section, "token"):
                    writer.remove_option(section, "token")

    # Staging and committing

    def add(self) -> Tuple[str, str]:
        """
        Stage every new, modified and deleted file.

        Returns:
            (tree id of the staged index, comma-separated changed paths)
        """
        changed = working_tree_status(self.repo).paths()
        with backend_operation("Staging changes"):
            self.repo.git.add("-A")
            tree = self.repo.index.write_tree()
        return tree.hexsha, ", ".join(changed)

    def commit(self) -> str:
        """
        Commit everything in the working tree.

        The first commit is named "initial" and creates the default branch.
        When nothing changed on an existing branch no commit is made.

        Returns:
            Id of the new commit, or of the current tip when nothing changed
        """
        _, message = self.add()
        actor = Actor(self.config.author_name, self.config.author_email)

        head = head_status(self.repo)
        with backend_operation("Committing"):
            if isinstance(head, UnbornHead):
                if head.branch_name != self.config.default_branch:
                    self.repo.git.symbolic_ref("HEAD", f"refs/heads/{self.config.default_branch}")
                message = "initial"
            elif not message:
                return self.repo.head.commit.hexsha

            commit = self.repo.index.commit(message, author=actor, committer=actor)

        self.logger.info(f"Committed {commit.hexsha[:8]}: {message}")
        return commit.hexsha

    # Synchronization

    def pull(
        self,
        origin: Optional[Origin] = None,
        settings: Optional[Settings] = None,
        switch: bool = True,
        progress: Optional[ProgressSink] = None,
        cancel: Optional[threading.Event] = None
    ) -> PullOutcome:
        """Fast-forward the default branch from the remote, after pointing it at ``origin`` if given."""
        resolved = self.settings(settings)
        if origin is not None:
            self.set_origin(origin, resolved)
        status, remote = repository_status(self.repo, resolved)
        return run_pull(self.repo, resolved, status, remote=remote, switch=switch, progress=progress, cancel=cancel)

    def push(self, origin: Optional[Origin] = None, settings: Optional[Settings] = None) -> None:
        """
        Push the current branch to the default remote.

        With an ``origin`` only its token header authenticates; without one,
        credentials are negotiated.
        """
        resolved = self.settings(settings)
        head = head_status(self.repo)
        if isinstance(head, DetachedHead):
            raise DetachedHeadError("Cannot push while HEAD is detached")
        branch = head.branch_name if isinstance(head, UnbornHead) else head.name

        if origin is not None:
            remote = set_remote_url(self.repo, self._remote_name(resolved), origin.url)
            run_push(self.repo, remote, resolved, branch, headers=origin.auth_headers(), use_credentials=False)
        else:
            run_push(self.repo, default_remote(self.repo, resolved), resolved, branch)

    def resolve(
        self,
        origin: Origin,
        settings: Optional[Settings] = None,
        progress: Optional[ProgressSink] = None,
        cancel: Optional[threading.Event] = None
    ) -> ResolveResult:
        return run_resolve(self.repo, origin, self.settings(settings), progress=progress, cancel=cancel)

    def sync(
        self,
        settings: Optional[Settings] = None,
        progress: Optional[ProgressSink] = None,
        cancel: Optional[threading.Event] = None
    ) -> ResolveResult:
        return run_sync(self.repo, self.settings(settings), progress=progress, cancel=cancel)
