"""Shared helpers at the GitPython seam."""

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Generator, List, Optional

from git import Repo
from git.exc import GitError, GitCommandError, ODBError

from ..errors import BackendError, Cancelled, GitSyncError

# Exceptions GitPython and gitdb raise for unreadable or corrupt repositories
BACKEND_ERRORS = (GitError, ODBError, ValueError, OSError)


def git_error_text(error: Exception) -> str:
    """Best human-readable text for a git failure (stderr when available)."""
    if isinstance(error, GitCommandError):
        stderr = error.stderr
        if isinstance(stderr, bytes):
            stderr = stderr.decode("utf-8", errors="replace")
        if stderr:
            text = stderr.strip()
            if text.startswith("stderr:"):
                text = text[len("stderr:"):].strip()
            return text.strip("'").strip()
    return str(error)


@contextmanager
def backend_operation(description: str) -> Generator[None, None, None]:
    """Translate GitPython failures raised inside the block into BackendError."""
    try:
        yield
    except GitSyncError:
        raise
    except BACKEND_ERRORS as e:
        raise BackendError(f"{description} failed: {git_error_text(e)}", cause=e) from e


def remote_config_section(remote_name: str) -> str:
    return f'remote "{remote_name}"'


def read_persisted_config(repo: Repo, remote_name: Optional[str]) -> Dict[str, str]:
    """
    Read the persisted config values that credential negotiation consults.

    Returns:
        Dotted keys (``credential.username``, ``remote.<name>.token``) mapped
        to their values; absent keys are left out
    """
    values = {}
    reader = repo.config_reader()

    username = reader.get_value("credential", "username", default="")
    if username:
        values["credential.username"] = str(username)

    if remote_name:
        token = reader.get_value(remote_config_section(remote_name), "token", default="")
        if token:
            values[f"remote.{remote_name}.token"] = str(token)

    return values


def fetch_head_path(repo: Repo) -> Path:
    return Path(repo.git_dir) / "FETCH_HEAD"


def remote_names(repo: Repo) -> List[str]:
    return [remote.name for remote in repo.remotes]


def raise_if_cancelled(cancel: Optional[threading.Event], stage: str) -> None:
    """Poll the caller's cancellation event between stages."""
    if cancel is not None and cancel.is_set():
        raise Cancelled(f"Cancelled before {stage}")
