"""Bounded multi-strategy credential negotiation for remote operations."""

import logging
import re
import shlex
import stat
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum, Flag
from pathlib import Path
from typing import Callable, Dict, Generator, List, Optional, TypeVar
from urllib.parse import urlsplit

from .settings import Settings
from ..errors import AuthExhausted

T = TypeVar('T')

_SCP_LIKE_URL = re.compile(r'^(?:(?P<user>[^@/]+)@)?(?P<host>[^:/]+):(?!//)')

_ASKPASS_SCRIPT = """#!/bin/sh
case "$1" in
  Username*) printf '%s\\n' "$DATASET_SYNC_ASKPASS_USERNAME" ;;
  *) printf '%s\\n' "$DATASET_SYNC_ASKPASS_SECRET" ;;
esac
"""


class CredentialType(Flag):
    """Credential kinds a transport is willing to accept."""
    NONE = 0
    USER_PASS_PLAINTEXT = 1
    SSH_KEY = 2
    USERNAME = 4
    DEFAULT = 8


class Strategy(Enum):
    """Authentication strategies, in the order they are attempted."""
    SSH_AGENT = "ssh_agent"
    SSH_KEY_FILE = "ssh_key_file"
    USERNAME = "username"
    DEFAULT = "default"


STRATEGY_ORDER = (Strategy.SSH_AGENT, Strategy.SSH_KEY_FILE, Strategy.USERNAME, Strategy.DEFAULT)


@dataclass(frozen=True)
class Credential:
    """One concrete credential offered to the transport."""
    strategy: Strategy
    username: Optional[str] = None
    key_path: Optional[str] = None
    passphrase: Optional[str] = None
    password: Optional[str] = None

    def __repr__(self) -> str:
        # Never leak secrets into logs
        return f"Credential(strategy={self.strategy.value}, username={self.username!r}, key_path={self.key_path!r})"


class CredentialRejected(Exception):
    """Raised by a transport attempt when the remote refused the credential."""


def is_ssh_url(url: str) -> bool:
    if url.startswith("ssh://") or url.startswith("git+ssh://") or url.startswith("ssh+git://"):
        return True
    if "://" in url or url.startswith(("/", ".")):
        return False
    return bool(_SCP_LIKE_URL.match(url))


def is_http_url(url: str) -> bool:
    return url.startswith(("http://", "https://"))


def allowed_types_for_url(url: str) -> CredentialType:
    """
    Credential types a remote URL can negotiate.

    Local paths and ``file://`` URLs never ask for credentials.
    """
    if is_ssh_url(url):
        return CredentialType.SSH_KEY | CredentialType.USERNAME
    if is_http_url(url):
        return CredentialType.USER_PASS_PLAINTEXT | CredentialType.DEFAULT
    return CredentialType.NONE


def username_from_url(url: str) -> Optional[str]:
    """Extract the user name embedded in a remote URL, if any."""
    if "://" in url:
        try:
            return urlsplit(url).username
        except ValueError:
            return None
    match = _SCP_LIKE_URL.match(url)
    if match:
        return match.group("user")
    return None


class CredentialsState:
    """
    Cursor over the fixed strategy list for a single negotiation.

    Each strategy is handed out at most once, so a backend that keeps
    rejecting credentials sees at most ``len(STRATEGY_ORDER)`` offers before
    ``advance`` reports exhaustion. Create a fresh instance per connection
    attempt.
    """

    def __init__(
        self,
        settings: Settings,
        persisted: Optional[Dict[str, str]],
        url: str,
        username_hint: Optional[str] = None,
        remote_name: Optional[str] = None
    ):
        """
        Initialize the negotiation state.

        Args:
            settings: Settings overlay (ssh section supplies key file and user)
            persisted: Persisted repository config as dotted keys
                (``credential.username``, ``remote.<name>.token``)
            url: Remote URL being authenticated against
            username_hint: User name embedded in the URL, if any
            remote_name: Remote whose persisted token may serve as a password
        """
        self.settings = settings
        self.persisted = persisted or {}
        self.url = url
        self.username_hint = username_hint
        self.remote_name = remote_name
        self._tried: List[Strategy] = []
        self.logger = logging.getLogger('dataset_sync.git_sync.credentials')

    @property
    def tried(self) -> List[Strategy]:
        return list(self._tried)

    @property
    def attempts(self) -> int:
        return len(self._tried)

    def _username(self) -> Optional[str]:
        return (
            self.username_hint
            or self.settings.ssh_option("username")
            or self.persisted.get("credential.username")
        )

    def _token(self) -> Optional[str]:
        if not self.remote_name:
            return None
        return self.persisted.get(f"remote.{self.remote_name}.token") or None

    def _credential_for(self, strategy: Strategy, allowed_types: CredentialType) -> Optional[Credential]:
        """Build the credential for ``strategy`` or None when it cannot apply."""
        if strategy is Strategy.SSH_AGENT:
            if CredentialType.SSH_KEY in allowed_types:
                return Credential(strategy, username=self._username())
            return None

        if strategy is Strategy.SSH_KEY_FILE:
            key_path = self.settings.ssh_option("identity-file")
            if CredentialType.SSH_KEY in allowed_types and key_path:
                return Credential(
                    strategy,
                    username=self._username(),
                    key_path=str(Path(key_path).expanduser()),
                    passphrase=self.settings.ssh_option("passphrase"),
                )
            return None

        if strategy is Strategy.USERNAME:
            username = self._username()
            if not username:
                return None
            if CredentialType.USER_PASS_PLAINTEXT in allowed_types:
                token = self._token()
                if token:
                    return Credential(strategy, username=username, password=token)
            if CredentialType.USERNAME in allowed_types:
                return Credential(strategy, username=username)
            return None

        if strategy is Strategy.DEFAULT:
            if CredentialType.DEFAULT in allowed_types:
                return Credential(strategy)
            return None

        raise AssertionError(f"unhandled credential strategy {strategy}")

    def advance(self, allowed_types: CredentialType) -> Optional[Credential]:
        """
        Offer the next untried strategy compatible with ``allowed_types``.

        Returns:
            The next Credential, or None once no compatible strategy remains
        """
        for strategy in STRATEGY_ORDER:
            if strategy in self._tried:
                continue
            credential = self._credential_for(strategy, allowed_types)
            if credential is not None:
                self._tried.append(strategy)
                self.logger.debug(f"Offering {strategy.value} credential for {self.url} (attempt {self.attempts})")
                return credential
        return None


def negotiate(
    state: CredentialsState,
    allowed_types: CredentialType,
    attempt: Callable[[Credential], T]
) -> T:
    """
    Run ``attempt`` with successive credentials until one is accepted.

    Args:
        state: Fresh negotiation state for this connection
        allowed_types: Credential types the transport accepts
        attempt: Transport call; raises CredentialRejected on auth failure

    Returns:
        Whatever ``attempt`` returns for the first accepted credential

    Raises:
        AuthExhausted: When every compatible strategy was rejected
    """
    logger = logging.getLogger('dataset_sync.git_sync.credentials')
    last_rejection: Optional[CredentialRejected] = None

    while True:
        credential = state.advance(allowed_types)
        if credential is None:
            tried = ", ".join(s.value for s in state.tried) or "none"
            raise AuthExhausted(
                f"Authentication failed for {state.url} after {state.attempts} attempt(s) "
                f"(strategies tried: {tried})",
                cause=last_rejection
            )
        try:
            return attempt(credential)
        except CredentialRejected as e:
            logger.info(f"Credential {credential.strategy.value} rejected for {state.url}")
            last_rejection = e


def _ssh_command(credential: Credential) -> str:
    parts = ["ssh"]
    if credential.key_path:
        parts += ["-i", credential.key_path, "-o", "IdentitiesOnly=yes"]
    if credential.username:
        parts += ["-l", credential.username]
    if not credential.passphrase:
        parts += ["-o", "BatchMode=yes"]
    return " ".join(shlex.quote(p) for p in parts)


@contextmanager
def credential_environment(credential: Optional[Credential]) -> Generator[Dict[str, str], None, None]:
    """
    Environment variables that make git present ``credential``.

    Secrets go through a short-lived askpass script reading them from the
    environment, never through the command line.
    """
    env = {"GIT_TERMINAL_PROMPT": "0"}
    if credential is None or credential.strategy is Strategy.DEFAULT:
        yield env
        return

    if credential.strategy in (Strategy.SSH_AGENT, Strategy.SSH_KEY_FILE):
        env["GIT_SSH_COMMAND"] = _ssh_command(credential)
    elif credential.password is None:
        # ssh login name only
        env["GIT_SSH_COMMAND"] = _ssh_command(credential)

    secret = credential.passphrase or credential.password
    if not secret:
        yield env
        return

    with tempfile.TemporaryDirectory(prefix="dataset-sync-askpass-") as temp_dir:
        script = Path(temp_dir) / "askpass.sh"
        script.write_text(_ASKPASS_SCRIPT)
        script.chmod(stat.S_IRWXU)
        env.update({
            "GIT_ASKPASS": str(script),
            "SSH_ASKPASS": str(script),
            "SSH_ASKPASS_REQUIRE": "force",
            "DATASET_SYNC_ASKPASS_USERNAME": credential.username or "",
            "DATASET_SYNC_ASKPASS_SECRET": secret,
        })
        yield env
