"""Remote descriptor record for Git synchronization."""

import json
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

from ..errors import InvalidRecord

_FIELDS = ("url", "token")


@dataclass
class Origin:
    """Remote endpoint plus an optional bearer token."""
    url: str
    token: Optional[str] = None

    @property
    def is_http(self) -> bool:
        """Check if the remote is reached over HTTP(S)."""
        return self.url.startswith(("http://", "https://"))

    def auth_headers(self):
        """Extra HTTP headers carrying the token, empty when there is nothing to send."""
        if self.token is None or not self.is_http:
            return []
        return [f"Authorization: token {self.token}"]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Origin":
        """
        Build an Origin from its serialized form.

        Raises:
            InvalidRecord: On unknown fields, a missing url or wrongly typed values
        """
        if not isinstance(data, dict):
            raise InvalidRecord(f"origin must be an object, got {type(data).__name__}")

        unknown = sorted(set(data) - set(_FIELDS))
        if unknown:
            raise InvalidRecord(f"unknown field(s) in origin: {', '.join(unknown)}")

        url = data.get("url")
        if not isinstance(url, str):
            raise InvalidRecord("origin field 'url' is required and must be a string")

        token = data.get("token")
        if token is not None and not isinstance(token, str):
            raise InvalidRecord("origin field 'token' must be a string")

        return cls(url=url, token=token)

    @classmethod
    def from_json(cls, text: str) -> "Origin":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise InvalidRecord(f"origin is not valid JSON: {e}")
        return cls.from_dict(data)
