"""Settings override layer for Git synchronization operations."""

import json
from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Any, Dict, Optional

from ..errors import InvalidRecord


class PrunePolicy(Enum):
    """How a fetch treats remote-tracking references that vanished upstream."""
    ON = "on"
    OFF = "off"
    UNSPECIFIED = "unspecified"


@dataclass
class Settings:
    """
    Resolved configuration layered on top of the persisted repository config.

    Every field is optional. Settings never write to the repository; they only
    override what would otherwise be read from it.
    """
    default_branch: Optional[str] = None
    default_remote: Optional[str] = None
    ssh: Optional[Dict[str, Any]] = None
    editor: Optional[Any] = None
    ignore: Optional[Any] = None
    prune: Optional[bool] = None

    @property
    def prune_policy(self) -> PrunePolicy:
        if self.prune is None:
            return PrunePolicy.UNSPECIFIED
        return PrunePolicy.ON if self.prune else PrunePolicy.OFF

    def ssh_option(self, name: str) -> Optional[str]:
        """Look up a key of the opaque ssh section, e.g. ``identity-file``."""
        if not isinstance(self.ssh, dict):
            return None
        value = self.ssh.get(name)
        return str(value) if value is not None else None

    def overlay(self, other: Optional["Settings"]) -> "Settings":
        """Return a copy where every field set on ``other`` wins."""
        if other is None:
            return self
        changes = {
            f.name: getattr(other, f.name)
            for f in fields(other)
            if getattr(other, f.name) is not None
        }
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with kebab-case keys, leaving unset fields out."""
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is not None:
                result[f.name.replace("_", "-")] = value
        return result

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        if not isinstance(data, dict):
            raise InvalidRecord(f"settings must be an object, got {type(data).__name__}")

        known = {f.name.replace("_", "-"): f.name for f in fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            raise InvalidRecord(f"unknown field(s) in settings: {', '.join(unknown)}")

        values = {known[key]: value for key, value in data.items()}

        for name in ("default_branch", "default_remote"):
            if values.get(name) is not None and not isinstance(values[name], str):
                raise InvalidRecord(f"settings field '{name.replace('_', '-')}' must be a string")
        if values.get("prune") is not None and not isinstance(values["prune"], bool):
            raise InvalidRecord("settings field 'prune' must be a boolean")

        return cls(**values)

    @classmethod
    def from_json(cls, text: str) -> "Settings":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise InvalidRecord(f"settings is not valid JSON: {e}")
        return cls.from_dict(data)
