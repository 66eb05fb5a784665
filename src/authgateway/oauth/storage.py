"""Durable key/value storage and the OAuth token record kept in it.

``FileStore`` keeps everything in a single JSON file with restrictive file
permissions (0o600). Tokens are stored in plaintext; encryption at rest is left
to the host (FileVault, LUKS, a secrets manager).
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Synchronous, local key/value store."""

    def get(self, key: str) -> Any | None:
        ...

    def set(self, key: str, value: Any) -> None:
        ...

    def clear(self) -> None:
        ...


class MemoryStore:
    """In-process store. Values are copied in and out as JSON-compatible data."""

    def __init__(self, initial: dict[str, Any] | None = None):
        self._data: dict[str, Any] = json.loads(json.dumps(initial or {}))

    def get(self, key: str) -> Any | None:
        if key not in self._data:
            return None
        return json.loads(json.dumps(self._data[key]))

    def set(self, key: str, value: Any) -> None:
        self._data[key] = json.loads(json.dumps(value))

    def clear(self) -> None:
        self._data.clear()

    def keys(self) -> list[str]:
        return list(self._data)


class FileStore:
    """JSON-file backed store.

    Usage:
        store = FileStore(Path("~/.authgateway/session.json").expanduser())
        store.set("token", {"access_token": "..."})
        store.get("token")
        store.clear()
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}

        try:
            with open(self.path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Could not load %s: %s", self.path, e)
            return {}

        if not isinstance(data, dict):
            logger.warning("Ignoring %s: expected a JSON object", self.path)
            return {}
        return data

    def _save(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(data, f, indent=2)

        # Set restrictive permissions
        os.chmod(self.path, 0o600)

    def get(self, key: str) -> Any | None:
        return self._load().get(key)

    def set(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def clear(self) -> None:
        """Wipe every key, not only the token."""
        self._save({})


@dataclass
class TokenRecord:
    """OAuth token record as returned by the token endpoint."""

    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None  # seconds, informational
    token_type: str | None = None
    scope: str | None = None
    user_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not isinstance(self.access_token, str) or not self.access_token:
            raise ValueError("access_token must be a non-empty string")

    @property
    def can_refresh(self) -> bool:
        return bool(self.refresh_token)

    def merge(self, payload: dict[str, Any]) -> "TokenRecord":
        """Return a new record with ``payload`` fields laid over this one.

        Fields missing from ``payload`` keep their current value.
        """
        merged = self.to_dict()
        merged.update(payload)
        return TokenRecord.from_dict(merged)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the flat wire/storage shape."""
        data = {f.name: getattr(self, f.name) for f in fields(self) if f.name != "extra"}
        data.update(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TokenRecord":
        """Create from the flat wire/storage shape.

        Raises:
            ValueError: If ``access_token`` is missing or empty
        """
        known = {f.name for f in fields(cls)} - {"extra"}
        values = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        if "access_token" not in values:
            raise ValueError("access_token is required")
        return cls(**values, extra=extra)
