"""Token session bound to a key/value store."""

from __future__ import annotations

import logging
import threading
from typing import Any

from ..oauth.storage import KeyValueStore, TokenRecord

logger = logging.getLogger(__name__)


class TokenSession:
    """The stored token record and its lifecycle.

    The session is the only writer of the token key. Every store access holds
    a reentrant lock. Within one event loop the calls never interleave, so the
    lock only matters for hosts that share a session across threads (for
    example a sync worker next to the loop).
    """

    def __init__(self, store: KeyValueStore, key: str = "token"):
        self.store = store
        self.key = key
        self._lock = threading.RLock()

    def load(self) -> TokenRecord | None:
        """Current record, or None when unauthenticated."""
        with self._lock:
            raw = self.store.get(self.key)
        if not raw:
            return None
        if not isinstance(raw, dict):
            logger.warning("Ignoring token record of type %s", type(raw).__name__)
            return None

        try:
            return TokenRecord.from_dict(raw)
        except (ValueError, TypeError) as e:
            logger.warning("Ignoring unusable token record: %s", e)
            return None

    @property
    def exists(self) -> bool:
        return self.load() is not None

    def save(self, record: TokenRecord) -> TokenRecord:
        with self._lock:
            self.store.set(self.key, record.to_dict())
        return record

    def start(self, payload: dict[str, Any]) -> TokenRecord:
        """Replace the session with a freshly issued token payload."""
        return self.save(TokenRecord.from_dict(payload))

    def merge(self, payload: dict[str, Any]) -> TokenRecord:
        """Merge a refresh response into the stored record and persist it.

        Starts a new record if nothing is stored.
        """
        with self._lock:
            current = self.load()
            record = current.merge(payload) if current else TokenRecord.from_dict(payload)
            self.store.set(self.key, record.to_dict())
        return record

    def clear(self) -> None:
        """Wipe the whole store."""
        with self._lock:
            self.store.clear()
