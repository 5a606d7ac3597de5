"""
In-memory key-value backend.

Reproduces the subset of Redis behaviour the key-value store relies on:
hashes, capped lists and strings, each with an expiry. Used when Redis is
unreachable, and in tests. Data is lost on restart.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

from news_rag.storage.kv.migration import migrate_legacy_format

logger = logging.getLogger(__name__)


class InMemoryKVBackend:
    """
    In-memory implementation of the KeyValueBackend protocol.

    Entries are ``{value, expires_at}`` where ``value`` is a dict (hash), a
    list or a string. Expired entries are removed when they are next read.
    """

    name = "in-memory"

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        """
        Args:
            clock: Returns the current time in seconds (default: time.monotonic)
        """
        self._clock = clock or time.monotonic
        self._store: Dict[str, Dict[str, Any]] = {}
        self._lists: Dict[str, Dict[str, Any]] = {}

        logger.info("InMemoryKVBackend initialized")

    def _live(self, table: Dict[str, Dict[str, Any]], key: str) -> Optional[Dict[str, Any]]:
        entry = table.get(key)
        if entry is None:
            return None
        if entry["expires_at"] is not None and self._clock() >= entry["expires_at"]:
            del table[key]
            return None
        return entry

    def _expiry(self, ttl: Optional[int]) -> Optional[float]:
        return self._clock() + ttl if ttl else None

    async def set_hash(self, key: str, mapping: dict, ttl: int) -> None:
        self._store[key] = {
            "value": {field: str(value) for field, value in mapping.items()},
            "expires_at": self._expiry(ttl),
        }

    async def get_hash(self, key: str) -> Optional[dict]:
        entry = self._live(self._store, key)
        if entry is None:
            return None

        value = entry["value"]
        if isinstance(value, str):
            migrated = migrate_legacy_format(value, session_id=key.split(":", 1)[-1])
            entry["value"] = migrated
            logger.info(f"Migrated legacy session value at {key}")
            return dict(migrated)

        return dict(value) if value else None

    async def delete(self, key: str) -> int:
        removed = 0
        if self._live(self._store, key) is not None:
            del self._store[key]
            removed += 1
        if self._live(self._lists, key) is not None:
            del self._lists[key]
            removed += 1
        return removed

    async def push_bounded(self, key: str, value: str, max_length: int, ttl: int) -> int:
        entry = self._live(self._lists, key)
        items: List[str] = entry["value"] if entry is not None else []

        items.append(value)
        # Keep only the newest max_length items
        del items[:-max_length]

        self._lists[key] = {"value": items, "expires_at": self._expiry(ttl)}
        return len(items)

    async def list_tail(self, key: str, limit: int) -> List[str]:
        entry = self._live(self._lists, key)
        if entry is None or limit <= 0:
            return []
        return list(entry["value"][-limit:])

    async def list_length(self, key: str) -> int:
        entry = self._live(self._lists, key)
        return len(entry["value"]) if entry is not None else 0

    async def set_value(self, key: str, value: str, ttl: int) -> None:
        self._store[key] = {"value": value, "expires_at": self._expiry(ttl)}

    async def get_value(self, key: str) -> Optional[str]:
        entry = self._live(self._store, key)
        if entry is None or not isinstance(entry["value"], str):
            return None
        return entry["value"]

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None
