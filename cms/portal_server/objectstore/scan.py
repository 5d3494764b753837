"""
List-then-read helper for an eventually consistent object store.

A listing can name objects that were deleted a moment ago. Every loop that
lists a prefix and then reads what it found goes through SafeReader, which
confirms each key with head() first and treats a miss (on head or on the
read that follows) as "skip", never as corruption.

Invariants:
    - No retries; a skipped key is picked up by the next regeneration
    - Undecodable payloads are logged and skipped, not raised
    - Output order follows input key order
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from .base import ObjectSerializationError, ObjectStore, read_json

logger = logging.getLogger(__name__)


@dataclass
class ScanStats:
    """Counters for one scan."""

    listed: int = 0
    read: int = 0
    skipped_missing: int = 0
    skipped_invalid: int = 0


class SafeReader:
    """Verify-with-head, skip-on-miss reader.

    Example:
        >>> reader = SafeReader(store)
        >>> keys = await reader.list("public/entities/", lambda k: k.endswith("latest.json"))
        >>> for key, pointer in await reader.read_listed(keys):
        ...     ...
    """

    def __init__(self, store: ObjectStore) -> None:
        self._store = store
        self.stats = ScanStats()

    async def list(
        self,
        prefix: str,
        key_filter: Callable[[str], bool] | None = None,
    ) -> list[str]:
        keys = await self._store.list(prefix)
        if key_filter is not None:
            keys = [k for k in keys if key_filter(k)]
        self.stats.listed += len(keys)
        return keys

    async def exists(self, key: str) -> bool:
        """head() a listed key, counting a miss as skipped."""
        if await self._store.head(key):
            return True
        self.stats.skipped_missing += 1
        logger.debug("Listed key no longer exists, skipping", extra={"key": key})
        return False

    async def read(self, key: str) -> Any | None:
        """Read one listed key, None if it vanished or is unreadable."""
        if not await self._store.head(key):
            self.stats.skipped_missing += 1
            logger.debug("Listed key no longer exists, skipping", extra={"key": key})
            return None

        try:
            payload = await read_json(self._store, key)
        except ObjectSerializationError as e:
            self.stats.skipped_invalid += 1
            logger.warning(f"Skipping unreadable object: {e}", extra={"key": key})
            return None

        if payload is None:
            # Deleted between head and get
            self.stats.skipped_missing += 1
            return None

        self.stats.read += 1
        return payload

    async def read_listed(self, keys: Iterable[str]) -> list[tuple[str, Any]]:
        """Read every key that still exists, as (key, payload) pairs."""
        results = []
        for key in keys:
            payload = await self.read(key)
            if payload is not None:
                results.append((key, payload))
        return results

    async def scan(
        self,
        prefix: str,
        key_filter: Callable[[str], bool] | None = None,
    ) -> list[tuple[str, Any]]:
        """List a prefix and read what is there."""
        return await self.read_listed(await self.list(prefix, key_filter))
