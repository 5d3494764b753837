"""
In-memory object store implementation for testing.

This module provides a dict-backed object store for:
- Unit tests
- Integration tests
- Local development without a bucket

Besides the ObjectStore protocol it exposes helpers that reproduce the
list/read races of a real eventually consistent bucket, so scan-then-read
code paths can be exercised deterministically.

Invariants:
    - All data is lost on process exit
    - Single-key get after put is read-your-writes, like production
    - Safe to use from multiple coroutines

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with the ObjectStore protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from .base import JSON_CONTENT_TYPE, ObjectStoreConnectionError, decode_json

logger = logging.getLogger(__name__)


@dataclass
class StoredObject:
    """In-memory object body plus metadata."""
    body: bytes
    content_type: str


class InMemoryObjectStore:
    """In-memory implementation of ObjectStore for testing.

    Race simulation:
        - inject_phantom(key): list() keeps returning a key with no object,
          as if it was deleted after the listing was computed
        - hide_from_list(key): list() omits an existing key, as if it was
          created after the listing was computed
        - vanish_after_head(key): head() says yes, the following get()
          finds nothing

    Failure injection:
        - fail_writes(prefix, exc): put() to keys under prefix raises exc

    Example:
        >>> store = InMemoryObjectStore()
        >>> await store.connect()
        >>> await store.put("stubs/abc.json", b"{}")
        >>> await store.list("stubs/")
        ['stubs/abc.json']
    """

    def __init__(self) -> None:
        self._objects: dict[str, StoredObject] = {}
        self._phantoms: set[str] = set()
        self._hidden: set[str] = set()
        self._vanishing: set[str] = set()
        self._write_failures: dict[str, Exception] = {}
        self._connected = False
        self._lock = asyncio.Lock()
        self.put_count = 0

    @property
    def is_connected(self) -> bool:
        """Whether connected (always true after connect())."""
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryObjectStore connected")

    async def close(self) -> None:
        """Close and clear all data."""
        self._connected = False
        self._objects.clear()
        self._phantoms.clear()
        self._hidden.clear()
        self._vanishing.clear()
        self._write_failures.clear()
        logger.debug("InMemoryObjectStore closed")

    def _check_connected(self) -> None:
        if not self._connected:
            raise ObjectStoreConnectionError("Not connected")

    async def get(self, key: str) -> bytes | None:
        self._check_connected()
        async with self._lock:
            if key in self._vanishing:
                self._vanishing.discard(key)
                self._objects.pop(key, None)
                return None
            obj = self._objects.get(key)
            return obj.body if obj else None

    async def put(
        self,
        key: str,
        body: bytes,
        content_type: str = JSON_CONTENT_TYPE,
    ) -> None:
        self._check_connected()
        for prefix, exc in self._write_failures.items():
            if key.startswith(prefix):
                raise exc
        async with self._lock:
            self._objects[key] = StoredObject(body=body, content_type=content_type)
            self._phantoms.discard(key)
            self.put_count += 1
        logger.debug("Object written", extra={"key": key, "size": len(body)})

    async def delete(self, key: str) -> None:
        self._check_connected()
        async with self._lock:
            self._objects.pop(key, None)

    async def head(self, key: str) -> bool:
        self._check_connected()
        async with self._lock:
            return key in self._objects

    async def list(self, prefix: str) -> list[str]:
        self._check_connected()
        async with self._lock:
            keys = {k for k in self._objects if k.startswith(prefix)}
            keys |= {k for k in self._phantoms if k.startswith(prefix)}
            keys -= self._hidden
        return sorted(keys)

    # Testing helpers

    def inject_phantom(self, key: str) -> None:
        """Make list() return a key that has no object behind it."""
        self._objects.pop(key, None)
        self._phantoms.add(key)

    def hide_from_list(self, key: str) -> None:
        """Make list() omit a key that exists."""
        self._hidden.add(key)

    def vanish_after_head(self, key: str) -> None:
        """Make the next get() of a key miss even though head() found it."""
        self._vanishing.add(key)

    def fail_writes(self, prefix: str, exc: Exception) -> None:
        """Make every put() under prefix raise exc."""
        self._write_failures[prefix] = exc

    def clear_failures(self) -> None:
        """Remove all injected write failures."""
        self._write_failures.clear()

    def keys(self, prefix: str = "") -> list[str]:
        """All stored keys under prefix, ignoring race simulation."""
        return sorted(k for k in self._objects if k.startswith(prefix))

    def dump(self, key: str):
        """Decoded JSON body of a stored key, or None."""
        obj = self._objects.get(key)
        if obj is None:
            return None
        return decode_json(key, obj.body)

    def content_type(self, key: str) -> str | None:
        obj = self._objects.get(key)
        return obj.content_type if obj else None
