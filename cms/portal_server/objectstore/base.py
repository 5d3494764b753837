"""
Base protocol and helpers for the object store abstraction.

Every persisted portal record (entity versions, latest pointers, stubs,
type definitions, org records, bundles, manifests, app config) is a JSON
blob under a flat key namespace. This module defines the ObjectStore
protocol all backends implement, the error family, and the JSON helpers
the rest of the package reads and writes through.

Consistency contract:
    - get/head of a single key right after put of that key returns the new
      value (read-your-writes)
    - list(prefix) is eventually consistent: it may return keys deleted
      moments earlier and may omit keys created moments earlier

Invariants:
    - get() returns None for a missing key, never raises for absence
    - list() returns full keys, sorted, never directories
    - JSON payloads are UTF-8 encoded

How to change safely:
    - Protocol changes require updating every implementation
    - Callers that list then read must go through scan.SafeReader
"""

from __future__ import annotations

import json
import logging
from abc import abstractmethod
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..config import ServerConfig

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"


class ObjectStoreError(Exception):
    """Base exception for object store operations."""
    pass


class ObjectStoreConnectionError(ObjectStoreError):
    """Connection to the object store backend failed."""
    pass


class ObjectSerializationError(ObjectStoreError):
    """Stored payload could not be decoded as JSON."""
    pass


@runtime_checkable
class ObjectStore(Protocol):
    """Protocol for object store backends.

    Example:
        >>> store = S3ObjectStore(config.s3)
        >>> await store.connect()
        >>> await store.put("config/app.json", b"{}")
        >>> await store.head("config/app.json")
        True
    """

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the backend.

        Raises:
            ObjectStoreConnectionError: If connection fails
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""
        ...

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        """Read an object body, or None if the key does not exist."""
        ...

    @abstractmethod
    async def put(
        self,
        key: str,
        body: bytes,
        content_type: str = JSON_CONTENT_TYPE,
    ) -> None:
        """Write an object, replacing any previous body."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete an object. Deleting a missing key is not an error."""
        ...

    @abstractmethod
    async def head(self, key: str) -> bool:
        """Whether the key currently exists."""
        ...

    @abstractmethod
    async def list(self, prefix: str) -> list[str]:
        """List keys under a prefix (eventually consistent)."""
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether currently connected to the backend."""
        ...


def encode_json(data: Any) -> bytes:
    """Serialize a JSON document the way every portal object is stored."""
    return json.dumps(data, indent=2, ensure_ascii=False).encode("utf-8")


def decode_json(key: str, body: bytes) -> Any:
    """Parse a stored JSON document.

    Raises:
        ObjectSerializationError: If the body is not valid UTF-8 JSON
    """
    try:
        return json.loads(body.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ObjectSerializationError(f"Failed to parse object '{key}' as JSON: {e}")


async def read_json(store: ObjectStore, key: str) -> Any | None:
    """Read and decode a JSON object, or None if it does not exist."""
    body = await store.get(key)
    if body is None:
        return None
    return decode_json(key, body)


async def write_json(store: ObjectStore, key: str, data: Any) -> None:
    """Encode and write a JSON object."""
    await store.put(key, encode_json(data), content_type=JSON_CONTENT_TYPE)


def create_object_store(config: "ServerConfig") -> ObjectStore:
    """Factory function to create an object store from configuration.

    Args:
        config: Server configuration

    Returns:
        Appropriate ObjectStore implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import ObjectStoreBackend
    from .memory import InMemoryObjectStore
    from .s3 import S3ObjectStore

    if config.object_store_backend == ObjectStoreBackend.S3:
        return S3ObjectStore(config.s3)
    elif config.object_store_backend == ObjectStoreBackend.MEMORY:
        return InMemoryObjectStore()
    else:
        raise ValueError(f"Unsupported object store backend: {config.object_store_backend}")
