"""
Object store abstraction for the portal.

This module provides a pluggable blob store interface supporting:
- S3-compatible buckets (AWS S3, MinIO, Cloudflare R2)
- In-memory (for testing)

The object store is the only shared mutable resource: entity versions,
pointers, stubs, catalog records and derived bundles all live in it.

Invariants:
    - get/put of a single key is read-your-writes
    - list(prefix) is eventually consistent
    - Missing objects read as None, never as errors

How to change safely:
    - New backends must implement the ObjectStore protocol
    - Keep JSON encoding in base.encode_json so payloads stay uniform
"""

from .base import (
    JSON_CONTENT_TYPE,
    ObjectSerializationError,
    ObjectStore,
    ObjectStoreConnectionError,
    ObjectStoreError,
    create_object_store,
    decode_json,
    encode_json,
    read_json,
    write_json,
)
from .memory import InMemoryObjectStore
from .s3 import S3ObjectStore
from .scan import SafeReader, ScanStats

__all__ = [
    # Protocol and helpers
    "ObjectStore",
    "ObjectStoreError",
    "ObjectStoreConnectionError",
    "ObjectSerializationError",
    "JSON_CONTENT_TYPE",
    "encode_json",
    "decode_json",
    "read_json",
    "write_json",
    # List-then-read
    "SafeReader",
    "ScanStats",
    # Factory
    "create_object_store",
    # Implementations
    "S3ObjectStore",
    "InMemoryObjectStore",
]
