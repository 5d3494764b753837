"""
S3-compatible object store backend.

Uses aiobotocore against AWS S3, MinIO or Cloudflare R2 (via endpoint_url).
One client is opened on connect() and shared by every request; the
client's own retry and timeout settings apply to each call.

Invariants:
    - Missing keys are reported as None / False, never as exceptions
    - Every other client error is wrapped in ObjectStoreError
    - S3Config.key_prefix is applied to every key and stripped from list()

How to change safely:
    - Test against MinIO before changing pagination or error mapping
    - R2 does not support every S3 API; stick to get/put/head/delete/list
"""

from __future__ import annotations

import logging
from typing import Any

from aiobotocore.session import get_session
from botocore.exceptions import BotoCoreError, ClientError

from ..config import S3Config
from .base import JSON_CONTENT_TYPE, ObjectStoreConnectionError, ObjectStoreError

logger = logging.getLogger(__name__)

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


def _is_missing(error: ClientError) -> bool:
    return str(error.response.get("Error", {}).get("Code")) in _MISSING_CODES


class S3ObjectStore:
    """ObjectStore backed by an S3-compatible bucket.

    Attributes:
        config: S3 configuration

    Example:
        >>> store = S3ObjectStore(S3Config(bucket="portal"))
        >>> await store.connect()
        >>> await store.put("config/app.json", b"{}")
        >>> await store.close()
    """

    def __init__(self, config: S3Config) -> None:
        self.config = config
        self._session = None
        self._client_ctx = None
        self._client = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        """Open the S3 client."""
        if self._client is not None:
            return

        self._session = get_session()

        client_kwargs: dict[str, Any] = {
            "region_name": self.config.region,
        }

        if self.config.endpoint_url:
            client_kwargs["endpoint_url"] = self.config.endpoint_url

        if self.config.access_key_id:
            client_kwargs["aws_access_key_id"] = self.config.access_key_id
            client_kwargs["aws_secret_access_key"] = self.config.secret_access_key

        try:
            self._client_ctx = self._session.create_client("s3", **client_kwargs)
            self._client = await self._client_ctx.__aenter__()
        except (BotoCoreError, ClientError) as e:
            self._client_ctx = None
            raise ObjectStoreConnectionError(f"Failed to create S3 client: {e}")

        logger.info(
            "S3 object store connected",
            extra={"bucket": self.config.bucket, "endpoint": self.config.endpoint_url},
        )

    async def close(self) -> None:
        """Close the S3 client."""
        if self._client is not None:
            await self._client_ctx.__aexit__(None, None, None)
            self._client = None
            self._client_ctx = None

    def _full_key(self, key: str) -> str:
        prefix = self.config.key_prefix.strip("/")
        return f"{prefix}/{key}" if prefix else key

    def _strip_key(self, full_key: str) -> str:
        prefix = self.config.key_prefix.strip("/")
        if prefix and full_key.startswith(prefix + "/"):
            return full_key[len(prefix) + 1:]
        return full_key

    def _require_client(self):
        if self._client is None:
            raise ObjectStoreConnectionError("Not connected")
        return self._client

    async def get(self, key: str) -> bytes | None:
        client = self._require_client()
        try:
            response = await client.get_object(Bucket=self.config.bucket, Key=self._full_key(key))
            return await response["Body"].read()
        except ClientError as e:
            if _is_missing(e):
                return None
            raise ObjectStoreError(f"Failed to read '{key}': {e}")

    async def put(
        self,
        key: str,
        body: bytes,
        content_type: str = JSON_CONTENT_TYPE,
    ) -> None:
        client = self._require_client()
        try:
            await client.put_object(
                Bucket=self.config.bucket,
                Key=self._full_key(key),
                Body=body,
                ContentType=content_type,
            )
        except ClientError as e:
            raise ObjectStoreError(f"Failed to write '{key}': {e}")

    async def delete(self, key: str) -> None:
        client = self._require_client()
        try:
            await client.delete_object(Bucket=self.config.bucket, Key=self._full_key(key))
        except ClientError as e:
            if _is_missing(e):
                return
            raise ObjectStoreError(f"Failed to delete '{key}': {e}")

    async def head(self, key: str) -> bool:
        client = self._require_client()
        try:
            await client.head_object(Bucket=self.config.bucket, Key=self._full_key(key))
            return True
        except ClientError as e:
            if _is_missing(e):
                return False
            raise ObjectStoreError(f"Failed to head '{key}': {e}")

    async def list(self, prefix: str) -> list[str]:
        client = self._require_client()
        keys: list[str] = []
        paginator = client.get_paginator("list_objects_v2")
        try:
            async for page in paginator.paginate(
                Bucket=self.config.bucket,
                Prefix=self._full_key(prefix),
                PaginationConfig={"PageSize": self.config.list_page_size},
            ):
                for obj in page.get("Contents", []):
                    keys.append(self._strip_key(obj["Key"]))
        except ClientError as e:
            raise ObjectStoreError(f"Failed to list '{prefix}': {e}")
        return sorted(keys)
