"""
Configuration management for the Portal Server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Platform configuration that admins edit at runtime (membership keys,
branding, sync intervals) is not configured here; it lives in the object
store and is served by appconfig.AppConfigCache.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set explicit values for the bucket
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class ObjectStoreBackend(Enum):
    """Supported object store backends."""

    S3 = "s3"
    MEMORY = "memory"


@dataclass(frozen=True)
class S3Config:
    """S3-compatible object store configuration.

    Works against AWS S3, MinIO and Cloudflare R2 (set `endpoint_url`).

    Attributes:
        bucket: Bucket holding every portal object
        region: AWS region
        endpoint_url: Custom endpoint URL (MinIO, R2)
        access_key_id: Access key ID (optional, uses AWS credential chain)
        secret_access_key: Secret access key (optional)
        key_prefix: Optional prefix prepended to every object key
        list_page_size: Page size for list_objects_v2
    """

    bucket: str = "portal-storage"
    region: str = "us-east-1"
    endpoint_url: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    key_prefix: str = ""
    list_page_size: int = 1000

    @classmethod
    def from_env(cls) -> S3Config:
        """Load configuration from environment variables."""
        return cls(
            bucket=os.getenv("S3_BUCKET", "portal-storage"),
            region=os.getenv("S3_REGION", os.getenv("AWS_REGION", "us-east-1")),
            endpoint_url=os.getenv("S3_ENDPOINT"),
            access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
            key_prefix=os.getenv("S3_KEY_PREFIX", ""),
            list_page_size=int(os.getenv("S3_LIST_PAGE_SIZE", "1000")),
        )


@dataclass(frozen=True)
class MaterializerConfig:
    """Bundle/manifest materializer configuration.

    Attributes:
        enabled: Whether writes trigger bundle regeneration at all
        scan_org_prefixes: Include org-private prefixes in global bundle scans
        background_bulk: Run bulk regeneration (permission and catalog
            changes) as a background task instead of inside the request
    """

    enabled: bool = True
    scan_org_prefixes: bool = True
    background_bulk: bool = False

    @classmethod
    def from_env(cls) -> MaterializerConfig:
        """Load configuration from environment variables."""
        return cls(
            enabled=_env_bool("BUNDLES_ENABLED", "true"),
            scan_org_prefixes=_env_bool("BUNDLES_SCAN_ORG_PREFIXES", "true"),
            background_bulk=_env_bool("BUNDLES_BACKGROUND_BULK", "false"),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        object_store_backend: Which object store backend to use
        s3: S3 configuration (if object_store_backend is S3)
        materializer: Bundle materializer configuration
        observability: Logging configuration
    """

    object_store_backend: ObjectStoreBackend = ObjectStoreBackend.S3
    s3: S3Config = field(default_factory=S3Config)
    materializer: MaterializerConfig = field(default_factory=MaterializerConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        backend_str = os.getenv("OBJECT_STORE_BACKEND", "s3").lower()
        try:
            backend = ObjectStoreBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid OBJECT_STORE_BACKEND '{backend_str}'. Must be one of: s3, memory"
            )

        config = cls(
            object_store_backend=backend,
            s3=S3Config.from_env(),
            materializer=MaterializerConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    @classmethod
    def for_testing(cls) -> ServerConfig:
        """In-memory configuration used by tests and local tooling."""
        return cls(
            object_store_backend=ObjectStoreBackend.MEMORY,
            observability=ObservabilityConfig(log_level="DEBUG", log_format="text"),
        )

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.object_store_backend == ObjectStoreBackend.S3:
            if not self.s3.bucket:
                raise ValueError("S3_BUCKET is required when OBJECT_STORE_BACKEND=s3")
            if self.s3.access_key_id and not self.s3.secret_access_key:
                raise ValueError("AWS_SECRET_ACCESS_KEY is required with AWS_ACCESS_KEY_ID")

        if self.s3.list_page_size < 1 or self.s3.list_page_size > 1000:
            raise ValueError("S3_LIST_PAGE_SIZE must be between 1 and 1000")

        if self.observability.log_format not in ("json", "text"):
            raise ValueError("LOG_FORMAT must be one of: json, text")

        if self.object_store_backend == ObjectStoreBackend.MEMORY:
            logger.warning("Using in-memory object store; all data is lost on exit")

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Server configuration loaded",
            extra={
                "object_store_backend": self.object_store_backend.value,
                "s3_bucket": self.s3.bucket
                if self.object_store_backend == ObjectStoreBackend.S3
                else None,
                "s3_endpoint": self.s3.endpoint_url,
                "s3_key_prefix": self.s3.key_prefix or None,
                "s3_static_credentials": bool(self.s3.access_key_id),
                "bundles_enabled": self.materializer.enabled,
                "bundles_background_bulk": self.materializer.background_bulk,
                "log_level": self.observability.log_level,
            },
        )
