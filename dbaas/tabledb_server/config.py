"""
Configuration management for TableDB Server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set explicit values for the S3 bucket
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


class BlobBackend(Enum):
    """Supported blob store backends."""

    S3 = "s3"
    MEMORY = "memory"


class CascadeMode(Enum):
    """How far cascade deletes reach.

    FLAT deletes direct dependents only. RECURSIVE also plans the
    dependents of every cascade-deleted row.
    """

    FLAT = "flat"
    RECURSIVE = "recursive"


@dataclass(frozen=True)
class S3Config:
    """S3 configuration for the document bucket.

    Attributes:
        bucket: S3 bucket name
        region: AWS region
        endpoint_url: Custom endpoint URL (for MinIO / LocalStack)
        access_key_id: AWS access key ID (optional, uses AWS credential chain)
        secret_access_key: AWS secret access key (optional)
    """

    bucket: str = "tabledb-storage"
    region: str = "us-east-1"
    endpoint_url: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None

    @classmethod
    def from_env(cls) -> S3Config:
        """Load configuration from environment variables."""
        return cls(
            bucket=os.getenv("S3_BUCKET", "tabledb-storage"),
            region=os.getenv("S3_REGION", os.getenv("AWS_REGION", "us-east-1")),
            endpoint_url=os.getenv("S3_ENDPOINT"),
            access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
        )


@dataclass(frozen=True)
class BlobStoreConfig:
    """Blob store client behaviour.

    Attributes:
        backend: Which blob store backend to use
        timeout_seconds: Upper bound for a single blob store call
        read_retries: Retries for idempotent reads (get/list/exists)
        retry_backoff_ms: Base delay for exponential backoff between retries
    """

    backend: BlobBackend = BlobBackend.S3
    timeout_seconds: float = 10.0
    read_retries: int = 3
    retry_backoff_ms: int = 100

    @classmethod
    def from_env(cls) -> BlobStoreConfig:
        """Load configuration from environment variables."""
        backend_str = os.getenv("BLOB_BACKEND", "s3").lower()
        try:
            backend = BlobBackend(backend_str)
        except ValueError:
            raise ValueError(f"Invalid BLOB_BACKEND '{backend_str}'. Must be one of: s3, memory")

        return cls(
            backend=backend,
            timeout_seconds=float(os.getenv("BLOB_TIMEOUT_SECONDS", "10")),
            read_retries=int(os.getenv("BLOB_READ_RETRIES", "3")),
            retry_backoff_ms=int(os.getenv("BLOB_RETRY_BACKOFF_MS", "100")),
        )


@dataclass(frozen=True)
class IntegrityConfig:
    """Referential integrity engine configuration.

    Attributes:
        cascade_mode: Whether cascades stop at direct dependents
        max_concurrent: Maximum concurrent child-row writes during fan-out
        max_batch_rows: Maximum rows accepted by a single batch insert
    """

    cascade_mode: CascadeMode = CascadeMode.FLAT
    max_concurrent: int = 8
    max_batch_rows: int = 200

    @classmethod
    def from_env(cls) -> IntegrityConfig:
        """Load configuration from environment variables."""
        mode_str = os.getenv("CASCADE_MODE", "flat").lower()
        try:
            cascade_mode = CascadeMode(mode_str)
        except ValueError:
            raise ValueError(f"Invalid CASCADE_MODE '{mode_str}'. Must be one of: flat, recursive")

        return cls(
            cascade_mode=cascade_mode,
            max_concurrent=int(os.getenv("INTEGRITY_MAX_CONCURRENT", "8")),
            max_batch_rows=int(os.getenv("MAX_BATCH_ROWS", "200")),
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

    This aggregates all configuration sections and provides validation.

    Attributes:
        blob: Blob store client configuration
        s3: S3 configuration (if blob.backend is S3)
        integrity: Integrity engine configuration
        observability: Observability configuration
    """

    blob: BlobStoreConfig = field(default_factory=BlobStoreConfig)
    s3: S3Config = field(default_factory=S3Config)
    integrity: IntegrityConfig = field(default_factory=IntegrityConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            blob=BlobStoreConfig.from_env(),
            s3=S3Config.from_env(),
            integrity=IntegrityConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.blob.backend == BlobBackend.S3 and not self.s3.bucket:
            raise ValueError("S3_BUCKET is required when BLOB_BACKEND=s3")

        if self.blob.timeout_seconds <= 0:
            raise ValueError("BLOB_TIMEOUT_SECONDS must be positive")

        if self.blob.read_retries < 0:
            raise ValueError("BLOB_READ_RETRIES cannot be negative")

        if self.integrity.max_concurrent < 1:
            raise ValueError("INTEGRITY_MAX_CONCURRENT must be at least 1")

        if self.integrity.max_batch_rows < 1:
            raise ValueError("MAX_BATCH_ROWS must be at least 1")

        if self.blob.backend == BlobBackend.MEMORY:
            logger.warning("BLOB_BACKEND=memory: all data is lost on process exit")

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Server configuration loaded",
            extra={
                "blob_backend": self.blob.backend.value,
                "blob_timeout_seconds": self.blob.timeout_seconds,
                "s3_bucket": self.s3.bucket if self.blob.backend == BlobBackend.S3 else None,
                "s3_endpoint": self.s3.endpoint_url,
                "cascade_mode": self.integrity.cascade_mode.value,
                "log_level": self.observability.log_level,
            },
        )
