"""
Base protocol and types for the blob store abstraction.

This module defines the BlobStore protocol that all backends must implement,
along with the object listing type and blob-level errors.

Invariants:
    - Keys are opaque strings; the store knows nothing about tenants or tables
    - get() of a missing key raises BlobNotFoundError, never returns empty bytes
    - delete() of a missing key is a no-op
    - put(if_absent=True) fails with PreconditionFailedError if the key exists
    - Network failures and timeouts surface as TransientStoreError

How to change safely:
    - Protocol changes require updating all implementations
    - Keep business logic out of this layer
"""

from __future__ import annotations

import asyncio
import logging
from abc import abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import (
    TYPE_CHECKING,
    Awaitable,
    Callable,
    List,
    Optional,
    Protocol,
    TypeVar,
    runtime_checkable,
)

from ..errors import TransientStoreError

if TYPE_CHECKING:
    from ..config import ServerConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BlobNotFoundError(Exception):
    """Object does not exist."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Object not found: {key}")
        self.key = key


class PreconditionFailedError(Exception):
    """Conditional put lost: the object already exists."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Object already exists: {key}")
        self.key = key


@dataclass(frozen=True)
class ObjectInfo:
    """One entry of a prefix listing.

    Attributes:
        key: Full object key
        size: Object size in bytes
        last_modified: Last modification time, if the backend reports it
    """

    key: str
    size: int
    last_modified: Optional[datetime] = None


@runtime_checkable
class BlobStore(Protocol):
    """Protocol for blob store backends.

    The store is scoped to one bucket/namespace chosen at construction.
    It offers no query, ordering, transaction or constraint features.

    Example:
        >>> store = InMemoryBlobStore()
        >>> await store.put("tenants/hub1/x.json", b"{}")
        >>> [o.key for o in await store.list("tenants/hub1/")]
        ['tenants/hub1/x.json']
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the underlying client. Must be called before other operations."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying client."""
        ...

    @abstractmethod
    async def list(self, prefix: str) -> List[ObjectInfo]:
        """List every object whose key starts with prefix.

        Raises:
            TransientStoreError: If the backend call fails
        """
        ...

    @abstractmethod
    async def list_prefixes(self, prefix: str) -> List[str]:
        """List the distinct child "directories" directly under prefix.

        Each entry is a full prefix ending in "/", e.g. "tenants/hub1/tables/orders/".
        Objects stored directly under prefix are not reported.

        Raises:
            TransientStoreError: If the backend call fails
        """
        ...

    @abstractmethod
    async def get(self, key: str) -> bytes:
        """Fetch an object's content.

        Raises:
            BlobNotFoundError: If the key does not exist
            TransientStoreError: If the backend call fails
        """
        ...

    @abstractmethod
    async def put(self, key: str, data: bytes, if_absent: bool = False) -> None:
        """Store an object, replacing any existing content.

        Args:
            key: Object key
            data: Object content
            if_absent: Only write if the key does not exist yet

        Raises:
            PreconditionFailedError: If if_absent is set and the key exists
            TransientStoreError: If the backend call fails
        """
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete an object. Deleting a missing key succeeds."""
        ...

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Whether an object exists at key."""
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether connect() has been called."""
        ...


async def retry_read(
    operation: str,
    call: Callable[[], Awaitable[T]],
    retries: int,
    backoff_ms: int,
    key: Optional[str] = None,
) -> T:
    """Run an idempotent read, retrying transient failures with backoff.

    Only reads go through here. Writes are not retried: the integrity
    checks that preceded a write may be stale after a retry delay.

    Args:
        operation: Operation name for logs and errors
        call: Zero-argument coroutine factory performing one attempt
        retries: Retries after the first attempt
        backoff_ms: Base delay; doubles after every failed attempt
        key: Object key or prefix, for logs

    Raises:
        TransientStoreError: If every attempt failed
    """
    attempt = 0
    while True:
        try:
            return await call()
        except TransientStoreError as e:
            if attempt >= retries:
                raise
            delay = (backoff_ms / 1000.0) * (2**attempt)
            attempt += 1
            logger.warning(
                f"Blob {operation} failed, retrying in {delay:.3f}s: {e}",
                extra={"operation": operation, "key": key, "attempt": attempt},
            )
            await asyncio.sleep(delay)


def create_blob_store(config: "ServerConfig") -> BlobStore:
    """Factory function to create a blob store from configuration.

    Args:
        config: Server configuration

    Returns:
        Appropriate BlobStore implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import BlobBackend
    from .memory import InMemoryBlobStore
    from .s3 import S3BlobStore

    if config.blob.backend == BlobBackend.S3:
        return S3BlobStore(config.s3, config.blob)
    elif config.blob.backend == BlobBackend.MEMORY:
        return InMemoryBlobStore()
    else:
        raise ValueError(f"Unsupported blob backend: {config.blob.backend}")
