"""
In-memory blob store implementation for testing.

This module provides a simple in-memory blob backend for:
- Unit tests
- Integration tests
- Local development without an S3 endpoint

Invariants:
    - All data is lost on process exit
    - Same not-found, conditional-put and delete semantics as S3BlobStore
    - Listing order is lexicographic by key, like S3

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with BlobStore protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Tuple

from ..errors import TransientStoreError
from .base import BlobNotFoundError, ObjectInfo, PreconditionFailedError

logger = logging.getLogger(__name__)


class InMemoryBlobStore:
    """In-memory implementation of BlobStore for testing.

    Thread safety:
        Uses an asyncio lock around mutations. Safe to use from
        multiple coroutines.

    Example:
        >>> store = InMemoryBlobStore()
        >>> await store.connect()
        >>> await store.put("a/b.json", b"{}")
        >>> await store.get("a/b.json")
        b'{}'
    """

    def __init__(self) -> None:
        """Initialize an empty in-memory store."""
        self._objects: Dict[str, Tuple[bytes, datetime]] = {}
        self._connected = False
        self._lock = asyncio.Lock()
        self._failures: Dict[str, List[Exception]] = defaultdict(list)
        self.call_counts: Dict[str, int] = defaultdict(int)

    @property
    def is_connected(self) -> bool:
        """Whether connected (always true after connect())."""
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryBlobStore connected")

    async def close(self) -> None:
        """Close the store. Data is kept so a test can reconnect."""
        self._connected = False
        logger.debug("InMemoryBlobStore closed")

    async def list(self, prefix: str) -> List[ObjectInfo]:
        self._before("list")
        return [
            ObjectInfo(key=key, size=len(data), last_modified=modified)
            for key, (data, modified) in sorted(self._objects.items())
            if key.startswith(prefix)
        ]

    async def list_prefixes(self, prefix: str) -> List[str]:
        self._before("list_prefixes")
        children = set()
        for key in self._objects:
            if key.startswith(prefix):
                child, sep, _ = key[len(prefix) :].partition("/")
                if sep:
                    children.add(f"{prefix}{child}/")
        return sorted(children)

    async def get(self, key: str) -> bytes:
        self._before("get")
        try:
            return self._objects[key][0]
        except KeyError:
            raise BlobNotFoundError(key) from None

    async def put(self, key: str, data: bytes, if_absent: bool = False) -> None:
        self._before("put")
        async with self._lock:
            if if_absent and key in self._objects:
                raise PreconditionFailedError(key)
            self._objects[key] = (bytes(data), datetime.now(timezone.utc))

    async def delete(self, key: str) -> None:
        self._before("delete")
        async with self._lock:
            self._objects.pop(key, None)

    async def exists(self, key: str) -> bool:
        self._before("exists")
        return key in self._objects

    def _before(self, operation: str) -> None:
        self.call_counts[operation] += 1
        pending = self._failures.get(operation)
        if pending:
            raise pending.pop(0)

    # Testing helpers

    def inject_failure(self, operation: str, count: int = 1) -> None:
        """Make the next `count` calls of an operation raise TransientStoreError."""
        for _ in range(count):
            self._failures[operation].append(
                TransientStoreError(f"Injected {operation} failure", operation=operation)
            )

    def put_raw(self, key: str, data: bytes) -> None:
        """Store bytes synchronously, bypassing failure injection."""
        self._objects[key] = (data, datetime.now(timezone.utc))

    def keys(self, prefix: str = "") -> List[str]:
        """All keys under prefix, sorted."""
        return sorted(k for k in self._objects if k.startswith(prefix))

    def clear(self) -> None:
        """Remove every object."""
        self._objects.clear()
