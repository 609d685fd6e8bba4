"""
Blob store abstraction for TableDB.

This module provides a pluggable flat key/value backend interface supporting:
- S3 / S3-compatible endpoints (production)
- In-memory (for testing)

The blob store is the only persistence layer. It has no index, no query,
no transactions and no constraints; everything relational is built above it.

Invariants:
    - Backends are scoped to one bucket/namespace fixed at construction
    - Missing keys raise BlobNotFoundError on get and are ignored on delete
    - Failures that may succeed later raise TransientStoreError

How to change safely:
    - New backends must implement the BlobStore protocol
    - Verify conditional put semantics against the real backend
"""

from .base import (
    BlobNotFoundError,
    BlobStore,
    ObjectInfo,
    PreconditionFailedError,
    create_blob_store,
    retry_read,
)
from .memory import InMemoryBlobStore
from .s3 import S3BlobStore

__all__ = [
    # Protocol and types
    "BlobStore",
    "ObjectInfo",
    "BlobNotFoundError",
    "PreconditionFailedError",
    "retry_read",
    # Factory
    "create_blob_store",
    # Implementations
    "S3BlobStore",
    "InMemoryBlobStore",
]
