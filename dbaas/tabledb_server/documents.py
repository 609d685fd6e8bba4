"""
Document serialization and typed access for TableDB.

Folders, table schemas and rows are stored as UTF-8 JSON objects.
Row documents stay plain dicts: field order is preserved and values are
any JSON value (str, int, float, bool, None, list, dict).

Invariants:
    - A document that fails to parse is treated as absent, with a warning
    - One corrupt document never makes a whole listing fail
    - Scans fetch matched keys concurrently, bounded by a semaphore
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .blob.base import BlobNotFoundError, BlobStore

logger = logging.getLogger(__name__)

JsonValue = Union[str, int, float, bool, None, List[Any], Dict[str, Any]]
Document = Dict[str, JsonValue]


class DocumentDecodeError(ValueError):
    """Stored bytes are not a JSON object."""

    pass


def encode_document(document: Dict[str, Any]) -> bytes:
    return json.dumps(document, indent=2, ensure_ascii=False).encode("utf-8")


def decode_document(data: bytes) -> Document:
    """Parse stored bytes into a document.

    Raises:
        DocumentDecodeError: If the bytes are not UTF-8 JSON or not an object
    """
    try:
        value = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DocumentDecodeError(f"Invalid JSON document: {e}") from e
    if not isinstance(value, dict):
        raise DocumentDecodeError(f"Expected a JSON object, got {type(value).__name__}")
    return value


def utc_now() -> str:
    """Current time as an ISO-8601 UTC timestamp."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class DocumentStore:
    """JSON document access on top of a BlobStore.

    Attributes:
        blob: Underlying blob store
        max_concurrent: Maximum concurrent fetches during a scan
    """

    def __init__(self, blob: BlobStore, max_concurrent: int = 16) -> None:
        self.blob = blob
        self.max_concurrent = max_concurrent

    async def get(self, key: str) -> Optional[Document]:
        """Fetch and parse one document; None if missing or unparseable."""
        try:
            data = await self.blob.get(key)
        except BlobNotFoundError:
            return None
        try:
            return decode_document(data)
        except DocumentDecodeError as e:
            logger.warning(f"Skipping unparseable document {key}: {e}", extra={"key": key})
            return None

    async def put(self, key: str, document: Dict[str, Any], if_absent: bool = False) -> None:
        await self.blob.put(key, encode_document(document), if_absent=if_absent)

    async def delete(self, key: str) -> None:
        await self.blob.delete(key)

    async def exists(self, key: str) -> bool:
        return await self.blob.exists(key)

    async def scan(
        self,
        prefix: str,
        select: Callable[[str], Optional[str]],
    ) -> List[Tuple[str, Document]]:
        """Load every document under prefix whose key select() accepts.

        Args:
            prefix: Listing prefix
            select: Maps a key to the document's id, or None to skip the key

        Returns:
            (id, document) pairs in key order; unreadable documents omitted
        """
        selected = []
        for info in await self.blob.list(prefix):
            doc_id = select(info.key)
            if doc_id is not None:
                selected.append((doc_id, info.key))
        return await self.load_many(selected)

    async def children(self, prefix: str) -> List[str]:
        """Names of the child "directories" directly under prefix, in key order."""
        prefixes = await self.blob.list_prefixes(prefix)
        return [child[len(prefix) :].rstrip("/") for child in prefixes]

    async def load_many(self, entries: List[Tuple[str, str]]) -> List[Tuple[str, Document]]:
        """Fetch (id, key) pairs concurrently; missing or unreadable documents are omitted."""
        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def load(doc_id: str, key: str) -> Optional[Tuple[str, Document]]:
            async with semaphore:
                document = await self.get(key)
            if document is None:
                return None
            return doc_id, document

        loaded = await asyncio.gather(*(load(doc_id, key) for doc_id, key in entries))
        return [item for item in loaded if item is not None]
