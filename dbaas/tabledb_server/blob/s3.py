"""
S3 blob store implementation.

This module provides the production blob backend on S3 (or any S3-compatible
endpoint such as MinIO). It uses aiobotocore for async operations.

Invariants:
    - Every call is bounded by BlobStoreConfig.timeout_seconds
    - Reads (list/get/exists) retry transient failures with backoff
    - Writes (put/delete) are attempted exactly once
    - put(if_absent=True) sends If-None-Match: * so a racing create loses
      with PreconditionFailedError instead of overwriting

How to change safely:
    - Test with MinIO/LocalStack before deploying to AWS
    - Keep botocore's own retries disabled; retry_read owns the policy
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from aiobotocore.config import AioConfig
from aiobotocore.session import get_session
from botocore.exceptions import BotoCoreError, ClientError

from ..config import BlobStoreConfig, S3Config
from ..errors import TransientStoreError
from .base import BlobNotFoundError, ObjectInfo, PreconditionFailedError, retry_read

logger = logging.getLogger(__name__)

T = TypeVar("T")

_NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "404", "NoSuchBucket"}
_PRECONDITION_CODES = {"PreconditionFailed", "ConditionalRequestConflict", "412"}
_TRANSIENT_CODES = {
    "InternalError",
    "ServiceUnavailable",
    "SlowDown",
    "RequestTimeout",
    "Throttling",
    "ThrottlingException",
}


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


def _status_code(error: ClientError) -> int:
    return int(error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0))


class S3BlobStore:
    """S3 implementation of the BlobStore protocol.

    Attributes:
        s3_config: Bucket, region, endpoint and credentials
        config: Timeout and retry settings

    Example:
        >>> store = S3BlobStore(S3Config(bucket="tabledb-dev"), BlobStoreConfig())
        >>> await store.connect()
        >>> await store.put("tenants/hub1/tables/orders/schema.json", b"{...}")
    """

    def __init__(
        self,
        s3_config: S3Config,
        config: Optional[BlobStoreConfig] = None,
        client: Any = None,
    ) -> None:
        """Initialize the S3 blob store.

        Args:
            s3_config: S3Config instance
            config: BlobStoreConfig instance (defaults if omitted)
            client: Pre-built S3 client; skips session setup in connect()
        """
        self.s3_config = s3_config
        self.config = config or BlobStoreConfig()
        self._client = client
        self._client_ctx = None
        self._session = None
        self._connected = client is not None

    @property
    def bucket(self) -> str:
        return self.s3_config.bucket

    @property
    def is_connected(self) -> bool:
        """Whether the S3 client is open."""
        return self._connected

    async def connect(self) -> None:
        """Create the S3 client."""
        if self._connected:
            return

        self._session = get_session()

        client_kwargs: Dict[str, Any] = {
            "region_name": self.s3_config.region,
            "config": AioConfig(
                connect_timeout=self.config.timeout_seconds,
                read_timeout=self.config.timeout_seconds,
                retries={"max_attempts": 1, "mode": "standard"},
            ),
        }

        if self.s3_config.endpoint_url:
            client_kwargs["endpoint_url"] = self.s3_config.endpoint_url

        if self.s3_config.access_key_id:
            client_kwargs["aws_access_key_id"] = self.s3_config.access_key_id
            client_kwargs["aws_secret_access_key"] = self.s3_config.secret_access_key

        self._client_ctx = self._session.create_client("s3", **client_kwargs)
        self._client = await self._client_ctx.__aenter__()
        self._connected = True

        logger.info(
            "Connected to S3",
            extra={
                "bucket": self.s3_config.bucket,
                "region": self.s3_config.region,
                "endpoint": self.s3_config.endpoint_url or "AWS",
            },
        )

    async def close(self) -> None:
        """Close the S3 client."""
        if self._client_ctx is not None:
            try:
                await self._client_ctx.__aexit__(None, None, None)
            except Exception as e:
                logger.warning(f"Error closing S3 client: {e}")
            self._client_ctx = None

        self._client = None
        self._session = None
        self._connected = False
        logger.info("S3 connection closed")

    async def list(self, prefix: str) -> List[ObjectInfo]:
        async def attempt() -> List[ObjectInfo]:
            async def page_through() -> List[ObjectInfo]:
                objects: List[ObjectInfo] = []
                paginator = self._require_client().get_paginator("list_objects_v2")
                async for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                    for obj in page.get("Contents", []):
                        objects.append(
                            ObjectInfo(
                                key=obj["Key"],
                                size=obj.get("Size", 0),
                                last_modified=obj.get("LastModified"),
                            )
                        )
                return objects

            try:
                return await self._call("list", prefix, page_through)
            except BlobNotFoundError:
                # Bucket not created yet
                return []

        return await retry_read(
            "list", attempt, self.config.read_retries, self.config.retry_backoff_ms, key=prefix
        )

    async def list_prefixes(self, prefix: str) -> List[str]:
        async def attempt() -> List[str]:
            async def page_through() -> List[str]:
                prefixes: List[str] = []
                paginator = self._require_client().get_paginator("list_objects_v2")
                async for page in paginator.paginate(
                    Bucket=self.bucket, Prefix=prefix, Delimiter="/"
                ):
                    for entry in page.get("CommonPrefixes", []):
                        prefixes.append(entry["Prefix"])
                return prefixes

            try:
                return await self._call("list_prefixes", prefix, page_through)
            except BlobNotFoundError:
                return []

        return await retry_read(
            "list_prefixes",
            attempt,
            self.config.read_retries,
            self.config.retry_backoff_ms,
            key=prefix,
        )

    async def get(self, key: str) -> bytes:
        async def fetch() -> bytes:
            response = await self._require_client().get_object(Bucket=self.bucket, Key=key)
            return await response["Body"].read()

        return await retry_read(
            "get",
            lambda: self._call("get", key, fetch),
            self.config.read_retries,
            self.config.retry_backoff_ms,
            key=key,
        )

    async def put(self, key: str, data: bytes, if_absent: bool = False) -> None:
        kwargs: Dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": data,
            "ContentType": "application/json",
        }
        if if_absent:
            kwargs["IfNoneMatch"] = "*"

        async def store() -> None:
            await self._require_client().put_object(**kwargs)

        await self._call("put", key, store)

    async def delete(self, key: str) -> None:
        async def remove() -> None:
            await self._require_client().delete_object(Bucket=self.bucket, Key=key)

        try:
            await self._call("delete", key, remove)
        except BlobNotFoundError:
            pass

    async def exists(self, key: str) -> bool:
        async def head() -> bool:
            await self._require_client().head_object(Bucket=self.bucket, Key=key)
            return True

        async def attempt() -> bool:
            try:
                return await self._call("exists", key, head)
            except BlobNotFoundError:
                return False

        return await retry_read(
            "exists", attempt, self.config.read_retries, self.config.retry_backoff_ms, key=key
        )

    async def ensure_bucket(self) -> Dict[str, bool]:
        """Create the bucket if it is missing.

        Returns:
            {"exists": True} or {"exists": True, "created": True}
        """
        client = self._require_client()

        async def head() -> None:
            await client.head_bucket(Bucket=self.bucket)

        try:
            await self._call("head_bucket", self.bucket, head)
            return {"exists": True}
        except BlobNotFoundError:
            pass

        create_kwargs: Dict[str, Any] = {"Bucket": self.bucket}
        if self.s3_config.region != "us-east-1":
            create_kwargs["CreateBucketConfiguration"] = {
                "LocationConstraint": self.s3_config.region
            }

        try:
            await asyncio.wait_for(
                client.create_bucket(**create_kwargs), timeout=self.config.timeout_seconds
            )
        except ClientError as e:
            # Created concurrently by another instance
            if _error_code(e) in ("BucketAlreadyOwnedByYou", "BucketAlreadyExists"):
                return {"exists": True}
            raise

        logger.info(f"Created bucket {self.bucket}")
        return {"exists": True, "created": True}

    def _require_client(self) -> Any:
        if self._client is None:
            raise TransientStoreError("S3 client is not connected", operation="connect")
        return self._client

    async def _call(self, operation: str, key: str, call: Callable[[], Awaitable[T]]) -> T:
        """Run one S3 call under the timeout, translating botocore errors."""
        try:
            return await asyncio.wait_for(call(), timeout=self.config.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise TransientStoreError(
                f"S3 {operation} timed out after {self.config.timeout_seconds}s",
                operation=operation,
                key=key,
            ) from e
        except ClientError as e:
            code = _error_code(e)
            status = _status_code(e)
            if code in _NOT_FOUND_CODES or status == 404:
                raise BlobNotFoundError(key) from e
            if code in _PRECONDITION_CODES or status == 412:
                raise PreconditionFailedError(key) from e
            if code in _TRANSIENT_CODES or status >= 500 or status == 429:
                raise TransientStoreError(
                    f"S3 {operation} failed: {code or status}",
                    operation=operation,
                    key=key,
                ) from e
            raise
        except BotoCoreError as e:
            raise TransientStoreError(
                f"S3 {operation} failed: {e}", operation=operation, key=key
            ) from e
