"""
TableDB service facade.

Wires the components over one blob store and exposes the core surface
to callers (HTTP gateway, action dispatcher, CLI). Tenant and actor are
taken from a TenantContext built by the caller from authenticated
request state, never from request bodies.

Invariants:
    - One TableDB per blob store; components are stateless beyond it
    - Every tenant operation goes through a TenantDB bound to one context
    - The service owns the blob store lifecycle (connect/close)

How to change safely:
    - New operations go on TenantDB and delegate to a component
    - Keep business rules in the components, not here

Example:
    >>> db = TableDB.from_config(ServerConfig.from_env())
    >>> await db.connect()
    >>> tenant = db.bind(TenantContext(hub_id="hub1", actor="pm@example.com"))
    >>> await tenant.create_table("Customers", {"properties": {"name": {"type": "string"}}})
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any

from . import keyspace
from .blob.base import BlobStore, ObjectInfo, create_blob_store
from .blob.s3 import S3BlobStore
from .config import ServerConfig
from .documents import Document, DocumentStore
from .errors import TableDbError
from .folders.hierarchy import Folder, FolderHierarchy, FolderNode
from .integrity.engine import DanglingReference, DeleteResult, ReferentialIntegrityEngine
from .rows.store import RowStore
from .schema.registry import UNSET, SchemaRegistry
from .schema.types import Table

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TenantContext:
    """Authenticated caller identity.

    Attributes:
        hub_id: Tenant every key is scoped to
        actor: Who is acting, recorded in provenance metadata
        origin: Channel the calls come through (e.g. "action"), recorded as
            createdVia/updatedVia; None for direct calls
    """

    hub_id: str
    actor: str | None = None
    origin: str | None = None

    def __post_init__(self) -> None:
        keyspace.validate_segment(self.hub_id, "hubId")


class TableDB:
    """All TableDB components over one blob store.

    Attributes:
        blob: Underlying blob store
        config: Server configuration
        documents: JSON document access
        registry: Schema registry
        engine: Referential integrity engine
        rows: Row store
        folders: Folder hierarchy
    """

    def __init__(self, blob: BlobStore, config: ServerConfig | None = None) -> None:
        self.blob = blob
        self.config = config or ServerConfig()
        integrity = self.config.integrity

        self.documents = DocumentStore(blob)
        self.registry = SchemaRegistry(self.documents)
        self.engine = ReferentialIntegrityEngine(
            self.documents,
            self.registry,
            cascade_mode=integrity.cascade_mode,
            max_concurrent=integrity.max_concurrent,
        )
        self.rows = RowStore(
            self.documents, self.registry, self.engine, max_batch_rows=integrity.max_batch_rows
        )
        self.folders = FolderHierarchy(self.documents, self.registry)

    @classmethod
    def from_config(cls, config: ServerConfig) -> TableDB:
        return cls(create_blob_store(config), config)

    async def connect(self) -> None:
        await self.blob.connect()
        logger.info(
            "TableDB connected",
            extra={"cascade_mode": self.config.integrity.cascade_mode.value},
        )

    async def close(self) -> None:
        await self.blob.close()

    async def __aenter__(self) -> TableDB:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def bind(self, context: TenantContext) -> TenantDB:
        """Operations scoped to one tenant and actor."""
        return TenantDB(self, context)

    async def health(self) -> dict[str, Any]:
        """Check that the blob store is reachable.

        On S3 the bucket is created if it does not exist yet.
        """
        try:
            if isinstance(self.blob, S3BlobStore):
                bucket = await self.blob.ensure_bucket()
            else:
                await self.blob.list(f"{keyspace.ROOT}/")
                bucket = {"exists": True}
        except TableDbError as e:
            logger.warning(f"Health check failed: {e}")
            return {"healthy": False, "error": e.to_dict()}
        return {"healthy": True, "backend": self.config.blob.backend.value, "bucket": bucket}


class TenantDB:
    """TableDB operations bound to one TenantContext."""

    def __init__(self, db: TableDB, context: TenantContext) -> None:
        self.db = db
        self.context = context

    @property
    def hub_id(self) -> str:
        return self.context.hub_id

    @property
    def actor(self) -> str | None:
        return self.context.actor

    @property
    def origin(self) -> str | None:
        return self.context.origin

    def via(self, origin: str) -> TenantDB:
        """The same tenant and actor, with writes attributed to origin."""
        return TenantDB(self.db, replace(self.context, origin=origin))

    # Folders

    async def create_folder(
        self, name: str, description: str = "", parent_id: str | None = None
    ) -> Folder:
        return await self.db.folders.create_folder(
            self.hub_id, name, description=description, parent_id=parent_id, actor=self.actor
        )

    async def rename_folder(self, folder_id: str, name: str) -> Folder:
        return await self.db.folders.rename_folder(self.hub_id, folder_id, name, actor=self.actor)

    async def get_folder(self, folder_id: str) -> Folder:
        return await self.db.folders.get_folder(self.hub_id, folder_id)

    async def list_folders(self) -> list[Folder]:
        return await self.db.folders.list_folders(self.hub_id)

    async def folder_tree(self) -> list[FolderNode]:
        return await self.db.folders.folder_tree(self.hub_id)

    async def delete_folder(self, folder_id: str) -> None:
        await self.db.folders.delete_folder(self.hub_id, folder_id, actor=self.actor)

    # Tables

    async def create_table(
        self,
        name: str,
        schema: Any,
        relationships: Any = None,
        folder_id: str | None = None,
    ) -> Table:
        return await self.db.registry.create_table(
            self.hub_id,
            name,
            schema,
            relationships,
            folder_id=folder_id,
            actor=self.actor,
            origin=self.origin,
        )

    async def ensure_table(
        self,
        name: str,
        schema: Any,
        relationships: Any = None,
        folder_id: str | None = None,
    ) -> tuple[Table, bool]:
        return await self.db.registry.ensure_table(
            self.hub_id,
            name,
            schema,
            relationships,
            folder_id=folder_id,
            actor=self.actor,
            origin=self.origin,
        )

    async def get_table(self, table_id: str) -> Table:
        return await self.db.registry.get_table(self.hub_id, table_id)

    async def list_tables(self, folder_id: str | None = None) -> list[Table]:
        return await self.db.registry.list_tables(self.hub_id, folder_id=folder_id)

    async def update_table(
        self,
        table_id: str,
        schema: Any = None,
        relationships: Any = None,
        name: str | None = None,
        folder_id: Any = UNSET,
    ) -> Table:
        return await self.db.registry.update_table(
            self.hub_id,
            table_id,
            schema=schema,
            relationships=relationships,
            name=name,
            folder_id=folder_id,
            actor=self.actor,
        )

    # Rows

    async def insert_row(self, table_id: str, data: Any) -> Document:
        return await self.db.rows.insert_row(
            self.hub_id, table_id, data, actor=self.actor, origin=self.origin
        )

    async def insert_rows(self, table_id: str, rows: Any) -> list[Document]:
        return await self.db.rows.insert_rows(
            self.hub_id, table_id, rows, actor=self.actor, origin=self.origin
        )

    async def update_row(self, table_id: str, row_id: str, partial: Any) -> Document:
        return await self.db.rows.update_row(
            self.hub_id, table_id, row_id, partial, actor=self.actor, origin=self.origin
        )

    async def get_row(self, table_id: str, row_id: str) -> Document:
        return await self.db.rows.get_row(self.hub_id, table_id, row_id)

    async def list_rows(self, table_id: str) -> list[Document]:
        return await self.db.rows.list_rows(self.hub_id, table_id)

    async def delete_row(self, table_id: str, row_id: str) -> DeleteResult:
        return await self.db.rows.delete_row(self.hub_id, table_id, row_id, actor=self.actor)

    # Maintenance

    async def audit(self) -> list[DanglingReference]:
        return await self.db.engine.audit(self.hub_id)

    async def list_objects(self, path: str = "") -> list[ObjectInfo]:
        """Raw listing of the tenant's keys, optionally under a sub-path."""
        prefix = keyspace.tenant_prefix(self.hub_id)
        path = path.strip("/")
        if path:
            for segment in path.split("/"):
                keyspace.validate_segment(segment, "path")
            prefix = f"{prefix}{path}/"
        return await self.db.blob.list(prefix)
