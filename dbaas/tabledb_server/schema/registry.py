"""
Schema Registry for TableDB.

The SchemaRegistry owns the table schema documents of every tenant.
It provides:
- Table creation with a slug id derived from the display name
- Lookup and full-scan listing (optionally filtered by folder)
- Additive-only schema and relationship edits

Invariants:
    - A table id is normalize_id(name) and never changes afterwards
    - Creation never overwrites: the put is conditional on absence
    - Properties and relationships are never removed or re-targeted
    - Relationship targets are not checked here; rows check them lazily

How to change safely:
    - Keep the persisted document shape compatible with Table.from_dict
    - New edit kinds must stay additive; destructive migration is unsupported

Example:
    >>> registry = SchemaRegistry(DocumentStore(InMemoryBlobStore()))
    >>> table = await registry.create_table(
    ...     "hub1", "Orders", {"properties": {"customerId": {"type": "string"}}},
    ...     relationships={"customerId": {"references": "customers.id", "onDelete": "restrict"}},
    ...     actor="pm@example.com",
    ... )
    >>> table.id
    'orders'
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from .. import keyspace
from ..blob.base import PreconditionFailedError
from ..documents import Document, DocumentStore, utc_now
from ..errors import ConflictError, NotFoundError, ValidationError
from .types import Relationship, Table, TableSchema, parse_relationships

logger = logging.getLogger(__name__)

UNSET: Any = object()


class SchemaRegistry:
    """Blob-backed registry of table schema documents.

    Attributes:
        documents: JSON document access to the blob store

    Thread-safety:
        None beyond the blob store's own. Two registries racing to create
        the same table resolve through the conditional put: one wins, the
        other gets ConflictError.
    """

    def __init__(self, documents: DocumentStore) -> None:
        self.documents = documents

    async def create_table(
        self,
        hub_id: str,
        name: str,
        schema: Any,
        relationships: Any = None,
        folder_id: str | None = None,
        actor: str | None = None,
        origin: str | None = None,
    ) -> Table:
        """Create a new table.

        Args:
            hub_id: Tenant identifier
            name: Display name; the id is derived from it
            schema: Mapping with 'properties' (and optional 'required')
            relationships: Mapping of field to {references, onDelete}
            folder_id: Folder to file the table under
            actor: Who is creating the table
            origin: Channel the create came through, stored as createdVia

        Returns:
            The stored Table

        Raises:
            ValidationError: If the name, schema or relationships are malformed
            ConflictError: If a table with the derived id already exists
        """
        if not name or not isinstance(name, str):
            raise ValidationError("Table name is required", field_name="name")

        table_id = keyspace.normalize_id(name)
        table = Table(
            id=table_id,
            name=name,
            schema=_coerce_schema(schema),
            relationships=parse_relationships(relationships),
            folder_id=folder_id,
            created_by=actor,
            created_at=utc_now(),
            created_via=origin,
        )
        key = keyspace.table_schema_key(hub_id, table_id)

        if await self.documents.exists(key):
            raise _table_exists(table_id)

        try:
            await self.documents.put(key, table.to_dict(), if_absent=True)
        except PreconditionFailedError:
            raise _table_exists(table_id) from None

        logger.info(
            f"Created table {table_id}",
            extra={
                "hub_id": hub_id,
                "table_id": table_id,
                "relationships": len(table.relationships),
                "actor": actor,
            },
        )
        return table

    async def ensure_table(
        self,
        hub_id: str,
        name: str,
        schema: Any,
        relationships: Any = None,
        folder_id: str | None = None,
        actor: str | None = None,
        origin: str | None = None,
    ) -> tuple[Table, bool]:
        """Return the table named name, creating it if needed.

        Returns:
            (table, created)
        """
        table_id = keyspace.normalize_id(name)
        existing = await self._load(hub_id, table_id)
        if existing is not None:
            return existing, False
        try:
            table = await self.create_table(
                hub_id,
                name,
                schema,
                relationships,
                folder_id=folder_id,
                actor=actor,
                origin=origin,
            )
            return table, True
        except ConflictError:
            return await self.get_table(hub_id, table_id), False

    async def get_table(self, hub_id: str, table_id: str) -> Table:
        """Get a table by id.

        Raises:
            NotFoundError: If the table does not exist
        """
        table = await self._load(hub_id, table_id)
        if table is None:
            raise NotFoundError(
                f"Table '{table_id}' not found", resource_type="table", resource_id=table_id
            )
        return table

    async def table_exists(self, hub_id: str, table_id: str) -> bool:
        return await self.documents.exists(keyspace.table_schema_key(hub_id, table_id))

    async def list_tables(self, hub_id: str, folder_id: str | None = None) -> list[Table]:
        """List every table of a tenant.

        One delimiter listing of the table directories, then one read per
        schema document; row keys are never listed.

        Args:
            hub_id: Tenant identifier
            folder_id: Only return tables filed under this folder
        """
        table_ids = await self.documents.children(keyspace.tables_prefix(hub_id))
        entries = await self.documents.load_many(
            [
                (table_id, keyspace.table_schema_key(hub_id, table_id))
                for table_id in table_ids
                if keyspace.is_valid_segment(table_id)
            ]
        )
        tables = []
        for table_id, document in entries:
            table = _parse_table(table_id, document)
            if table is None:
                continue
            if folder_id is not None and table.folder_id != folder_id:
                continue
            tables.append(table)
        return tables

    async def update_table(
        self,
        hub_id: str,
        table_id: str,
        schema: Any = None,
        relationships: Any = None,
        name: str | None = None,
        folder_id: Any = UNSET,
        actor: str | None = None,
    ) -> Table:
        """Apply an additive edit to a table.

        Args:
            hub_id: Tenant identifier
            table_id: Table to edit
            schema: Replacement schema; must keep every existing property
            relationships: Replacement mapping; must keep every existing
                relationship with the same reference (onDelete may change)
            name: New display name (the id does not change)
            folder_id: New folder, or None to unfile; omit to keep
            actor: Who is editing

        Raises:
            NotFoundError: If the table does not exist
            ValidationError: If the edit would remove or re-target anything
        """
        table = await self.get_table(hub_id, table_id)
        changes: dict[str, Any] = {}

        if schema is not None:
            new_schema = _coerce_schema(schema)
            removed = sorted(set(table.schema.properties) - set(new_schema.properties))
            if removed:
                raise ValidationError(
                    f"Cannot remove properties from table '{table_id}': {removed}",
                    field_name=removed[0],
                    errors=[f"Property '{prop}' cannot be removed" for prop in removed],
                )
            changes["schema"] = new_schema

        if relationships is not None:
            new_relationships = parse_relationships(relationships)
            errors = _relationship_edit_errors(table.relationships, new_relationships)
            if errors:
                raise ValidationError(
                    f"Destructive relationship edit on table '{table_id}'",
                    field_name=errors[0][0],
                    reference=table.relationships[errors[0][0]].references,
                    errors=[message for _, message in errors],
                )
            changes["relationships"] = new_relationships

        if name is not None:
            if not isinstance(name, str) or not name.strip():
                raise ValidationError("Table name cannot be empty", field_name="name")
            changes["name"] = name

        if folder_id is not UNSET:
            changes["folder_id"] = folder_id

        if not changes:
            return table

        updated = replace(table, updated_by=actor, updated_at=utc_now(), **changes)
        await self.documents.put(keyspace.table_schema_key(hub_id, table_id), updated.to_dict())

        logger.info(
            f"Updated table {table_id}",
            extra={"hub_id": hub_id, "table_id": table_id, "changes": sorted(changes)},
        )
        return updated

    async def _load(self, hub_id: str, table_id: str) -> Table | None:
        document = await self.documents.get(keyspace.table_schema_key(hub_id, table_id))
        if document is None:
            return None
        return _parse_table(table_id, document)


def _coerce_schema(schema: Any) -> TableSchema:
    if isinstance(schema, TableSchema):
        return schema
    return TableSchema.from_dict(schema)


def _parse_table(table_id: str, document: Document) -> Table | None:
    try:
        return Table.from_dict(document)
    except ValidationError as e:
        logger.warning(f"Skipping malformed schema document for table {table_id}: {e}")
        return None


def _table_exists(table_id: str) -> ConflictError:
    return ConflictError(
        f"Table '{table_id}' already exists", resource_type="table", resource_id=table_id
    )


def _relationship_edit_errors(
    old: dict[str, Relationship],
    new: dict[str, Relationship],
) -> list[tuple[str, str]]:
    errors = []
    for field_name, relationship in old.items():
        replacement = new.get(field_name)
        if replacement is None:
            errors.append((field_name, f"Relationship on '{field_name}' cannot be removed"))
        elif replacement.references != relationship.references:
            errors.append(
                (
                    field_name,
                    f"Relationship on '{field_name}' cannot be re-targeted from "
                    f"'{relationship.references}' to '{replacement.references}'",
                )
            )
    return errors
