"""
Row Store for TableDB.

CRUD for row documents. Rows are schema-less mappings: only required
fields and declared relationships are checked, every other field is
stored as given.

Write path:
    1. Load the table schema (NotFoundError if missing)
    2. Build the document to store (id, merged fields, _meta)
    3. Check required fields, then every foreign key of the full document
    4. Write; inserts are conditional on the key being absent

Invariants:
    - Nothing is written unless every check passed
    - A row's id is its key and is also stored in the document
    - _meta is owned by the store; caller-supplied _meta is discarded
    - Updates re-validate the merged document, not just the changed fields
    - Writes are never retried

How to change safely:
    - Keep foreign key checks in ReferentialIntegrityEngine
    - Anything that mutates other rows belongs in the engine's delete plan
"""

from __future__ import annotations

import logging
import secrets
from typing import Any

from .. import keyspace
from ..blob.base import PreconditionFailedError
from ..documents import Document, DocumentStore, utc_now
from ..errors import ConflictError, NotFoundError, ValidationError
from ..integrity.engine import DeleteResult, ReferentialIntegrityEngine
from ..schema.registry import SchemaRegistry
from ..schema.types import Table

logger = logging.getLogger(__name__)

META_FIELD = "_meta"

_RESERVED = ("id", META_FIELD)


def generate_row_id() -> str:
    """Random row id: 32 lowercase hex characters."""
    return secrets.token_hex(16)


class RowStore:
    """Blob-backed row documents with integrity checks on every write.

    Attributes:
        documents: JSON document access to the blob store
        registry: Schema registry
        engine: Referential integrity engine
        max_batch_rows: Largest batch accepted by insert_rows
    """

    def __init__(
        self,
        documents: DocumentStore,
        registry: SchemaRegistry,
        engine: ReferentialIntegrityEngine,
        max_batch_rows: int = 200,
    ) -> None:
        self.documents = documents
        self.registry = registry
        self.engine = engine
        self.max_batch_rows = max_batch_rows

    async def insert_row(
        self,
        hub_id: str,
        table_id: str,
        data: Any,
        actor: str | None = None,
        origin: str | None = None,
    ) -> Document:
        """Insert a new row.

        A string 'id' in data is used as the row id; otherwise one is
        generated.
        origin names the channel the write came through (e.g. "action")
        and is recorded as _meta.createdVia.

        Returns:
            The stored row document

        Raises:
            NotFoundError: If the table does not exist
            ValidationError: If a required field is missing or a foreign key
                does not resolve
            ConflictError: If a row with the given id already exists
        """
        table = await self.registry.get_table(hub_id, table_id)
        row = _new_row(data, actor, origin)
        _check_required(table, row)
        await self.engine.validate_references(hub_id, table, row)
        await self._put_new(hub_id, table_id, row)

        logger.info(
            f"Inserted row {table_id}/{row['id']}",
            extra={"hub_id": hub_id, "table_id": table_id, "row_id": row["id"], "actor": actor},
        )
        return row

    async def insert_rows(
        self,
        hub_id: str,
        table_id: str,
        rows: Any,
        actor: str | None = None,
        origin: str | None = None,
    ) -> list[Document]:
        """Insert a batch of rows.

        Every row is validated before the first one is written. The writes
        themselves are not atomic: a blob failure part-way leaves the rows
        written so far in place.

        Raises:
            NotFoundError: If the table does not exist
            ValidationError: If the batch is empty, too large, repeats an id,
                or any row fails validation (every failure is listed)
            ConflictError: If a given id already exists
        """
        if not isinstance(rows, list) or not rows:
            raise ValidationError("Rows must be a non-empty list", field_name="rows")
        if len(rows) > self.max_batch_rows:
            raise ValidationError(
                f"Batch of {len(rows)} rows exceeds the limit of {self.max_batch_rows}",
                field_name="rows",
                value=len(rows),
            )

        table = await self.registry.get_table(hub_id, table_id)
        prepared = [_new_row(data, actor, origin) for data in rows]

        seen: set[str] = set()
        errors = []
        for index, row in enumerate(prepared):
            if row["id"] in seen:
                errors.append(f"Row {index}: duplicate id '{row['id']}' in batch")
            seen.add(row["id"])
            try:
                _check_required(table, row)
                await self.engine.validate_references(hub_id, table, row)
            except ValidationError as e:
                errors.extend(f"Row {index}: {message}" for message in e.errors or [e.message])
        if errors:
            raise ValidationError(
                f"{len(errors)} validation error(s) in batch insert into '{table_id}'",
                field_name="rows",
                errors=errors,
            )

        for row in prepared:
            if await self.documents.exists(keyspace.row_key(hub_id, table_id, row["id"])):
                raise _row_exists(table_id, row["id"])

        for row in prepared:
            await self._put_new(hub_id, table_id, row)

        logger.info(
            f"Inserted {len(prepared)} rows into {table_id}",
            extra={"hub_id": hub_id, "table_id": table_id, "count": len(prepared), "actor": actor},
        )
        return prepared

    async def update_row(
        self,
        hub_id: str,
        table_id: str,
        row_id: str,
        partial: Any,
        actor: str | None = None,
        origin: str | None = None,
    ) -> Document:
        """Merge fields into a row, creating it if absent.

        The merge is shallow: each top-level key of partial replaces the
        stored value. 'id' and '_meta' in partial are ignored.

        Raises:
            NotFoundError: If the table does not exist
            ValidationError: If the merged row fails validation
        """
        keyspace.validate_segment(row_id, "rowId")
        if not isinstance(partial, dict):
            raise ValidationError("Row data must be an object", field_name="data")

        table = await self.registry.get_table(hub_id, table_id)
        key = keyspace.row_key(hub_id, table_id, row_id)
        existing = await self.documents.get(key)

        now = utc_now()
        if existing is None:
            merged: Document = {"id": row_id}
            meta = _created_meta(actor, now, origin)
        else:
            merged = dict(existing)
            merged["id"] = row_id
            meta = dict(existing.get(META_FIELD) or {})

        merged.update((k, v) for k, v in partial.items() if k not in _RESERVED)
        meta["updatedBy"] = actor
        meta["updatedAt"] = now
        if origin:
            meta["updatedVia"] = origin
        else:
            meta.pop("updatedVia", None)
        merged[META_FIELD] = meta

        _check_required(table, merged)
        await self.engine.validate_references(hub_id, table, merged)
        await self.documents.put(key, merged)

        logger.info(
            f"{'Updated' if existing is not None else 'Upserted'} row {table_id}/{row_id}",
            extra={
                "hub_id": hub_id,
                "table_id": table_id,
                "row_id": row_id,
                "fields": sorted(k for k in partial if k not in _RESERVED),
                "actor": actor,
            },
        )
        return merged

    async def get_row(self, hub_id: str, table_id: str, row_id: str) -> Document:
        """Get one row.

        Raises:
            NotFoundError: If the row does not exist or cannot be parsed
        """
        document = await self.documents.get(keyspace.row_key(hub_id, table_id, row_id))
        if document is None:
            raise _row_not_found(table_id, row_id)
        return document

    async def list_rows(self, hub_id: str, table_id: str) -> list[Document]:
        """Every readable row of a table, in key order.

        Raises:
            NotFoundError: If the table does not exist
        """
        if not await self.registry.table_exists(hub_id, table_id):
            raise NotFoundError(
                f"Table '{table_id}' not found", resource_type="table", resource_id=table_id
            )
        entries = await self.documents.scan(
            keyspace.rows_prefix(hub_id, table_id),
            lambda key: keyspace.row_id_from_key(hub_id, table_id, key),
        )
        return [document for _, document in entries]

    async def delete_row(
        self,
        hub_id: str,
        table_id: str,
        row_id: str,
        actor: str | None = None,
    ) -> DeleteResult:
        """Delete a row, applying the delete policies of its dependents.

        Raises:
            NotFoundError: If the row does not exist
            ConflictError: If a restrict relationship has dependent rows
        """
        if not await self.documents.exists(keyspace.row_key(hub_id, table_id, row_id)):
            raise _row_not_found(table_id, row_id)
        return await self.engine.delete_row(hub_id, table_id, row_id, actor)

    async def _put_new(self, hub_id: str, table_id: str, row: Document) -> None:
        try:
            await self.documents.put(
                keyspace.row_key(hub_id, table_id, row["id"]), row, if_absent=True
            )
        except PreconditionFailedError:
            raise _row_exists(table_id, row["id"]) from None


def _new_row(data: Any, actor: str | None, origin: str | None = None) -> Document:
    if not isinstance(data, dict):
        raise ValidationError("Row data must be an object", field_name="data")

    row_id = data.get("id")
    if row_id is None or row_id == "":
        row_id = generate_row_id()
    elif not isinstance(row_id, str):
        raise ValidationError("Row id must be a string", field_name="id", value=row_id)
    keyspace.validate_segment(row_id, "rowId")

    row: Document = {"id": row_id}
    row.update((k, v) for k, v in data.items() if k not in _RESERVED)
    row[META_FIELD] = _created_meta(actor, utc_now(), origin)
    return row


def _created_meta(actor: str | None, now: str, origin: str | None) -> dict[str, Any]:
    meta: dict[str, Any] = {"createdBy": actor, "createdAt": now}
    if origin:
        meta["createdVia"] = origin
    return meta


def _check_required(table: Table, row: Document) -> None:
    missing = [f for f in table.schema.required if f != "id" and row.get(f) is None]
    if missing:
        raise ValidationError(
            f"Missing required field(s) for table '{table.id}': {missing}",
            field_name=missing[0],
            errors=[f"Field '{f}' is required" for f in missing],
        )


def _row_not_found(table_id: str, row_id: str) -> NotFoundError:
    return NotFoundError(
        f"Row '{row_id}' not found in table '{table_id}'",
        resource_type="row",
        resource_id=f"{table_id}/{row_id}",
    )


def _row_exists(table_id: str, row_id: str) -> ConflictError:
    return ConflictError(
        f"Row '{row_id}' already exists in table '{table_id}'",
        resource_type="row",
        resource_id=f"{table_id}/{row_id}",
    )
