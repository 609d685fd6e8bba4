"""
Tenant key space for TableDB.

Pure functions computing where every document lives in the blob store.
Nothing here performs I/O.

Layout:
    tenants/<hubId>/folders/<folderId>/meta.json
    tenants/<hubId>/tables/<tableId>/schema.json
    tenants/<hubId>/tables/<tableId>/rows/<rowId>.json

Invariants:
    - Every key starts with the prefix of exactly one tenant
    - Path segments never contain "/" so one tenant can't address another
    - normalize_id is deterministic: the same name always yields the same id

How to change safely:
    - The layout is persisted data; changing it needs a data migration
    - Add new document kinds under new directory names only
"""

from __future__ import annotations

import re

from .errors import ValidationError

ROOT = "tenants"

SCHEMA_FILE = "schema.json"
FOLDER_META_FILE = "meta.json"
ROW_SUFFIX = ".json"

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def normalize_id(name: str) -> str:
    """Derive a stable slug id from a display name.

    Lower-cases, collapses every run of non-alphanumerics into "-" and
    trims leading/trailing dashes.

    >>> normalize_id("My Table!! 2")
    'my-table-2'

    Raises:
        ValidationError: If nothing alphanumeric remains
    """
    slug = _NON_ALNUM.sub("-", str(name).strip().lower()).strip("-")
    if not slug:
        raise ValidationError(
            f"Cannot derive an id from name {name!r}",
            field_name="name",
            value=name,
        )
    return slug


def is_valid_segment(value: object) -> bool:
    return isinstance(value, str) and bool(value) and value not in (".", "..") and "/" not in value


def validate_segment(value: str, what: str) -> str:
    """Check that value can be used as a single key path segment.

    Raises:
        ValidationError: If empty, not a string, "." / "..", or contains "/"
    """
    if not is_valid_segment(value):
        raise ValidationError(f"Invalid {what}: {value!r}", field_name=what, value=value)
    return value


def tenant_prefix(hub_id: str) -> str:
    return f"{ROOT}/{validate_segment(hub_id, 'hubId')}/"


def folders_prefix(hub_id: str) -> str:
    return f"{tenant_prefix(hub_id)}folders/"


def folder_key(hub_id: str, folder_id: str) -> str:
    return f"{folders_prefix(hub_id)}{validate_segment(folder_id, 'folderId')}/{FOLDER_META_FILE}"


def tables_prefix(hub_id: str) -> str:
    return f"{tenant_prefix(hub_id)}tables/"


def table_prefix(hub_id: str, table_id: str) -> str:
    return f"{tables_prefix(hub_id)}{validate_segment(table_id, 'tableId')}/"


def table_schema_key(hub_id: str, table_id: str) -> str:
    return f"{table_prefix(hub_id, table_id)}{SCHEMA_FILE}"


def rows_prefix(hub_id: str, table_id: str) -> str:
    return f"{table_prefix(hub_id, table_id)}rows/"


def row_key(hub_id: str, table_id: str, row_id: str) -> str:
    return f"{rows_prefix(hub_id, table_id)}{validate_segment(row_id, 'rowId')}{ROW_SUFFIX}"


def row_id_from_key(hub_id: str, table_id: str, key: str) -> str | None:
    """Row id if key is a direct row document of the table, else None."""
    prefix = rows_prefix(hub_id, table_id)
    if not key.startswith(prefix) or not key.endswith(ROW_SUFFIX):
        return None
    name = key[len(prefix):-len(ROW_SUFFIX)]
    if not name or "/" in name:
        return None
    return name


def folder_id_from_key(hub_id: str, key: str) -> str | None:
    """Folder id if key is exactly a folder meta document, else None."""
    prefix = folders_prefix(hub_id)
    if not key.startswith(prefix):
        return None
    parts = key[len(prefix):].split("/")
    if len(parts) == 2 and parts[0] and parts[1] == FOLDER_META_FILE:
        return parts[0]
    return None
