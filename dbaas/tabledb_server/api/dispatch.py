"""
Action dispatcher for TableDB.

Assistant-style callers submit write intents as {action, args}. Each
action maps to one core operation on a TenantDB, so dispatched writes get
exactly the same validation and integrity enforcement as direct calls.

Supported actions:
    db.create_table   {table, schema, relationships?, folderId?}
    db.ensure_table   {table, schema, relationships?, folderId?}
    db.insert_rows    {table, rows}
    db.update_row     {table, rowId, data}
    db.delete_row     {table, rowId}

'table' is a display name or id; row actions normalize it to the id.

Invariants:
    - The tenant comes from the bound TenantDB, never from args
    - Writes are attributed to ACTION_ORIGIN (_meta.createdVia/updatedVia,
      createdVia on tables)
    - Unknown actions and malformed args raise ValidationError
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from .. import keyspace
from ..errors import ValidationError
from ..service import TenantDB

logger = logging.getLogger(__name__)

ACTION_ORIGIN = "action"

ActionHandler = Callable[[TenantDB, dict[str, Any]], Awaitable[dict[str, Any]]]


def _require(args: dict[str, Any], name: str, kind: type | tuple[type, ...], action: str) -> Any:
    value = args.get(name)
    if value is None or not isinstance(value, kind) or value == "":
        raise ValidationError(
            f"Invalid {action} args: '{name}' is required", field_name=name, value=value
        )
    return value


def _table_id(args: dict[str, Any], action: str) -> str:
    return keyspace.normalize_id(_require(args, "table", str, action))


async def _create_table(db: TenantDB, args: dict[str, Any]) -> dict[str, Any]:
    name = _require(args, "table", str, "db.create_table")
    table = await db.create_table(
        name,
        _require(args, "schema", dict, "db.create_table"),
        relationships=args.get("relationships"),
        folder_id=args.get("folderId"),
    )
    return {
        "tableId": table.id,
        "table": table.to_dict(),
        "message": f'Table "{name}" created successfully',
    }


async def _ensure_table(db: TenantDB, args: dict[str, Any]) -> dict[str, Any]:
    name = _require(args, "table", str, "db.ensure_table")
    table, created = await db.ensure_table(
        name,
        _require(args, "schema", dict, "db.ensure_table"),
        relationships=args.get("relationships"),
        folder_id=args.get("folderId"),
    )
    return {
        "tableId": table.id,
        "table": table.to_dict(),
        "exists": not created,
        "message": f'Table "{table.name}" {"created" if created else "already exists"}',
    }


async def _insert_rows(db: TenantDB, args: dict[str, Any]) -> dict[str, Any]:
    table_id = _table_id(args, "db.insert_rows")
    rows = await db.insert_rows(table_id, _require(args, "rows", list, "db.insert_rows"))
    return {
        "tableId": table_id,
        "written": len(rows),
        "rowIds": [row["id"] for row in rows],
        "message": f'Inserted {len(rows)} row(s) into "{table_id}"',
    }


async def _update_row(db: TenantDB, args: dict[str, Any]) -> dict[str, Any]:
    table_id = _table_id(args, "db.update_row")
    row = await db.update_row(
        table_id,
        _require(args, "rowId", str, "db.update_row"),
        _require(args, "data", dict, "db.update_row"),
    )
    return {"tableId": table_id, "row": row}


async def _delete_row(db: TenantDB, args: dict[str, Any]) -> dict[str, Any]:
    table_id = _table_id(args, "db.delete_row")
    result = await db.delete_row(table_id, _require(args, "rowId", str, "db.delete_row"))
    return result.to_dict()


ACTIONS: dict[str, ActionHandler] = {
    "db.create_table": _create_table,
    "db.ensure_table": _ensure_table,
    "db.insert_rows": _insert_rows,
    "db.update_row": _update_row,
    "db.delete_row": _delete_row,
}


async def dispatch_action(db: TenantDB, action: str, args: Any) -> dict[str, Any]:
    """Run one action against a tenant.

    Returns:
        {"ok": True, "action": action, "result": {...}}

    Raises:
        ValidationError: If the action is unknown or its args are malformed
        TableDbError: Whatever the underlying operation raises
    """
    handler = ACTIONS.get(action)
    if handler is None:
        raise ValidationError(
            f"Unsupported action '{action}'. Supported actions: {sorted(ACTIONS)}",
            field_name="action",
            value=action,
        )
    if args is None:
        args = {}
    if not isinstance(args, dict):
        raise ValidationError("Action args must be an object", field_name="args")

    logger.info(
        f"Dispatching {action}",
        extra={"hub_id": db.hub_id, "actor": db.actor, "action": action},
    )
    result = await handler(db.via(ACTION_ORIGIN), args)
    return {"ok": True, "action": action, "result": result}
