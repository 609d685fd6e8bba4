"""
Command-line tool for TableDB.

Operates directly on the configured blob store (BLOB_BACKEND, S3_*):
- tables: List tables, or show one table's schema and relationships
- rows: List, show or delete rows of a table
- audit: Report foreign keys that no longer resolve

Usage:
    tabledb --hub hub1 tables
    tabledb --hub hub1 tables orders
    tabledb --hub hub1 rows orders
    tabledb --hub hub1 rows orders --delete o1 --actor ops@example.com
    tabledb --hub hub1 audit --format json

Invariants:
    - audit exits non-zero when any dangling reference is found
    - TableDB errors exit with status 2 and print the error as JSON
    - Writes (row delete) go through the same integrity engine as the API
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from ..config import ServerConfig
from ..errors import TableDbError
from ..service import TableDB, TenantContext, TenantDB

logger = logging.getLogger(__name__)


class TableCLI:
    """Formats TableDB state for the terminal.

    Example:
        >>> cli = TableCLI(output_format="json")
        >>> print(await cli.tables(tenant))
    """

    def __init__(self, output_format: str = "text") -> None:
        self.output_format = output_format

    async def tables(self, tenant: TenantDB, table_id: str | None = None) -> str:
        if table_id:
            table = await tenant.get_table(table_id)
            if self.output_format == "json":
                return _dump(table.to_dict())
            lines = [f"{table.id} ({table.name})"]
            for name, spec in table.schema.properties.items():
                marker = "*" if name in table.schema.required else " "
                kind = spec.get("type", "any") if isinstance(spec, dict) else spec
                lines.append(f"  {marker} {name}: {kind}")
            for rel in table.relationships.values():
                lines.append(f"  -> {rel.field} references {rel.references} ({rel.on_delete.value})")
            return "\n".join(lines)

        tables = await tenant.list_tables()
        if self.output_format == "json":
            return _dump([table.to_dict() for table in tables])
        if not tables:
            return "No tables"
        return "\n".join(
            f"{table.id}\t{table.name}\t{len(table.relationships)} relationship(s)"
            for table in sorted(tables, key=lambda t: t.id)
        )

    async def rows(self, tenant: TenantDB, table_id: str, row_id: str | None = None) -> str:
        if row_id:
            return _dump(await tenant.get_row(table_id, row_id))
        rows = await tenant.list_rows(table_id)
        if self.output_format == "json":
            return _dump(rows)
        return "\n".join(json.dumps(row, sort_keys=True) for row in rows) or "No rows"

    async def delete(self, tenant: TenantDB, table_id: str, row_id: str) -> str:
        result = await tenant.delete_row(table_id, row_id)
        if self.output_format == "json":
            return _dump(result.to_dict())
        lines = [f"Deleted {table_id}/{row_id}"]
        lines.extend(f"  cascade deleted {ref}" for ref in result.deleted)
        lines.extend(f"  set null on {ref}" for ref in result.nulled)
        return "\n".join(lines)

    async def audit(self, tenant: TenantDB) -> tuple[bool, str]:
        """Check every stored foreign key.

        Returns:
            Tuple of (is_clean, report)
        """
        dangling = await tenant.audit()
        if self.output_format == "json":
            return not dangling, _dump([ref.to_dict() for ref in dangling])
        if not dangling:
            return True, "No dangling references"
        lines = [f"Found {len(dangling)} dangling reference(s):"]
        for ref in dangling:
            lines.append(
                f"  - {ref.table_id}/{ref.row_id}.{ref.field} = {ref.value!r} "
                f"(references {ref.references})"
            )
        return False, "\n".join(lines)


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, sort_keys=True, default=str)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tabledb", description="TableDB maintenance tool")
    parser.add_argument("--hub", required=True, help="Tenant (hub) id")
    parser.add_argument("--actor", default="cli", help="Actor recorded on writes")
    parser.add_argument(
        "--format", choices=["text", "json"], default="text", help="Output format"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    tables_parser = subparsers.add_parser("tables", help="List tables or show one")
    tables_parser.add_argument("table_id", nargs="?", help="Table to show")

    rows_parser = subparsers.add_parser("rows", help="List, show or delete rows")
    rows_parser.add_argument("table_id", help="Table id")
    rows_parser.add_argument("row_id", nargs="?", help="Row to show")
    rows_parser.add_argument("--delete", metavar="ROW_ID", help="Delete this row")

    subparsers.add_parser("audit", help="Report dangling foreign keys")
    return parser


async def run(args: argparse.Namespace, db: TableDB) -> int:
    """Execute one parsed command; returns the exit code."""
    cli = TableCLI(output_format=args.format)
    tenant = db.bind(TenantContext(hub_id=args.hub, actor=args.actor))

    try:
        if args.command == "tables":
            print(await cli.tables(tenant, args.table_id))
        elif args.command == "rows":
            if args.delete:
                print(await cli.delete(tenant, args.table_id, args.delete))
            else:
                print(await cli.rows(tenant, args.table_id, args.row_id))
        elif args.command == "audit":
            is_clean, report = await cli.audit(tenant)
            print(report)
            return 0 if is_clean else 1
    except TableDbError as e:
        print(_dump(e.to_dict()), file=sys.stderr)
        return 2
    return 0


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    logging.basicConfig(level=config.observability.log_level.upper())

    async def execute() -> int:
        async with TableDB.from_config(config) as db:
            return await run(args, db)

    sys.exit(asyncio.run(execute()))


if __name__ == "__main__":
    main()
