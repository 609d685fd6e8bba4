"""
Unit tests for the tabledb command-line tool.
"""

import json

import pytest

from dbaas.tabledb_server.blob import InMemoryBlobStore
from dbaas.tabledb_server.service import TableDB, TenantContext
from dbaas.tabledb_server.tools.tabledb_cli import build_parser, run


class TestTableCLI:
    """Tests for CLI commands against an in-memory store."""

    @pytest.fixture
    def blob(self):
        return InMemoryBlobStore()

    @pytest.fixture
    def db(self, blob):
        return TableDB(blob)

    async def seed(self, db):
        tenant = db.bind(TenantContext(hub_id="hub1", actor="seed"))
        await tenant.create_table("Customers", {"properties": {"name": {"type": "string"}}, "required": ["name"]})
        await tenant.create_table(
            "Orders",
            {"properties": {"customerId": {"type": "string"}}},
            relationships={"customerId": {"references": "customers.id", "onDelete": "restrict"}},
        )
        await tenant.insert_row("customers", {"id": "c1", "name": "Acme"})
        await tenant.insert_row("orders", {"id": "o1", "customerId": "c1"})

    @pytest.mark.asyncio
    async def test_tables_list(self, db, capsys):
        await self.seed(db)
        code = await run(build_parser().parse_args(["--hub", "hub1", "tables"]), db)
        out = capsys.readouterr().out
        assert code == 0
        assert "customers\tCustomers" in out
        assert "orders\tOrders\t1 relationship(s)" in out

    @pytest.mark.asyncio
    async def test_table_show(self, db, capsys):
        await self.seed(db)
        await run(build_parser().parse_args(["--hub", "hub1", "tables", "orders"]), db)
        out = capsys.readouterr().out
        assert "customerId references customers.id (restrict)" in out

    @pytest.mark.asyncio
    async def test_rows_json(self, db, capsys):
        await self.seed(db)
        await run(build_parser().parse_args(["--hub", "hub1", "--format", "json", "rows", "customers"]), db)
        rows = json.loads(capsys.readouterr().out)
        assert [r["id"] for r in rows] == ["c1"]

    @pytest.mark.asyncio
    async def test_restricted_delete_exits_2(self, db, capsys):
        await self.seed(db)
        code = await run(
            build_parser().parse_args(["--hub", "hub1", "rows", "customers", "--delete", "c1"]), db
        )
        assert code == 2
        error = json.loads(capsys.readouterr().err)
        assert error["error_code"] == "CONFLICT"

    @pytest.mark.asyncio
    async def test_audit_exit_codes(self, db, blob, capsys):
        await self.seed(db)
        args = build_parser().parse_args(["--hub", "hub1", "audit"])
        assert await run(args, db) == 0

        await blob.delete("tenants/hub1/tables/customers/rows/c1.json")
        assert await run(args, db) == 1
        assert "orders/o1.customerId = 'c1'" in capsys.readouterr().out
