"""
Unit tests for the action dispatcher.

Tests cover:
- Each supported action
- Integrity enforcement through dispatched writes
- Unknown actions and malformed args
"""

import pytest

from dbaas.tabledb_server.api.dispatch import ACTION_ORIGIN, ACTIONS, dispatch_action
from dbaas.tabledb_server.blob import InMemoryBlobStore
from dbaas.tabledb_server.errors import ConflictError, ValidationError
from dbaas.tabledb_server.service import TableDB, TenantContext

CUSTOMERS = {"table": "Customers", "schema": {"properties": {"name": {"type": "string"}}}}
ORDERS = {
    "table": "Orders",
    "schema": {"properties": {"customerId": {"type": "string"}}},
    "relationships": {"customerId": {"references": "customers.id", "onDelete": "cascade"}},
}


class TestDispatchAction:
    """Tests for dispatch_action."""

    @pytest.fixture
    def tenant(self):
        return TableDB(InMemoryBlobStore()).bind(TenantContext(hub_id="hub1", actor="assistant"))

    def test_supported_actions(self):
        assert sorted(ACTIONS) == [
            "db.create_table",
            "db.delete_row",
            "db.ensure_table",
            "db.insert_rows",
            "db.update_row",
        ]

    @pytest.mark.asyncio
    async def test_create_table(self, tenant):
        response = await dispatch_action(tenant, "db.create_table", CUSTOMERS)
        assert response["ok"] is True
        assert response["action"] == "db.create_table"
        assert response["result"]["tableId"] == "customers"
        assert (await tenant.get_table("customers")).created_by == "assistant"

    @pytest.mark.asyncio
    async def test_create_table_twice_conflicts(self, tenant):
        await dispatch_action(tenant, "db.create_table", CUSTOMERS)
        with pytest.raises(ConflictError):
            await dispatch_action(tenant, "db.create_table", CUSTOMERS)

    @pytest.mark.asyncio
    async def test_ensure_table(self, tenant):
        first = await dispatch_action(tenant, "db.ensure_table", CUSTOMERS)
        second = await dispatch_action(tenant, "db.ensure_table", CUSTOMERS)
        assert first["result"]["exists"] is False
        assert second["result"]["exists"] is True

    @pytest.mark.asyncio
    async def test_row_actions(self, tenant):
        await dispatch_action(tenant, "db.create_table", CUSTOMERS)
        await dispatch_action(tenant, "db.create_table", ORDERS)

        inserted = await dispatch_action(
            tenant, "db.insert_rows", {"table": "Customers", "rows": [{"id": "c1", "name": "Acme"}]}
        )
        assert inserted["result"]["written"] == 1
        assert inserted["result"]["rowIds"] == ["c1"]

        await dispatch_action(
            tenant, "db.insert_rows", {"table": "orders", "rows": [{"id": "o1", "customerId": "c1"}]}
        )
        updated = await dispatch_action(
            tenant, "db.update_row", {"table": "customers", "rowId": "c1", "data": {"name": "Acme Ltd"}}
        )
        assert updated["result"]["row"]["name"] == "Acme Ltd"

        deleted = await dispatch_action(tenant, "db.delete_row", {"table": "customers", "rowId": "c1"})
        assert deleted["result"]["deleted"] == ["orders/o1"]
        assert await tenant.list_rows("orders") == []

    @pytest.mark.asyncio
    async def test_dispatched_writes_record_origin(self, tenant):
        await dispatch_action(tenant, "db.create_table", CUSTOMERS)
        await dispatch_action(
            tenant, "db.insert_rows", {"table": "customers", "rows": [{"id": "c1", "name": "A"}]}
        )
        assert (await tenant.get_table("customers")).to_dict()["createdVia"] == ACTION_ORIGIN
        assert (await tenant.get_row("customers", "c1"))["_meta"]["createdVia"] == ACTION_ORIGIN

        await dispatch_action(
            tenant, "db.update_row", {"table": "customers", "rowId": "c1", "data": {"name": "B"}}
        )
        assert (await tenant.get_row("customers", "c1"))["_meta"]["updatedVia"] == ACTION_ORIGIN
        # A later direct edit is not attributed to the dispatcher
        row = await tenant.update_row("customers", "c1", {"name": "C"})
        assert "updatedVia" not in row["_meta"]
        assert row["_meta"]["createdVia"] == ACTION_ORIGIN

    @pytest.mark.asyncio
    async def test_direct_writes_have_no_origin(self, tenant):
        table = await tenant.create_table("Notes", {"properties": {}})
        row = await tenant.insert_row("notes", {})
        assert "createdVia" not in table.to_dict()
        assert "createdVia" not in row["_meta"]
        assert tenant.origin is None

    @pytest.mark.asyncio
    async def test_dispatched_insert_is_validated(self, tenant):
        await dispatch_action(tenant, "db.create_table", CUSTOMERS)
        await dispatch_action(tenant, "db.create_table", ORDERS)
        with pytest.raises(ValidationError):
            await dispatch_action(
                tenant, "db.insert_rows", {"table": "orders", "rows": [{"customerId": "ghost"}]}
            )

    @pytest.mark.asyncio
    async def test_unknown_action(self, tenant):
        with pytest.raises(ValidationError) as exc_info:
            await dispatch_action(tenant, "db.drop_table", {"table": "x"})
        assert exc_info.value.field_name == "action"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "action,args",
        [
            ("db.create_table", {"schema": {"properties": {}}}),
            ("db.create_table", {"table": "X", "schema": "nope"}),
            ("db.insert_rows", {"table": "x"}),
            ("db.update_row", {"table": "x", "rowId": "r1"}),
            ("db.delete_row", {"table": "x"}),
            ("db.delete_row", "not a mapping"),
        ],
    )
    async def test_malformed_args(self, tenant, action, args):
        with pytest.raises(ValidationError):
            await dispatch_action(tenant, action, args)
