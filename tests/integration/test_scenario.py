"""
Integration tests for TableDB service-level scenarios.

Tests cover:
- The orders/customers restrict walk-through
- Parent/child restrict, cascade and setNull
- Typed second delete
- Table id normalization and conflicts
- Tenant isolation
- Transient read failures recovered by the S3 client retries
"""

import pytest

from dbaas.tabledb_server.blob import InMemoryBlobStore
from dbaas.tabledb_server.config import BlobBackend, BlobStoreConfig, ServerConfig
from dbaas.tabledb_server.errors import ConflictError, NotFoundError, ValidationError
from dbaas.tabledb_server.service import TableDB, TenantContext


@pytest.fixture
def blob():
    return InMemoryBlobStore()


@pytest.fixture
def db(blob):
    return TableDB(blob, ServerConfig(blob=BlobStoreConfig(backend=BlobBackend.MEMORY)))


@pytest.fixture
def tenant(db):
    return db.bind(TenantContext(hub_id="hub1", actor="pm@example.com"))


async def parent_child(tenant, on_delete):
    await tenant.create_table("Parent", {"properties": {}})
    await tenant.create_table(
        "Child",
        {"properties": {"parentId": {"type": "string"}}},
        relationships={"parentId": {"references": "parent.id", "onDelete": on_delete}},
    )
    parent = await tenant.insert_row("parent", {})
    child = await tenant.insert_row("child", {"parentId": parent["id"]})
    return parent["id"], child["id"]


class TestOrdersScenario:
    """Orders reference customers with onDelete=restrict."""

    @pytest.mark.asyncio
    async def test_walkthrough(self, tenant):
        # The relationship target does not need to exist yet
        await tenant.create_table(
            "orders",
            {"properties": {"customerId": {"type": "string"}}},
            relationships={"customerId": {"references": "customers.id", "onDelete": "restrict"}},
        )
        await tenant.create_table("customers", {"properties": {}})
        await tenant.insert_row("customers", {"id": "c1"})

        order = await tenant.insert_row("orders", {"customerId": "c1"})

        with pytest.raises(ValidationError):
            await tenant.insert_row("orders", {"customerId": "missing"})

        with pytest.raises(ConflictError) as exc_info:
            await tenant.delete_row("customers", "c1")
        assert exc_info.value.blockers[0]["count"] == 1

        await tenant.delete_row("orders", order["id"])
        result = await tenant.delete_row("customers", "c1")

        assert result.table_id == "customers"
        assert result.row_id == "c1"
        assert await tenant.list_rows("customers") == []


class TestDeletePolicies:
    """Parent/child delete policies end to end."""

    @pytest.mark.asyncio
    async def test_null_foreign_key_always_accepted(self, tenant):
        await parent_child(tenant, "restrict")
        row = await tenant.insert_row("child", {"parentId": None})
        assert row["parentId"] is None

    @pytest.mark.asyncio
    async def test_restrict(self, tenant):
        parent_id, _ = await parent_child(tenant, "restrict")
        with pytest.raises(ConflictError):
            await tenant.delete_row("parent", parent_id)
        assert await tenant.get_row("parent", parent_id)

    @pytest.mark.asyncio
    async def test_cascade(self, tenant):
        parent_id, child_id = await parent_child(tenant, "cascade")
        await tenant.delete_row("parent", parent_id)
        with pytest.raises(NotFoundError):
            await tenant.get_row("child", child_id)

    @pytest.mark.asyncio
    async def test_set_null(self, tenant):
        parent_id, child_id = await parent_child(tenant, "setNull")
        await tenant.delete_row("parent", parent_id)
        child = await tenant.get_row("child", child_id)
        assert child["parentId"] is None
        assert child["_meta"]["cascadeReason"]

    @pytest.mark.asyncio
    async def test_second_delete_is_not_found(self, tenant):
        parent_id, _ = await parent_child(tenant, "cascade")
        await tenant.delete_row("parent", parent_id)
        with pytest.raises(NotFoundError):
            await tenant.delete_row("parent", parent_id)


class TestTables:
    """Table naming and tenant isolation."""

    @pytest.mark.asyncio
    async def test_id_normalization(self, tenant):
        table = await tenant.create_table("My Table!! 2", {"properties": {}})
        assert table.id == "my-table-2"
        with pytest.raises(ConflictError):
            await tenant.create_table("My Table!! 2", {"properties": {}})

    @pytest.mark.asyncio
    async def test_tenants_are_isolated(self, db):
        hub1 = db.bind(TenantContext(hub_id="hub1"))
        hub2 = db.bind(TenantContext(hub_id="hub2"))
        await hub1.create_table("Customers", {"properties": {}})
        await hub1.insert_row("customers", {"id": "c1"})
        await hub2.create_table("Customers", {"properties": {}})
        await hub2.create_table(
            "Orders",
            {"properties": {}},
            relationships={"customerId": {"references": "customers.id"}},
        )

        with pytest.raises(ValidationError):
            await hub2.insert_row("orders", {"customerId": "c1"})
        assert await hub2.list_rows("customers") == []
        assert [t.id for t in await hub1.list_tables()] == ["customers"]

    def test_invalid_tenant(self, db):
        with pytest.raises(ValidationError):
            db.bind(TenantContext(hub_id="../hub2"))


class TestServiceLifecycle:
    """TableDB connect/close and health."""

    @pytest.mark.asyncio
    async def test_context_manager(self, db, blob):
        async with db:
            assert blob.is_connected
            health = await db.health()
        assert not blob.is_connected
        assert health == {"healthy": True, "backend": "memory", "bucket": {"exists": True}}

    @pytest.mark.asyncio
    async def test_unhealthy(self, db, blob):
        blob.inject_failure("list")
        health = await db.health()
        assert health["healthy"] is False
        assert health["error"]["error_code"] == "TRANSIENT_STORE_ERROR"

    @pytest.mark.asyncio
    async def test_list_objects(self, tenant):
        await tenant.create_folder("Ops")
        await tenant.create_table("Customers", {"properties": {}})
        keys = [o.key for o in await tenant.list_objects()]
        assert keys == [
            "tenants/hub1/folders/ops/meta.json",
            "tenants/hub1/tables/customers/schema.json",
        ]
        assert [o.key for o in await tenant.list_objects("folders")] == keys[:1]
        with pytest.raises(ValidationError):
            await tenant.list_objects("../hub2")
