"""
Unit tests for the row store.

Tests cover:
- Id generation and caller-supplied ids
- Provenance metadata
- Required fields and forward foreign key validation
- Batch inserts
- Upsert with shallow merge and re-validation of the merged row
"""

import re

import pytest

from dbaas.tabledb_server.blob import InMemoryBlobStore
from dbaas.tabledb_server.config import IntegrityConfig, ServerConfig
from dbaas.tabledb_server.errors import ConflictError, NotFoundError, ValidationError
from dbaas.tabledb_server.service import TableDB, TenantContext

HEX_ID = re.compile(r"^[0-9a-f]{32}$")


@pytest.fixture
def blob():
    return InMemoryBlobStore()


@pytest.fixture
def db(blob):
    return TableDB(blob, ServerConfig(integrity=IntegrityConfig(max_batch_rows=5)))


@pytest.fixture
def tenant(db):
    return db.bind(TenantContext(hub_id="hub1", actor="pm@example.com"))


async def create_shop(tenant):
    await tenant.create_table(
        "Customers",
        {"properties": {"name": {"type": "string"}, "code": {"type": "number"}}, "required": ["name"]},
    )
    await tenant.create_table(
        "Orders",
        {"properties": {"customerId": {"type": "string"}, "status": {"type": "string"}}},
        relationships={"customerId": {"references": "customers.id", "onDelete": "restrict"}},
    )


class TestInsertRow:
    """Tests for RowStore.insert_row."""

    @pytest.mark.asyncio
    async def test_generated_id_and_meta(self, tenant, blob):
        await create_shop(tenant)
        row = await tenant.insert_row("customers", {"name": "Acme", "_meta": {"createdBy": "evil"}})

        assert HEX_ID.match(row["id"])
        assert row["name"] == "Acme"
        assert row["_meta"]["createdBy"] == "pm@example.com"
        assert row["_meta"]["createdAt"].endswith("Z")
        assert await tenant.get_row("customers", row["id"]) == row
        assert blob.keys("tenants/hub1/tables/customers/rows/") == [
            f"tenants/hub1/tables/customers/rows/{row['id']}.json"
        ]

    @pytest.mark.asyncio
    async def test_caller_id_honored(self, tenant):
        await create_shop(tenant)
        row = await tenant.insert_row("customers", {"id": "c1", "name": "Acme"})
        assert row["id"] == "c1"
        assert list(row)[0] == "id"

    @pytest.mark.asyncio
    async def test_existing_caller_id_conflicts(self, tenant):
        await create_shop(tenant)
        await tenant.insert_row("customers", {"id": "c1", "name": "Acme"})
        with pytest.raises(ConflictError):
            await tenant.insert_row("customers", {"id": "c1", "name": "Other"})
        assert (await tenant.get_row("customers", "c1"))["name"] == "Acme"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_id", [5, "a/b", ".."])
    async def test_invalid_caller_id(self, tenant, bad_id):
        await create_shop(tenant)
        with pytest.raises(ValidationError):
            await tenant.insert_row("customers", {"id": bad_id, "name": "Acme"})

    @pytest.mark.asyncio
    async def test_unknown_table(self, tenant):
        with pytest.raises(NotFoundError):
            await tenant.insert_row("nope", {"x": 1})

    @pytest.mark.asyncio
    async def test_required_field_missing(self, tenant, blob):
        await create_shop(tenant)
        with pytest.raises(ValidationError) as exc_info:
            await tenant.insert_row("customers", {"name": None})
        assert exc_info.value.field_name == "name"
        assert blob.keys("tenants/hub1/tables/customers/rows/") == []

    @pytest.mark.asyncio
    async def test_foreign_key_must_resolve(self, tenant, blob):
        await create_shop(tenant)
        with pytest.raises(ValidationError) as exc_info:
            await tenant.insert_row("orders", {"customerId": "ghost"})
        error = exc_info.value
        assert error.field_name == "customerId"
        assert error.reference == "customers.id"
        assert error.value == "ghost"
        assert blob.keys("tenants/hub1/tables/orders/rows/") == []

    @pytest.mark.asyncio
    async def test_foreign_key_resolves(self, tenant):
        await create_shop(tenant)
        await tenant.insert_row("customers", {"id": "c1", "name": "Acme"})
        order = await tenant.insert_row("orders", {"customerId": "c1"})
        assert order["customerId"] == "c1"

    @pytest.mark.asyncio
    async def test_null_or_absent_foreign_key_passes(self, tenant):
        await create_shop(tenant)
        await tenant.insert_row("orders", {"customerId": None})
        await tenant.insert_row("orders", {"status": "draft"})
        assert len(await tenant.list_rows("orders")) == 2

    @pytest.mark.asyncio
    async def test_missing_target_table_never_matches(self, tenant):
        await tenant.create_table(
            "Invoices",
            {"properties": {}},
            relationships={"accountId": {"references": "accounts.id"}},
        )
        with pytest.raises(ValidationError):
            await tenant.insert_row("invoices", {"accountId": "a1"})

    @pytest.mark.asyncio
    async def test_unparseable_target_row_never_matches(self, tenant, blob):
        await create_shop(tenant)
        blob.put_raw("tenants/hub1/tables/customers/rows/c1.json", b'{"id": "c1", broken')

        with pytest.raises(ValidationError) as exc_info:
            await tenant.insert_row("orders", {"customerId": "c1"})
        assert exc_info.value.field_name == "customerId"
        assert blob.keys("tenants/hub1/tables/orders/rows/") == []

    @pytest.mark.asyncio
    async def test_every_failure_reported(self, tenant):
        await create_shop(tenant)
        await tenant.create_table(
            "Shipments",
            {"properties": {}},
            relationships={
                "orderId": {"references": "orders.id"},
                "customerId": {"references": "customers.id"},
            },
        )
        with pytest.raises(ValidationError) as exc_info:
            await tenant.insert_row("shipments", {"orderId": "o9", "customerId": "c9"})
        assert len(exc_info.value.errors) == 2


class TestExactEquality:
    """Foreign key comparison never coerces types."""

    @pytest.mark.asyncio
    async def test_string_does_not_match_int(self, tenant):
        await create_shop(tenant)
        await tenant.insert_row("customers", {"id": "5", "name": "Five"})
        await tenant.insert_row("customers", {"id": "c1", "name": "Acme", "code": 5})
        await tenant.create_table(
            "Tickets", {"properties": {}}, relationships={"code": {"references": "customers.code"}}
        )
        with pytest.raises(ValidationError):
            await tenant.insert_row("tickets", {"code": "5"})
        with pytest.raises(ValidationError):
            await tenant.insert_row("orders", {"customerId": 5})

    @pytest.mark.asyncio
    async def test_bool_does_not_match_int(self, tenant):
        await create_shop(tenant)
        await tenant.insert_row("customers", {"id": "c1", "name": "Acme", "code": 1})
        await tenant.create_table(
            "Tickets", {"properties": {}}, relationships={"code": {"references": "customers.code"}}
        )
        with pytest.raises(ValidationError):
            await tenant.insert_row("tickets", {"code": True})
        await tenant.insert_row("tickets", {"code": 1})
        await tenant.insert_row("tickets", {"code": 1.0})

    @pytest.mark.asyncio
    async def test_case_sensitive(self, tenant):
        await create_shop(tenant)
        await tenant.insert_row("customers", {"id": "c1", "name": "Acme"})
        with pytest.raises(ValidationError):
            await tenant.insert_row("orders", {"customerId": "C1"})


class TestInsertRows:
    """Tests for RowStore.insert_rows."""

    @pytest.mark.asyncio
    async def test_batch_written(self, tenant):
        await create_shop(tenant)
        rows = await tenant.insert_rows("customers", [{"name": "A"}, {"id": "c2", "name": "B"}])
        assert len(rows) == 2
        assert rows[1]["id"] == "c2"
        assert len(await tenant.list_rows("customers")) == 2

    @pytest.mark.asyncio
    async def test_batch_limit(self, tenant):
        await create_shop(tenant)
        with pytest.raises(ValidationError):
            await tenant.insert_rows("customers", [{"name": str(i)} for i in range(6)])

    @pytest.mark.asyncio
    @pytest.mark.parametrize("rows", [[], None, {"name": "A"}])
    async def test_batch_must_be_non_empty_list(self, tenant, rows):
        await create_shop(tenant)
        with pytest.raises(ValidationError):
            await tenant.insert_rows("customers", rows)

    @pytest.mark.asyncio
    async def test_one_bad_row_writes_nothing(self, tenant):
        await create_shop(tenant)
        await tenant.insert_row("customers", {"id": "c1", "name": "Acme"})
        with pytest.raises(ValidationError) as exc_info:
            await tenant.insert_rows(
                "orders", [{"customerId": "c1"}, {"customerId": "ghost"}, {"customerId": "c1"}]
            )
        assert exc_info.value.errors[0].startswith("Row 1:")
        assert await tenant.list_rows("orders") == []

    @pytest.mark.asyncio
    async def test_duplicate_ids_in_batch(self, tenant):
        await create_shop(tenant)
        with pytest.raises(ValidationError):
            await tenant.insert_rows("customers", [{"id": "x", "name": "A"}, {"id": "x", "name": "B"}])
        assert await tenant.list_rows("customers") == []

    @pytest.mark.asyncio
    async def test_existing_id_conflicts_before_any_write(self, tenant):
        await create_shop(tenant)
        await tenant.insert_row("customers", {"id": "c2", "name": "Old"})
        with pytest.raises(ConflictError):
            await tenant.insert_rows("customers", [{"id": "c1", "name": "A"}, {"id": "c2", "name": "B"}])
        assert [r["id"] for r in await tenant.list_rows("customers")] == ["c2"]


class TestUpdateRow:
    """Tests for RowStore.update_row."""

    @pytest.mark.asyncio
    async def test_merge_preserves_created_meta(self, tenant, db):
        await create_shop(tenant)
        await tenant.insert_row("customers", {"id": "c1", "name": "Acme", "code": 1})
        other = db.bind(TenantContext(hub_id="hub1", actor="ops@example.com"))

        row = await other.update_row("customers", "c1", {"code": 2, "id": "zzz", "_meta": {}})

        assert row["id"] == "c1"
        assert row["name"] == "Acme"
        assert row["code"] == 2
        assert row["_meta"]["createdBy"] == "pm@example.com"
        assert row["_meta"]["updatedBy"] == "ops@example.com"
        assert "updatedAt" in row["_meta"]

    @pytest.mark.asyncio
    async def test_upsert_creates(self, tenant):
        await create_shop(tenant)
        row = await tenant.update_row("customers", "c7", {"name": "New"})
        assert row["id"] == "c7"
        assert row["_meta"]["createdBy"] == "pm@example.com"
        assert (await tenant.get_row("customers", "c7"))["name"] == "New"

    @pytest.mark.asyncio
    async def test_merged_row_revalidated(self, tenant):
        await create_shop(tenant)
        await tenant.insert_row("customers", {"id": "c1", "name": "Acme"})
        await tenant.insert_row("orders", {"id": "o1", "customerId": "c1"})

        with pytest.raises(ValidationError):
            await tenant.update_row("orders", "o1", {"customerId": "ghost"})
        assert (await tenant.get_row("orders", "o1"))["customerId"] == "c1"

    @pytest.mark.asyncio
    async def test_unrelated_update_rechecks_existing_keys(self, tenant, blob):
        await create_shop(tenant)
        await tenant.insert_row("customers", {"id": "c1", "name": "Acme"})
        await tenant.insert_row("orders", {"id": "o1", "customerId": "c1"})
        await blob.delete("tenants/hub1/tables/customers/rows/c1.json")

        with pytest.raises(ValidationError):
            await tenant.update_row("orders", "o1", {"status": "shipped"})

    @pytest.mark.asyncio
    async def test_required_cannot_be_nulled(self, tenant):
        await create_shop(tenant)
        await tenant.insert_row("customers", {"id": "c1", "name": "Acme"})
        with pytest.raises(ValidationError):
            await tenant.update_row("customers", "c1", {"name": None})


class TestReadRows:
    """Tests for get_row/list_rows/delete_row lookups."""

    @pytest.mark.asyncio
    async def test_get_missing(self, tenant):
        await create_shop(tenant)
        with pytest.raises(NotFoundError) as exc_info:
            await tenant.get_row("customers", "nope")
        assert exc_info.value.resource_type == "row"

    @pytest.mark.asyncio
    async def test_list_skips_corrupt(self, tenant, blob):
        await create_shop(tenant)
        await tenant.insert_row("customers", {"id": "c1", "name": "Acme"})
        blob.put_raw("tenants/hub1/tables/customers/rows/c2.json", b"{oops")
        assert [r["id"] for r in await tenant.list_rows("customers")] == ["c1"]

    @pytest.mark.asyncio
    async def test_list_unknown_table(self, tenant):
        with pytest.raises(NotFoundError):
            await tenant.list_rows("nope")

    @pytest.mark.asyncio
    async def test_delete_absent_is_typed_not_found(self, tenant):
        await create_shop(tenant)
        with pytest.raises(NotFoundError):
            await tenant.delete_row("customers", "nope")
