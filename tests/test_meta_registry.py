import pytest

from civicapi.database import metatableregistry_table, wardnumber_table
from civicapi.errors import ApiError
from civicapi.services.meta_registry import MetaRegistry

pytestmark = pytest.mark.anyio


@pytest.fixture()
def registry(db):
    registry = MetaRegistry(db)
    registry.register(wardnumber_table, display_name="Ward Number")
    return registry


async def test_builtin_table_is_listed(registry):
    tables = await registry.list_tables()
    assert [t.table_name for t in tables] == ["tbl_meta_ward_number"]
    assert tables[0].display_name == "Ward Number"
    assert tables[0].has_status is True


async def test_registry_rows_override_display_metadata(registry, db):
    cached = await registry.get_meta_table_by_table_name("tbl_meta_ward_number")
    assert cached.display_name == "Ward Number"

    await db.execute(
        metatableregistry_table.insert().values(
            name="wards", table_name="tbl_meta_ward_number", display_name="Wards", primary_key="id",
            searchable_fields=["disp_name"], has_status=True, status=1,
        )
    )
    await db.execute(
        metatableregistry_table.insert().values(
            name="ghost", table_name="tbl_meta_ghost", display_name="Ghost", primary_key="id", status=1,
        )
    )

    assert (await registry.get_meta_table_by_table_name("tbl_meta_ward_number")).display_name == "Ward Number"
    registry.refresh()

    meta = await registry.get_meta_table_by_table_name("tbl_meta_ward_number")
    assert meta.display_name == "Wards"
    assert meta.searchable_fields == ["disp_name"]
    assert await registry.get_meta_table_by_table_name("tbl_meta_ghost") is None


async def test_resolve_labels_skips_inactive_rows(registry, seed, db):
    active = await seed.ward("Ward 7")
    inactive = await seed.ward("Ward 8")
    await db.execute(wardnumber_table.update().where(wardnumber_table.c.id == inactive).values(status=0))

    labels = await registry.resolve_labels("tbl_meta_ward_number", [str(active), str(inactive), "abc"])
    assert labels == {str(active): "Ward 7"}


async def test_ensure_values_exist(registry, seed):
    ward = await seed.ward("Ward 7")
    await registry.ensure_values_exist("tbl_meta_ward_number", [str(ward)], "Ward")

    with pytest.raises(ApiError) as exc_info:
        await registry.ensure_values_exist("tbl_meta_ward_number", [str(ward), "x"], "Ward")
    assert exc_info.value.detail == 'Invalid selection for "Ward"'

    with pytest.raises(ApiError) as exc_info:
        await registry.ensure_values_exist("tbl_meta_unknown", ["1"], "Ward")
    assert exc_info.value.detail == 'Invalid metaTable for "Ward"'


async def test_label_falls_back_to_primary_key(registry, seed, db):
    ward = await seed.ward("")
    labels = await registry.resolve_labels("tbl_meta_ward_number", [ward])
    assert labels == {str(ward): str(ward)}


async def test_meta_table_endpoints(async_client, admin, seed):
    listing = await async_client.get("/api/meta-tables", headers=admin["headers"])
    assert listing.status_code == 200
    names = {t["tableName"] for t in listing.json()}
    assert {"tbl_meta_ward_number", "tbl_meta_booth_number", "tbl_meta_user_role"} <= names

    worker = await seed.user("w@example.com")
    assert (await async_client.post("/api/meta-tables/refresh", headers=worker["headers"])).status_code == 403
    assert (await async_client.post("/api/meta-tables/refresh", headers=admin["headers"])).status_code == 200
