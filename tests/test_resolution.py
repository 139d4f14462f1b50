from civicapi.database import wardnumber_table
from civicapi.services.meta_registry import MetaTableConfig
from civicapi.services.resolution import (
    FieldContext,
    MetaLookup,
    display_value,
    effective_meta_table,
    parse_value_ids,
    report_cell,
    resolve_options,
)
from civicapi.services.values import ValueKind

WARDS = MetaTableConfig(
    name="tbl_meta_ward_number",
    table_name="tbl_meta_ward_number",
    display_name="Ward Number",
    table=wardnumber_table,
)


def ward_lookup():
    return MetaLookup(
        configs={"tbl_meta_ward_number": WARDS},
        rows={"tbl_meta_ward_number": {"1": {"id": 1, "disp_name": "Ward 1", "status": 1}}},
    )


def select_field():
    return FieldContext(
        id=3,
        field_key="water",
        label="Water",
        kind=ValueKind.TEXT,
        options={
            "10": {"id": 10, "field_id": 3, "option_label": "Tap", "option_value": "tap"},
            "11": {"id": 11, "field_id": 3, "option_label": "Well", "option_value": "well"},
        },
    )


def test_parse_value_ids():
    assert parse_value_ids(" 1, 2,,3 ") == ["1", "2", "3"]
    assert parse_value_ids(None) == []


def test_reserved_keys_imply_meta_tables():
    assert effective_meta_table(None, "__ward_number_id") == "tbl_meta_ward_number"
    assert effective_meta_table("  ", "__booth_number_id") == "tbl_meta_booth_number"
    assert effective_meta_table("tbl_meta_sector", "__ward_number_id") == "tbl_meta_sector"
    assert effective_meta_table(None, "name") is None


def test_meta_labels_win_and_unknown_ids_stay_raw():
    ctx = FieldContext(id=1, field_key="wards", label="Wards", kind=ValueKind.NUMBER, meta_table="tbl_meta_ward_number")
    assert report_cell(ctx, "1,5", ward_lookup()) == ("Ward 1, 5", False)


def test_option_labels():
    assert report_cell(select_field(), "11", MetaLookup()) == ("Well", False)
    assert report_cell(select_field(), "10,99", MetaLookup()) == ("Tap, 99", False)


def test_numbers_are_numeric_cells():
    ctx = FieldContext(id=2, field_key="members", label="Members", kind=ValueKind.NUMBER)
    assert report_cell(ctx, "7", MetaLookup()) == (7, True)
    assert report_cell(ctx, "", MetaLookup()) == ("", False)
    assert report_cell(ctx, None, MetaLookup()) == ("", False)


def test_resolve_options_single_and_many():
    ctx = select_field()
    assert resolve_options(ctx, "10", MetaLookup())["option_label"] == "Tap"
    assert [o["option_value"] for o in resolve_options(ctx, "10,11", MetaLookup())] == ["tap", "well"]
    assert resolve_options(ctx, "", MetaLookup()) is None


def test_resolve_meta_option():
    ctx = FieldContext(id=4, field_key="__ward_number_id", label="Ward", kind=ValueKind.TEXT,
                       meta_table="tbl_meta_ward_number")
    resolved = resolve_options(ctx, "1", ward_lookup())
    assert resolved == {"id": 1, "field_id": 4, "option_label": "Ward 1", "option_value": 1}


def test_display_value():
    file_ctx = FieldContext(id=5, field_key="photo", label="Photo", kind=ValueKind.FILE)
    assert display_value(file_ctx, '["u1", "u2"]') == ["u1", "u2"]
    assert display_value(file_ctx, "u1") == "u1"

    date_ctx = FieldContext(id=6, field_key="visit", label="Visit", kind=ValueKind.DATE)
    assert display_value(date_ctx, "2024-03-05") == "05-03-2024"
