import datetime

import pytest

from civicapi.services import values
from civicapi.services.values import ValueKind


@pytest.mark.parametrize(
    "field_type, input_format, expected",
    [
        ("number", None, ValueKind.NUMBER),
        ("text", "date", ValueKind.DATE),
        ("Date", None, ValueKind.DATE),
        ("datetime", None, ValueKind.DATETIME),
        ("file", None, ValueKind.FILE),
        ("select", None, ValueKind.TEXT),
        (None, None, ValueKind.TEXT),
    ],
)
def test_value_kind(field_type, input_format, expected):
    assert values.value_kind(field_type, input_format) == expected


def test_number_keeps_integer_when_raw_has_no_fraction():
    decoded = values.decode_value("42", ValueKind.NUMBER)
    assert isinstance(decoded, values.NumberValue)
    assert decoded.render() == 42
    assert isinstance(decoded.render(), int)


def test_number_with_fraction_stays_float():
    assert values.decode_value("42.5", ValueKind.TEXT).render() == 42.5
    assert isinstance(values.decode_value("4.0", ValueKind.NUMBER).render(), float)


def test_plain_text_is_not_numeric():
    decoded = values.decode_value("hello", ValueKind.TEXT)
    assert decoded == values.TextValue("hello")


def test_json_array_decodes_to_file_refs():
    decoded = values.decode_value('["http://a/1.png", "http://a/2.png"]', ValueKind.TEXT)
    assert decoded == values.FileRefs(["http://a/1.png", "http://a/2.png"])
    assert decoded.render() == "http://a/1.png, http://a/2.png"


def test_single_file_url_is_kept_for_file_fields():
    decoded = values.decode_value("http://a/1.png", ValueKind.FILE)
    assert decoded.urls == ["http://a/1.png"]


def test_encode_file_refs():
    assert values.encode_file_refs(["u1"]) == "u1"
    assert values.parse_file_refs(values.encode_file_refs(["u1", "u2"])) == ["u1", "u2"]


def test_parse_file_refs_rejects_non_string_arrays():
    assert values.parse_file_refs("[1, 2]") is None
    assert values.parse_file_refs("not json") is None


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("2024-03-05", "05-03-2024"),
        ("2024-03-05T10:11:12Z", "05-03-2024"),
        ("05-03-2024", "05-03-2024"),
        ("garbage", None),
    ],
)
def test_format_date_only(raw, expected):
    assert values.format_date_only(raw) == expected


def test_format_time_only_pads_seconds():
    assert values.format_time_only("09:30") == "09:30:00"
    assert values.format_time_only("9:05") == "09:05:00"
    assert values.format_time_only("7:45:10") == "07:45:10"


def test_format_datetime():
    assert values.format_datetime("2024-03-05T10:11:12") == "05-03-2024 10:11:12"
    assert values.format_datetime("2024-03-05") == "05-03-2024 00:00:00"


def test_date_value_falls_back_to_raw_text():
    assert values.decode_value("soon", ValueKind.DATE).render() == "soon"


def test_format_submitted_at():
    moment = datetime.datetime(2024, 1, 2, 3, 4, 5)
    assert values.format_submitted_at(moment) == "02-01-2024 03:04:05"
    assert values.format_submitted_at(None) == ""
