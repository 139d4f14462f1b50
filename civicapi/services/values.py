"""Typed view over the text stored in ``tbl_form_field_value.value``.

Every answer is persisted as one string. The field's declared type decides
which variant a stored string decodes to, so formatting code branches on the
variant instead of sniffing the raw text.
"""
import datetime
import enum
import json
import math
import re
from dataclasses import dataclass
from typing import List, Optional, Union

from civicapi.services.coercion import to_number


class ValueKind(str, enum.Enum):
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    TIME = "time"
    DATETIME = "datetime"
    FILE = "file"


TEMPORAL_KINDS = {ValueKind.DATE, ValueKind.TIME, ValueKind.DATETIME}
FILE_TYPE_NAMES = {"file", "image", "video", "document", "attachment"}

_ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
_DISPLAY_DATE = re.compile(r"^(\d{2})-(\d{2})-(\d{4})$")
_TIME = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?")
_ISO_DATETIME = re.compile(r"^(\d{4})-(\d{2})-(\d{2})(?:[ T](\d{2}):(\d{2})(?::(\d{2}))?)?")
_DISPLAY_DATETIME = re.compile(r"^(\d{2})-(\d{2})-(\d{4})(?: (\d{2}):(\d{2})(?::(\d{2}))?)?$")


@dataclass(frozen=True)
class TextValue:
    text: str

    def render(self):
        return self.text


@dataclass(frozen=True)
class NumberValue:
    number: float
    raw: str

    def render(self):
        if self.number.is_integer() and "." not in self.raw and "e" not in self.raw.lower():
            return int(self.number)
        return self.number


@dataclass(frozen=True)
class DateValue:
    kind: ValueKind
    raw: str

    def render(self):
        formatted = format_temporal(self.raw, self.kind)
        return formatted if formatted is not None else self.raw


@dataclass(frozen=True)
class FileRefs:
    urls: List[str]

    def render(self):
        return ", ".join(self.urls)


StoredValue = Union[TextValue, NumberValue, DateValue, FileRefs]


def value_kind(field_type: Optional[str], input_format_type: Optional[str] = None) -> ValueKind:
    """Pick the variant for a field from its type name, then its input format."""
    for name in (field_type, input_format_type):
        if not name:
            continue
        normalized = name.strip().lower()
        if normalized in ("date", "time", "datetime"):
            return ValueKind(normalized)
        if normalized in FILE_TYPE_NAMES:
            return ValueKind.FILE
    if field_type and field_type.strip().lower() == "number":
        return ValueKind.NUMBER
    return ValueKind.TEXT


def encode_file_refs(urls: List[str]) -> str:
    return urls[0] if len(urls) == 1 else json.dumps(urls)


def parse_file_refs(raw: str) -> Optional[List[str]]:
    text = raw.strip()
    if not text.startswith("["):
        return None
    try:
        parsed = json.loads(text)
    except ValueError:
        return None
    if isinstance(parsed, list) and all(isinstance(entry, str) for entry in parsed):
        return parsed
    return None


def decode_value(raw: str, kind: ValueKind) -> StoredValue:
    text = raw.strip()
    if kind in TEMPORAL_KINDS:
        return DateValue(kind=kind, raw=text)
    if kind == ValueKind.FILE:
        urls = parse_file_refs(text)
        return FileRefs(urls=urls if urls is not None else [text])
    urls = parse_file_refs(text)
    if urls is not None:
        return FileRefs(urls=urls)
    num = to_number(text)
    if text and math.isfinite(num):
        return NumberValue(number=num, raw=text)
    return TextValue(text=text)


def _pad(value) -> str:
    return str(value).zfill(2)


def _fallback_datetime(raw: str) -> Optional[datetime.datetime]:
    text = raw[:-1] + "+00:00" if raw.endswith("Z") else raw
    try:
        return datetime.datetime.fromisoformat(text)
    except ValueError:
        return None


def format_date_only(raw: str) -> Optional[str]:
    text = raw.strip()
    if not text:
        return None
    if _DISPLAY_DATE.match(text):
        return text
    match = _ISO_DATE.match(text)
    if match:
        yyyy, mm, dd = match.groups()
        return f"{dd}-{mm}-{yyyy}"
    parsed = _fallback_datetime(text)
    if parsed is None:
        return None
    return parsed.strftime("%d-%m-%Y")


def format_time_only(raw: str) -> Optional[str]:
    text = raw.strip()
    if not text:
        return None
    match = _TIME.match(text)
    if match:
        hh, mm, ss = match.groups()
        return f"{_pad(hh)}:{mm}:{ss or '00'}"
    parsed = _fallback_datetime(text)
    if parsed is None:
        return None
    return parsed.strftime("%H:%M:%S")


def format_datetime(raw: str) -> Optional[str]:
    text = raw.strip()
    if not text:
        return None
    match = _DISPLAY_DATETIME.match(text)
    if match:
        dd, mm, yyyy, hh, mi, ss = match.groups()
        return f"{dd}-{mm}-{yyyy} {hh or '00'}:{mi or '00'}:{ss or '00'}"
    match = _ISO_DATETIME.match(text)
    if match:
        yyyy, mm, dd, hh, mi, ss = match.groups()
        return f"{dd}-{mm}-{yyyy} {hh or '00'}:{mi or '00'}:{ss or '00'}"
    parsed = _fallback_datetime(text)
    if parsed is None:
        return None
    return parsed.strftime("%d-%m-%Y %H:%M:%S")


def format_temporal(raw: str, kind: ValueKind) -> Optional[str]:
    if kind == ValueKind.DATE:
        return format_date_only(raw)
    if kind == ValueKind.TIME:
        return format_time_only(raw)
    if kind == ValueKind.DATETIME:
        return format_datetime(raw)
    return None


def format_submitted_at(value) -> str:
    if isinstance(value, datetime.datetime):
        return f"{_pad(value.day)}-{_pad(value.month)}-{value.year} {value.strftime('%H:%M:%S')}"
    if value is None:
        return ""
    return format_datetime(str(value)) or str(value)
