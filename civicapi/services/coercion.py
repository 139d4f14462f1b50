"""Input coercion shared by the form, event and submission services.

Numbers follow JavaScript ``Number()`` semantics for strings (``""`` is 0,
surrounding whitespace is ignored) because the clients that post these
payloads build them in the browser.
"""
import datetime
import math
from typing import Any, Iterable, Optional

from civicapi.errors import ApiError


RESTRICTED_FIELDS = {
    "status": "status",
    "createdat": "created_at",
    "updatedat": "updated_at",
    "createdby": "created_by",
    "updatedby": "updated_by",
    "deletedat": "deleted_at",
    "deletedby": "deleted_by",
}


def assert_no_restricted_fields(payload: Any, allow: Iterable[str] = ()):
    """Reject payloads that try to set audit or status columns directly."""
    if not isinstance(payload, dict):
        return
    allowed = {_normalize_key(name) for name in allow}
    for key in payload:
        normalized = _normalize_key(str(key))
        if normalized in allowed:
            continue
        if normalized in RESTRICTED_FIELDS:
            raise ApiError(f"{RESTRICTED_FIELDS[normalized]} cannot be set manually")


def _normalize_key(key: str) -> str:
    return "".join(ch for ch in key if ch.isalnum()).lower()


def is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value == "")


def to_number(value: Any) -> float:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if value is None:
        return 0.0
    if isinstance(value, str):
        text = value.strip()
        if text == "":
            return 0.0
        if "_" in text:
            return math.nan
        try:
            return float(text)
        except ValueError:
            return math.nan
    return math.nan


def ensure_number(value: Any, field: str) -> float:
    if is_missing(value):
        raise ApiError(f"{field} is required")
    num = to_number(value)
    if not math.isfinite(num):
        raise ApiError(f"Invalid {field}")
    return num


def ensure_int(value: Any, field: str) -> int:
    num = ensure_number(value, field)
    if not num.is_integer():
        raise ApiError(f"{field} must be an integer")
    return int(num)


def decimal_string(num: float) -> str:
    if num.is_integer():
        return str(int(num))
    return repr(num)


def ensure_non_empty_string(value: Any, field: str) -> str:
    if not isinstance(value, str) or value.strip() == "":
        raise ApiError(f"{field} is required")
    return value.strip()


def normalize_optional_string(value: Any, field: str) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    raise ApiError(f"{field} must be a string")


def parse_boolean_like(value: Any) -> Optional[bool]:
    if is_missing(value):
        return None
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in ("1", "true", "yes"):
        return True
    if normalized in ("0", "false", "no"):
        return False
    return None


def ensure_boolean_like(value: Any, field: str) -> bool:
    parsed = parse_boolean_like(value)
    if parsed is None:
        raise ApiError(f"Invalid {field} value")
    return parsed


def normalize_json_object(value: Any, field: str = "attrsJson") -> Optional[dict]:
    if value is None:
        return None
    if isinstance(value, dict):
        return value
    raise ApiError(f"{field} must be an object")


def _parse_datetime(value: Any) -> Optional[datetime.datetime]:
    if isinstance(value, datetime.datetime):
        return value
    if isinstance(value, datetime.date):
        return datetime.datetime.combine(value, datetime.time())
    if not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.datetime.fromisoformat(text)
    except ValueError:
        return None


def parse_date_only(value: Any) -> Optional[datetime.date]:
    if isinstance(value, datetime.date) and not isinstance(value, datetime.datetime):
        return value
    parsed = _parse_datetime(value)
    if parsed is None:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(datetime.timezone.utc)
    return parsed.date()


def ensure_date_only(value: Any, field: str) -> datetime.date:
    if is_missing(value):
        raise ApiError(f"{field} is required")
    parsed = parse_date_only(value)
    if parsed is None:
        raise ApiError(f"Invalid {field}")
    return parsed


def ensure_optional_date_only(value: Any, field: str) -> Optional[datetime.date]:
    if is_missing(value):
        return None
    parsed = parse_date_only(value)
    if parsed is None:
        raise ApiError(f"Invalid {field}")
    return parsed


def ensure_datetime_or_none(value: Any, field: str) -> Optional[datetime.datetime]:
    if is_missing(value):
        return None
    parsed = _parse_datetime(value)
    if parsed is None:
        raise ApiError(f"Invalid {field} value")
    return parsed
