import math
from typing import Any, Optional, Sequence

from civicapi.errors import ApiError


def _to_int(value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(str(value).strip())
    except ValueError:
        return default


def parse_pagination_params(
    page: Any = None,
    limit: Any = None,
    default_limit: int = 10,
    max_limit: int = 100,
):
    parsed_page = max(1, _to_int(page, 1))
    parsed_limit = min(max_limit, max(1, _to_int(limit, default_limit)))
    offset = (parsed_page - 1) * parsed_limit
    return parsed_page, parsed_limit, offset


def calculate_pagination(total: int, page: int, limit: int) -> dict:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": math.ceil(total / limit) if limit else 0,
    }


def parse_sort_direction(value: Optional[str], default: str = "DESC") -> str:
    if value is None or str(value).strip() == "":
        return default
    normalized = str(value).strip().upper()
    if normalized not in ("ASC", "DESC"):
        raise ApiError("sort must be ASC or DESC")
    return normalized


def validate_sort_column(value: Optional[str], allowed: Sequence[str], default: str) -> str:
    if value is None or str(value).strip() == "":
        return default
    if value not in allowed:
        raise ApiError(f"sortColumn must be one of: {', '.join(allowed)}")
    return value


def parse_status_filter(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(str(value).strip())
    except ValueError as e:
        raise ApiError("Invalid status value") from e
