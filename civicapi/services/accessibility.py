"""Ward/booth/role matching that decides who may see and submit a form event.

Each accessibility rule is a (ward, booth, role) triple. Ward and booth may
match any area; the role must match exactly. Storage and the JSON API spell
"any area" as ``-1``; inside this module it is :data:`ANY_AREA`.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Union

import sqlalchemy

from civicapi.database import (
    boothnumber_table,
    database,
    formeventaccessibility_table,
    role_table,
    user_role_table,
    userprofile_table,
    wardnumber_table,
)
from civicapi.errors import ApiError
from civicapi.services.coercion import to_number

logger = logging.getLogger(__name__)

ANY_AREA_ID = -1


class AnyArea:
    def matches(self, area_id: Optional[int]) -> bool:
        return area_id is not None

    def to_storage(self) -> int:
        return ANY_AREA_ID

    def __eq__(self, other):
        return isinstance(other, AnyArea)

    def __hash__(self):
        return hash(ANY_AREA_ID)

    def __repr__(self):
        return "ANY_AREA"


@dataclass(frozen=True)
class SpecificArea:
    id: int

    def matches(self, area_id: Optional[int]) -> bool:
        return area_id == self.id

    def to_storage(self) -> int:
        return self.id


AreaFilter = Union[AnyArea, SpecificArea]
ANY_AREA = AnyArea()


def parse_area(value: int) -> AreaFilter:
    """Build an area filter from a stored or validated id."""
    if value == ANY_AREA_ID:
        return ANY_AREA
    return SpecificArea(int(value))


@dataclass(frozen=True)
class AccessRule:
    ward: AreaFilter
    booth: AreaFilter
    role_id: int

    @classmethod
    def from_row(cls, row) -> "AccessRule":
        return cls(
            ward=parse_area(row["ward_number_id"]),
            booth=parse_area(row["booth_number_id"]),
            role_id=row["user_role_id"],
        )


@dataclass
class UserAccessProfile:
    ward_number_id: Optional[int] = None
    booth_number_id: Optional[int] = None
    role_ids: List[int] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return bool(self.ward_number_id) and bool(self.booth_number_id) and bool(self.role_ids)


def rule_matches(rule: AccessRule, profile: UserAccessProfile) -> bool:
    return (
        rule.ward.matches(profile.ward_number_id)
        and rule.booth.matches(profile.booth_number_id)
        and rule.role_id in profile.role_ids
    )


def can_access(profile: UserAccessProfile, rules: Iterable[AccessRule]) -> bool:
    # no rules means nobody, and an incomplete profile never matches
    if not profile.is_complete:
        return False
    return any(rule_matches(rule, profile) for rule in rules)


def _integer(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    num = to_number(value)
    if num != num or num in (float("inf"), float("-inf")) or not num.is_integer():
        return None
    return int(num)


def _area_id(value: Any, index: int, name: str) -> int:
    parsed = _integer(value)
    if parsed is None or (parsed != ANY_AREA_ID and parsed <= 0):
        raise ApiError(f"accessibility[{index}].{name} must be -1 or a positive integer")
    return parsed


def validate_accessibility_payload(payload: Any) -> List[AccessRule]:
    if not isinstance(payload, list):
        raise ApiError("Accessibility must be an array")
    if len(payload) == 0:
        raise ApiError("At least one accessibility entry is required")

    rules = []
    for index, entry in enumerate(payload):
        if not isinstance(entry, dict):
            raise ApiError(f"accessibility[{index}] must be an object")
        ward_id = _area_id(entry.get("wardNumberId"), index, "wardNumberId")
        booth_id = _area_id(entry.get("boothNumberId"), index, "boothNumberId")
        role_id = _integer(entry.get("userRoleId"))
        if role_id is None or role_id <= 0:
            raise ApiError(f"accessibility[{index}].userRoleId must be a positive integer")
        rules.append(AccessRule(ward=parse_area(ward_id), booth=parse_area(booth_id), role_id=role_id))
    return rules


async def _ensure_ids_exist(table: sqlalchemy.Table, ids: set, name: str):
    if not ids:
        return
    query = (
        sqlalchemy.select(sqlalchemy.func.count())
        .select_from(table)
        .where(table.c.id.in_(sorted(ids)))
    )
    count = await database.fetch_val(query)
    if count != len(ids):
        raise ApiError(f"One or more {name} values are invalid")


async def ensure_accessibility_references_exist(rules: List[AccessRule]):
    ward_ids = {r.ward.id for r in rules if isinstance(r.ward, SpecificArea)}
    booth_ids = {r.booth.id for r in rules if isinstance(r.booth, SpecificArea)}
    role_ids = {r.role_id for r in rules}

    await _ensure_ids_exist(wardnumber_table, ward_ids, "wardNumberId")
    await _ensure_ids_exist(boothnumber_table, booth_ids, "boothNumberId")
    await _ensure_ids_exist(role_table, role_ids, "userRoleId")


async def insert_accessibility(form_event_id: int, rules: List[AccessRule], user_id: Optional[int]):
    values = [
        {
            "form_event_id": form_event_id,
            "ward_number_id": rule.ward.to_storage(),
            "booth_number_id": rule.booth.to_storage(),
            "user_role_id": rule.role_id,
            "status": 1,
            "created_by": user_id,
            "updated_by": user_id,
        }
        for rule in rules
    ]
    await database.execute_many(formeventaccessibility_table.insert(), values)


async def replace_accessibility(form_event_id: int, rules: List[AccessRule], user_id: Optional[int]):
    """Swap the whole rule set of an event. Runs inside the caller's transaction."""
    logger.debug(f"Replacing accessibility of form event {form_event_id} with {len(rules)} rules")
    await database.execute(
        formeventaccessibility_table.delete().where(
            formeventaccessibility_table.c.form_event_id == form_event_id
        )
    )
    await insert_accessibility(form_event_id, rules, user_id)


async def load_event_rules(form_event_id: int, active_only: bool = True) -> List[AccessRule]:
    query = formeventaccessibility_table.select().where(
        formeventaccessibility_table.c.form_event_id == form_event_id
    )
    if active_only:
        query = query.where(formeventaccessibility_table.c.status == 1)
    rows = await database.fetch_all(query.order_by(formeventaccessibility_table.c.id))
    return [AccessRule.from_row(row) for row in rows]


async def get_user_access_profile(user_id: int) -> UserAccessProfile:
    profile = await database.fetch_one(
        userprofile_table.select().where(userprofile_table.c.user_id == user_id)
    )
    role_rows = await database.fetch_all(
        sqlalchemy.select(user_role_table.c.role_id).where(
            (user_role_table.c.user_id == user_id) & (user_role_table.c.status == 1)
        )
    )
    return UserAccessProfile(
        ward_number_id=profile["ward_number_id"] if profile else None,
        booth_number_id=profile["booth_number_id"] if profile else None,
        role_ids=[row["role_id"] for row in role_rows],
    )


async def can_user_access_form_event(user_id: int, form_event_id: int) -> bool:
    profile = await get_user_access_profile(user_id)
    rules = await load_event_rules(form_event_id)
    allowed = can_access(profile, rules)
    logger.debug(f"User {user_id} access to form event {form_event_id}: {allowed}")
    return allowed


def accessible_event_clause(profile: UserAccessProfile):
    """Condition on tbl_form_event_accessibility matching ``profile``; false when incomplete."""
    if not profile.is_complete:
        return sqlalchemy.false()
    acc = formeventaccessibility_table
    return sqlalchemy.and_(
        acc.c.status == 1,
        sqlalchemy.or_(acc.c.ward_number_id == ANY_AREA_ID, acc.c.ward_number_id == profile.ward_number_id),
        sqlalchemy.or_(acc.c.booth_number_id == ANY_AREA_ID, acc.c.booth_number_id == profile.booth_number_id),
        acc.c.user_role_id.in_(profile.role_ids),
    )
