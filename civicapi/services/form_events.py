"""Scheduling of forms as dated, access-controlled form events."""
import datetime
import logging
from typing import Any, Dict, List, Optional

import sqlalchemy

from civicapi.database import (
    boothnumber_table,
    database,
    form_table,
    formevent_table,
    formeventaccessibility_table,
    role_table,
    row_to_dict,
    wardnumber_table,
)
from civicapi.errors import ApiError, forbidden, not_found
from civicapi.models.user import User
from civicapi.pagination import (
    calculate_pagination,
    parse_pagination_params,
    parse_sort_direction,
    validate_sort_column,
)
from civicapi.security import is_admin
from civicapi.services import accessibility
from civicapi.services.coercion import (
    assert_no_restricted_fields,
    ensure_date_only,
    ensure_int,
    ensure_non_empty_string,
    ensure_optional_date_only,
)
from civicapi.services.form_schema import fetch_fields, load_form_or_404

logger = logging.getLogger(__name__)

EVENT_SORT_COLUMNS = {
    "startDate": formevent_table.c.start_date,
    "endDate": formevent_table.c.end_date,
    "createdAt": formevent_table.c.created_at,
    "title": formevent_table.c.title,
}


def ensure_valid_date_range(start_date: datetime.date, end_date: Optional[datetime.date]):
    if end_date is not None and end_date < start_date:
        raise ApiError("endDate cannot be earlier than startDate")


async def load_event_or_404(form_event_id: int) -> dict:
    row = await database.fetch_one(formevent_table.select().where(formevent_table.c.id == form_event_id))
    if row is None:
        raise not_found("Form event not found")
    return row_to_dict(row, formevent_table)


async def fetch_accessibility(form_event_ids: List[int]) -> Dict[int, List[dict]]:
    if not form_event_ids:
        return {}
    acc = formeventaccessibility_table
    query = (
        sqlalchemy.select(
            acc,
            wardnumber_table.c.disp_name.label("ward_disp_name"),
            boothnumber_table.c.disp_name.label("booth_disp_name"),
            role_table.c.disp_name.label("role_disp_name"),
        )
        .select_from(
            acc.outerjoin(wardnumber_table, acc.c.ward_number_id == wardnumber_table.c.id)
            .outerjoin(boothnumber_table, acc.c.booth_number_id == boothnumber_table.c.id)
            .outerjoin(role_table, acc.c.user_role_id == role_table.c.id)
        )
        .where(acc.c.form_event_id.in_(form_event_ids) & (acc.c.status == 1))
        .order_by(acc.c.id)
    )

    result: Dict[int, List[dict]] = {event_id: [] for event_id in form_event_ids}
    for row in await database.fetch_all(query):
        entry = row_to_dict(row, acc)
        entry["ward_number"] = (
            {"id": entry["ward_number_id"], "disp_name": row["ward_disp_name"]}
            if row["ward_disp_name"] is not None
            else None
        )
        entry["booth_number"] = (
            {"id": entry["booth_number_id"], "disp_name": row["booth_disp_name"]}
            if row["booth_disp_name"] is not None
            else None
        )
        entry["user_role"] = (
            {"id": entry["user_role_id"], "disp_name": row["role_disp_name"]}
            if row["role_disp_name"] is not None
            else None
        )
        result[entry["form_event_id"]].append(entry)
    return result


async def _expand(events: List[dict]) -> List[dict]:
    """Attach accessibility rows and the form (with its fields) to each event."""
    if not events:
        return events
    rules = await fetch_accessibility([event["id"] for event in events])
    form_ids = sorted({event["form_id"] for event in events})
    rows = await database.fetch_all(form_table.select().where(form_table.c.id.in_(form_ids)))
    forms = {row["id"]: row_to_dict(row, form_table) for row in rows}
    fields = await fetch_fields(form_ids)
    for form_id, form in forms.items():
        form["fields"] = fields[form_id]

    for event in events:
        event["accessibility"] = rules[event["id"]]
        event["form"] = forms.get(event["form_id"])
    return events


async def get_form_event(form_event_id: int, user: User) -> dict:
    event = await load_event_or_404(form_event_id)
    if not is_admin(user) and not await accessibility.can_user_access_form_event(user.id, form_event_id):
        raise forbidden("You do not have access to this form event")
    return (await _expand([event]))[0]


async def list_form_events(
    user: User,
    page=None,
    limit=None,
    sort=None,
    sort_column=None,
    status=None,
    form_id=None,
    search=None,
    start_date_from=None,
    start_date_to=None,
) -> dict:
    page, limit, offset = parse_pagination_params(page, limit, 20, 100)
    direction = parse_sort_direction(sort, "DESC")
    column = EVENT_SORT_COLUMNS[validate_sort_column(sort_column, list(EVENT_SORT_COLUMNS), "startDate")]

    conditions = []
    if status is not None:
        conditions.append(formevent_table.c.status == ensure_int(status, "status"))
    if form_id is not None:
        conditions.append(formevent_table.c.form_id == ensure_int(form_id, "formId"))
    if search and search.strip():
        conditions.append(formevent_table.c.title.like(f"%{search.strip()}%"))
    if start_date_from:
        conditions.append(formevent_table.c.start_date >= ensure_date_only(start_date_from, "startDateFrom"))
    if start_date_to:
        conditions.append(formevent_table.c.start_date <= ensure_date_only(start_date_to, "startDateTo"))

    if not is_admin(user):
        profile = await accessibility.get_user_access_profile(user.id)
        acc = formeventaccessibility_table
        visible = sqlalchemy.select(acc.c.form_event_id).where(accessibility.accessible_event_clause(profile))
        conditions.append(formevent_table.c.id.in_(visible))

    count_query = sqlalchemy.select(sqlalchemy.func.count(formevent_table.c.id)).where(*conditions)
    total = await database.fetch_val(count_query)

    order = column.asc() if direction == "ASC" else column.desc()
    query = (
        formevent_table.select()
        .where(*conditions)
        .order_by(order, formevent_table.c.id.desc())
        .limit(limit)
        .offset(offset)
    )
    events = [row_to_dict(row, formevent_table) for row in await database.fetch_all(query)]
    logger.debug(f"User {user.id} sees {total} form events")
    return {"data": await _expand(events), "pagination": calculate_pagination(total, page, limit)}


async def create_form_event(payload: Dict[str, Any], user: User) -> dict:
    assert_no_restricted_fields(payload)
    form_id = ensure_int(payload.get("formId"), "formId")
    title = ensure_non_empty_string(payload.get("title"), "title")
    description = ensure_non_empty_string(payload.get("description"), "description")
    start_date = ensure_date_only(payload.get("startDate"), "startDate")
    end_date = ensure_optional_date_only(payload.get("endDate"), "endDate")
    ensure_valid_date_range(start_date, end_date)

    await load_form_or_404(form_id, active_only=True)

    rules = accessibility.validate_accessibility_payload(payload.get("accessibility"))
    await accessibility.ensure_accessibility_references_exist(rules)

    transaction = await database.transaction()
    try:
        form_event_id = await database.execute(
            formevent_table.insert().values(
                form_id=form_id,
                title=title,
                description=description,
                start_date=start_date,
                end_date=end_date,
                status=1,
                created_by=user.id,
                updated_by=user.id,
            )
        )
        await accessibility.insert_accessibility(form_event_id, rules, user.id)
    except Exception:
        await transaction.rollback()
        raise
    else:
        await transaction.commit()

    logger.info(f"Created form event {form_event_id} for form {form_id}")
    return (await _expand([await load_event_or_404(form_event_id)]))[0]


async def update_form_event(form_event_id: int, payload: Dict[str, Any], user: User) -> dict:
    assert_no_restricted_fields(payload, allow=["status"])
    event = await load_event_or_404(form_event_id)

    updates: Dict[str, Any] = {}
    if "formId" in payload:
        form_id = ensure_int(payload["formId"], "formId")
        await load_form_or_404(form_id, active_only=True)
        updates["form_id"] = form_id
    if "title" in payload:
        updates["title"] = ensure_non_empty_string(payload["title"], "title")
    if "description" in payload:
        updates["description"] = ensure_non_empty_string(payload["description"], "description")
    if "startDate" in payload:
        updates["start_date"] = ensure_date_only(payload["startDate"], "startDate")
    if "endDate" in payload:
        updates["end_date"] = ensure_optional_date_only(payload["endDate"], "endDate")
    if "status" in payload:
        status = ensure_int(payload["status"], "status")
        if status not in (0, 1):
            raise ApiError("status must be 0 or 1")
        updates["status"] = status

    future_start = updates.get("start_date", event["start_date"])
    future_end = updates["end_date"] if "end_date" in updates else event["end_date"]
    if future_start is not None:
        ensure_valid_date_range(future_start, future_end)

    rules = None
    if "accessibility" in payload:
        rules = accessibility.validate_accessibility_payload(payload["accessibility"])
        await accessibility.ensure_accessibility_references_exist(rules)

    transaction = await database.transaction()
    try:
        if updates:
            await database.execute(
                formevent_table.update()
                .where(formevent_table.c.id == form_event_id)
                .values(updated_by=user.id, **updates)
            )
        if rules is not None:
            await accessibility.replace_accessibility(form_event_id, rules, user.id)
    except Exception:
        await transaction.rollback()
        raise
    else:
        await transaction.commit()

    return (await _expand([await load_event_or_404(form_event_id)]))[0]


async def delete_form_event(form_event_id: int, user: User):
    await load_event_or_404(form_event_id)
    logger.info(f"Closing form event {form_event_id}")
    transaction = await database.transaction()
    try:
        await database.execute(
            formevent_table.update()
            .where(formevent_table.c.id == form_event_id)
            .values(status=0, updated_by=user.id)
        )
        await database.execute(
            formeventaccessibility_table.update()
            .where(formeventaccessibility_table.c.form_event_id == form_event_id)
            .values(status=0, updated_by=user.id)
        )
    except Exception:
        await transaction.rollback()
        raise
    else:
        await transaction.commit()
