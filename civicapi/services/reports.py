"""Tabular report of the submissions of one form event."""
import datetime
import logging
from typing import Any, List, Optional, Set

import sqlalchemy

from civicapi.database import (
    database,
    form_table,
    formfield_table,
    formfieldvalue_table,
    formsubmission_table,
    row_to_dict,
    user_table,
)
from civicapi.errors import ApiError
from civicapi.models.user import User
from civicapi.security import is_admin
from civicapi.services import hierarchy, resolution
from civicapi.services.accessibility import ANY_AREA_ID, AreaFilter, SpecificArea, parse_area
from civicapi.services.coercion import ensure_optional_date_only, is_missing, to_number
from civicapi.services.form_events import load_event_or_404
from civicapi.services.meta_registry import MetaRegistry
from civicapi.services.values import format_submitted_at

logger = logging.getLogger(__name__)

TRAILING_HEADERS = ["Submitted By", "Submitted At", "Submission ID"]


def parse_area_filter(value: Any, name: str) -> Optional[AreaFilter]:
    if is_missing(value):
        return None
    num = to_number(value)
    if num != num or not num.is_integer() or (num != ANY_AREA_ID and num <= 0):
        raise ApiError(f"Invalid {name}")
    return parse_area(int(num))


def parse_positive_id(value: Any, name: str) -> Optional[int]:
    if is_missing(value):
        return None
    num = to_number(value)
    if num != num or not num.is_integer() or num <= 0:
        raise ApiError(f"Invalid {name}")
    return int(num)


async def submissions_with_area(form_event_id: int, field_key: str, area: SpecificArea) -> Set[int]:
    """Submission ids whose reserved ward/booth answer equals ``area``."""
    query = (
        sqlalchemy.select(formfieldvalue_table.c.form_submission_id)
        .select_from(
            formfieldvalue_table.join(
                formsubmission_table,
                formfieldvalue_table.c.form_submission_id == formsubmission_table.c.id,
            )
        )
        .where(
            (formsubmission_table.c.form_event_id == form_event_id)
            & (formfieldvalue_table.c.field_key == field_key)
            & (formfieldvalue_table.c.value == str(area.id))
        )
        .distinct()
    )
    return {row["form_submission_id"] for row in await database.fetch_all(query)}


async def allowed_submitters(user: User, submitted_by: Optional[int]) -> Optional[Set[int]]:
    """Submitter ids visible to ``user``; None means unrestricted."""
    allowed: Optional[Set[int]] = None
    if not is_admin(user):
        allowed = await hierarchy.get_hierarchy_user_ids(user.role_ids) if user.role_ids else set()
    if submitted_by is not None:
        allowed = {submitted_by} if allowed is None else allowed & {submitted_by}
    return allowed


def column_total(cells: List[Any]):
    # text cells in a numeric column (labels, raw ids) are skipped
    return sum(cell for cell in cells if isinstance(cell, (int, float)))


async def generate_form_event_report(
    form_event_id: int,
    user: User,
    registry: MetaRegistry,
    ward_number_id=None,
    booth_number_id=None,
    submitted_by=None,
    submitted_from=None,
    submitted_to=None,
) -> dict:
    ward = parse_area_filter(ward_number_id, "wardNumberId")
    booth = parse_area_filter(booth_number_id, "boothNumberId")
    submitter = parse_positive_id(submitted_by, "submittedBy")
    date_from = ensure_optional_date_only(submitted_from, "submittedFrom")
    date_to = ensure_optional_date_only(submitted_to, "submittedTo")
    if date_from and date_to and date_to < date_from:
        raise ApiError("submittedTo cannot be earlier than submittedFrom")

    event = await load_event_or_404(form_event_id)
    form = await database.fetch_one(form_table.select().where(form_table.c.id == event["form_id"]))
    fields = [
        row_to_dict(row, formfield_table)
        for row in await database.fetch_all(
            formfield_table.select()
            .where(formfield_table.c.form_id == event["form_id"])
            .order_by(formfield_table.c.sort_order, formfield_table.c.id)
        )
    ]

    conditions = [
        formsubmission_table.c.form_event_id == form_event_id,
        formsubmission_table.c.status == 1,
    ]

    submission_ids: Optional[Set[int]] = None
    for area, field_key in ((ward, "__ward_number_id"), (booth, "__booth_number_id")):
        if isinstance(area, SpecificArea):
            matched = await submissions_with_area(form_event_id, field_key, area)
            submission_ids = matched if submission_ids is None else submission_ids & matched
    if submission_ids is not None:
        conditions.append(formsubmission_table.c.id.in_(sorted(submission_ids)))

    submitters = await allowed_submitters(user, submitter)
    if submitters is not None:
        conditions.append(formsubmission_table.c.submitted_by.in_(sorted(submitters)))

    if date_from:
        conditions.append(formsubmission_table.c.submitted_at >= datetime.datetime.combine(date_from, datetime.time()))
    if date_to:
        next_day = datetime.datetime.combine(date_to + datetime.timedelta(days=1), datetime.time())
        conditions.append(formsubmission_table.c.submitted_at < next_day)

    total = await database.fetch_val(
        sqlalchemy.select(sqlalchemy.func.count(formsubmission_table.c.id)).where(*conditions)
    )
    submissions = await database.fetch_all(
        sqlalchemy.select(
            formsubmission_table.c.id,
            formsubmission_table.c.submitted_by,
            formsubmission_table.c.submitted_at,
            user_table.c.username,
            user_table.c.email,
        )
        .select_from(
            formsubmission_table.outerjoin(user_table, formsubmission_table.c.submitted_by == user_table.c.id)
        )
        .where(*conditions)
        .order_by(formsubmission_table.c.submitted_at.desc(), formsubmission_table.c.id.desc())
    )
    logger.debug(f"Report for form event {form_event_id}: {total} submissions")

    ids = [row["id"] for row in submissions]
    value_rows = (
        await database.fetch_all(
            formfieldvalue_table.select().where(formfieldvalue_table.c.form_submission_id.in_(ids))
        )
        if ids
        else []
    )
    answers = {(row["form_submission_id"], row["form_field_id"]): row["value"] for row in value_rows}

    contexts = await resolution.load_field_contexts(f["id"] for f in fields)
    lookup = await resolution.build_meta_lookup(
        registry, contexts, ((row["form_field_id"], row["value"]) for row in value_rows)
    )

    numeric_columns = [False] * (len(fields) + len(TRAILING_HEADERS))
    data = []
    for submission in submissions:
        row = []
        for index, form_field in enumerate(fields):
            cell, numeric = resolution.report_cell(
                contexts[form_field["id"]], answers.get((submission["id"], form_field["id"])), lookup
            )
            numeric_columns[index] = numeric_columns[index] or numeric
            row.append(cell)
        row.append(submission["username"] or submission["email"] or str(submission["submitted_by"]))
        row.append(format_submitted_at(submission["submitted_at"]))
        row.append(submission["id"])
        data.append(row)

    footer = [
        column_total([row[index] for row in data]) if numeric_columns[index] else ""
        for index in range(len(numeric_columns))
    ]

    return {
        "form_event": {
            "id": event["id"],
            "title": event["title"],
            "description": event["description"],
            "start_date": event["start_date"],
            "end_date": event["end_date"],
            "status": event["status"],
            "form": {"id": form["id"], "title": form["title"], "description": form["description"]}
            if form
            else None,
        },
        "metrics": {"total_submissions": total},
        "tabular_data": {
            "headers": [f["label"] for f in fields] + TRAILING_HEADERS,
            "data": data,
            "numeric_columns": numeric_columns,
            "footer": footer,
        },
    }
