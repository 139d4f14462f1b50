"""Validation and storage of form event submissions.

Answers are checked against the field definitions loaded for the event's
form at request time. A submission and all of its field values are written
in one transaction; a failing field leaves nothing behind.
"""
import datetime
import json
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import sqlalchemy

from civicapi import storage
from civicapi.config import config
from civicapi.database import (
    database,
    formevent_table,
    formfield_table,
    formfieldvalue_table,
    formsubmission_table,
    row_to_dict,
    user_table,
    userprofile_table,
)
from civicapi.errors import ApiError, forbidden, not_found
from civicapi.models.user import User
from civicapi.pagination import (
    calculate_pagination,
    parse_pagination_params,
    parse_sort_direction,
    parse_status_filter,
    validate_sort_column,
)
from civicapi.security import is_admin
from civicapi.services import accessibility, resolution
from civicapi.services.coercion import decimal_string, to_number
from civicapi.services.form_events import load_event_or_404
from civicapi.services.meta_registry import MetaRegistry
from civicapi.services.values import encode_file_refs

logger = logging.getLogger(__name__)

SUBMISSION_SORT_COLUMNS = {
    "submittedAt": formsubmission_table.c.submitted_at,
    "createdAt": formsubmission_table.c.created_at,
    "id": formsubmission_table.c.id,
}
STATUS_NAMES = {1: "submitted", 2: "reviewed", 3: "rejected"}


@dataclass
class UploadedFile:
    filename: str
    content: bytes
    content_type: Optional[str] = None


@dataclass
class SubmissionInput:
    field_values: Any = None
    files: Dict[int, List[UploadedFile]] = field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class PreparedValue:
    field: dict
    value: Optional[str]


def field_id_from_key(key: Any) -> Optional[int]:
    num = to_number(key)
    if not math.isfinite(num) or not num.is_integer() or num <= 0:
        return None
    return int(num)


def entries_from_mapping(items) -> List[dict]:
    """Build ``[{formFieldId, value}]`` from (field id, value) pairs; other keys are ignored."""
    grouped: Dict[int, List[Any]] = {}
    for key, value in items:
        field_id = field_id_from_key(key)
        if field_id is None:
            continue
        if isinstance(value, list):
            grouped.setdefault(field_id, []).extend(value)
        else:
            grouped.setdefault(field_id, []).append(value)

    entries = []
    for field_id, collected in grouped.items():
        if len(collected) == 1:
            entries.append({"formFieldId": field_id, "value": collected[0]})
        elif collected:
            entries.append({"formFieldId": field_id, "value": ",".join(stringify(v) or "" for v in collected)})
    return entries


def entries_from_json(body: Any) -> Any:
    if isinstance(body, dict):
        if "fieldValues" in body:
            return body["fieldValues"]
        return entries_from_mapping(body.items())
    return body


def stringify(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    if isinstance(raw, str):
        return raw.strip()
    if isinstance(raw, bool):
        return "true" if raw else "false"
    if isinstance(raw, int):
        return str(raw)
    if isinstance(raw, float):
        return decimal_string(raw) if math.isfinite(raw) else str(raw)
    if isinstance(raw, list):
        return ",".join(stringify(item) or "" for item in raw)
    return json.dumps(raw)


def normalize_ward_booth_value(value: Optional[str]) -> Optional[str]:
    ids = resolution.parse_value_ids(value)
    if not ids:
        return None
    if len(ids) > 1:
        raise ApiError("Ward/Booth field must be a single value")
    num = to_number(ids[0])
    if not math.isfinite(num):
        raise ApiError("Ward/Booth field must be a number")
    return decimal_string(num)


def normalize_entries(raw_entries: Any, files: Dict[int, List[UploadedFile]]) -> List[dict]:
    if raw_entries is None:
        raw_entries = []
    if not isinstance(raw_entries, list):
        raise ApiError("fieldValues must be an array")
    if not raw_entries and not files:
        raise ApiError("Form data must include at least one field value")

    entries = []
    seen = set()
    for index, entry in enumerate(raw_entries):
        if not isinstance(entry, dict) or entry.get("formFieldId") in (None, ""):
            raise ApiError(f"fieldValues[{index}] must include formFieldId")
        field_id = field_id_from_key(entry["formFieldId"])
        if field_id is None:
            raise ApiError(f"fieldValues[{index}].formFieldId is invalid")
        if field_id in seen:
            raise ApiError(f"Field ID {field_id} is submitted more than once")
        seen.add(field_id)
        entries.append({"formFieldId": field_id, "value": stringify(entry.get("value"))})

    for field_id in files:
        if field_id not in seen:
            entries.append({"formFieldId": field_id, "value": ""})
    return entries


async def load_form_fields(form_id: int) -> Dict[int, dict]:
    rows = await database.fetch_all(
        formfield_table.select().where(formfield_table.c.form_id == form_id).order_by(formfield_table.c.sort_order)
    )
    return {row["id"]: row_to_dict(row, formfield_table) for row in rows}


async def validate_field_values(
    entries: List[dict],
    fields: Dict[int, dict],
    files: Dict[int, List[UploadedFile]],
    registry: MetaRegistry,
    check_required: bool = True,
) -> List[PreparedValue]:
    prepared = []
    for entry in entries:
        field_id = entry["formFieldId"]
        form_field = fields.get(field_id)
        if form_field is None:
            raise ApiError(f"Field ID {field_id} does not belong to this form")

        label = form_field["label"]
        value = entry["value"] or ""
        has_files = field_id in files

        if check_required and form_field["is_required"] and not value and not has_files:
            raise ApiError(f'Field "{label}" is required')

        if not value and not has_files:
            prepared.append(PreparedValue(field=form_field, value=entry["value"]))
            continue

        if has_files:
            if len(files[field_id]) > config.MAX_FILES_PER_FIELD:
                raise ApiError(f'Field "{label}" can have at most {config.MAX_FILES_PER_FIELD} files')
            for upload in files[field_id]:
                storage.check_allowed(upload.filename)

        if value and form_field["min_length"] and len(value) < form_field["min_length"]:
            raise ApiError(f'Field "{label}" must be at least {form_field["min_length"]} characters')

        if value and form_field["max_length"] and len(value) > form_field["max_length"]:
            raise ApiError(f'Field "{label}" must not exceed {form_field["max_length"]} characters')

        if form_field["validation_regex"] and value:
            try:
                pattern = re.compile(form_field["validation_regex"])
            except re.error as e:
                raise ApiError(f'Field "{label}" has an invalid validation pattern') from e
            if not pattern.search(value):
                raise ApiError(f'Field "{label}" format is invalid')

        if value:
            num = to_number(value)
            if not math.isnan(num):
                if form_field["min_value"] and num < float(form_field["min_value"]):
                    raise ApiError(f'Field "{label}" must be at least {form_field["min_value"]}')
                if form_field["max_value"] and num > float(form_field["max_value"]):
                    raise ApiError(f'Field "{label}" must not exceed {form_field["max_value"]}')

        if form_field["meta_table"] and value:
            await registry.ensure_values_exist(
                form_field["meta_table"], resolution.parse_value_ids(value), label
            )

        reserved_table = resolution.WARD_BOOTH_META_TABLES.get(form_field["field_key"])
        stored = entry["value"]
        if reserved_table:
            stored = normalize_ward_booth_value(value)
            if stored is not None:
                await registry.ensure_values_exist(reserved_table, [stored], label)

        prepared.append(PreparedValue(field=form_field, value=stored))

    if check_required:
        submitted = {entry["formFieldId"] for entry in entries}
        for form_field in fields.values():
            if form_field["is_required"] and form_field["id"] not in submitted and form_field["id"] not in files:
                raise ApiError(f'Field "{form_field["label"]}" is required')

    return prepared


def _store_files(
    form_event_id: int, submission_id: int, files: Dict[int, List[UploadedFile]], uploaded: List[str]
) -> Dict[int, str]:
    """Upload every file; each URL is appended to ``uploaded`` as soon as it exists."""
    stored = {}
    for field_id, uploads in files.items():
        urls = []
        for upload in uploads:
            url = storage.store_submission_file(
                form_event_id, submission_id, field_id, upload.filename, upload.content, upload.content_type
            )
            uploaded.append(url)
            urls.append(url)
        if urls:
            stored[field_id] = encode_file_refs(urls)
    return stored


async def submit_form(
    form_event_id: int, submission: SubmissionInput, user: User, registry: MetaRegistry
) -> dict:
    event = await load_event_or_404(form_event_id)
    if event["status"] != 1:
        raise ApiError("Form event is not active")

    today = datetime.date.today()
    if today < event["start_date"]:
        raise ApiError("Form submission has not started yet")
    if event["end_date"] is not None and today > event["end_date"]:
        raise ApiError("Form submission has ended")

    entries = normalize_entries(submission.field_values, submission.files)

    if not is_admin(user) and not await accessibility.can_user_access_form_event(user.id, form_event_id):
        raise forbidden("You do not have access to this form event")

    fields = await load_form_fields(event["form_id"])
    logger.debug(f"User {user.id} submitting {len(entries)} values to form event {form_event_id}")

    uploaded: List[str] = []
    transaction = await database.transaction()
    try:
        prepared = await validate_field_values(entries, fields, submission.files, registry)

        submission_id = await database.execute(
            formsubmission_table.insert().values(
                form_event_id=form_event_id,
                submitted_by=user.id,
                submitted_at=datetime.datetime.now(),
                ip_address=submission.ip_address,
                user_agent=submission.user_agent,
                status=1,
                created_by=user.id,
                updated_by=user.id,
            )
        )

        file_values = _store_files(form_event_id, submission_id, submission.files, uploaded)
        await database.execute_many(
            formfieldvalue_table.insert(),
            [
                {
                    "form_submission_id": submission_id,
                    "form_field_id": item.field["id"],
                    "field_key": item.field["field_key"],
                    "value": file_values.get(item.field["id"], item.value),
                }
                for item in prepared
            ],
        )
    except Exception:
        await transaction.rollback()
        storage.remove_submission_files(uploaded)
        raise
    else:
        await transaction.commit()

    logger.info(f"Stored submission {submission_id} for form event {form_event_id}")
    return (await serialize_submissions([await _load_submission_row(submission_id)], registry))[0]


async def update_submission(
    submission_id: int, submission: SubmissionInput, user: User, registry: MetaRegistry
) -> dict:
    """Replace the answers of the given fields on an existing submission."""
    row = await _load_submission_row(submission_id)
    if row["submitted_by"] != user.id and not is_admin(user):
        raise forbidden("You don't have permission to update this submission")

    entries = normalize_entries(submission.field_values, submission.files)
    event = await load_event_or_404(row["form_event_id"])
    fields = await load_form_fields(event["form_id"])

    uploaded: List[str] = []
    transaction = await database.transaction()
    try:
        prepared = await validate_field_values(
            entries, fields, submission.files, registry, check_required=False
        )
        file_values = _store_files(event["id"], submission_id, submission.files, uploaded)

        existing = {
            value_row["form_field_id"]: value_row["id"]
            for value_row in await database.fetch_all(
                formfieldvalue_table.select().where(formfieldvalue_table.c.form_submission_id == submission_id)
            )
        }
        for item in prepared:
            value = file_values.get(item.field["id"], item.value)
            if item.field["id"] in existing:
                await database.execute(
                    formfieldvalue_table.update()
                    .where(formfieldvalue_table.c.id == existing[item.field["id"]])
                    .values(field_key=item.field["field_key"], value=value)
                )
            else:
                await database.execute(
                    formfieldvalue_table.insert().values(
                        form_submission_id=submission_id,
                        form_field_id=item.field["id"],
                        field_key=item.field["field_key"],
                        value=value,
                    )
                )
        await database.execute(
            formsubmission_table.update()
            .where(formsubmission_table.c.id == submission_id)
            .values(updated_by=user.id)
        )
    except Exception:
        await transaction.rollback()
        storage.remove_submission_files(uploaded)
        raise
    else:
        await transaction.commit()

    return (await serialize_submissions([await _load_submission_row(submission_id)], registry))[0]


# Reading


async def _load_submission_row(submission_id: int) -> dict:
    row = await database.fetch_one(
        formsubmission_table.select().where(
            (formsubmission_table.c.id == submission_id) & (formsubmission_table.c.status != 0)
        )
    )
    if row is None:
        raise not_found("Form submission not found")
    return row_to_dict(row, formsubmission_table)


async def serialize_submissions(submissions: List[dict], registry: MetaRegistry) -> List[dict]:
    """Attach field values (with resolved labels), the event and the submitter."""
    if not submissions:
        return submissions
    ids = [s["id"] for s in submissions]

    value_rows = await database.fetch_all(
        formfieldvalue_table.select()
        .where(formfieldvalue_table.c.form_submission_id.in_(ids))
        .order_by(formfieldvalue_table.c.id)
    )
    contexts = await resolution.load_field_contexts(row["form_field_id"] for row in value_rows)
    lookup = await resolution.build_meta_lookup(
        registry, contexts, ((row["form_field_id"], row["value"]) for row in value_rows)
    )

    values_by_submission: Dict[int, List[dict]] = {submission_id: [] for submission_id in ids}
    for row in value_rows:
        ctx = contexts.get(row["form_field_id"])
        values_by_submission[row["form_submission_id"]].append(
            {
                "id": row["id"],
                "form_field_id": row["form_field_id"],
                "field_key": row["field_key"],
                "value": resolution.display_value(ctx, row["value"]) if ctx else row["value"],
                "resolved": resolution.resolve_options(ctx, row["value"], lookup) if ctx else None,
            }
        )

    event_rows = await database.fetch_all(
        sqlalchemy.select(formevent_table.c.id, formevent_table.c.title, formevent_table.c.form_id).where(
            formevent_table.c.id.in_(sorted({s["form_event_id"] for s in submissions}))
        )
    )
    events = {row["id"]: {"id": row["id"], "title": row["title"], "form_id": row["form_id"]} for row in event_rows}

    user_rows = await database.fetch_all(
        sqlalchemy.select(
            user_table.c.id, user_table.c.email, user_table.c.username, userprofile_table.c.full_name
        )
        .select_from(user_table.outerjoin(userprofile_table, userprofile_table.c.user_id == user_table.c.id))
        .where(user_table.c.id.in_(sorted({s["submitted_by"] for s in submissions})))
    )
    users = {
        row["id"]: {
            "id": row["id"],
            "email": row["email"],
            "username": row["username"],
            "full_name": row["full_name"],
        }
        for row in user_rows
    }

    for submission in submissions:
        submission["field_values"] = values_by_submission[submission["id"]]
        submission["form_event"] = events.get(submission["form_event_id"])
        submission["user"] = users.get(submission["submitted_by"])
    return submissions


async def get_submission(submission_id: int, user: User, registry: MetaRegistry) -> dict:
    row = await _load_submission_row(submission_id)
    if row["submitted_by"] != user.id and not is_admin(user):
        raise forbidden("You don't have permission to view this submission")
    return (await serialize_submissions([row], registry))[0]


async def _list(conditions, registry, page, limit, status, sort_by, sort_order) -> dict:
    page, limit, offset = parse_pagination_params(page, limit, 25, 100)
    column = SUBMISSION_SORT_COLUMNS[
        validate_sort_column(sort_by, list(SUBMISSION_SORT_COLUMNS), "submittedAt")
    ]
    direction = parse_sort_direction(sort_order, "DESC")

    status_value = parse_status_filter(status)
    if status_value is not None:
        conditions.append(formsubmission_table.c.status == status_value)
    else:
        conditions.append(formsubmission_table.c.status != 0)

    total = await database.fetch_val(
        sqlalchemy.select(sqlalchemy.func.count(formsubmission_table.c.id)).where(*conditions)
    )
    order = column.asc() if direction == "ASC" else column.desc()
    rows = await database.fetch_all(
        formsubmission_table.select()
        .where(*conditions)
        .order_by(order, formsubmission_table.c.id.desc())
        .limit(limit)
        .offset(offset)
    )
    submissions = [row_to_dict(row, formsubmission_table) for row in rows]
    return {
        "data": await serialize_submissions(submissions, registry),
        "pagination": calculate_pagination(total, page, limit),
    }


async def list_event_submissions(
    form_event_id: int, registry: MetaRegistry, page=None, limit=None, status=None, sort_by=None, sort_order=None
) -> dict:
    await load_event_or_404(form_event_id)
    conditions = [formsubmission_table.c.form_event_id == form_event_id]
    return await _list(conditions, registry, page, limit, status, sort_by, sort_order)


async def list_my_submissions(
    user: User, registry: MetaRegistry, page=None, limit=None, status=None, sort_by=None, sort_order=None
) -> dict:
    conditions = [formsubmission_table.c.submitted_by == user.id]
    return await _list(conditions, registry, page, limit, status, sort_by, sort_order)


async def update_submission_status(submission_id: int, status: Any, user: User) -> dict:
    if status is None:
        raise ApiError("status is required")
    num = to_number(status)
    if not math.isfinite(num) or num not in (1, 2, 3):
        raise ApiError("status must be 1 (submitted), 2 (reviewed), or 3 (rejected)")

    await _load_submission_row(submission_id)
    await database.execute(
        formsubmission_table.update()
        .where(formsubmission_table.c.id == submission_id)
        .values(status=int(num), updated_by=user.id)
    )
    logger.info(f"Submission {submission_id} marked {STATUS_NAMES[int(num)]}")
    return await _load_submission_row(submission_id)


async def delete_submission(submission_id: int, user: User):
    await _load_submission_row(submission_id)
    await database.execute(
        formsubmission_table.update()
        .where(formsubmission_table.c.id == submission_id)
        .values(status=0, updated_by=user.id)
    )


async def get_form_event_stats(form_event_id: int) -> dict:
    await load_event_or_404(form_event_id)
    rows = await database.fetch_all(
        sqlalchemy.select(
            formsubmission_table.c.status,
            sqlalchemy.func.count(formsubmission_table.c.id).label("total"),
        )
        .where((formsubmission_table.c.form_event_id == form_event_id) & (formsubmission_table.c.status != 0))
        .group_by(formsubmission_table.c.status)
    )

    result = {
        "form_event_id": form_event_id,
        "total_submissions": 0,
        "by_status": {name: 0 for name in STATUS_NAMES.values()},
    }
    for row in rows:
        result["total_submissions"] += row["total"]
        name = STATUS_NAMES.get(row["status"])
        if name:
            result["by_status"][name] = row["total"]
    return result
