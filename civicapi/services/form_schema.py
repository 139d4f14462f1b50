"""Forms, their typed fields and the options of each field."""
import logging
import re
from typing import Any, Dict, List, Optional

import sqlalchemy

from civicapi.database import (
    database,
    fieldtype_table,
    form_table,
    formfield_table,
    formfieldoption_table,
    formfieldvalue_table,
    inputformat_table,
    row_to_dict,
)
from civicapi.errors import ApiError, conflict, not_found
from civicapi.models.user import User
from civicapi.pagination import (
    calculate_pagination,
    parse_pagination_params,
    parse_sort_direction,
    parse_status_filter,
    validate_sort_column,
)
from civicapi.services.coercion import (
    assert_no_restricted_fields,
    decimal_string,
    ensure_boolean_like,
    ensure_datetime_or_none,
    is_missing,
    normalize_json_object,
    normalize_optional_string,
    to_number,
)
from civicapi.services.meta_registry import MetaRegistry

logger = logging.getLogger(__name__)

FORM_SORT_COLUMNS = {
    "id": form_table.c.id,
    "title": form_table.c.title,
    "slug": form_table.c.slug,
    "createdAt": form_table.c.created_at,
}


def _builder_number(value: Any, name: str) -> float:
    num = to_number(value)
    if num != num or num in (float("inf"), float("-inf")):
        raise ApiError(f"Invalid {name} value")
    return num


def _builder_int(value: Any, name: str, minimum: Optional[int] = None) -> int:
    num = _builder_number(value, name)
    if not num.is_integer() or (minimum is not None and num < minimum):
        raise ApiError(f"Invalid {name} value")
    return int(num)


def _required_text(value: Any, message: str) -> str:
    if not isinstance(value, str) or value.strip() == "":
        raise ApiError(message)
    return value.strip()


# Lookups


async def list_field_types() -> List[dict]:
    query = fieldtype_table.select().where(fieldtype_table.c.status == 1).order_by(fieldtype_table.c.id)
    return [row_to_dict(row, fieldtype_table) for row in await database.fetch_all(query)]


async def list_input_formats(field_type: Optional[str] = None) -> List[dict]:
    query = inputformat_table.select().where(inputformat_table.c.status == 1)
    if field_type:
        query = query.where(inputformat_table.c.field_type == field_type)
    rows = await database.fetch_all(query.order_by(inputformat_table.c.id))
    return [row_to_dict(row, inputformat_table) for row in rows]


async def ensure_field_type_exists(field_type_id: int):
    query = fieldtype_table.select().where(
        (fieldtype_table.c.id == field_type_id) & (fieldtype_table.c.status == 1)
    )
    if await database.fetch_one(query) is None:
        raise ApiError("Invalid fieldTypeId")


async def ensure_input_format_exists(input_format_id: int):
    query = inputformat_table.select().where(inputformat_table.c.id == input_format_id)
    if await database.fetch_one(query) is None:
        raise ApiError("Invalid inputFormatId")


# Loading


async def load_form_or_404(form_id: int, active_only: bool = False) -> dict:
    query = form_table.select().where(form_table.c.id == form_id)
    if active_only:
        query = query.where(form_table.c.status == 1)
    row = await database.fetch_one(query)
    if row is None:
        raise not_found("Form not found")
    return row_to_dict(row, form_table)


async def load_field_or_404(form_id: int, field_id: int) -> dict:
    await load_form_or_404(form_id)
    row = await database.fetch_one(
        formfield_table.select().where(
            (formfield_table.c.id == field_id) & (formfield_table.c.form_id == form_id)
        )
    )
    if row is None:
        raise not_found("Form field not found")
    return row_to_dict(row, formfield_table)


async def load_option_or_404(form_id: int, field_id: int, option_id: int) -> dict:
    await load_field_or_404(form_id, field_id)
    row = await database.fetch_one(
        formfieldoption_table.select().where(
            (formfieldoption_table.c.id == option_id)
            & (formfieldoption_table.c.field_id == field_id)
            & (formfieldoption_table.c.status == 1)
        )
    )
    if row is None:
        raise not_found("Field option not found")
    return row_to_dict(row, formfieldoption_table)


async def fetch_fields(form_ids: List[int], active_options_only: bool = True) -> Dict[int, List[dict]]:
    """Fields of each form, ordered by sortOrder, with type, input format and options."""
    if not form_ids:
        return {}
    query = (
        sqlalchemy.select(
            formfield_table,
            fieldtype_table.c.field_type.label("ft_field_type"),
            fieldtype_table.c.disp_name.label("ft_disp_name"),
            inputformat_table.c.field_type.label("if_field_type"),
            inputformat_table.c.disp_name.label("if_disp_name"),
            inputformat_table.c.target_value.label("if_target_value"),
        )
        .select_from(
            formfield_table.outerjoin(
                fieldtype_table, formfield_table.c.field_type_id == fieldtype_table.c.id
            ).outerjoin(
                inputformat_table, formfield_table.c.input_format_id == inputformat_table.c.id
            )
        )
        .where(formfield_table.c.form_id.in_(form_ids))
        .order_by(formfield_table.c.sort_order, formfield_table.c.id)
    )
    rows = await database.fetch_all(query)

    fields: Dict[int, List[dict]] = {form_id: [] for form_id in form_ids}
    by_id: Dict[int, dict] = {}
    for row in rows:
        field = row_to_dict(row, formfield_table)
        field["field_type"] = (
            {"id": field["field_type_id"], "field_type": row["ft_field_type"], "disp_name": row["ft_disp_name"]}
            if row["ft_field_type"] is not None
            else None
        )
        field["input_format"] = (
            {
                "id": field["input_format_id"],
                "field_type": row["if_field_type"],
                "disp_name": row["if_disp_name"],
                "target_value": row["if_target_value"],
            }
            if row["if_field_type"] is not None
            else None
        )
        field["options"] = []
        fields[field["form_id"]].append(field)
        by_id[field["id"]] = field

    for option in await fetch_options(list(by_id), active_only=active_options_only):
        by_id[option["field_id"]]["options"].append(option)
    return fields


async def fetch_options(field_ids: List[int], active_only: bool = True) -> List[dict]:
    if not field_ids:
        return []
    query = formfieldoption_table.select().where(formfieldoption_table.c.field_id.in_(field_ids))
    if active_only:
        query = query.where(formfieldoption_table.c.status == 1)
    query = query.order_by(formfieldoption_table.c.sort_order, formfieldoption_table.c.id)
    return [row_to_dict(row, formfieldoption_table) for row in await database.fetch_all(query)]


async def get_form(form_id: int) -> dict:
    form = await load_form_or_404(form_id)
    form["fields"] = (await fetch_fields([form_id]))[form_id]
    return form


async def list_forms(
    page=None, limit=None, sort=None, sort_column=None, search=None, status=None
) -> dict:
    page, limit, offset = parse_pagination_params(page, limit, 25, 100)
    direction = parse_sort_direction(sort, "DESC")
    column = FORM_SORT_COLUMNS[validate_sort_column(sort_column, list(FORM_SORT_COLUMNS), "createdAt")]
    status_value = parse_status_filter(status)

    conditions = []
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        conditions.append(sqlalchemy.or_(form_table.c.title.like(pattern), form_table.c.slug.like(pattern)))
    if status_value is not None:
        conditions.append(form_table.c.status == status_value)

    count_query = sqlalchemy.select(sqlalchemy.func.count()).select_from(form_table)
    query = form_table.select()
    if conditions:
        count_query = count_query.where(*conditions)
        query = query.where(*conditions)

    total = await database.fetch_val(count_query)
    order = column.asc() if direction == "ASC" else column.desc()
    rows = await database.fetch_all(query.order_by(order, form_table.c.id.desc()).limit(limit).offset(offset))

    forms = [row_to_dict(row, form_table) for row in rows]
    fields = await fetch_fields([form["id"] for form in forms])
    for form in forms:
        form["fields"] = fields[form["id"]]
    return {"data": forms, "pagination": calculate_pagination(total, page, limit)}


# Field normalization


async def normalize_field_input(
    payload: Dict[str, Any],
    registry: MetaRegistry,
    existing: Optional[dict] = None,
) -> dict:
    """Validate a field payload and return column values.

    With ``existing`` the payload is a partial update: only keys present are
    validated and returned, while the length and value bounds are checked
    against the merged result.
    """
    if not isinstance(payload, dict):
        raise ApiError("Each field entry must be an object")
    assert_no_restricted_fields(payload)
    creating = existing is None
    values: Dict[str, Any] = {}

    if creating or "fieldKey" in payload:
        values["field_key"] = _required_text(payload.get("fieldKey"), "fieldKey is required for each field")
    if creating or "label" in payload:
        values["label"] = _required_text(payload.get("label"), "label is required for each field")

    if creating or "fieldTypeId" in payload:
        if is_missing(payload.get("fieldTypeId")):
            raise ApiError("fieldTypeId is required for each field")
        field_type_id = _builder_int(payload["fieldTypeId"], "fieldTypeId")
        await ensure_field_type_exists(field_type_id)
        values["field_type_id"] = field_type_id

    if "inputFormatId" in payload:
        if is_missing(payload["inputFormatId"]):
            values["input_format_id"] = None
        else:
            input_format_id = _builder_int(payload["inputFormatId"], "inputFormatId")
            await ensure_input_format_exists(input_format_id)
            values["input_format_id"] = input_format_id
    elif creating:
        values["input_format_id"] = None

    if "isRequired" in payload:
        values["is_required"] = ensure_boolean_like(payload["isRequired"], "isRequired")
    elif creating:
        values["is_required"] = False

    if "sortOrder" in payload:
        values["sort_order"] = _builder_int(payload["sortOrder"], "sortOrder")
    elif creating:
        values["sort_order"] = 0

    for key, column in (
        ("helpText", "help_text"),
        ("placeholder", "placeholder"),
        ("defaultValue", "default_value"),
        ("validationRegex", "validation_regex"),
    ):
        if key in payload:
            values[column] = normalize_optional_string(payload[key], key)
        elif creating:
            values[column] = None

    if values.get("validation_regex"):
        try:
            re.compile(values["validation_regex"])
        except re.error as e:
            raise ApiError("validationRegex is not a valid pattern") from e

    for key, column in (("minLength", "min_length"), ("maxLength", "max_length")):
        if key in payload:
            values[column] = None if is_missing(payload[key]) else _builder_int(payload[key], key, minimum=0)
        elif creating:
            values[column] = None

    for key, column in (("minValue", "min_value"), ("maxValue", "max_value")):
        if key in payload:
            values[column] = None if is_missing(payload[key]) else decimal_string(_builder_number(payload[key], key))
        elif creating:
            values[column] = None

    if "attrsJson" in payload:
        values["attrs_json"] = normalize_json_object(payload["attrsJson"], "attrsJson")
    elif creating:
        values["attrs_json"] = None

    if "metaTable" in payload:
        meta_table = payload["metaTable"]
        if is_missing(meta_table):
            values["meta_table"] = None
        else:
            if not isinstance(meta_table, str) or await registry.get_meta_table_by_table_name(meta_table) is None:
                raise ApiError("Invalid metaTable")
            values["meta_table"] = meta_table
    elif creating:
        values["meta_table"] = None

    merged = {**(existing or {}), **values}
    if merged.get("min_length") is not None and merged.get("max_length") is not None:
        if merged["min_length"] > merged["max_length"]:
            raise ApiError("minLength cannot be greater than maxLength")
    if merged.get("min_value") is not None and merged.get("max_value") is not None:
        if float(merged["min_value"]) > float(merged["max_value"]):
            raise ApiError("minValue cannot be greater than maxValue")

    return values


def normalize_option_input(payload: Dict[str, Any], creating: bool = True) -> dict:
    if not isinstance(payload, dict):
        raise ApiError("Each field option must be an object")
    assert_no_restricted_fields(payload)
    values: Dict[str, Any] = {}

    for key, column in (("optionLabel", "option_label"), ("optionValue", "option_value")):
        if creating or key in payload:
            values[column] = _required_text(payload.get(key), f"{key} is required for each field option")

    if "sortOrder" in payload:
        values["sort_order"] = _builder_int(payload["sortOrder"], "sortOrder")
    elif creating:
        values["sort_order"] = 0

    if "isDefault" in payload:
        values["is_default"] = ensure_boolean_like(payload["isDefault"], "isDefault")
    elif creating:
        values["is_default"] = False

    return values


async def _ensure_field_key_free(form_id: int, field_key: str, exclude_field_id: Optional[int] = None):
    query = formfield_table.select().where(
        (formfield_table.c.form_id == form_id) & (formfield_table.c.field_key == field_key)
    )
    if exclude_field_id is not None:
        query = query.where(formfield_table.c.id != exclude_field_id)
    if await database.fetch_one(query) is not None:
        raise conflict(f'fieldKey "{field_key}" already exists in this form')


async def _insert_field_with_options(form_id: int, payload: dict, registry: MetaRegistry, user_id: int) -> int:
    options = payload.get("options")
    if options is not None and not isinstance(options, list):
        raise ApiError("options must be an array when provided")

    values = await normalize_field_input(payload, registry)
    await _ensure_field_key_free(form_id, values["field_key"])
    field_id = await database.execute(
        formfield_table.insert().values(form_id=form_id, created_by=user_id, updated_by=user_id, **values)
    )

    for raw_option in options or []:
        option_values = normalize_option_input(raw_option)
        await database.execute(
            formfieldoption_table.insert().values(
                field_id=field_id, status=1, created_by=user_id, updated_by=user_id, **option_values
            )
        )
    return field_id


# Forms


async def create_form(payload: Dict[str, Any], registry: MetaRegistry, user: User) -> dict:
    assert_no_restricted_fields(payload)
    title = payload.get("title")
    if not isinstance(title, str) or not title.strip():
        raise ApiError("title is required")

    is_public = ensure_boolean_like(payload["isPublic"], "isPublic") if "isPublic" in payload else True
    start_at = ensure_datetime_or_none(payload.get("startAt"), "startAt")
    end_at = ensure_datetime_or_none(payload.get("endAt"), "endAt")

    fields = payload.get("fields", payload.get("formFields"))
    if fields is not None and not isinstance(fields, list):
        raise ApiError("fields must be an array when provided")

    logger.debug(f"Creating form {title!r} with {len(fields or [])} fields")
    transaction = await database.transaction()
    try:
        form_id = await database.execute(
            form_table.insert().values(
                title=title.strip(),
                description=payload.get("description"),
                slug=payload.get("slug"),
                is_public=is_public,
                start_at=start_at,
                end_at=end_at,
                status=1,
                created_by=user.id,
                updated_by=user.id,
            )
        )
        for raw_field in fields or []:
            await _insert_field_with_options(form_id, raw_field, registry, user.id)
    except Exception:
        await transaction.rollback()
        raise
    else:
        await transaction.commit()

    return await get_form(form_id)


async def update_form(form_id: int, payload: Dict[str, Any], user: User) -> dict:
    assert_no_restricted_fields(payload)
    await load_form_or_404(form_id)

    values: Dict[str, Any] = {}
    if "title" in payload:
        title = payload["title"]
        if not isinstance(title, str) or not title.strip():
            raise ApiError("title is required")
        values["title"] = title.strip()
    if "description" in payload:
        values["description"] = payload["description"]
    if "slug" in payload:
        values["slug"] = payload["slug"]
    if "isPublic" in payload:
        values["is_public"] = ensure_boolean_like(payload["isPublic"], "isPublic")
    if "startAt" in payload:
        values["start_at"] = ensure_datetime_or_none(payload["startAt"], "startAt")
    if "endAt" in payload:
        values["end_at"] = ensure_datetime_or_none(payload["endAt"], "endAt")

    if values:
        await database.execute(
            form_table.update().where(form_table.c.id == form_id).values(updated_by=user.id, **values)
        )
    return await get_form(form_id)


async def delete_form(form_id: int, user: User):
    await load_form_or_404(form_id)
    logger.info(f"Soft-deleting form {form_id}")
    await database.execute(
        form_table.update().where(form_table.c.id == form_id).values(status=0, updated_by=user.id)
    )


# Fields


async def list_fields(form_id: int) -> List[dict]:
    await load_form_or_404(form_id)
    return (await fetch_fields([form_id]))[form_id]


async def get_field(form_id: int, field_id: int) -> dict:
    await load_field_or_404(form_id, field_id)
    for field in (await fetch_fields([form_id]))[form_id]:
        if field["id"] == field_id:
            return field
    raise not_found("Form field not found")


async def create_field(form_id: int, payload: Dict[str, Any], registry: MetaRegistry, user: User) -> dict:
    await load_form_or_404(form_id)
    transaction = await database.transaction()
    try:
        field_id = await _insert_field_with_options(form_id, payload, registry, user.id)
    except Exception:
        await transaction.rollback()
        raise
    else:
        await transaction.commit()
    return await get_field(form_id, field_id)


async def update_field(
    form_id: int, field_id: int, payload: Dict[str, Any], registry: MetaRegistry, user: User
) -> dict:
    existing = await load_field_or_404(form_id, field_id)
    values = await normalize_field_input(payload, registry, existing=existing)
    if "field_key" in values:
        await _ensure_field_key_free(form_id, values["field_key"], exclude_field_id=field_id)

    if values:
        await database.execute(
            formfield_table.update()
            .where(formfield_table.c.id == field_id)
            .values(updated_by=user.id, **values)
        )
    return await get_field(form_id, field_id)


async def delete_field(form_id: int, field_id: int):
    await load_field_or_404(form_id, field_id)
    in_use = await database.fetch_val(
        sqlalchemy.select(sqlalchemy.func.count())
        .select_from(formfieldvalue_table)
        .where(formfieldvalue_table.c.form_field_id == field_id)
    )
    if in_use:
        raise conflict("Form field has submitted values and cannot be deleted")

    transaction = await database.transaction()
    try:
        await database.execute(
            formfieldoption_table.delete().where(formfieldoption_table.c.field_id == field_id)
        )
        await database.execute(formfield_table.delete().where(formfield_table.c.id == field_id))
    except Exception:
        await transaction.rollback()
        raise
    else:
        await transaction.commit()


# Options


async def list_options(form_id: int, field_id: int) -> List[dict]:
    await load_field_or_404(form_id, field_id)
    return await fetch_options([field_id])


async def get_option(form_id: int, field_id: int, option_id: int) -> dict:
    return await load_option_or_404(form_id, field_id, option_id)


async def create_option(form_id: int, field_id: int, payload: Dict[str, Any], user: User) -> dict:
    await load_field_or_404(form_id, field_id)
    values = normalize_option_input(payload)
    option_id = await database.execute(
        formfieldoption_table.insert().values(
            field_id=field_id, status=1, created_by=user.id, updated_by=user.id, **values
        )
    )
    return await load_option_or_404(form_id, field_id, option_id)


async def update_option(
    form_id: int, field_id: int, option_id: int, payload: Dict[str, Any], user: User
) -> dict:
    await load_option_or_404(form_id, field_id, option_id)
    values = normalize_option_input(payload, creating=False)
    if values:
        await database.execute(
            formfieldoption_table.update()
            .where(formfieldoption_table.c.id == option_id)
            .values(updated_by=user.id, **values)
        )
    return await load_option_or_404(form_id, field_id, option_id)


async def delete_option(form_id: int, field_id: int, option_id: int, user: User):
    await load_option_or_404(form_id, field_id, option_id)
    await database.execute(
        formfieldoption_table.update()
        .where(formfieldoption_table.c.id == option_id)
        .values(status=0, updated_by=user.id)
    )
