"""Turns stored answer strings back into labels and display values.

Shared by submission reads (``resolved`` on each field value) and the
tabular report. For one answer, the first rule that applies wins:

1. the field references a meta table: ids become meta row labels
2. the field has options: option ids become option labels
3. otherwise the stored text is decoded by the field's declared type
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

import sqlalchemy

from civicapi.database import (
    database,
    fieldtype_table,
    formfield_table,
    formfieldoption_table,
    inputformat_table,
)
from civicapi.services import values
from civicapi.services.meta_registry import MetaRegistry, MetaTableConfig

logger = logging.getLogger(__name__)

WARD_BOOTH_META_TABLES = {
    "__ward_number_id": "tbl_meta_ward_number",
    "__booth_number_id": "tbl_meta_booth_number",
}
META_VALUE_COLUMNS = ("value", "target_value", "code", "short_name", "disp_name", "title")


def parse_value_ids(raw: Optional[str]) -> List[str]:
    if raw is None:
        return []
    text = raw.strip()
    if not text:
        return []
    return [part.strip() for part in text.split(",") if part.strip()]


def effective_meta_table(meta_table: Optional[str], field_key: Optional[str]) -> Optional[str]:
    if meta_table and meta_table.strip():
        return meta_table
    return WARD_BOOTH_META_TABLES.get(field_key or "")


@dataclass
class FieldContext:
    id: int
    field_key: str
    label: str
    kind: values.ValueKind
    meta_table: Optional[str] = None
    options: Dict[str, dict] = field(default_factory=dict)


@dataclass
class MetaLookup:
    """Meta rows fetched for one batch of answers, keyed by table then id."""

    configs: Dict[str, MetaTableConfig] = field(default_factory=dict)
    rows: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def get(self, table_name: str, record_id: str):
        return self.rows.get(table_name, {}).get(record_id)


async def load_field_contexts(field_ids: Iterable[int]) -> Dict[int, FieldContext]:
    field_ids = sorted(set(field_ids))
    if not field_ids:
        return {}

    query = (
        sqlalchemy.select(
            formfield_table.c.id,
            formfield_table.c.field_key,
            formfield_table.c.label,
            formfield_table.c.meta_table,
            fieldtype_table.c.field_type.label("field_type"),
            inputformat_table.c.field_type.label("input_format_type"),
        )
        .select_from(
            formfield_table.outerjoin(
                fieldtype_table, formfield_table.c.field_type_id == fieldtype_table.c.id
            ).outerjoin(
                inputformat_table, formfield_table.c.input_format_id == inputformat_table.c.id
            )
        )
        .where(formfield_table.c.id.in_(field_ids))
    )
    contexts = {}
    for row in await database.fetch_all(query):
        contexts[row["id"]] = FieldContext(
            id=row["id"],
            field_key=row["field_key"],
            label=row["label"],
            kind=values.value_kind(row["field_type"], row["input_format_type"]),
            meta_table=effective_meta_table(row["meta_table"], row["field_key"]),
        )

    option_query = formfieldoption_table.select().where(
        formfieldoption_table.c.field_id.in_(field_ids) & (formfieldoption_table.c.status == 1)
    )
    for option in await database.fetch_all(option_query):
        contexts[option["field_id"]].options[str(option["id"])] = {
            "id": option["id"],
            "field_id": option["field_id"],
            "option_label": option["option_label"],
            "option_value": option["option_value"],
        }
    return contexts


async def build_meta_lookup(
    registry: MetaRegistry,
    contexts: Dict[int, FieldContext],
    answers: Iterable[Tuple[int, Optional[str]]],
) -> MetaLookup:
    """Fetch every meta row referenced by ``answers`` with one query per table."""
    wanted: Dict[str, set] = {}
    for field_id, raw in answers:
        ctx = contexts.get(field_id)
        if ctx is None or not ctx.meta_table:
            continue
        wanted.setdefault(ctx.meta_table, set()).update(parse_value_ids(raw))

    lookup = MetaLookup()
    for table_name, ids in wanted.items():
        meta = await registry.get_meta_table_by_table_name(table_name)
        if meta is None:
            logger.warning(f"Meta table {table_name} is not registered, labels left unresolved")
            continue
        lookup.configs[table_name] = meta
        rows = await registry.fetch_rows(meta, ids)
        lookup.rows[table_name] = {str(row[meta.primary_key]): row for row in rows}
    return lookup


def _meta_option(ctx: FieldContext, meta: MetaTableConfig, row) -> dict:
    option_value = row[meta.primary_key]
    if ctx.field_key not in WARD_BOOTH_META_TABLES:
        for column in META_VALUE_COLUMNS:
            if column in meta.table.c and row[column] not in (None, ""):
                option_value = row[column]
                break
    return {
        "id": row[meta.primary_key],
        "field_id": ctx.id,
        "option_label": meta.label_for(row),
        "option_value": option_value,
    }


def resolve_options(ctx: FieldContext, raw: Optional[str], lookup: MetaLookup):
    """The ``resolved`` entry of an API field value: one option, a list, or None."""
    text = (raw or "").strip()
    if not text:
        return None

    if ctx.meta_table and ctx.meta_table in lookup.configs:
        meta = lookup.configs[ctx.meta_table]
        if "," in text:
            rows = [lookup.get(ctx.meta_table, record_id) for record_id in parse_value_ids(text)]
            return [_meta_option(ctx, meta, row) for row in rows if row is not None]
        row = lookup.get(ctx.meta_table, text)
        return _meta_option(ctx, meta, row) if row is not None else None

    if not ctx.options:
        return None
    if "," in text:
        return [ctx.options[i] for i in parse_value_ids(text) if i in ctx.options]
    return ctx.options.get(text)


def display_value(ctx: FieldContext, raw: Optional[str]):
    """The ``value`` of an API field value: file lists decoded, dates formatted."""
    if raw is None:
        return None
    decoded = values.decode_value(raw, ctx.kind)
    if isinstance(decoded, values.FileRefs):
        return decoded.urls if raw.strip().startswith("[") else raw
    if isinstance(decoded, values.DateValue):
        return decoded.render()
    return raw


def report_cell(ctx: FieldContext, raw: Optional[str], lookup: MetaLookup) -> Tuple[Any, bool]:
    """One report cell and whether it is numeric."""
    text = (raw or "").strip()
    if not text:
        return "", False

    if ctx.meta_table and ctx.meta_table in lookup.configs:
        meta = lookup.configs[ctx.meta_table]
        labels = []
        for record_id in parse_value_ids(text):
            row = lookup.get(ctx.meta_table, record_id)
            labels.append(meta.label_for(row) if row is not None else record_id)
        return ", ".join(labels), False

    if ctx.options:
        labels = [
            ctx.options[i]["option_label"] if i in ctx.options else i
            for i in parse_value_ids(text)
        ]
        return ", ".join(labels), False

    decoded = values.decode_value(text, ctx.kind)
    if isinstance(decoded, values.NumberValue):
        return decoded.render(), True
    return decoded.render(), False
