"""Registry of lookup ("meta") tables that form fields may reference.

Tables are registered in code with :meth:`MetaRegistry.register`. Rows of
``tbl_meta_table_registry`` add display metadata and may switch a registered
table on under another logical name; they are read lazily and cached on the
registry object until :meth:`MetaRegistry.refresh` is called.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

import sqlalchemy

from civicapi.database import (
    boothnumber_table,
    database,
    metatableregistry_table,
    role_table,
    sector_table,
    wardnumber_table,
)
from civicapi.errors import ApiError

logger = logging.getLogger(__name__)

LABEL_COLUMNS = ("disp_name", "title", "name", "label")


@dataclass
class MetaTableConfig:
    name: str
    table_name: str
    display_name: str
    table: sqlalchemy.Table
    primary_key: str = "id"
    has_status: bool = True
    searchable_fields: List[str] = field(default_factory=list)
    description: Optional[str] = None

    @property
    def pk_column(self) -> sqlalchemy.Column:
        return self.table.c[self.primary_key]

    def label_for(self, row) -> str:
        for column in LABEL_COLUMNS:
            if column in self.table.c:
                value = row[column]
                if value is not None and str(value) != "":
                    return str(value)
        return str(row[self.primary_key])


class MetaRegistry:
    def __init__(self, db=database):
        self._db = db
        self._builtin: Dict[str, MetaTableConfig] = {}
        self._cache: Optional[Dict[str, MetaTableConfig]] = None

    def register(
        self,
        table: sqlalchemy.Table,
        display_name: Optional[str] = None,
        primary_key: str = "id",
        has_status: bool = True,
    ) -> sqlalchemy.Table:
        self._builtin[table.name] = MetaTableConfig(
            name=table.name,
            table_name=table.name,
            display_name=display_name or table.name,
            table=table,
            primary_key=primary_key,
            has_status=has_status and "status" in table.c,
        )
        self._cache = None
        return table

    def refresh(self):
        logger.info("Dropping meta table registry cache")
        self._cache = None

    async def _load(self) -> Dict[str, MetaTableConfig]:
        if self._cache is not None:
            return self._cache

        configs = dict(self._builtin)
        query = metatableregistry_table.select().where(metatableregistry_table.c.status == 1)
        for row in await self._db.fetch_all(query):
            builtin = self._builtin.get(row["table_name"])
            if builtin is None:
                logger.warning(f"Meta table {row['table_name']} is not registered, skipping")
                continue
            primary_key = row["primary_key"] or builtin.primary_key
            if primary_key not in builtin.table.c:
                logger.warning(
                    f"Meta table {row['table_name']} has no column {primary_key}, skipping"
                )
                continue
            configs[row["table_name"]] = MetaTableConfig(
                name=row["name"],
                table_name=row["table_name"],
                display_name=row["display_name"],
                table=builtin.table,
                primary_key=primary_key,
                has_status=bool(row["has_status"]) and "status" in builtin.table.c,
                searchable_fields=row["searchable_fields"] or [],
                description=row["description"],
            )

        logger.debug(f"Loaded {len(configs)} meta tables")
        self._cache = configs
        return configs

    async def list_tables(self) -> List[MetaTableConfig]:
        configs = await self._load()
        return sorted(configs.values(), key=lambda c: c.table_name)

    async def get_meta_table_by_table_name(self, table_name: Optional[str]) -> Optional[MetaTableConfig]:
        if not table_name:
            return None
        configs = await self._load()
        return configs.get(table_name)

    def _coerce_ids(self, meta: MetaTableConfig, ids: Iterable) -> list:
        wanted = []
        integer_pk = isinstance(meta.pk_column.type, sqlalchemy.Integer)
        for raw in ids:
            text = str(raw).strip()
            if not text:
                continue
            if integer_pk:
                if not text.lstrip("-").isdigit():
                    continue
                wanted.append(int(text))
            else:
                wanted.append(text)
        return wanted

    async def fetch_rows(self, meta: MetaTableConfig, ids: Iterable) -> list:
        wanted = self._coerce_ids(meta, ids)
        if not wanted:
            return []
        query = meta.table.select().where(meta.pk_column.in_(wanted))
        if meta.has_status:
            query = query.where(meta.table.c.status == 1)
        return await self._db.fetch_all(query)

    async def resolve_labels(self, table_name: str, ids: Iterable) -> Dict[str, str]:
        """Map each id (as a string) to its display label; unknown ids are left out."""
        meta = await self.get_meta_table_by_table_name(table_name)
        if meta is None:
            return {}
        rows = await self.fetch_rows(meta, ids)
        return {str(row[meta.primary_key]): meta.label_for(row) for row in rows}

    async def ensure_values_exist(self, table_name: str, ids: Iterable, field_label: str):
        meta = await self.get_meta_table_by_table_name(table_name)
        if meta is None:
            raise ApiError(f'Invalid metaTable for "{field_label}"')

        raw_ids = [str(i).strip() for i in ids if str(i).strip()]
        wanted = self._coerce_ids(meta, raw_ids)
        if len(wanted) != len(raw_ids):
            raise ApiError(f'Invalid selection for "{field_label}"')

        found = {str(row[meta.primary_key]) for row in await self.fetch_rows(meta, wanted)}
        if any(str(value) not in found for value in wanted):
            raise ApiError(f'Invalid selection for "{field_label}"')


meta_registry = MetaRegistry()
meta_registry.register(wardnumber_table, display_name="Ward Number")
meta_registry.register(boothnumber_table, display_name="Booth Number")
meta_registry.register(sector_table, display_name="Sector")
meta_registry.register(role_table, display_name="User Role")


def get_meta_registry() -> MetaRegistry:
    return meta_registry
