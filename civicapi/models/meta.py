from typing import List, Optional

from civicapi.models.base import CamelModel


class MetaTable(CamelModel):
    name: str
    table_name: str
    display_name: str
    primary_key: str
    has_status: bool
    searchable_fields: List[str] = []
    description: Optional[str] = None
