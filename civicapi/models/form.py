import datetime
from typing import Any, Dict, List, Optional

from civicapi.models.base import CamelModel, Pagination


class FieldType(CamelModel):
    id: int
    field_type: str
    disp_name: str


class InputFormat(CamelModel):
    id: int
    field_type: str
    disp_name: str
    target_value: Optional[str] = None


class FormFieldOption(CamelModel):
    id: int
    field_id: int
    option_label: str
    option_value: str
    sort_order: int = 0
    is_default: bool = False
    status: int = 1


class FormField(CamelModel):
    id: int
    form_id: int
    field_key: str
    label: str
    help_text: Optional[str] = None
    field_type_id: int
    input_format_id: Optional[int] = None
    is_required: bool = False
    sort_order: int = 0
    placeholder: Optional[str] = None
    default_value: Optional[str] = None
    validation_regex: Optional[str] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    min_value: Optional[str] = None
    max_value: Optional[str] = None
    attrs_json: Optional[Dict[str, Any]] = None
    meta_table: Optional[str] = None
    field_type: Optional[FieldType] = None
    input_format: Optional[InputFormat] = None
    options: List[FormFieldOption] = []


class Form(CamelModel):
    id: int
    title: str
    description: Optional[str] = None
    slug: Optional[str] = None
    is_public: bool = True
    start_at: Optional[datetime.datetime] = None
    end_at: Optional[datetime.datetime] = None
    status: int = 1
    created_by: Optional[int] = None
    updated_by: Optional[int] = None
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None
    fields: List[FormField] = []


class FormList(CamelModel):
    data: List[Form]
    pagination: Pagination
