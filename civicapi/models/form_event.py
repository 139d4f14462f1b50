import datetime
from typing import List, Optional

from civicapi.models.base import CamelModel, Pagination
from civicapi.models.form import Form


class LookupRef(CamelModel):
    id: int
    disp_name: Optional[str] = None


class Accessibility(CamelModel):
    id: int
    ward_number_id: int
    booth_number_id: int
    user_role_id: int
    status: int = 1
    ward_number: Optional[LookupRef] = None
    booth_number: Optional[LookupRef] = None
    user_role: Optional[LookupRef] = None


class FormEvent(CamelModel):
    id: int
    form_id: int
    title: str
    description: str
    start_date: datetime.date
    end_date: Optional[datetime.date] = None
    status: int = 1
    created_by: Optional[int] = None
    updated_by: Optional[int] = None
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None
    accessibility: List[Accessibility] = []
    form: Optional[Form] = None


class FormEventList(CamelModel):
    data: List[FormEvent]
    pagination: Pagination
