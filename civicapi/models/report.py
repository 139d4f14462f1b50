import datetime
from typing import List, Optional, Union

from civicapi.models.base import CamelModel

Cell = Union[int, float, str, None]


class ReportForm(CamelModel):
    id: int
    title: str
    description: Optional[str] = None


class ReportFormEvent(CamelModel):
    id: int
    title: str
    description: str
    start_date: datetime.date
    end_date: Optional[datetime.date] = None
    status: int
    form: Optional[ReportForm] = None


class ReportMetrics(CamelModel):
    total_submissions: int


class TabularData(CamelModel):
    headers: List[str]
    data: List[List[Cell]]
    numeric_columns: List[bool]
    footer: List[Cell]


class FormEventReport(CamelModel):
    form_event: ReportFormEvent
    metrics: ReportMetrics
    tabular_data: TabularData
