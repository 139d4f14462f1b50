import datetime
from typing import Any, List, Optional, Union

from civicapi.models.base import CamelModel, Pagination


class ResolvedOption(CamelModel):
    id: Any
    field_id: int
    option_label: str
    option_value: Any


class FieldValue(CamelModel):
    id: int
    form_field_id: int
    field_key: str
    value: Any = None
    resolved: Union[ResolvedOption, List[ResolvedOption], None] = None


class SubmissionEventRef(CamelModel):
    id: int
    title: str
    form_id: int


class Submitter(CamelModel):
    id: int
    email: Optional[str] = None
    username: Optional[str] = None
    full_name: Optional[str] = None


class Submission(CamelModel):
    id: int
    form_event_id: int
    submitted_by: int
    submitted_at: datetime.datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    status: int = 1
    field_values: List[FieldValue] = []
    form_event: Optional[SubmissionEventRef] = None
    user: Optional[Submitter] = None


class SubmissionList(CamelModel):
    data: List[Submission]
    pagination: Pagination


class StatusCounts(CamelModel):
    submitted: int = 0
    reviewed: int = 0
    rejected: int = 0


class SubmissionStats(CamelModel):
    form_event_id: int
    total_submissions: int = 0
    by_status: StatusCounts = StatusCounts()
