import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query

from civicapi.models.report import FormEventReport
from civicapi.models.user import User
from civicapi.security import get_current_user
from civicapi.services import reports
from civicapi.services.meta_registry import MetaRegistry, get_meta_registry

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/form-events/{eid}", response_model=FormEventReport, status_code=200)
async def get_form_event_report(
    eid: int,
    current_user: Annotated[User, Depends(get_current_user)],
    registry: Annotated[MetaRegistry, Depends(get_meta_registry)],
    ward_number_id: Annotated[Optional[str], Query(alias="wardNumberId")] = None,
    booth_number_id: Annotated[Optional[str], Query(alias="boothNumberId")] = None,
    submitted_by: Annotated[Optional[str], Query(alias="submittedBy")] = None,
    submitted_from: Annotated[Optional[str], Query(alias="submittedFrom")] = None,
    submitted_to: Annotated[Optional[str], Query(alias="submittedTo")] = None,
):
    logger.debug(f"User {current_user.id} requested report for form event {eid}")
    return await reports.generate_form_event_report(
        eid,
        current_user,
        registry,
        ward_number_id=ward_number_id,
        booth_number_id=booth_number_id,
        submitted_by=submitted_by,
        submitted_from=submitted_from,
        submitted_to=submitted_to,
    )
