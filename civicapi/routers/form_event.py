import logging
from typing import Annotated, Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, Response

from civicapi.models.form_event import FormEvent, FormEventList
from civicapi.models.user import User
from civicapi.security import get_current_user, require_admin
from civicapi.services import form_events

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("", response_model=FormEventList, status_code=200)
async def list_form_events(
    current_user: Annotated[User, Depends(get_current_user)],
    page: Optional[str] = None,
    limit: Optional[str] = None,
    sort: Optional[str] = None,
    sort_column: Annotated[Optional[str], Query(alias="sortColumn")] = None,
    status: Optional[str] = None,
    form_id: Annotated[Optional[str], Query(alias="formId")] = None,
    search: Optional[str] = None,
    start_date_from: Annotated[Optional[str], Query(alias="startDateFrom")] = None,
    start_date_to: Annotated[Optional[str], Query(alias="startDateTo")] = None,
):
    return await form_events.list_form_events(
        current_user,
        page=page,
        limit=limit,
        sort=sort,
        sort_column=sort_column,
        status=status,
        form_id=form_id,
        search=search,
        start_date_from=start_date_from,
        start_date_to=start_date_to,
    )


@router.get("/{eid}", response_model=FormEvent, status_code=200)
async def get_form_event(eid: int, current_user: Annotated[User, Depends(get_current_user)]):
    return await form_events.get_form_event(eid, current_user)


@router.post("", response_model=FormEvent, status_code=201)
async def create_form_event(
    current_user: Annotated[User, Depends(require_admin)],
    payload: Dict[str, Any] = Body(...),
):
    return await form_events.create_form_event(payload, current_user)


@router.put("/{eid}", response_model=FormEvent, status_code=200)
async def update_form_event(
    eid: int,
    current_user: Annotated[User, Depends(require_admin)],
    payload: Dict[str, Any] = Body(...),
):
    return await form_events.update_form_event(eid, payload, current_user)


@router.delete("/{eid}", status_code=204)
async def delete_form_event(eid: int, current_user: Annotated[User, Depends(require_admin)]):
    await form_events.delete_form_event(eid, current_user)
    logger.info(f"User {current_user.id} deleted form event {eid}")
    return Response(status_code=204)
