import json
import logging
from typing import Annotated, Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, Request, Response
from starlette.datastructures import UploadFile

from civicapi.errors import ApiError
from civicapi.models.submission import Submission, SubmissionList, SubmissionStats
from civicapi.models.user import User
from civicapi.security import get_current_user, require_admin
from civicapi.services import submissions
from civicapi.services.meta_registry import MetaRegistry, get_meta_registry

logger = logging.getLogger(__name__)
router = APIRouter()


async def read_submission_input(request: Request) -> submissions.SubmissionInput:
    """Accept answers as JSON or as multipart form data.

    Multipart parts are named by form field id; file parts become uploads for
    that field. A ``fieldValues`` text part may carry the JSON answer list.
    """
    content_type = request.headers.get("content-type", "")
    submission = submissions.SubmissionInput(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )

    if content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
        form = await request.form()
        items = []
        field_values: Any = None
        for key, value in form.multi_items():
            if isinstance(value, UploadFile):
                if not value.filename:
                    continue
                field_id = submissions.field_id_from_key(key)
                if field_id is None:
                    raise ApiError(f'File part "{key}" must be named by a form field id')
                submission.files.setdefault(field_id, []).append(
                    submissions.UploadedFile(
                        filename=value.filename,
                        content=await value.read(),
                        content_type=value.content_type,
                    )
                )
            elif key == "fieldValues":
                try:
                    field_values = json.loads(value)
                except ValueError as e:
                    raise ApiError("fieldValues must be valid JSON") from e
            else:
                items.append((key, value))

        mapped = submissions.entries_from_mapping(items)
        if field_values is None:
            field_values = mapped
        elif isinstance(field_values, list):
            field_values = field_values + mapped
        submission.field_values = field_values
        return submission

    try:
        body = await request.json()
    except ValueError as e:
        raise ApiError("Request body must be valid JSON") from e
    submission.field_values = submissions.entries_from_json(body)
    return submission


@router.post("/form-events/{eid}/submissions", response_model=Submission, status_code=201)
async def submit_form(
    eid: int,
    request: Request,
    current_user: Annotated[User, Depends(get_current_user)],
    registry: Annotated[MetaRegistry, Depends(get_meta_registry)],
):
    submission = await read_submission_input(request)
    logger.debug(f"User {current_user.id} submitting form event {eid} with {len(submission.files)} file fields")
    return await submissions.submit_form(eid, submission, current_user, registry)


@router.get("/form-events/{eid}/submissions", response_model=SubmissionList, status_code=200)
async def list_event_submissions(
    eid: int,
    current_user: Annotated[User, Depends(require_admin)],
    registry: Annotated[MetaRegistry, Depends(get_meta_registry)],
    page: Optional[str] = None,
    limit: Optional[str] = None,
    status: Optional[str] = None,
    sort_by: Annotated[Optional[str], Query(alias="sortBy")] = None,
    sort_order: Annotated[Optional[str], Query(alias="sortOrder")] = None,
):
    return await submissions.list_event_submissions(eid, registry, page, limit, status, sort_by, sort_order)


@router.get("/form-events/{eid}/stats", response_model=SubmissionStats, status_code=200)
async def get_form_event_stats(eid: int, current_user: Annotated[User, Depends(require_admin)]):
    return await submissions.get_form_event_stats(eid)


@router.get("/my-submissions", response_model=SubmissionList, status_code=200)
async def list_my_submissions(
    current_user: Annotated[User, Depends(get_current_user)],
    registry: Annotated[MetaRegistry, Depends(get_meta_registry)],
    page: Optional[str] = None,
    limit: Optional[str] = None,
    status: Optional[str] = None,
    sort_by: Annotated[Optional[str], Query(alias="sortBy")] = None,
    sort_order: Annotated[Optional[str], Query(alias="sortOrder")] = None,
):
    return await submissions.list_my_submissions(current_user, registry, page, limit, status, sort_by, sort_order)


@router.get("/submissions/{sid}", response_model=Submission, status_code=200)
async def get_submission(
    sid: int,
    current_user: Annotated[User, Depends(get_current_user)],
    registry: Annotated[MetaRegistry, Depends(get_meta_registry)],
):
    return await submissions.get_submission(sid, current_user, registry)


@router.put("/submissions/{sid}", response_model=Submission, status_code=200)
async def update_submission(
    sid: int,
    request: Request,
    current_user: Annotated[User, Depends(get_current_user)],
    registry: Annotated[MetaRegistry, Depends(get_meta_registry)],
):
    submission = await read_submission_input(request)
    return await submissions.update_submission(sid, submission, current_user, registry)


@router.patch("/submissions/{sid}/status", response_model=Submission, status_code=200)
async def update_submission_status(
    sid: int,
    current_user: Annotated[User, Depends(require_admin)],
    payload: Dict[str, Any] = Body(...),
):
    return await submissions.update_submission_status(sid, payload.get("status"), current_user)


@router.delete("/submissions/{sid}", status_code=204)
async def delete_submission(sid: int, current_user: Annotated[User, Depends(require_admin)]):
    await submissions.delete_submission(sid, current_user)
    return Response(status_code=204)
