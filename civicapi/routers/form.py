import logging
from typing import Annotated, Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query, Response

from civicapi.models.form import FieldType, Form, FormField, FormFieldOption, FormList, InputFormat
from civicapi.models.user import User
from civicapi.security import get_current_user, require_admin
from civicapi.services import form_schema
from civicapi.services.meta_registry import MetaRegistry, get_meta_registry

logger = logging.getLogger(__name__)
router = APIRouter()
lookup_router = APIRouter()


@lookup_router.get("/form-field-types", response_model=List[FieldType], status_code=200)
async def list_field_types(current_user: Annotated[User, Depends(get_current_user)]):
    return await form_schema.list_field_types()


@lookup_router.get("/form-input-formats", response_model=List[InputFormat], status_code=200)
async def list_input_formats(
    current_user: Annotated[User, Depends(get_current_user)],
    field_type: Annotated[Optional[str], Query(alias="fieldType")] = None,
):
    return await form_schema.list_input_formats(field_type)


@router.get("", response_model=FormList, status_code=200)
async def list_forms(
    current_user: Annotated[User, Depends(get_current_user)],
    page: Optional[str] = None,
    limit: Optional[str] = None,
    sort: Optional[str] = None,
    sort_column: Annotated[Optional[str], Query(alias="sortColumn")] = None,
    search: Optional[str] = None,
    status: Optional[str] = None,
):
    return await form_schema.list_forms(page, limit, sort, sort_column, search, status)


@router.get("/{fid}", response_model=Form, status_code=200)
async def get_form(fid: int, current_user: Annotated[User, Depends(get_current_user)]):
    return await form_schema.get_form(fid)


@router.post("", response_model=Form, status_code=201)
async def create_form(
    current_user: Annotated[User, Depends(require_admin)],
    registry: Annotated[MetaRegistry, Depends(get_meta_registry)],
    payload: Dict[str, Any] = Body(...),
):
    form = await form_schema.create_form(payload, registry, current_user)
    logger.info(f"User {current_user.id} created form {form['id']}")
    return form


@router.put("/{fid}", response_model=Form, status_code=200)
async def update_form(
    fid: int,
    current_user: Annotated[User, Depends(require_admin)],
    payload: Dict[str, Any] = Body(...),
):
    return await form_schema.update_form(fid, payload, current_user)


@router.delete("/{fid}", status_code=204)
async def delete_form(fid: int, current_user: Annotated[User, Depends(require_admin)]):
    await form_schema.delete_form(fid, current_user)
    return Response(status_code=204)


# Fields


@router.get("/{fid}/fields", response_model=List[FormField], status_code=200)
async def list_fields(fid: int, current_user: Annotated[User, Depends(get_current_user)]):
    return await form_schema.list_fields(fid)


@router.get("/{fid}/fields/{field_id}", response_model=FormField, status_code=200)
async def get_field(fid: int, field_id: int, current_user: Annotated[User, Depends(get_current_user)]):
    return await form_schema.get_field(fid, field_id)


@router.post("/{fid}/fields", response_model=FormField, status_code=201)
async def create_field(
    fid: int,
    current_user: Annotated[User, Depends(require_admin)],
    registry: Annotated[MetaRegistry, Depends(get_meta_registry)],
    payload: Dict[str, Any] = Body(...),
):
    return await form_schema.create_field(fid, payload, registry, current_user)


@router.put("/{fid}/fields/{field_id}", response_model=FormField, status_code=200)
async def update_field(
    fid: int,
    field_id: int,
    current_user: Annotated[User, Depends(require_admin)],
    registry: Annotated[MetaRegistry, Depends(get_meta_registry)],
    payload: Dict[str, Any] = Body(...),
):
    return await form_schema.update_field(fid, field_id, payload, registry, current_user)


@router.delete("/{fid}/fields/{field_id}", status_code=204)
async def delete_field(fid: int, field_id: int, current_user: Annotated[User, Depends(require_admin)]):
    await form_schema.delete_field(fid, field_id)
    return Response(status_code=204)


# Options


@router.get("/{fid}/fields/{field_id}/options", response_model=List[FormFieldOption], status_code=200)
async def list_options(fid: int, field_id: int, current_user: Annotated[User, Depends(get_current_user)]):
    return await form_schema.list_options(fid, field_id)


@router.get(
    "/{fid}/fields/{field_id}/options/{option_id}", response_model=FormFieldOption, status_code=200
)
async def get_option(
    fid: int, field_id: int, option_id: int, current_user: Annotated[User, Depends(get_current_user)]
):
    return await form_schema.get_option(fid, field_id, option_id)


@router.post("/{fid}/fields/{field_id}/options", response_model=FormFieldOption, status_code=201)
async def create_option(
    fid: int,
    field_id: int,
    current_user: Annotated[User, Depends(require_admin)],
    payload: Dict[str, Any] = Body(...),
):
    return await form_schema.create_option(fid, field_id, payload, current_user)


@router.put(
    "/{fid}/fields/{field_id}/options/{option_id}", response_model=FormFieldOption, status_code=200
)
async def update_option(
    fid: int,
    field_id: int,
    option_id: int,
    current_user: Annotated[User, Depends(require_admin)],
    payload: Dict[str, Any] = Body(...),
):
    return await form_schema.update_option(fid, field_id, option_id, payload, current_user)


@router.delete("/{fid}/fields/{field_id}/options/{option_id}", status_code=204)
async def delete_option(
    fid: int, field_id: int, option_id: int, current_user: Annotated[User, Depends(require_admin)]
):
    await form_schema.delete_option(fid, field_id, option_id, current_user)
    return Response(status_code=204)
