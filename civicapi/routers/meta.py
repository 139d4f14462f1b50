from typing import Annotated, List

from fastapi import APIRouter, Depends

from civicapi.models.meta import MetaTable
from civicapi.models.user import User
from civicapi.security import get_current_user, require_admin
from civicapi.services.meta_registry import MetaRegistry, get_meta_registry

router = APIRouter()


@router.get("", response_model=List[MetaTable], status_code=200)
async def list_meta_tables(
    current_user: Annotated[User, Depends(get_current_user)],
    registry: Annotated[MetaRegistry, Depends(get_meta_registry)],
):
    return [MetaTable.model_validate(meta, from_attributes=True) for meta in await registry.list_tables()]


@router.post("/refresh", response_model=List[MetaTable], status_code=200)
async def refresh_meta_tables(
    current_user: Annotated[User, Depends(require_admin)],
    registry: Annotated[MetaRegistry, Depends(get_meta_registry)],
):
    registry.refresh()
    return [MetaTable.model_validate(meta, from_attributes=True) for meta in await registry.list_tables()]
