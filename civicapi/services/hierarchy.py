"""Role hierarchy lookups over ``tbl_meta_user_role.depth_path``.

A depth path such as ``/1/9/10`` places role 10 below role 9, which is
below role 1. A role's descendants are the roles whose path equals its own
or starts with its own followed by ``/``.
"""
import logging
from typing import Iterable, List, Set

import sqlalchemy

from civicapi.database import database, role_table, user_role_table

logger = logging.getLogger(__name__)


async def get_descendant_role_ids(role_id: int) -> List[int]:
    role = await database.fetch_one(
        sqlalchemy.select(role_table.c.depth_path).where(role_table.c.id == role_id)
    )
    if not role or not role["depth_path"]:
        return [role_id]

    path = role["depth_path"]
    query = sqlalchemy.select(role_table.c.id).where(
        sqlalchemy.or_(
            role_table.c.depth_path == path,
            role_table.c.depth_path.like(f"{path}/%"),
        )
        & (role_table.c.status == 1)
    )
    rows = await database.fetch_all(query)
    return [row["id"] for row in rows]


async def get_descendant_role_ids_for(role_ids: Iterable[int]) -> Set[int]:
    result: Set[int] = set()
    for role_id in role_ids:
        result.update(await get_descendant_role_ids(role_id))
    return result


async def get_user_ids_for_roles(role_ids: Iterable[int]) -> Set[int]:
    role_ids = sorted(set(role_ids))
    if not role_ids:
        return set()
    query = sqlalchemy.select(user_role_table.c.user_id).where(
        user_role_table.c.role_id.in_(role_ids) & (user_role_table.c.status == 1)
    )
    rows = await database.fetch_all(query)
    return {row["user_id"] for row in rows}


async def get_hierarchy_user_ids(role_ids: Iterable[int]) -> Set[int]:
    """Users holding any role at or below one of ``role_ids``."""
    descendants = await get_descendant_role_ids_for(role_ids)
    user_ids = await get_user_ids_for_roles(descendants)
    logger.debug(f"Hierarchy of roles {sorted(descendants)} covers {len(user_ids)} users")
    return user_ids
