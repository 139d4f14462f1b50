import datetime
import logging
from typing import Annotated, List, Literal

import sqlalchemy
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import ExpiredSignatureError, JWTError, jwt
from civicapi.config import config
from civicapi.database import database, user_table, user_role_table, role_table
from civicapi.models.user import User

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=config.AUTH_TOKEN_URL)


def create_unauthorized_exception(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def access_token_expire_minutes() -> int:
    return config.ACCESS_TOKEN_EXPIRE_MINUTES


def create_access_token(email: str):
    logger.debug("Creating access token", extra={"email": email})
    expire = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(
        minutes=access_token_expire_minutes()
    )
    jwt_data = {"sub": email, "exp": expire, "type": "access"}
    encoded_jwt = jwt.encode(jwt_data, key=config.SECRET_KEY, algorithm=config.JWT_ALGORITHM)
    return encoded_jwt


def get_subject_for_token_type(token: str, type: Literal["access"]) -> str:
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
    except ExpiredSignatureError as e:
        raise create_unauthorized_exception("Token has expired") from e
    except JWTError as e:
        raise create_unauthorized_exception("Invalid token") from e

    email = payload.get("sub")
    if email is None:
        raise create_unauthorized_exception("Token is missing 'sub' field")

    token_type = payload.get("type")
    if token_type is None or token_type != type:
        raise create_unauthorized_exception(
            f"Token has incorrect type, expected '{type}'"
        )

    return email


async def get_user(email: str):
    query = user_table.select().where(
        (user_table.c.email == email) & (user_table.c.status == 1)
    )
    result = await database.fetch_one(query)
    if not result:
        return None

    roles_query = (
        sqlalchemy.select(role_table.c.id, role_table.c.disp_name)
        .select_from(
            user_role_table.join(role_table, user_role_table.c.role_id == role_table.c.id)
        )
        .where(
            (user_role_table.c.user_id == result["id"])
            & (user_role_table.c.status == 1)
            & (role_table.c.status == 1)
        )
        .order_by(role_table.c.id)
    )
    roles = await database.fetch_all(roles_query)

    return User(
        id=result["id"],
        email=result["email"],
        username=result["username"],
        confirmed=bool(result["confirmed"]),
        role_ids=[role["id"] for role in roles],
        roles=[role["disp_name"] for role in roles],
    )


async def get_current_user(token: Annotated[str, Depends(oauth2_scheme)]):
    email = get_subject_for_token_type(token, "access")
    user = await get_user(email=email)
    if user is None:
        raise create_unauthorized_exception("Could not find user for this token")
    return user


def is_admin(user: User) -> bool:
    return any(role in config.ADMIN_ROLE_NAMES for role in user.roles)


def require_roles(allowed_roles: List[str]):
    async def check_roles(current_user: Annotated[User, Depends(get_current_user)]):
        user_roles = current_user.roles if current_user.roles else []
        logger.debug(f"Current user roles: {user_roles}")
        if not any(role in allowed_roles for role in user_roles):
            raise HTTPException(
                status_code=403,
                detail="Insufficient permissions",
            )
        return current_user
    return check_roles


require_admin = require_roles(config.ADMIN_ROLE_NAMES)
