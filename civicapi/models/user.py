from pydantic import BaseModel


class User(BaseModel):
    id: int
    email: str
    username: str | None = None
    confirmed: bool = False
    role_ids: list[int] = []
    roles: list[str] = []
