import os
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

os.environ["ENV_STATE"] = "test"

from civicapi import storage  # noqa: E402
from civicapi.database import (  # noqa: E402
    boothnumber_table,
    database,
    fieldtype_table,
    inputformat_table,
    role_table,
    user_role_table,
    user_table,
    userprofile_table,
    wardnumber_table,
)
from civicapi.main import app  # noqa: E402
from civicapi.security import create_access_token  # noqa: E402
from civicapi.services.meta_registry import meta_registry  # noqa: E402

FIELD_TYPES = ("text", "number", "date", "select", "checkbox", "file", "textarea", "datetime")


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture()
async def db() -> AsyncGenerator:
    await database.connect()
    meta_registry.refresh()
    yield database
    await database.disconnect()


@pytest.fixture()
async def async_client(db) -> AsyncGenerator:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def uploaded_files(monkeypatch):
    """Replace object storage; every stored file is recorded here."""
    stored = []

    def fake_store(form_event_id, submission_id, field_id, filename, content, content_type=None):
        safe_name = storage.check_allowed(filename)
        url = f"http://files.test/form-events/{form_event_id}/submissions/{submission_id}/{field_id}/{safe_name}"
        stored.append({"url": url, "content": content, "field_id": field_id})
        return url

    def fake_remove(urls):
        stored[:] = [item for item in stored if item["url"] not in urls]

    monkeypatch.setattr(storage, "store_submission_file", fake_store)
    monkeypatch.setattr(storage, "remove_submission_files", fake_remove)
    return stored


class Seeder:
    async def role(self, name: str, depth_path: str | None = None) -> int:
        return await database.execute(
            role_table.insert().values(disp_name=name, depth_path=depth_path, status=1)
        )

    async def ward(self, name: str) -> int:
        return await database.execute(wardnumber_table.insert().values(disp_name=name, status=1))

    async def booth(self, name: str, ward_id: int | None = None) -> int:
        return await database.execute(
            boothnumber_table.insert().values(disp_name=name, ward_number_id=ward_id, status=1)
        )

    async def user(
        self,
        email: str,
        role_ids=(),
        ward_id: int | None = None,
        booth_id: int | None = None,
        username: str | None = None,
    ) -> dict:
        user_id = await database.execute(
            user_table.insert().values(email=email, username=username, confirmed=True, status=1)
        )
        await database.execute(
            userprofile_table.insert().values(
                user_id=user_id, full_name=username, ward_number_id=ward_id, booth_number_id=booth_id
            )
        )
        for role_id in role_ids:
            await database.execute(user_role_table.insert().values(user_id=user_id, role_id=role_id, status=1))
        token = create_access_token(email)
        return {"id": user_id, "email": email, "headers": {"Authorization": f"Bearer {token}"}}

    async def field_types(self) -> dict:
        ids = {}
        for name in FIELD_TYPES:
            ids[name] = await database.execute(
                fieldtype_table.insert().values(field_type=name, disp_name=name.title(), status=1)
            )
        return ids

    async def input_format(self, field_type: str, disp_name: str) -> int:
        return await database.execute(
            inputformat_table.insert().values(field_type=field_type, disp_name=disp_name, status=1)
        )


@pytest.fixture()
async def seed(db) -> Seeder:
    return Seeder()


@pytest.fixture()
async def field_types(seed) -> dict:
    return await seed.field_types()


@pytest.fixture()
async def admin(seed) -> dict:
    role_id = await seed.role("Administrator", "/1")
    return await seed.user("admin@example.com", role_ids=[role_id], username="admin")


@pytest.fixture()
async def area(seed) -> dict:
    """Two wards with one booth each and a field worker role."""
    ward_a = await seed.ward("Ward 1")
    ward_b = await seed.ward("Ward 2")
    return {
        "ward_a": ward_a,
        "ward_b": ward_b,
        "booth_a": await seed.booth("Booth 1A", ward_a),
        "booth_b": await seed.booth("Booth 2A", ward_b),
        "role": await seed.role("Field Worker", "/1/5"),
    }
