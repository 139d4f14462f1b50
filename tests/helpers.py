import datetime


async def make_form(async_client, admin, fields):
    response = await async_client.post(
        "/api/forms", json={"title": "Ward survey", "fields": fields}, headers=admin["headers"]
    )
    assert response.status_code == 201, response.text
    return response.json()


async def make_event(async_client, admin, form_id, accessibility, start=None, end=None, **extra):
    today = datetime.date.today()
    payload = {
        "formId": form_id,
        "title": "Survey drive",
        "description": "Collect answers",
        "startDate": (start or today - datetime.timedelta(days=1)).isoformat(),
        "endDate": (end or today + datetime.timedelta(days=7)).isoformat(),
        "accessibility": accessibility,
    }
    payload.update(extra)
    response = await async_client.post("/api/form-events", json=payload, headers=admin["headers"])
    assert response.status_code == 201, response.text
    return response.json()


def field_ids(form):
    return {f["fieldKey"]: f["id"] for f in form["fields"]}
