import datetime
import re

import pytest

from helpers import field_ids, make_event, make_form

pytestmark = pytest.mark.anyio


@pytest.fixture()
async def report_setup(async_client, admin, field_types, area, seed):
    form = await make_form(
        async_client,
        admin,
        [
            {"fieldKey": "name", "label": "Name", "fieldTypeId": field_types["text"], "sortOrder": 1},
            {"fieldKey": "members", "label": "Members", "fieldTypeId": field_types["number"], "sortOrder": 2},
            {
                "fieldKey": "water",
                "label": "Water source",
                "fieldTypeId": field_types["select"],
                "sortOrder": 3,
                "options": [{"optionLabel": "Tap", "optionValue": "tap"}, {"optionLabel": "Well", "optionValue": "well"}],
            },
            {"fieldKey": "__ward_number_id", "label": "Ward", "fieldTypeId": field_types["select"], "sortOrder": 4},
            {
                "fieldKey": "visited",
                "label": "Visited wards",
                "fieldTypeId": field_types["checkbox"],
                "metaTable": "tbl_meta_ward_number",
                "sortOrder": 5,
            },
            {"fieldKey": "visit_date", "label": "Visit date", "fieldTypeId": field_types["date"], "sortOrder": 6},
        ],
    )
    other_team = await seed.role("Health Team", "/60")
    event = await make_event(
        async_client,
        admin,
        form["id"],
        [
            {"wardNumberId": -1, "boothNumberId": -1, "userRoleId": area["role"]},
            {"wardNumberId": -1, "boothNumberId": -1, "userRoleId": other_team},
        ],
    )
    field_worker = await seed.user("fw@example.com", [area["role"]], area["ward_a"], area["booth_a"], "fieldworker")
    health_worker = await seed.user("hw@example.com", [other_team], area["ward_b"], area["booth_b"])
    options = {o["optionValue"]: o["id"] for o in form["fields"][2]["options"]}
    return {
        "form": form,
        "event": event,
        "ids": field_ids(form),
        "options": options,
        "field_worker": field_worker,
        "health_worker": health_worker,
    }


async def answer(async_client, setup, user, **answers):
    ids = setup["ids"]
    response = await async_client.post(
        f"/api/form-events/{setup['event']['id']}/submissions",
        json=[{"formFieldId": ids[key], "value": value} for key, value in answers.items()],
        headers=user["headers"],
    )
    assert response.status_code == 201, response.text
    return response.json()


def report(async_client, setup, user, **params):
    return async_client.get(f"/api/reports/form-events/{setup['event']['id']}", params=params, headers=user["headers"])


async def test_report_table(async_client, admin, report_setup, area):
    setup = report_setup
    first = await answer(
        async_client, setup, setup["field_worker"],
        name="Ravi", members="4", water=str(setup["options"]["well"]), __ward_number_id=str(area["ward_a"]),
        visited=f"{area['ward_a']},{area['ward_b']}", visit_date="2024-03-05",
    )
    second = await answer(
        async_client, setup, setup["health_worker"],
        name="Meera", members="2.5", __ward_number_id=str(area["ward_b"]),
    )

    response = await report(async_client, setup, admin)
    assert response.status_code == 200
    body = response.json()

    assert body["formEvent"]["id"] == setup["event"]["id"]
    assert body["formEvent"]["form"]["title"] == "Ward survey"
    assert body["metrics"] == {"totalSubmissions": 2}

    table = body["tabularData"]
    assert table["headers"] == [
        "Name", "Members", "Water source", "Ward", "Visited wards", "Visit date",
        "Submitted By", "Submitted At", "Submission ID",
    ]
    assert table["numericColumns"] == [False, True, False, False, False, False, False, False, False]

    newest, oldest = table["data"]
    assert newest[0] == "Meera"
    assert newest[-1] == second["id"]
    assert newest[6] == "hw@example.com"
    assert oldest[:6] == ["Ravi", 4, "Well", "Ward 1", "Ward 1, Ward 2", "05-03-2024"]
    assert oldest[6] == "fieldworker"
    assert oldest[-1] == first["id"]
    assert re.match(r"^\d{2}-\d{2}-\d{4} \d{2}:\d{2}:\d{2}$", oldest[7])
    assert newest[2] == ""

    assert table["footer"] == ["", 6.5, "", "", "", "", "", "", ""]


async def test_meta_ids_missing_from_lookup_fall_back_to_raw_id(async_client, admin, report_setup, area, db):
    from civicapi.database import wardnumber_table

    setup = report_setup
    await answer(async_client, setup, setup["field_worker"], name="Ravi", visited=str(area["ward_b"]))
    await db.execute(wardnumber_table.update().where(wardnumber_table.c.id == area["ward_b"]).values(status=0))

    table = (await report(async_client, setup, admin)).json()["tabularData"]
    assert table["data"][0][4] == str(area["ward_b"])


async def test_ward_filter(async_client, admin, report_setup, area):
    setup = report_setup
    await answer(async_client, setup, setup["field_worker"], name="Ravi", __ward_number_id=str(area["ward_a"]))
    await answer(async_client, setup, setup["health_worker"], name="Meera", __ward_number_id=str(area["ward_b"]))
    await answer(async_client, setup, setup["health_worker"], name="Asha")

    only_a = (await report(async_client, setup, admin, wardNumberId=area["ward_a"])).json()
    assert [row[0] for row in only_a["tabularData"]["data"]] == ["Ravi"]
    assert only_a["metrics"]["totalSubmissions"] == 1

    everything = (await report(async_client, setup, admin, wardNumberId=-1)).json()
    assert everything["metrics"]["totalSubmissions"] == 3

    nothing = (await report(async_client, setup, admin, wardNumberId=area["ward_a"], boothNumberId=area["booth_b"])).json()
    assert nothing["tabularData"]["data"] == []


async def test_submitted_by_and_date_filters(async_client, admin, report_setup):
    setup = report_setup
    await answer(async_client, setup, setup["field_worker"], name="Ravi")
    await answer(async_client, setup, setup["health_worker"], name="Meera")

    by_user = (await report(async_client, setup, admin, submittedBy=setup["health_worker"]["id"])).json()
    assert [row[0] for row in by_user["tabularData"]["data"]] == ["Meera"]

    today = datetime.date.today()
    same_day = (await report(async_client, setup, admin, submittedFrom=today.isoformat(), submittedTo=today.isoformat())).json()
    assert same_day["metrics"]["totalSubmissions"] == 2

    tomorrow = (today + datetime.timedelta(days=1)).isoformat()
    future = (await report(async_client, setup, admin, submittedFrom=tomorrow)).json()
    assert future["metrics"]["totalSubmissions"] == 0


async def test_hierarchy_limits_non_admin_reports(async_client, admin, report_setup, seed):
    setup = report_setup
    await answer(async_client, setup, setup["field_worker"], name="Ravi")
    await answer(async_client, setup, setup["health_worker"], name="Meera")

    officer_role = await seed.role("Block Officer", "/1")
    officer = await seed.user("officer@example.com", [officer_role])
    rows = (await report(async_client, setup, officer)).json()["tabularData"]["data"]
    assert [row[0] for row in rows] == ["Ravi"]

    restricted = (await report(async_client, setup, officer, submittedBy=setup["health_worker"]["id"])).json()
    assert restricted["tabularData"]["data"] == []

    nobody = await seed.user("nobody@example.com")
    assert (await report(async_client, setup, nobody)).json()["metrics"]["totalSubmissions"] == 0


async def test_soft_deleted_submissions_are_excluded(async_client, admin, report_setup):
    setup = report_setup
    kept = await answer(async_client, setup, setup["field_worker"], name="Ravi")
    dropped = await answer(async_client, setup, setup["field_worker"], name="Meera")
    await async_client.delete(f"/api/submissions/{dropped['id']}", headers=admin["headers"])

    rows = (await report(async_client, setup, admin)).json()["tabularData"]["data"]
    assert [row[-1] for row in rows] == [kept["id"]]


@pytest.mark.parametrize(
    "params, message",
    [
        ({"wardNumberId": "abc"}, "Invalid wardNumberId"),
        ({"boothNumberId": 0}, "Invalid boothNumberId"),
        ({"submittedBy": "-3"}, "Invalid submittedBy"),
        ({"submittedFrom": "someday"}, "Invalid submittedFrom"),
        ({"submittedFrom": "2024-02-02", "submittedTo": "2024-02-01"}, "submittedTo cannot be earlier than submittedFrom"),
    ],
)
async def test_invalid_filters(async_client, admin, report_setup, params, message):
    response = await report(async_client, report_setup, admin, **params)
    assert response.status_code == 400
    assert response.json()["detail"] == message


async def test_unknown_event(async_client, admin):
    response = await async_client.get("/api/reports/form-events/4242", headers=admin["headers"])
    assert response.status_code == 404
