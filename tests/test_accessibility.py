import datetime

import pytest

from civicapi.database import formevent_table, form_table
from civicapi.errors import ApiError
from civicapi.services import accessibility
from civicapi.services.accessibility import (
    ANY_AREA,
    AccessRule,
    SpecificArea,
    UserAccessProfile,
    can_access,
    parse_area,
    validate_accessibility_payload,
)


def test_parse_area():
    assert parse_area(-1) is ANY_AREA
    assert parse_area(4) == SpecificArea(4)
    assert ANY_AREA.to_storage() == -1


def test_exact_rule_matches():
    profile = UserAccessProfile(ward_number_id=1, booth_number_id=2, role_ids=[7])
    assert can_access(profile, [AccessRule(SpecificArea(1), SpecificArea(2), 7)])


def test_any_area_matches_every_ward_and_booth():
    profile = UserAccessProfile(ward_number_id=9, booth_number_id=3, role_ids=[7])
    assert can_access(profile, [AccessRule(ANY_AREA, ANY_AREA, 7)])


def test_role_must_match():
    profile = UserAccessProfile(ward_number_id=1, booth_number_id=2, role_ids=[8])
    assert not can_access(profile, [AccessRule(ANY_AREA, ANY_AREA, 7)])


def test_other_booth_does_not_match():
    profile = UserAccessProfile(ward_number_id=1, booth_number_id=3, role_ids=[7])
    assert not can_access(profile, [AccessRule(SpecificArea(1), SpecificArea(2), 7)])


def test_no_rules_means_no_access():
    profile = UserAccessProfile(ward_number_id=1, booth_number_id=2, role_ids=[7])
    assert not can_access(profile, [])


@pytest.mark.parametrize(
    "profile",
    [
        UserAccessProfile(ward_number_id=None, booth_number_id=2, role_ids=[7]),
        UserAccessProfile(ward_number_id=1, booth_number_id=None, role_ids=[7]),
        UserAccessProfile(ward_number_id=1, booth_number_id=2, role_ids=[]),
    ],
)
def test_incomplete_profile_never_matches(profile):
    assert not can_access(profile, [AccessRule(ANY_AREA, ANY_AREA, 7)])


def test_validate_payload():
    rules = validate_accessibility_payload(
        [{"wardNumberId": -1, "boothNumberId": "3", "userRoleId": 2}]
    )
    assert rules == [AccessRule(ANY_AREA, SpecificArea(3), 2)]


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"wardNumberId": 1}, "Accessibility must be an array"),
        ([], "At least one accessibility entry is required"),
        (["x"], "accessibility[0] must be an object"),
        (
            [{"wardNumberId": 0, "boothNumberId": 1, "userRoleId": 1}],
            "accessibility[0].wardNumberId must be -1 or a positive integer",
        ),
        (
            [{"wardNumberId": 1, "boothNumberId": 1.5, "userRoleId": 1}],
            "accessibility[0].boothNumberId must be -1 or a positive integer",
        ),
        (
            [{"wardNumberId": 1, "boothNumberId": 1, "userRoleId": -1}],
            "accessibility[0].userRoleId must be a positive integer",
        ),
    ],
)
def test_validate_payload_errors(payload, message):
    with pytest.raises(ApiError) as exc_info:
        validate_accessibility_payload(payload)
    assert exc_info.value.detail == message


@pytest.mark.anyio
async def test_references_must_exist(seed, area):
    rules = [AccessRule(SpecificArea(area["ward_a"]), ANY_AREA, area["role"])]
    await accessibility.ensure_accessibility_references_exist(rules)

    with pytest.raises(ApiError) as exc_info:
        await accessibility.ensure_accessibility_references_exist(
            [AccessRule(SpecificArea(9999), ANY_AREA, area["role"])]
        )
    assert exc_info.value.detail == "One or more wardNumberId values are invalid"


@pytest.mark.anyio
async def test_user_access_to_stored_event(db, seed, area):
    form_id = await db.execute(form_table.insert().values(title="Survey", status=1))
    event_id = await db.execute(
        formevent_table.insert().values(
            form_id=form_id, title="Drive", description="d", start_date=datetime.date(2024, 1, 1), status=1
        )
    )
    rules = [AccessRule(SpecificArea(area["ward_a"]), ANY_AREA, area["role"])]
    await accessibility.insert_accessibility(event_id, rules, None)

    inside = await seed.user("in@example.com", [area["role"]], area["ward_a"], area["booth_a"])
    outside = await seed.user("out@example.com", [area["role"]], area["ward_b"], area["booth_b"])

    assert await accessibility.can_user_access_form_event(inside["id"], event_id)
    assert not await accessibility.can_user_access_form_event(outside["id"], event_id)

    await accessibility.replace_accessibility(
        event_id, [AccessRule(SpecificArea(area["ward_b"]), ANY_AREA, area["role"])], None
    )
    assert not await accessibility.can_user_access_form_event(inside["id"], event_id)
    assert await accessibility.can_user_access_form_event(outside["id"], event_id)


def test_booth_specific_rule_with_any_ward():
    rules = [AccessRule(ANY_AREA, SpecificArea(5), 2)]
    assert can_access(UserAccessProfile(ward_number_id=9, booth_number_id=5, role_ids=[2]), rules)
    assert not can_access(UserAccessProfile(ward_number_id=9, booth_number_id=6, role_ids=[2]), rules)
