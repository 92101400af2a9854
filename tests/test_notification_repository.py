from __future__ import annotations

import pytest

from plumbtix.notifications.models import NotificationType
from plumbtix.notifications.repository import DirectoryRepository, PreferenceRepository

from tests.factories import ADMIN, BUILDING_ID, COMPANY_ID, OTHER_BUILDING_ID, PM_ADMIN, PM_USER, RESIDENT


@pytest.mark.asyncio
async def test_preferences_default_to_enabled_and_upsert(ticket_repository, session_factory):
    preferences = PreferenceRepository(session_factory)

    initial = await preferences.list_preferences(PM_USER.user_id)
    assert all(item.enabled for item in initial)

    await preferences.set_preference(PM_USER.user_id, NotificationType.COMMENT, False)
    await preferences.set_preference(PM_USER.user_id, NotificationType.COMMENT, False)
    await preferences.set_preference(PM_ADMIN.user_id, NotificationType.COMMENT, True)

    disabled = await preferences.disabled_user_ids(
        [PM_USER.user_id, PM_ADMIN.user_id], NotificationType.COMMENT
    )
    assert disabled == {PM_USER.user_id}
    assert await preferences.disabled_user_ids([PM_USER.user_id], NotificationType.STATUS_CHANGE) == set()

    await preferences.set_preference(PM_USER.user_id, NotificationType.COMMENT, True)
    assert await preferences.disabled_user_ids([PM_USER.user_id], NotificationType.COMMENT) == set()


@pytest.mark.asyncio
async def test_directory_scopes_property_managers_to_company(ticket_repository, session_factory):
    directory = DirectoryRepository(session_factory)

    managers = await directory.company_property_managers(COMPANY_ID)

    assert [manager.email for manager in managers] == [PM_ADMIN.email, PM_USER.email]
    assert all(manager.company_id == COMPANY_ID for manager in managers)


@pytest.mark.asyncio
async def test_directory_matches_emails_case_insensitively(ticket_repository, session_factory):
    directory = DirectoryRepository(session_factory)

    found = await directory.users_by_email(["DISPATCH@proroto.com", "nobody@example.com"])

    assert list(found) == ["dispatch@proroto.com"]
    assert found["dispatch@proroto.com"].user_id == ADMIN.user_id
    assert (await directory.get_user(RESIDENT.user_id)).role == "resident"


@pytest.mark.asyncio
async def test_building_context_falls_back_to_address(ticket_repository, session_factory):
    directory = DirectoryRepository(session_factory)

    context = await directory.building_context(OTHER_BUILDING_ID)

    assert context.building_name == "99 Birch Ave"
    assert context.company_name == "Birch Holdings"
    assert (await directory.building_context(BUILDING_ID)).space_label is None
