"""Tests for users, settings and the session context."""

import pytest

from duospace.errors import InvalidSettings, InvalidUsername, UserNotFound
from duospace.store import USERS_KEY
from duospace.identity import SessionContext, UserDirectory


@pytest.mark.asyncio
async def test_login_creates_once_case_insensitive(service):
    first = await service.users.login("Alice")
    again = await service.users.login("  alice ")
    assert again.user.id == first.user.id
    assert first.user.username == "Alice"
    assert first.user.settings.theme == "light"
    assert await service.users.is_username_available("ALICE") is False
    assert await service.users.is_username_available("bob") is True


@pytest.mark.asyncio
async def test_login_rejects_blank(service):
    with pytest.raises(InvalidUsername):
        await service.users.login("   ")


@pytest.mark.asyncio
async def test_update_settings_merges(service):
    user = (await service.users.login("Alice")).user
    updated = await service.users.update_settings(user.id, theme="dark")
    assert updated.settings.theme == "dark"
    assert updated.settings.read_receipts is True
    with pytest.raises(InvalidSettings):
        await service.users.update_settings(user.id, theme="blue")
    with pytest.raises(InvalidSettings):
        await service.users.update_settings(user.id, color="red")
    with pytest.raises(UserNotFound):
        await service.users.update_settings("missing", theme="dark")


@pytest.mark.asyncio
async def test_last_seen_hidden_when_disabled(service):
    user = (await service.users.login("Alice")).user
    assert UserDirectory.visible_last_seen(user) is not None
    user = await service.users.update_settings(user.id, last_seen=False)
    assert UserDirectory.visible_last_seen(user) is None


@pytest.mark.asyncio
async def test_session_context_notifies_subscribers(service):
    context = SessionContext()
    seen = []
    unsubscribe = context.subscribe(seen.append)

    session = await service.users.login("Alice")
    context.set(session)
    context.clear()
    unsubscribe()
    context.set(session)

    assert seen == [session, None]


def test_failing_listener_does_not_block_others():
    context = SessionContext()
    seen = []

    def broken(_):
        raise RuntimeError("render failed")

    context.subscribe(broken)
    context.subscribe(seen.append)
    context.clear()
    assert seen == [None]


@pytest.mark.asyncio
async def test_touch_ignores_unknown_ids(service, store):
    await service.users.login("Alice")
    before = await store.get(USERS_KEY)
    await service.users.touch("ai")
    assert await store.get(USERS_KEY) == before
