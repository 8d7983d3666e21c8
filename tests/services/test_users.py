"""User directory tests."""

import asyncio
from unittest.mock import patch

import pytest

from clarity.services.errors import ServiceUnavailable, UserDirectoryConflict
from clarity.services.users import DatabaseUserDirectory, InMemoryUserDirectory, UserDirectory


@pytest.fixture(params=["memory", "database"])
def directory(request) -> UserDirectory:
    if request.param == "memory":
        return InMemoryUserDirectory()
    return DatabaseUserDirectory(request.getfixturevalue("session_factory"))


@pytest.mark.asyncio
async def test_get_or_create_is_idempotent(directory: UserDirectory):
    """Test that get_or_create returns the same user for the same email."""
    first = await directory.get_or_create("a@x.com")
    second = await directory.get_or_create("a@x.com")

    assert first.id == second.id
    assert first.email == "a@x.com"


@pytest.mark.asyncio
async def test_distinct_emails_get_distinct_users(directory: UserDirectory):
    """Test that different emails get different users."""
    a = await directory.get_or_create("a@x.com")
    b = await directory.get_or_create("b@x.com")

    assert a.id != b.id


@pytest.mark.asyncio
async def test_get(directory: UserDirectory):
    """Test looking a user up by id."""
    user = await directory.get_or_create("a@x.com")

    found = await directory.get(user.id)
    assert found is not None
    assert found.email == "a@x.com"
    assert await directory.get("missing") is None


@pytest.mark.asyncio
async def test_concurrent_get_or_create_creates_once():
    """Test that racing get_or_create calls create one user."""
    directory = InMemoryUserDirectory()

    users = await asyncio.gather(*(directory.get_or_create("a@x.com") for _ in range(10)))

    assert len({u.id for u in users}) == 1
    assert len(directory) == 1


@pytest.mark.asyncio
async def test_insert_race_is_retried(session_factory):
    """Test that losing an insert race is retried and returns the winner."""
    directory = DatabaseUserDirectory(session_factory)
    create = directory._create
    calls = 0

    async def lose_first_race(email: str):
        nonlocal calls
        calls += 1
        if calls == 1:
            raise UserDirectoryConflict()
        return await create(email)

    with patch.object(directory, "_create", side_effect=lose_first_race):
        user = await directory.get_or_create("a@x.com")

    assert calls == 2
    assert user.email == "a@x.com"


@pytest.mark.asyncio
async def test_persistent_conflict_is_unavailable(session_factory):
    """Test that a conflict that never clears becomes ServiceUnavailable."""
    directory = DatabaseUserDirectory(session_factory)

    with patch.object(directory, "_create", side_effect=UserDirectoryConflict()):
        with pytest.raises(ServiceUnavailable):
            await directory.get_or_create("a@x.com")
