"""Background task tests."""

from unittest.mock import AsyncMock, patch

import pytest

from clarity.services.auth import SessionService, set_session_service
from clarity.tasks.maintenance import prune_refresh_tokens, sweep_expired_challenges
from clarity.tasks.notifications import deliver_otp_code


@pytest.fixture
def installed(service: SessionService):
    set_session_service(service)
    yield service
    set_session_service(None)


@pytest.mark.asyncio
async def test_sweep_expired_challenges(installed: SessionService, clock):
    """Test that the sweep job drops expired challenges."""
    await installed.send_otp("a@x.com")
    clock.advance(seconds=61)
    await installed.send_otp("b@x.com")
    clock.advance(seconds=540)

    result = await sweep_expired_challenges({})

    assert result == {"success": True, "challenges_removed": 1}
    assert await installed.challenges.get("a@x.com") is None
    assert await installed.challenges.get("b@x.com") is not None


@pytest.mark.asyncio
async def test_sweep_failure_is_reported(installed: SessionService):
    """Test that a failing sweep is reported."""
    with patch.object(installed.challenges, "sweep", side_effect=RuntimeError("db down")):
        result = await sweep_expired_challenges({})

    assert result["success"] is False
    assert "db down" in result["error"]


@pytest.mark.asyncio
async def test_prune_refresh_tokens(installed: SessionService, clock):
    """Test that the prune job drops expired refresh tokens."""
    await installed.tokens.issue_session("user-1")
    clock.advance(days=15)

    result = await prune_refresh_tokens({})

    assert result == {"success": True, "tokens_removed": 1}


@pytest.mark.asyncio
async def test_deliver_otp_code():
    """Test that the delivery job sends the code."""
    with patch(
        "clarity.services.notifier.EmailNotifier.deliver",
        new_callable=AsyncMock,
        return_value=True,
    ) as mock_deliver:
        result = await deliver_otp_code({}, email="a@x.com", code="123456")

    assert result == {"success": True}
    mock_deliver.assert_awaited_once_with("a@x.com", "123456")


@pytest.mark.asyncio
async def test_deliver_otp_code_failure_raises_for_retry():
    """Test that a failed delivery raises so the queue retries it."""
    with patch(
        "clarity.services.notifier.EmailNotifier.deliver",
        new_callable=AsyncMock,
        return_value=False,
    ):
        with pytest.raises(RuntimeError):
            await deliver_otp_code({}, email="a@x.com", code="123456")
