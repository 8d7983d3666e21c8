"""Authentication endpoint tests."""

from unittest.mock import patch

import pytest
from httpx import AsyncClient

from clarity.services.rate_limit import RATE_LIMIT_CONFIG, RateLimitType
from tests.conftest import RecordingNotifier

EMAIL = "patient@example.com"


async def _sign_in(client: AsyncClient, notifier: RecordingNotifier, email: str = EMAIL) -> dict:
    await client.post("/api/auth/send-otp", json={"email": email})
    response = await client.post(
        "/api/auth/verify-otp",
        json={"email": email, "code": notifier.last_code(email)},
    )
    assert response.status_code == 200
    return response.json()


@pytest.mark.asyncio
async def test_send_otp(client: AsyncClient, notifier: RecordingNotifier):
    """Test that requesting a code reports success and emails the code."""
    response = await client.post("/api/auth/send-otp", json={"email": EMAIL})

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    # The code only ever travels out of band
    assert notifier.last_code(EMAIL) not in response.text


@pytest.mark.asyncio
async def test_send_otp_rate_limited_looks_the_same(client: AsyncClient, notifier: RecordingNotifier):
    """Test that a throttled code request is indistinguishable from a successful one."""
    first = await client.post("/api/auth/send-otp", json={"email": EMAIL})
    second = await client.post("/api/auth/send-otp", json={"email": EMAIL})

    assert first.json() == second.json()
    assert len(notifier.sent) == 1


@pytest.mark.asyncio
async def test_send_otp_invalid_email(client: AsyncClient):
    """Test that a malformed email is rejected before any code is sent."""
    response = await client.post("/api/auth/send-otp", json={"email": "not-an-email"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_verify_otp(client: AsyncClient):
    """Test that a valid code returns the user and a token pair."""
    with patch("clarity.services.otp.generate_code", return_value="417203"):
        await client.post("/api/auth/send-otp", json={"email": EMAIL})

    response = await client.post("/api/auth/verify-otp", json={"email": EMAIL, "code": "417203"})

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["token_type"] == "bearer"
    assert data["access_token"]
    assert data["refresh_token"]
    assert data["user"]["email"] == EMAIL


@pytest.mark.asyncio
@pytest.mark.parametrize("code", ["000000", "12345", "abcdef"])
async def test_verify_otp_failure_is_generic(client: AsyncClient, code: str):
    """Test that every bad code gets the same generic failure."""
    with patch("clarity.services.otp.generate_code", return_value="417203"):
        await client.post("/api/auth/send-otp", json={"email": EMAIL})

    response = await client.post("/api/auth/verify-otp", json={"email": EMAIL, "code": code})

    assert response.status_code == 200
    assert response.json() == {
        "success": False,
        "access_token": None,
        "refresh_token": None,
        "token_type": "bearer",
        "user": None,
    }


@pytest.mark.asyncio
async def test_verify_otp_unknown_email(client: AsyncClient):
    """Test that verifying for an email with no code fails generically."""
    response = await client.post("/api/auth/verify-otp", json={"email": "nobody@example.com", "code": "123456"})

    assert response.status_code == 200
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_get_current_user(client: AsyncClient, notifier: RecordingNotifier):
    """Test that the access token resolves to the signed-in user."""
    session = await _sign_in(client, notifier)

    response = await client.get(
        "/api/auth/me",
        headers={"Authorization": f"Bearer {session['access_token']}"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["id"] == session["user"]["id"]
    assert data["email"] == EMAIL


@pytest.mark.asyncio
async def test_get_current_user_unauthenticated(client: AsyncClient):
    """Test that the current user endpoint requires a token."""
    response = await client.get("/api/auth/me")
    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_get_current_user_invalid_token(client: AsyncClient):
    """Test that a garbage bearer token is rejected."""
    response = await client.get("/api/auth/me", headers={"Authorization": "Bearer invalid-token"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_get_current_user_expired_token(client: AsyncClient, notifier: RecordingNotifier, clock):
    """Test that an expired access token is rejected."""
    session = await _sign_in(client, notifier)
    clock.advance(hours=24)

    response = await client.get(
        "/api/auth/me",
        headers={"Authorization": f"Bearer {session['access_token']}"},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_refresh_token(client: AsyncClient, notifier: RecordingNotifier):
    """Test that refreshing returns a new token pair."""
    session = await _sign_in(client, notifier)

    response = await client.post("/api/auth/refresh-token", json={"refresh_token": session["refresh_token"]})

    assert response.status_code == 200
    data = response.json()
    assert data["refresh_token"] != session["refresh_token"]

    me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {data['access_token']}"})
    assert me.json()["id"] == session["user"]["id"]


@pytest.mark.asyncio
async def test_refresh_token_replay_revokes_session(client: AsyncClient, notifier: RecordingNotifier):
    """Test that replaying a used refresh token revokes the whole session."""
    session = await _sign_in(client, notifier)
    rotated = (
        await client.post("/api/auth/refresh-token", json={"refresh_token": session["refresh_token"]})
    ).json()

    replay = await client.post("/api/auth/refresh-token", json={"refresh_token": session["refresh_token"]})
    assert replay.status_code == 401
    assert replay.json()["code"] == "token_reused"

    successor = await client.post("/api/auth/refresh-token", json={"refresh_token": rotated["refresh_token"]})
    assert successor.status_code == 401
    assert successor.json()["code"] == "invalid_token"


@pytest.mark.asyncio
async def test_refresh_token_malformed(client: AsyncClient):
    """Test that a malformed refresh token is rejected."""
    response = await client.post("/api/auth/refresh-token", json={"refresh_token": "garbage"})

    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"
    assert response.json()["code"] == "invalid_token"


@pytest.mark.asyncio
async def test_refresh_token_expired(client: AsyncClient, notifier: RecordingNotifier, clock):
    """Test that an expired refresh token is rejected."""
    session = await _sign_in(client, notifier)
    clock.advance(days=7)

    response = await client.post("/api/auth/refresh-token", json={"refresh_token": session["refresh_token"]})

    assert response.status_code == 401
    assert response.json()["code"] == "token_expired"


@pytest.mark.asyncio
async def test_logout(client: AsyncClient, notifier: RecordingNotifier):
    """Test that logging out invalidates the refresh token."""
    session = await _sign_in(client, notifier)

    response = await client.post("/api/auth/logout", json={"refresh_token": session["refresh_token"]})
    assert response.status_code == 200
    assert response.json() == {"success": True}

    refresh = await client.post("/api/auth/refresh-token", json={"refresh_token": session["refresh_token"]})
    assert refresh.status_code == 401


@pytest.mark.asyncio
async def test_send_otp_client_rate_limit(client: AsyncClient):
    """Test that one client hammering the endpoint gets a 429."""
    limit = RATE_LIMIT_CONFIG[RateLimitType.SEND_OTP].requests
    for i in range(limit):
        response = await client.post("/api/auth/send-otp", json={"email": f"user{i}@example.com"})
        assert response.status_code == 200

    response = await client.post("/api/auth/send-otp", json={"email": "one-more@example.com"})

    assert response.status_code == 429
    assert "retry-after" in response.headers
