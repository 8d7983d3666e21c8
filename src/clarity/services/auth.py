"""Passwordless sign-in and session lifecycle.

``SessionService`` is the facade behind the auth endpoints:

    NoChallenge --send_otp--> Pending --verify_otp ok--> Verified --tokens--> SessionEstablished
    Pending --wrong code, attempts left--> Pending
    Pending --expiry / attempts spent / new send_otp--> Invalidated

Responses never tell a caller *why* something failed. Rate limiting on
``send_otp`` looks like success, and every verification failure looks the
same; the reason is only logged.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta

from email_validator import EmailNotValidError, validate_email

from clarity.config import settings
from clarity.models import User
from clarity.services.challenges import (
    ChallengeStore,
    DatabaseChallengeStore,
    InMemoryChallengeStore,
)
from clarity.services.errors import ChallengeError, InvalidInput, RateLimited
from clarity.services.notifier import Notifier, get_notifier
from clarity.services.otp import OTPIssuer
from clarity.services.tokens import (
    DatabaseRefreshTokenStore,
    InMemoryRefreshTokenStore,
    TokenIssuer,
    TokenPair,
)
from clarity.services.users import DatabaseUserDirectory, InMemoryUserDirectory, UserDirectory
from clarity.utils.time import Clock, utcnow

logger = logging.getLogger(__name__)

SEND_OTP_MESSAGE = "If the address is valid, a sign-in code is on its way"


@dataclass
class SendOTPResult:
    success: bool
    message: str


@dataclass
class VerifyOTPResult:
    success: bool
    tokens: TokenPair | None = None
    user: User | None = None


def normalize_email(email: str) -> str:
    """Canonical form used as the key for challenges and users.

    Raises:
        InvalidInput: not a syntactically valid address
    """
    try:
        validated = validate_email((email or "").strip(), check_deliverability=False)
    except EmailNotValidError as e:
        raise InvalidInput(f"Invalid email address: {e}") from e
    return validated.normalized.lower()


class SessionService:
    """Orchestrates code issuance, verification, user lookup and token issuance."""

    def __init__(
        self,
        challenges: ChallengeStore,
        users: UserDirectory,
        tokens: TokenIssuer,
        notifier: Notifier,
        *,
        otp_length: int | None = None,
        otp_ttl: timedelta | None = None,
        resend_interval: timedelta | None = None,
    ) -> None:
        self.challenges = challenges
        self.users = users
        self.tokens = tokens
        self.notifier = notifier
        self.otp = OTPIssuer(
            challenges,
            notifier,
            length=otp_length,
            ttl=otp_ttl,
            resend_interval=resend_interval,
        )

    async def send_otp(self, email: str) -> SendOTPResult:
        """Issue a sign-in code for ``email``.

        Raises:
            InvalidInput: malformed email
            ServiceUnavailable: the challenge store is down
        """
        email = normalize_email(email)
        try:
            await self.otp.issue(email)
        except RateLimited as e:
            logger.info(f"Sign-in code for {email} rate limited, retry in {e.retry_after}s")
        return SendOTPResult(success=True, message=SEND_OTP_MESSAGE)

    def _check_code(self, code: str) -> str:
        code = (code or "").strip()
        if len(code) != self.otp.length or not code.isdigit():
            raise InvalidInput("Malformed code")
        return code

    async def verify_otp(self, email: str, code: str) -> VerifyOTPResult:
        """Verify a code and establish a session.

        Any verification failure returns ``success=False`` with nothing else.

        Raises:
            ServiceUnavailable: a backing store is down
        """
        try:
            email = normalize_email(email)
            code = self._check_code(code)
            await self.challenges.consume(email, code)
        except InvalidInput as e:
            logger.info(f"Verification rejected: {e.message}")
            return VerifyOTPResult(success=False)
        except ChallengeError as e:
            logger.info(f"Verification failed for {email}: {e.code}")
            return VerifyOTPResult(success=False)

        user = await self.users.get_or_create(email)
        tokens = await self.tokens.issue_session(user.id)
        logger.info(f"Session established for user {user.id}")
        return VerifyOTPResult(success=True, tokens=tokens, user=user)

    async def refresh_token(self, refresh_token: str) -> TokenPair:
        """Rotate a refresh token.

        Raises:
            TokenInvalid, TokenExpired, TokenReused: the exchange is refused
        """
        return await self.tokens.refresh(refresh_token)

    def validate_access_token(self, token: str) -> str:
        """Return the user id an access token was issued to.

        Raises:
            TokenInvalid, TokenExpired
        """
        return self.tokens.validate_access_token(token)

    async def logout(self, refresh_token: str) -> int:
        """Revoke every refresh token descended from the same sign-in."""
        return await self.tokens.revoke(refresh_token)

    async def current_user(self, user_id: str) -> User | None:
        return await self.users.get(user_id)


def build_session_service(
    backend: str | None = None,
    *,
    notifier: Notifier | None = None,
    clock: Clock = utcnow,
) -> SessionService:
    """Wire a SessionService for the configured store backend."""
    backend = backend or settings.store_backend
    if backend == "memory":
        challenges: ChallengeStore = InMemoryChallengeStore(clock=clock)
        users: UserDirectory = InMemoryUserDirectory()
        tokens = TokenIssuer(InMemoryRefreshTokenStore(), clock=clock)
    elif backend == "database":
        from clarity.database import async_session_factory

        challenges = DatabaseChallengeStore(async_session_factory, clock=clock)
        users = DatabaseUserDirectory(async_session_factory)
        tokens = TokenIssuer(DatabaseRefreshTokenStore(async_session_factory), clock=clock)
    else:
        raise ValueError(f"Unknown store backend: {backend}")

    return SessionService(challenges, users, tokens, notifier or get_notifier())


_session_service: SessionService | None = None


def get_session_service() -> SessionService:
    """Get the process-wide session service."""
    global _session_service
    if _session_service is None:
        _session_service = build_session_service()
    return _session_service


def set_session_service(service: SessionService | None) -> None:
    """Replace the process-wide session service. Useful for testing."""
    global _session_service
    _session_service = service
