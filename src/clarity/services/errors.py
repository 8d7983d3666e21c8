"""Error taxonomy for the authentication and session services.

Every error carries a stable ``code`` and the HTTP status it maps to when it
escapes an endpoint. Challenge failures never escape VerifyOTP: the facade
collapses them into a generic failure and logs the category instead.
"""


class AuthError(Exception):
    """Base class for authentication errors."""

    status_code: int = 400
    code: str = "auth_error"
    retryable: bool = False

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = str(self)


class InvalidInput(AuthError):
    """Malformed email or code."""

    status_code = 400
    code = "invalid_input"


class RateLimited(AuthError):
    """A code was requested before the resend interval elapsed."""

    status_code = 429
    code = "rate_limited"

    def __init__(self, retry_after: int, message: str | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ChallengeError(AuthError):
    """Base class for one-time code verification failures."""

    status_code = 400
    code = "verification_failed"


class ChallengeNotFound(ChallengeError):
    """No active code for this email."""

    code = "challenge_not_found"


class ChallengeExpired(ChallengeError):
    """The code has expired."""

    code = "challenge_expired"


class ChallengeAlreadyConsumed(ChallengeError):
    """The code was already used."""

    code = "challenge_consumed"


class ChallengeExhausted(ChallengeError):
    """Too many failed attempts; the code has been invalidated."""

    code = "challenge_exhausted"


class ChallengeMismatch(ChallengeError):
    """The submitted code does not match."""

    code = "challenge_mismatch"

    def __init__(self, attempts: int, attempts_remaining: int) -> None:
        super().__init__()
        self.attempts = attempts
        self.attempts_remaining = attempts_remaining


class TokenError(AuthError):
    """Base class for token failures."""

    status_code = 401
    code = "invalid_token"


class TokenInvalid(TokenError):
    """Token is malformed, unknown or revoked."""

    code = "invalid_token"


class TokenExpired(TokenError):
    """Token has expired."""

    code = "token_expired"


class TokenReused(TokenError):
    """Refresh token was already rotated; its session has been revoked."""

    code = "token_reused"


class UserDirectoryConflict(AuthError):
    """Concurrent creation of the same user."""

    status_code = 409
    code = "user_conflict"
    retryable = True


class ServiceUnavailable(AuthError):
    """A backing store is unavailable; retry later."""

    status_code = 503
    code = "service_unavailable"
    retryable = True
