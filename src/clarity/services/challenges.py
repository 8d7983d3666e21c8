"""One-time code challenge storage.

A challenge binds a code to an email address with an expiry and an attempt
budget. Both backends enforce the same rules:

- one challenge per email; ``put`` replaces whatever was there
- ``consume`` succeeds for exactly one caller, however many race for it
- expiry is judged when the code is presented, never when it was written
- wrong codes burn attempts; once the budget is spent the challenge is dead
  and even the right code is answered with ``ChallengeNotFound``
"""

import hashlib
import hmac
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from sqlalchemy import delete, or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from clarity.config import settings
from clarity.models import OTPChallenge
from clarity.services.errors import (
    ChallengeAlreadyConsumed,
    ChallengeExhausted,
    ChallengeExpired,
    ChallengeMismatch,
    ChallengeNotFound,
    RateLimited,
    ServiceUnavailable,
)
from clarity.utils.locks import KeyedLock
from clarity.utils.time import Clock, as_utc, utcnow

logger = logging.getLogger(__name__)

# Replacement attempts when two puts for the same email collide on insert
PUT_RETRIES = 3


@dataclass(frozen=True)
class Challenge:
    """Snapshot of a stored challenge."""

    email: str
    code_hash: str
    created_at: datetime
    expires_at: datetime
    consumed: bool = False
    attempts: int = 0

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


def hash_code(email: str, code: str, secret: str | None = None) -> str:
    """Keyed digest of a code, bound to its email."""
    key = (secret or settings.session_secret).encode()
    return hmac.new(key, f"{email}:{code}".encode(), hashlib.sha256).hexdigest()


class ChallengeStore(ABC):
    """Keyed storage of outstanding one-time code challenges."""

    def __init__(
        self,
        max_attempts: int | None = None,
        clock: Clock = utcnow,
        secret: str | None = None,
    ) -> None:
        self.max_attempts = max_attempts or settings.otp_max_attempts
        self.clock = clock
        self._secret = secret

    def _hash(self, email: str, code: str) -> str:
        return hash_code(email, code, self._secret)

    @abstractmethod
    async def put(self, email: str, code: str, ttl: timedelta) -> Challenge:
        """Store a new challenge, replacing any prior one for the email."""

    @abstractmethod
    async def put_if_idle(self, email: str, code: str, ttl: timedelta, min_interval: timedelta) -> Challenge:
        """Like ``put``, unless the current challenge is younger than ``min_interval``.

        The age check and the replacement are one atomic step per email, so of
        any number of concurrent calls at most one stores a challenge.

        Raises:
            RateLimited: a challenge was issued less than ``min_interval`` ago
        """

    @abstractmethod
    async def consume(self, email: str, code: str) -> Challenge:
        """Atomically mark the matching challenge consumed.

        Raises:
            ChallengeNotFound: no live challenge (never issued, superseded,
                invalidated or exhausted)
            ChallengeAlreadyConsumed: another caller already used it
            ChallengeExpired: presented after ``expires_at``
            ChallengeMismatch: wrong code, attempts remain
            ChallengeExhausted: wrong code and this attempt spent the budget
        """

    @abstractmethod
    async def invalidate(self, email: str) -> bool:
        """Drop any challenge for the email. Returns True if one existed."""

    @abstractmethod
    async def get(self, email: str) -> Challenge | None:
        """Current challenge for the email, in whatever state it is."""

    @abstractmethod
    async def sweep(self) -> int:
        """Delete expired and consumed challenges. Returns the number removed."""

    async def last_issued_at(self, email: str) -> datetime | None:
        """When the most recent challenge for the email was issued."""
        challenge = await self.get(email)
        return challenge.created_at if challenge else None

    def _rate_limited(self, issued_at: datetime, now: datetime, min_interval: timedelta) -> RateLimited:
        remaining = min_interval - (now - issued_at)
        return RateLimited(retry_after=max(1, int(remaining.total_seconds()) + 1))

    def _wrong_code(self, attempts: int) -> ChallengeMismatch | ChallengeExhausted:
        if attempts >= self.max_attempts:
            return ChallengeExhausted()
        return ChallengeMismatch(attempts=attempts, attempts_remaining=self.max_attempts - attempts)


class InMemoryChallengeStore(ChallengeStore):
    """Challenge store for a single process.

    Note: Suitable for development, tests and single-worker deployments.
    Use the database store when more than one process serves requests.
    """

    def __init__(
        self,
        max_attempts: int | None = None,
        clock: Clock = utcnow,
        secret: str | None = None,
    ) -> None:
        super().__init__(max_attempts=max_attempts, clock=clock, secret=secret)
        self._challenges: dict[str, Challenge] = {}
        self._locks = KeyedLock()

    async def put(self, email: str, code: str, ttl: timedelta) -> Challenge:
        now = self.clock()
        challenge = Challenge(
            email=email,
            code_hash=self._hash(email, code),
            created_at=now,
            expires_at=now + ttl,
        )
        async with self._locks.hold(email):
            self._challenges[email] = challenge
        return challenge

    async def put_if_idle(self, email: str, code: str, ttl: timedelta, min_interval: timedelta) -> Challenge:
        async with self._locks.hold(email):
            now = self.clock()
            current = self._challenges.get(email)
            if current is not None and now - current.created_at < min_interval:
                raise self._rate_limited(current.created_at, now, min_interval)
            challenge = Challenge(
                email=email,
                code_hash=self._hash(email, code),
                created_at=now,
                expires_at=now + ttl,
            )
            self._challenges[email] = challenge
            return challenge

    async def consume(self, email: str, code: str) -> Challenge:
        async with self._locks.hold(email):
            challenge = self._challenges.get(email)
            if challenge is None or challenge.attempts >= self.max_attempts:
                raise ChallengeNotFound()
            if challenge.consumed:
                raise ChallengeAlreadyConsumed()
            if challenge.is_expired(self.clock()):
                raise ChallengeExpired()

            if not hmac.compare_digest(challenge.code_hash, self._hash(email, code)):
                attempts = challenge.attempts + 1
                self._challenges[email] = replace(challenge, attempts=attempts)
                raise self._wrong_code(attempts)

            consumed = replace(challenge, consumed=True)
            self._challenges[email] = consumed
            return consumed

    async def invalidate(self, email: str) -> bool:
        async with self._locks.hold(email):
            return self._challenges.pop(email, None) is not None

    async def get(self, email: str) -> Challenge | None:
        return self._challenges.get(email)

    async def sweep(self) -> int:
        now = self.clock()
        stale = [
            email
            for email, challenge in self._challenges.items()
            if challenge.consumed or challenge.is_expired(now)
        ]
        removed = 0
        for email in stale:
            async with self._locks.hold(email):
                challenge = self._challenges.get(email)
                # Re-check: a new code may have been issued while we waited
                if challenge and (challenge.consumed or challenge.is_expired(now)):
                    del self._challenges[email]
                    removed += 1
        return removed


def _to_challenge(row: OTPChallenge) -> Challenge:
    return Challenge(
        email=row.email,
        code_hash=row.code_hash,
        created_at=as_utc(row.created_at),
        expires_at=as_utc(row.expires_at),
        consumed=row.consumed,
        attempts=row.attempts,
    )


class DatabaseChallengeStore(ChallengeStore):
    """Challenge store backed by the ``otp_challenges`` table.

    Each operation runs in its own short transaction. Consumption is a single
    conditional UPDATE, so the database decides the winner of any race.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_attempts: int | None = None,
        clock: Clock = utcnow,
        secret: str | None = None,
    ) -> None:
        super().__init__(max_attempts=max_attempts, clock=clock, secret=secret)
        self._session_factory = session_factory

    async def _replace(self, email: str, code_hash: str, ttl: timedelta) -> Challenge:
        now = self.clock()
        row = OTPChallenge(email=email, code_hash=code_hash, created_at=now, expires_at=now + ttl)
        async with self._session_factory() as session:
            await session.execute(delete(OTPChallenge).where(OTPChallenge.email == email))
            session.add(row)
            await session.commit()
        return _to_challenge(row)

    async def put(self, email: str, code: str, ttl: timedelta) -> Challenge:
        code_hash = self._hash(email, code)
        try:
            # A concurrent put for the same email can win the insert; replace it again
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(PUT_RETRIES),
                retry=retry_if_exception_type(IntegrityError),
                reraise=True,
            ):
                with attempt:
                    return await self._replace(email, code_hash, ttl)
        except SQLAlchemyError as e:
            logger.error(f"Failed to store challenge for {email}: {e!r}")
            raise ServiceUnavailable("Challenge store unavailable") from e
        raise ServiceUnavailable("Could not store challenge")

    async def put_if_idle(self, email: str, code: str, ttl: timedelta, min_interval: timedelta) -> Challenge:
        now = self.clock()
        row = OTPChallenge(
            email=email,
            code_hash=self._hash(email, code),
            created_at=now,
            expires_at=now + ttl,
        )
        try:
            async with self._session_factory() as session:
                # Only an idle challenge is replaced; a recent one keeps its row and blocks the insert
                await session.execute(
                    delete(OTPChallenge)
                    .where(OTPChallenge.email == email)
                    .where(OTPChallenge.created_at <= now - min_interval)
                )
                session.add(row)
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    current = await session.get(OTPChallenge, email)
                    issued_at = as_utc(current.created_at) if current else now
                    raise self._rate_limited(issued_at, now, min_interval) from None
            return _to_challenge(row)
        except SQLAlchemyError as e:
            logger.error(f"Failed to store challenge for {email}: {e!r}")
            raise ServiceUnavailable("Challenge store unavailable") from e

    async def consume(self, email: str, code: str) -> Challenge:
        code_hash = self._hash(email, code)
        try:
            async with self._session_factory() as session:
                now = self.clock()
                claimed = await session.execute(
                    update(OTPChallenge)
                    .where(OTPChallenge.email == email)
                    .where(OTPChallenge.code_hash == code_hash)
                    .where(OTPChallenge.consumed == False)  # noqa: E712
                    .where(OTPChallenge.attempts < self.max_attempts)
                    .where(OTPChallenge.expires_at > now)
                    .values(consumed=True, consumed_at=now)
                )
                if claimed.rowcount == 1:
                    await session.commit()
                    row = await session.get(OTPChallenge, email)
                    if row is None:
                        raise ChallengeNotFound()
                    return _to_challenge(row)

                # Nothing claimed: work out why
                row = (
                    await session.execute(select(OTPChallenge).where(OTPChallenge.email == email))
                ).scalar_one_or_none()
                if row is None or row.attempts >= self.max_attempts:
                    raise ChallengeNotFound()
                if row.consumed:
                    raise ChallengeAlreadyConsumed()
                if as_utc(row.expires_at) <= now:
                    raise ChallengeExpired()

                attempts = (
                    await session.execute(
                        update(OTPChallenge)
                        .where(OTPChallenge.email == email)
                        .where(OTPChallenge.consumed == False)  # noqa: E712
                        .where(OTPChallenge.attempts < self.max_attempts)
                        .values(attempts=OTPChallenge.attempts + 1)
                        .returning(OTPChallenge.attempts)
                        .execution_options(synchronize_session=False)
                    )
                ).scalar_one_or_none()
                await session.commit()
                if attempts is None:
                    # A concurrent attempt spent the budget first
                    raise ChallengeNotFound()
                raise self._wrong_code(attempts)
        except SQLAlchemyError as e:
            logger.error(f"Failed to verify challenge for {email}: {e!r}")
            raise ServiceUnavailable("Challenge store unavailable") from e

    async def invalidate(self, email: str) -> bool:
        try:
            async with self._session_factory() as session:
                result = await session.execute(delete(OTPChallenge).where(OTPChallenge.email == email))
                await session.commit()
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise ServiceUnavailable("Challenge store unavailable") from e

    async def get(self, email: str) -> Challenge | None:
        try:
            async with self._session_factory() as session:
                row = await session.get(OTPChallenge, email)
                return _to_challenge(row) if row else None
        except SQLAlchemyError as e:
            raise ServiceUnavailable("Challenge store unavailable") from e

    async def sweep(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(OTPChallenge).where(
                    or_(OTPChallenge.consumed == True, OTPChallenge.expires_at <= self.clock())  # noqa: E712
                )
            )
            await session.commit()
            return result.rowcount
