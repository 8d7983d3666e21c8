"""Access and refresh token issuance.

Access tokens are signed JWTs carrying the user id and expiry, so any service
can validate them without a store lookup. Refresh tokens are opaque
``<token_id>.<secret>`` strings tracked server-side by id. Every refresh
rotates the presented token; presenting a rotated token again is treated as
theft and revokes the whole family (every token descended from one login).

Token values are never logged; log lines refer to token ids only.
"""

import hashlib
import hmac
import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from jose import JWTError, jwt
from sqlalchemy import delete, insert, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clarity.config import settings
from clarity.models import RefreshToken
from clarity.models.base import generate_nanoid
from clarity.services.errors import ServiceUnavailable, TokenExpired, TokenInvalid, TokenReused
from clarity.utils.locks import KeyedLock
from clarity.utils.time import Clock, as_utc, utcnow

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_SECRET_BYTES = 32


@dataclass(frozen=True)
class RefreshRecord:
    """Server-side state of one refresh token."""

    id: str
    user_id: str
    family_id: str
    token_hash: str
    created_at: datetime
    expires_at: datetime
    revoked: bool = False
    replaced_by: str | None = None
    revoked_at: datetime | None = None


@dataclass(frozen=True)
class TokenPair:
    """A freshly issued session: access token plus its rotating refresh token."""

    user_id: str
    access_token: str
    access_expires_at: datetime
    refresh_token: str
    refresh_expires_at: datetime
    issued_at: datetime


def hash_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode()).hexdigest()


def parse_refresh_token(token: str) -> tuple[str, str]:
    """Split a refresh token into (token_id, secret)."""
    token_id, sep, secret = (token or "").strip().partition(".")
    if not sep or not token_id or not secret:
        raise TokenInvalid("Malformed refresh token")
    return token_id, secret


class RefreshTokenStore(ABC):
    """Revocation table for refresh tokens."""

    @abstractmethod
    async def add(self, record: RefreshRecord) -> None:
        """Record a newly issued token."""

    @abstractmethod
    async def get(self, token_id: str) -> RefreshRecord | None:
        """Look up a token by id."""

    @abstractmethod
    async def rotate(self, token_id: str, successor: RefreshRecord, now: datetime) -> bool:
        """Revoke ``token_id`` in favour of ``successor`` if it is still active.

        Exactly one of any number of concurrent calls for the same id returns
        True; the successor is only stored by that call.
        """

    @abstractmethod
    async def revoke_family(self, family_id: str, now: datetime) -> int:
        """Revoke every active token in a family. Returns the number revoked."""

    @abstractmethod
    async def prune(self, before: datetime) -> int:
        """Delete tokens that expired before ``before``. Returns the number removed."""


class InMemoryRefreshTokenStore(RefreshTokenStore):
    """Refresh token table for a single process."""

    def __init__(self) -> None:
        self._records: dict[str, RefreshRecord] = {}
        self._locks = KeyedLock()

    async def add(self, record: RefreshRecord) -> None:
        self._records[record.id] = record

    async def get(self, token_id: str) -> RefreshRecord | None:
        return self._records.get(token_id)

    async def rotate(self, token_id: str, successor: RefreshRecord, now: datetime) -> bool:
        async with self._locks.hold(token_id):
            current = self._records.get(token_id)
            if current is None or current.revoked:
                return False
            self._records[token_id] = replace(
                current, revoked=True, replaced_by=successor.id, revoked_at=now
            )
            self._records[successor.id] = successor
            return True

    async def revoke_family(self, family_id: str, now: datetime) -> int:
        revoked = 0
        for token_id, record in list(self._records.items()):
            if record.family_id == family_id and not record.revoked:
                self._records[token_id] = replace(record, revoked=True, revoked_at=now)
                revoked += 1
        return revoked

    async def prune(self, before: datetime) -> int:
        stale = [token_id for token_id, r in self._records.items() if r.expires_at < before]
        for token_id in stale:
            del self._records[token_id]
        return len(stale)

    def family(self, family_id: str) -> list[RefreshRecord]:
        return [r for r in self._records.values() if r.family_id == family_id]


def _to_record(row: RefreshToken) -> RefreshRecord:
    return RefreshRecord(
        id=row.id,
        user_id=row.user_id,
        family_id=row.family_id,
        token_hash=row.token_hash,
        created_at=as_utc(row.created_at),
        expires_at=as_utc(row.expires_at),
        revoked=row.revoked,
        replaced_by=row.replaced_by,
        revoked_at=as_utc(row.revoked_at) if row.revoked_at else None,
    )


def _to_values(record: RefreshRecord) -> dict:
    return {
        "id": record.id,
        "user_id": record.user_id,
        "family_id": record.family_id,
        "token_hash": record.token_hash,
        "created_at": record.created_at,
        "expires_at": record.expires_at,
        "revoked": record.revoked,
        "replaced_by": record.replaced_by,
        "revoked_at": record.revoked_at,
    }


class DatabaseRefreshTokenStore(RefreshTokenStore):
    """Refresh token table backed by ``refresh_tokens``.

    Rotation is a conditional UPDATE on the presented id plus the successor
    INSERT in one transaction, so only one rotation per id can commit.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def add(self, record: RefreshRecord) -> None:
        try:
            async with self._session_factory() as session:
                await session.execute(insert(RefreshToken).values(**_to_values(record)))
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to record refresh token {record.id}: {e!r}")
            raise ServiceUnavailable("Token store unavailable") from e

    async def get(self, token_id: str) -> RefreshRecord | None:
        try:
            async with self._session_factory() as session:
                row = await session.get(RefreshToken, token_id)
                return _to_record(row) if row else None
        except SQLAlchemyError as e:
            raise ServiceUnavailable("Token store unavailable") from e

    async def rotate(self, token_id: str, successor: RefreshRecord, now: datetime) -> bool:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    update(RefreshToken)
                    .where(RefreshToken.id == token_id)
                    .where(RefreshToken.revoked == False)  # noqa: E712
                    .values(revoked=True, replaced_by=successor.id, revoked_at=now)
                )
                if result.rowcount != 1:
                    await session.rollback()
                    return False
                await session.execute(insert(RefreshToken).values(**_to_values(successor)))
                await session.commit()
                return True
        except SQLAlchemyError as e:
            logger.error(f"Failed to rotate refresh token {token_id}: {e!r}")
            raise ServiceUnavailable("Token store unavailable") from e

    async def revoke_family(self, family_id: str, now: datetime) -> int:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    update(RefreshToken)
                    .where(RefreshToken.family_id == family_id)
                    .where(RefreshToken.revoked == False)  # noqa: E712
                    .values(revoked=True, revoked_at=now)
                )
                await session.commit()
                return result.rowcount
        except SQLAlchemyError as e:
            logger.error(f"Failed to revoke token family {family_id}: {e!r}")
            raise ServiceUnavailable("Token store unavailable") from e

    async def prune(self, before: datetime) -> int:
        async with self._session_factory() as session:
            result = await session.execute(delete(RefreshToken).where(RefreshToken.expires_at < before))
            await session.commit()
            return result.rowcount


class TokenIssuer:
    """Mints, validates and rotates session tokens."""

    def __init__(
        self,
        store: RefreshTokenStore,
        *,
        secret: str | None = None,
        algorithm: str | None = None,
        access_ttl: timedelta | None = None,
        refresh_ttl: timedelta | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.secret = secret or settings.session_secret
        self.algorithm = algorithm or settings.jwt_algorithm
        self.access_ttl = access_ttl or timedelta(hours=settings.access_token_expiration_hours)
        self.refresh_ttl = refresh_ttl or timedelta(days=settings.refresh_token_expiration_days)
        self.clock = clock

    def create_access_token(self, user_id: str, now: datetime | None = None) -> tuple[str, datetime]:
        """Create a signed access token. Returns (token, expires_at)."""
        issued = now or self.clock()
        expires = issued + self.access_ttl
        payload = {
            "sub": user_id,
            "type": ACCESS_TOKEN_TYPE,
            "iat": int(issued.timestamp()),
            "exp": int(expires.timestamp()),
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm), expires

    def validate_access_token(self, token: str) -> str:
        """Verify an access token and return its user id.

        Expiry is checked against this issuer's clock rather than by the JWT
        library, so every timestamp in the service comes from one source.

        Raises:
            TokenInvalid: bad signature, malformed, or not an access token
            TokenExpired: signature valid but past ``exp``
        """
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"verify_exp": False},
            )
        except JWTError as e:
            raise TokenInvalid("Invalid access token") from e

        user_id = payload.get("sub")
        expires = payload.get("exp")
        if payload.get("type") != ACCESS_TOKEN_TYPE or not user_id or not isinstance(expires, int | float):
            raise TokenInvalid("Invalid access token")
        if self.clock().timestamp() >= expires:
            raise TokenExpired("Access token expired")
        return user_id

    def _new_refresh(self, user_id: str, family_id: str, now: datetime) -> tuple[RefreshRecord, str]:
        secret = secrets.token_urlsafe(REFRESH_SECRET_BYTES)
        record = RefreshRecord(
            id=generate_nanoid(),
            user_id=user_id,
            family_id=family_id,
            token_hash=hash_secret(secret),
            created_at=now,
            expires_at=now + self.refresh_ttl,
        )
        return record, f"{record.id}.{secret}"

    def _pair(self, record: RefreshRecord, refresh_token: str, now: datetime) -> TokenPair:
        access_token, access_expires = self.create_access_token(record.user_id, now)
        return TokenPair(
            user_id=record.user_id,
            access_token=access_token,
            access_expires_at=access_expires,
            refresh_token=refresh_token,
            refresh_expires_at=record.expires_at,
            issued_at=now,
        )

    async def issue_session(self, user_id: str) -> TokenPair:
        """Start a new token family for ``user_id``."""
        now = self.clock()
        record, refresh_token = self._new_refresh(user_id, generate_nanoid(), now)
        await self.store.add(record)
        logger.info(f"Issued session for user {user_id} (family {record.family_id})")
        return self._pair(record, refresh_token, now)

    async def _lookup(self, refresh_token: str) -> RefreshRecord:
        token_id, secret = parse_refresh_token(refresh_token)
        record = await self.store.get(token_id)
        if record is None or not hmac.compare_digest(record.token_hash, hash_secret(secret)):
            raise TokenInvalid("Unknown refresh token")
        return record

    async def _reject_reuse(self, record: RefreshRecord, now: datetime) -> TokenReused:
        revoked = await self.store.revoke_family(record.family_id, now)
        logger.warning(
            f"Refresh token {record.id} reused for user {record.user_id}; "
            f"revoked {revoked} token(s) in family {record.family_id}"
        )
        return TokenReused()

    async def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a refresh token for a new pair, revoking the one presented.

        Raises:
            TokenInvalid: malformed, unknown, or revoked without a successor
            TokenExpired: past its expiry
            TokenReused: already rotated; the whole family is now revoked
        """
        record = await self._lookup(refresh_token)
        now = self.clock()

        if record.revoked:
            if record.replaced_by is not None:
                raise await self._reject_reuse(record, now)
            raise TokenInvalid("Refresh token revoked")
        if now >= record.expires_at:
            raise TokenExpired("Refresh token expired")

        successor, new_token = self._new_refresh(record.user_id, record.family_id, now)
        if not await self.store.rotate(record.id, successor, now):
            # Lost a race with a concurrent refresh of the same token
            raise await self._reject_reuse(record, now)

        logger.info(f"Rotated refresh token {record.id} -> {successor.id} for user {record.user_id}")
        return self._pair(successor, new_token, now)

    async def revoke(self, refresh_token: str) -> int:
        """Revoke the family of ``refresh_token`` (logout)."""
        record = await self._lookup(refresh_token)
        revoked = await self.store.revoke_family(record.family_id, self.clock())
        logger.info(f"Revoked {revoked} token(s) in family {record.family_id} for user {record.user_id}")
        return revoked

    async def prune(self) -> int:
        """Remove refresh tokens that expired more than one lifetime ago."""
        return await self.store.prune(self.clock() - self.refresh_ttl)
