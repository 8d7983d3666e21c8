"""User directory: verified email to stable user identity."""

import logging
from abc import ABC, abstractmethod

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from clarity.models import User
from clarity.services.errors import ServiceUnavailable, UserDirectoryConflict
from clarity.utils.locks import KeyedLock

logger = logging.getLogger(__name__)

# Insert races are resolved by re-reading the winner's row
CONFLICT_RETRIES = 3


class UserDirectory(ABC):
    """Get-or-create lookup of users by email."""

    @abstractmethod
    async def get_or_create(self, email: str) -> User:
        """Return the user for ``email``, creating it on first sight."""

    @abstractmethod
    async def get(self, user_id: str) -> User | None:
        """Look up a user by id."""


class InMemoryUserDirectory(UserDirectory):
    """User directory for a single process."""

    def __init__(self) -> None:
        self._by_email: dict[str, User] = {}
        self._by_id: dict[str, User] = {}
        self._locks = KeyedLock()

    async def get_or_create(self, email: str) -> User:
        async with self._locks.hold(email):
            user = self._by_email.get(email)
            if user is None:
                user = User(email=email)
                self._by_email[email] = user
                self._by_id[user.id] = user
                logger.info(f"Created user {user.id}")
            return user

    async def get(self, user_id: str) -> User | None:
        return self._by_id.get(user_id)

    def __len__(self) -> int:
        return len(self._by_email)


class DatabaseUserDirectory(UserDirectory):
    """User directory backed by the ``users`` table and its unique email index."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _find(self, session: AsyncSession, email: str) -> User | None:
        result = await session.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    async def _create(self, email: str) -> User:
        async with self._session_factory() as session:
            user = await self._find(session, email)
            if user is not None:
                return user
            user = User(email=email)
            session.add(user)
            try:
                await session.commit()
            except IntegrityError as e:
                raise UserDirectoryConflict(f"User {email} created concurrently") from e
            logger.info(f"Created user {user.id}")
            return user

    async def get_or_create(self, email: str) -> User:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(CONFLICT_RETRIES),
                retry=retry_if_exception_type(UserDirectoryConflict),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.debug(f"User insert race for {email}, re-reading")
                    return await self._create(email)
        except UserDirectoryConflict as e:
            raise ServiceUnavailable("Could not resolve user") from e
        except SQLAlchemyError as e:
            logger.error(f"User directory unavailable: {e!r}")
            raise ServiceUnavailable("User directory unavailable") from e
        raise ServiceUnavailable("Could not resolve user")

    async def get(self, user_id: str) -> User | None:
        try:
            async with self._session_factory() as session:
                return await session.get(User, user_id)
        except SQLAlchemyError as e:
            raise ServiceUnavailable("User directory unavailable") from e
