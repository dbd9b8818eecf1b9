"""User lookup used by sign-in."""

from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from authguard.models.user import User


@dataclass(frozen=True)
class UserRecord:
    id: UUID
    name: str
    email: str
    password_hash: str


class UserLookup(Protocol):
    async def find_by_email(self, email: str) -> UserRecord | None: ...


class SqlAlchemyUserLookup:
    """Reads accounts from the ``users`` table. Emails are stored lower-case."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def find_by_email(self, email: str) -> UserRecord | None:
        async with self.session_factory() as session:
            result = await session.execute(select(User).where(User.email == email.lower()))
            user = result.scalar_one_or_none()

        if user is None:
            return None
        return UserRecord(
            id=user.id,
            name=user.name,
            email=user.email,
            password_hash=user.password_hash,
        )
