from __future__ import annotations

from types import TracebackType

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .collaborators import SqlAlchemyServiceCatalog
from .repositories import (
    SqlAlchemyBookingRepository,
    SqlAlchemySlotRepository,
    SqlAlchemyTenantRepository,
)


class SqlAlchemyUnitOfWork:
    """Session plus repositories sharing one transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory
        self.session: AsyncSession | None = None

    async def __aenter__(self) -> "SqlAlchemyUnitOfWork":
        # The session autobegins on its first statement.
        session = self.session_factory()
        self.session = session
        self.slots = SqlAlchemySlotRepository(session)
        self.bookings = SqlAlchemyBookingRepository(session)
        self.tenants = SqlAlchemyTenantRepository(session)
        self.services = SqlAlchemyServiceCatalog(session)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        session = self.session
        assert session is not None
        try:
            if exc_type is None:
                await session.commit()
            else:
                await session.rollback()
        finally:
            await session.close()
            self.session = None
