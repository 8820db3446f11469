"""Default implementations of the collaborators the engine talks to."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..domain.repositories import (
    BookingEvent,
    NotificationDispatcher,
    ReceiptGenerator,
    ServiceCatalog,
    ServiceQuote,
)
from ..models import Booking, Receipt, Service
from ..utils.time import utc_now_naive

logger = logging.getLogger(__name__)


class SqlAlchemyServiceCatalog(ServiceCatalog):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def quote(self, tenant_id: int, service_id: int) -> ServiceQuote | None:
        service = await self.session.scalar(
            select(Service).where(Service.id == service_id, Service.tenant_id == tenant_id)
        )
        if service is None:
            return None
        return ServiceQuote(
            service_id=service.id,
            price=service.price,
            duration_minutes=service.duration_minutes,
        )


class SqlAlchemyReceiptGenerator(ReceiptGenerator):
    """Writes one receipt row per completed booking, in its own transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def generate(self, booking_id: int) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                booking = await session.get(Booking, booking_id)
                if booking is None:
                    raise LookupError(f"booking {booking_id} does not exist")
                existing = await session.scalar(select(Receipt.id).where(Receipt.booking_id == booking_id))
                if existing is not None:
                    logger.info("receipt for booking %s already exists", booking_id)
                    return
                session.add(
                    Receipt(
                        tenant_id=booking.tenant_id,
                        booking_id=booking.id,
                        amount=booking.price,
                        created_at=utc_now_naive(),
                    )
                )
        logger.info("receipt created for booking %s", booking_id)


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Hands events to the log; delivery channels subscribe downstream."""

    def __init__(self, logger_name: str = "slotbook.notifications") -> None:
        self._logger = logging.getLogger(logger_name)

    async def notify(self, event: BookingEvent) -> None:
        self._logger.info(
            "%s tenant=%s booking=%s status=%s previous=%s staff=%s",
            event.kind,
            event.tenant_id,
            event.booking_id,
            event.status.value,
            event.previous_status.value if event.previous_status else None,
            event.staff_id,
        )
