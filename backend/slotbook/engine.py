"""Entry point for every scheduling operation.

Each operation authorizes the caller for the requested tenant (customer
self-service operations by their own bookings instead), runs its use
case inside one unit of work, and reports the outcome as a ``Result``.
Expected domain conditions come back as ``Err``; storage failures are raised
as ``InfrastructureError`` so callers can tell "invalid request" from "try
again". Receipt generation and notifications run only after the unit of
work has committed and never undo it.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Awaitable, Callable, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from .config import Settings, get_settings
from .domain.errors import DomainError, InfrastructureError
from .domain.generator import GenerationReport, WorkingWeek
from .domain.guard import CallerIdentity, TenantGuard, TenantId
from .domain.ledger import CapacityLedger
from .domain.lifecycle import SideEffect
from .domain.repositories import (
    BookingEvent,
    CustomerRef,
    NotificationDispatcher,
    ReceiptGenerator,
    UnitOfWork,
)
from .domain.results import Err, Ok, Result
from .models import Booking, BookingStatus, TimeSlot
from .usecases import bookings as booking_usecase
from .usecases import slots as slot_usecase
from .usecases.bookings import CompensationPolicy, StatusChange

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SchedulingEngine:
    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        *,
        settings: Settings | None = None,
        guard: TenantGuard | None = None,
        receipts: ReceiptGenerator | None = None,
        notifier: NotificationDispatcher | None = None,
    ) -> None:
        self.uow_factory = uow_factory
        self.settings = settings or get_settings()
        self.guard = guard or TenantGuard()
        self.receipts = receipts
        self.notifier = notifier
        self.compensation = CompensationPolicy(
            max_attempts=self.settings.compensation_max_attempts,
            backoff_seconds=self.settings.compensation_backoff_seconds,
        )

    # slots

    async def generate_slots(
        self,
        caller: CallerIdentity | None,
        tenant_id: int,
        *,
        slot_duration_minutes: int,
        start_date: date,
        end_date: date,
        working_week: WorkingWeek | None = None,
        max_capacity: int = 1,
        today: date | None = None,
    ) -> Result[GenerationReport]:
        async def work(uow: UnitOfWork, scope: TenantId) -> GenerationReport:
            return await slot_usecase.generate_slots(
                uow.slots,
                uow.tenants,
                tenant_id=scope,
                slot_duration_minutes=slot_duration_minutes,
                start_date=start_date,
                end_date=end_date,
                settings=self.settings,
                working_week=working_week,
                max_capacity=max_capacity,
                today=today,
            )

        return await self._run("generate_slots", caller, tenant_id, work)

    async def create_slot(
        self,
        caller: CallerIdentity | None,
        tenant_id: int,
        *,
        start_time: datetime,
        end_time: datetime,
        max_capacity: int = 1,
    ) -> Result[TimeSlot]:
        async def work(uow: UnitOfWork, scope: TenantId) -> TimeSlot:
            return await slot_usecase.create_slot(
                uow.slots,
                uow.tenants,
                tenant_id=scope,
                start_time=start_time,
                end_time=end_time,
                max_capacity=max_capacity,
            )

        return await self._run("create_slot", caller, tenant_id, work)

    async def update_slot(
        self,
        caller: CallerIdentity | None,
        tenant_id: int,
        slot_id: int,
        *,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
    ) -> Result[TimeSlot]:
        async def work(uow: UnitOfWork, scope: TenantId) -> TimeSlot:
            return await slot_usecase.update_slot(
                uow.slots,
                uow.tenants,
                tenant_id=scope,
                slot_id=slot_id,
                start_time=start_time,
                end_time=end_time,
            )

        return await self._run("update_slot", caller, tenant_id, work)

    async def delete_slot(self, caller: CallerIdentity | None, tenant_id: int, slot_id: int) -> Result[None]:
        async def work(uow: UnitOfWork, scope: TenantId) -> None:
            await slot_usecase.delete_slot(uow.slots, uow.bookings, tenant_id=scope, slot_id=slot_id)

        return await self._run("delete_slot", caller, tenant_id, work)

    async def get_slot(self, caller: CallerIdentity | None, tenant_id: int, slot_id: int) -> Result[TimeSlot]:
        async def work(uow: UnitOfWork, scope: TenantId) -> TimeSlot:
            return await slot_usecase.get_slot(uow.slots, tenant_id=scope, slot_id=slot_id)

        return await self._run("get_slot", caller, tenant_id, work)

    async def list_slots(
        self,
        caller: CallerIdentity | None,
        tenant_id: int,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        weekday: int | None = None,
    ) -> Result[list[TimeSlot]]:
        async def work(uow: UnitOfWork, scope: TenantId) -> list[TimeSlot]:
            return await slot_usecase.list_slots(
                uow.slots, uow.tenants, tenant_id=scope, start=start, end=end, weekday=weekday
            )

        return await self._run("list_slots", caller, tenant_id, work)

    async def block_slot(self, caller: CallerIdentity | None, tenant_id: int, slot_id: int) -> Result[TimeSlot]:
        async def work(uow: UnitOfWork, scope: TenantId) -> TimeSlot:
            return await CapacityLedger(uow.slots).block(scope, slot_id)

        return await self._run("block_slot", caller, tenant_id, work)

    async def unblock_slot(self, caller: CallerIdentity | None, tenant_id: int, slot_id: int) -> Result[TimeSlot]:
        async def work(uow: UnitOfWork, scope: TenantId) -> TimeSlot:
            return await CapacityLedger(uow.slots).unblock(scope, slot_id)

        return await self._run("unblock_slot", caller, tenant_id, work)

    async def update_slot_capacity(
        self,
        caller: CallerIdentity | None,
        tenant_id: int,
        slot_id: int,
        new_max: int,
    ) -> Result[TimeSlot]:
        async def work(uow: UnitOfWork, scope: TenantId) -> TimeSlot:
            return await CapacityLedger(uow.slots).set_capacity(scope, slot_id, new_max)

        return await self._run("update_slot_capacity", caller, tenant_id, work)

    async def book_slot(
        self,
        caller: CallerIdentity | None,
        tenant_id: int,
        slot_id: int,
        customer: CustomerRef,
    ) -> Result[Booking]:
        async def work(uow: UnitOfWork, scope: TenantId) -> Booking:
            return await booking_usecase.book_slot(
                uow.slots,
                uow.bookings,
                uow.tenants,
                tenant_id=scope,
                slot_id=slot_id,
                customer=customer,
                compensation=self.compensation,
            )

        result = await self._run("book_slot", caller, tenant_id, work)
        if isinstance(result, Ok):
            await self._notify_created(result.value)
        return result

    async def unbook_slot(
        self,
        caller: CallerIdentity | None,
        tenant_id: int,
        slot_id: int,
        customer: CustomerRef | None = None,
    ) -> Result[Booking]:
        async def work(uow: UnitOfWork, scope: TenantId) -> StatusChange:
            return await booking_usecase.unbook_slot(
                uow.slots, uow.bookings, tenant_id=scope, slot_id=slot_id, customer=customer
            )

        change = await self._finish_status_change(await self._run("unbook_slot", caller, tenant_id, work))
        return _booking_of(change)

    # bookings

    async def create_booking(
        self,
        caller: CallerIdentity | None,
        tenant_id: int,
        *,
        service_id: int,
        slot_id: int,
        customer: CustomerRef,
        notes: str | None = None,
        special_requests: dict[str, Any] | None = None,
    ) -> Result[Booking]:
        async def work(uow: UnitOfWork, scope: TenantId) -> Booking:
            return await booking_usecase.create_booking(
                uow.slots,
                uow.bookings,
                uow.tenants,
                uow.services,
                tenant_id=scope,
                slot_id=slot_id,
                service_id=service_id,
                customer=customer,
                notes=notes,
                special_requests=special_requests,
                compensation=self.compensation,
            )

        result = await self._run("create_booking", caller, tenant_id, work)
        if isinstance(result, Ok):
            await self._notify_created(result.value)
        return result

    async def change_booking_status(
        self,
        caller: CallerIdentity | None,
        tenant_id: int,
        booking_id: int,
        new_status: BookingStatus,
    ) -> Result[StatusChange]:
        """Like ``update_booking_status`` but reports what actually happened.

        ``previous_status`` and ``changed`` are read under the booking's row
        lock, so they describe this request's own transition.
        """

        async def work(uow: UnitOfWork, scope: TenantId) -> StatusChange:
            return await booking_usecase.update_booking_status(
                uow.slots, uow.bookings, tenant_id=scope, booking_id=booking_id, new_status=new_status
            )

        return await self._finish_status_change(
            await self._run("update_booking_status", caller, tenant_id, work)
        )

    async def update_booking_status(
        self,
        caller: CallerIdentity | None,
        tenant_id: int,
        booking_id: int,
        new_status: BookingStatus,
    ) -> Result[Booking]:
        return _booking_of(await self.change_booking_status(caller, tenant_id, booking_id, new_status))

    async def cancel_booking(
        self,
        caller: CallerIdentity | None,
        tenant_id: int,
        booking_id: int,
    ) -> Result[Booking]:
        return await self.update_booking_status(caller, tenant_id, booking_id, BookingStatus.CANCELLED)

    async def update_booking_details(
        self,
        caller: CallerIdentity | None,
        tenant_id: int,
        booking_id: int,
        *,
        notes: str | None = None,
        special_requests: dict[str, Any] | None = None,
    ) -> Result[Booking]:
        async def work(uow: UnitOfWork, scope: TenantId) -> Booking:
            return await booking_usecase.update_booking_details(
                uow.bookings,
                tenant_id=scope,
                booking_id=booking_id,
                notes=notes,
                special_requests=special_requests,
            )

        return await self._run("update_booking_details", caller, tenant_id, work)

    async def assign_staff(
        self,
        caller: CallerIdentity | None,
        tenant_id: int,
        booking_id: int,
        staff_id: int | None,
    ) -> Result[Booking]:
        async def work(uow: UnitOfWork, scope: TenantId) -> Booking:
            return await booking_usecase.assign_staff(
                uow.bookings, uow.tenants, tenant_id=scope, booking_id=booking_id, staff_id=staff_id
            )

        result = await self._run("assign_staff", caller, tenant_id, work)
        if isinstance(result, Ok):
            booking = result.value
            await self._notify(
                BookingEvent(
                    kind="booking.staff_assigned",
                    tenant_id=booking.tenant_id,
                    booking_id=booking.id,
                    status=booking.status,
                    staff_id=booking.staff_id,
                )
            )
        return result

    async def get_booking(self, caller: CallerIdentity | None, tenant_id: int, booking_id: int) -> Result[Booking]:
        async def work(uow: UnitOfWork, scope: TenantId) -> Booking:
            return await booking_usecase.get_booking(uow.bookings, tenant_id=scope, booking_id=booking_id)

        return await self._run("get_booking", caller, tenant_id, work)

    async def list_bookings(
        self,
        caller: CallerIdentity | None,
        tenant_id: int,
        *,
        status: BookingStatus | None = None,
        customer_id: int | None = None,
    ) -> Result[list[Booking]]:
        async def work(uow: UnitOfWork, scope: TenantId) -> list[Booking]:
            return await booking_usecase.list_bookings(
                uow.bookings, tenant_id=scope, status=status, customer_id=customer_id
            )

        return await self._run("list_bookings", caller, tenant_id, work)

    # customer self-service

    async def list_customer_bookings(
        self,
        caller: CallerIdentity | None,
        tenant_id: int,
        *,
        status: BookingStatus | None = None,
    ) -> Result[list[Booking]]:
        async def work(uow: UnitOfWork, scope: TenantId) -> list[Booking]:
            assert caller is not None
            return await booking_usecase.list_bookings(
                uow.bookings, tenant_id=scope, status=status, customer_id=caller.user_id
            )

        return await self._run(
            "list_customer_bookings", caller, tenant_id, work, authorize=self.guard.authorize_customer
        )

    async def cancel_customer_booking(
        self,
        caller: CallerIdentity | None,
        tenant_id: int,
        booking_id: int,
    ) -> Result[StatusChange]:
        async def work(uow: UnitOfWork, scope: TenantId) -> StatusChange:
            assert caller is not None
            return await booking_usecase.cancel_customer_booking(
                uow.slots, uow.bookings, tenant_id=scope, booking_id=booking_id, customer_id=caller.user_id
            )

        return await self._finish_status_change(
            await self._run(
                "cancel_customer_booking", caller, tenant_id, work, authorize=self.guard.authorize_customer
            )
        )

    # plumbing

    async def _run(
        self,
        operation: str,
        caller: CallerIdentity | None,
        tenant_id: int,
        work: Callable[[UnitOfWork, TenantId], Awaitable[T]],
        *,
        authorize: Callable[[CallerIdentity | None, object], TenantId] | None = None,
    ) -> Result[T]:
        try:
            scope = (authorize or self.guard.authorize)(caller, tenant_id)
        except DomainError as exc:
            return Err(exc)

        try:
            async with self.uow_factory() as uow:
                value = await work(uow, scope)
        except DomainError as exc:
            logger.info("%s rejected for tenant %s: %s", operation, scope, exc.code)
            return Err(exc)
        except SQLAlchemyError as exc:
            logger.exception("%s failed for tenant %s", operation, scope)
            raise InfrastructureError(f"{operation} failed: storage unavailable") from exc
        return Ok(value)

    async def _finish_status_change(self, result: Result[StatusChange]) -> Result[StatusChange]:
        if not isinstance(result, Ok):
            return result
        change = result.value
        booking = change.booking
        if change.changed:
            if change.side_effect is SideEffect.GENERATE_RECEIPT:
                await self._generate_receipt(booking)
            await self._notify(
                BookingEvent(
                    kind="booking.status_changed",
                    tenant_id=booking.tenant_id,
                    booking_id=booking.id,
                    status=booking.status,
                    previous_status=change.previous_status,
                    staff_id=booking.staff_id,
                )
            )
        return result

    async def _generate_receipt(self, booking: Booking) -> None:
        if self.receipts is None:
            return
        try:
            await self.receipts.generate(booking.id)
        except Exception:
            # Completion is already committed; the receipt can be regenerated.
            logger.exception("receipt generation failed for booking %s", booking.id)

    async def _notify_created(self, booking: Booking) -> None:
        await self._notify(
            BookingEvent(
                kind="booking.created",
                tenant_id=booking.tenant_id,
                booking_id=booking.id,
                status=booking.status,
            )
        )

    async def _notify(self, event: BookingEvent) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier.notify(event)
        except Exception:
            logger.exception("notification %s for booking %s was not delivered", event.kind, event.booking_id)


def _booking_of(result: Result[StatusChange]) -> Result[Booking]:
    if isinstance(result, Ok):
        return Ok(result.value.booking)
    return result
