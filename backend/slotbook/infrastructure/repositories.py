from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.errors import OverlapConflict
from ..domain.generator import TimeRange, WorkingDay, WorkingWeek
from ..domain.repositories import (
    BookingRepository,
    CustomerRef,
    SlotRepository,
    TenantRepository,
    TenantSettings,
)
from ..models import (
    Booking,
    BookingStatus,
    Tenant,
    TenantMember,
    TimeSlot,
    WorkingBreak,
    WorkingHours,
)
from ..utils.time import utc_now_naive

ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


class SqlAlchemySlotRepository(SlotRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, tenant_id: int, slot_id: int) -> TimeSlot | None:
        # Counters change through bulk UPDATEs; always refresh identity-mapped rows.
        stmt = (
            select(TimeSlot)
            .where(TimeSlot.id == slot_id, TimeSlot.tenant_id == tenant_id)
            .execution_options(populate_existing=True)
        )
        return await self.session.scalar(stmt)

    async def list_in_range(
        self,
        tenant_id: int,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[TimeSlot]:
        stmt = select(TimeSlot).where(TimeSlot.tenant_id == tenant_id)
        if start is not None:
            stmt = stmt.where(TimeSlot.end_time > start)
        if end is not None:
            stmt = stmt.where(TimeSlot.start_time < end)
        stmt = stmt.order_by(TimeSlot.start_time).execution_options(populate_existing=True)
        return list((await self.session.scalars(stmt)).all())

    async def find_overlapping(
        self,
        tenant_id: int,
        start: datetime,
        end: datetime,
        *,
        exclude_slot_id: int | None = None,
    ) -> list[TimeSlot]:
        stmt = select(TimeSlot).where(
            TimeSlot.tenant_id == tenant_id,
            TimeSlot.start_time < end,
            TimeSlot.end_time > start,
        )
        if exclude_slot_id is not None:
            stmt = stmt.where(TimeSlot.id != exclude_slot_id)
        return list((await self.session.scalars(stmt)).all())

    async def create(
        self,
        *,
        tenant_id: int,
        start_time: datetime,
        end_time: datetime,
        max_capacity: int,
    ) -> TimeSlot:
        now = utc_now_naive()
        slot = TimeSlot(
            tenant_id=tenant_id,
            start_time=start_time,
            end_time=end_time,
            max_capacity=max_capacity,
            booked_count=0,
            is_blocked=False,
            created_at=now,
            updated_at=now,
        )
        self.session.add(slot)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise OverlapConflict("a slot with the same boundaries already exists") from exc
        return slot

    async def update_times(self, slot: TimeSlot, *, start_time: datetime, end_time: datetime) -> TimeSlot:
        slot.start_time = start_time
        slot.end_time = end_time
        slot.updated_at = utc_now_naive()
        self.session.add(slot)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise OverlapConflict("a slot with the same boundaries already exists") from exc
        return slot

    async def delete_if_unbooked(self, tenant_id: int, slot_id: int) -> bool:
        stmt = (
            delete(TimeSlot)
            .where(
                TimeSlot.id == slot_id,
                TimeSlot.tenant_id == tenant_id,
                TimeSlot.booked_count == 0,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def try_reserve(self, tenant_id: int, slot_id: int) -> bool:
        stmt = (
            update(TimeSlot)
            .where(
                TimeSlot.id == slot_id,
                TimeSlot.tenant_id == tenant_id,
                TimeSlot.booked_count < TimeSlot.max_capacity,
                TimeSlot.is_blocked.is_(False),
            )
            .values(booked_count=TimeSlot.booked_count + 1, updated_at=utc_now_naive())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def release(self, tenant_id: int, slot_id: int) -> bool:
        stmt = (
            update(TimeSlot)
            .where(
                TimeSlot.id == slot_id,
                TimeSlot.tenant_id == tenant_id,
                TimeSlot.booked_count > 0,
            )
            .values(booked_count=TimeSlot.booked_count - 1, updated_at=utc_now_naive())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def set_blocked(self, tenant_id: int, slot_id: int, blocked: bool) -> bool:
        stmt = (
            update(TimeSlot)
            .where(TimeSlot.id == slot_id, TimeSlot.tenant_id == tenant_id)
            .values(is_blocked=blocked, updated_at=utc_now_naive())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def set_capacity(self, tenant_id: int, slot_id: int, max_capacity: int) -> bool:
        stmt = (
            update(TimeSlot)
            .where(
                TimeSlot.id == slot_id,
                TimeSlot.tenant_id == tenant_id,
                TimeSlot.booked_count <= max_capacity,
            )
            .values(max_capacity=max_capacity, updated_at=utc_now_naive())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1


class SqlAlchemyBookingRepository(BookingRepository):
    transactional = True

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, tenant_id: int, booking_id: int) -> Booking | None:
        stmt = select(Booking).where(Booking.id == booking_id, Booking.tenant_id == tenant_id)
        return await self.session.scalar(stmt)

    async def get_for_update(self, tenant_id: int, booking_id: int) -> Booking | None:
        stmt = (
            select(Booking)
            .where(Booking.id == booking_id, Booking.tenant_id == tenant_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return await self.session.scalar(stmt)

    async def list_for_tenant(
        self,
        tenant_id: int,
        *,
        status: BookingStatus | None = None,
        customer_id: int | None = None,
    ) -> list[Booking]:
        stmt = select(Booking).where(Booking.tenant_id == tenant_id)
        if status is not None:
            stmt = stmt.where(Booking.status == status)
        if customer_id is not None:
            stmt = stmt.where(Booking.customer_id == customer_id)
        stmt = stmt.order_by(Booking.created_at.desc(), Booking.id.desc())
        return list((await self.session.scalars(stmt)).all())

    async def find_active_on_slot(
        self,
        tenant_id: int,
        slot_id: int,
        *,
        customer: CustomerRef | None = None,
    ) -> Booking | None:
        stmt = select(Booking).where(
            Booking.tenant_id == tenant_id,
            Booking.time_slot_id == slot_id,
            Booking.status.in_(ACTIVE_STATUSES),
        )
        if customer is not None:
            if customer.customer_id is not None:
                stmt = stmt.where(Booking.customer_id == customer.customer_id)
            else:
                stmt = stmt.where(Booking.non_user_email == customer.email)
        stmt = stmt.order_by(Booking.id.desc()).limit(1).with_for_update()
        return await self.session.scalar(stmt)

    async def has_bookings_on_slot(self, tenant_id: int, slot_id: int) -> bool:
        stmt = (
            select(Booking.id)
            .where(Booking.tenant_id == tenant_id, Booking.time_slot_id == slot_id)
            .limit(1)
        )
        return await self.session.scalar(stmt) is not None

    async def create(
        self,
        *,
        tenant_id: int,
        slot_id: int,
        service_id: int | None,
        customer: CustomerRef,
        status: BookingStatus,
        price: Decimal | None,
        notes: str | None,
        special_requests: dict[str, Any] | None,
    ) -> Booking:
        now = utc_now_naive()
        booking = Booking(
            tenant_id=tenant_id,
            time_slot_id=slot_id,
            service_id=service_id,
            customer_id=customer.customer_id,
            non_user_email=customer.email,
            status=status,
            short_code=new_short_code(),
            price=price,
            notes=notes,
            special_requests=special_requests,
            created_at=now,
            updated_at=now,
        )
        self.session.add(booking)
        await self.session.flush()
        return booking

    async def save(self, booking: Booking) -> Booking:
        booking.updated_at = utc_now_naive()
        self.session.add(booking)
        await self.session.flush()
        return booking


class SqlAlchemyTenantRepository(TenantRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_settings(self, tenant_id: int) -> TenantSettings | None:
        tenant = await self.session.scalar(select(Tenant).where(Tenant.id == tenant_id))
        if tenant is None:
            return None
        return TenantSettings(
            tenant_id=tenant.id,
            timezone=tenant.timezone,
            auto_confirm_bookings=tenant.auto_confirm_bookings,
            min_generation_days=tenant.min_generation_days,
            max_generation_days=tenant.max_generation_days,
        )

    async def lock(self, tenant_id: int) -> None:
        # Serializes slot writes of one tenant so overlap checks see a stable set.
        await self.session.scalar(select(Tenant.id).where(Tenant.id == tenant_id).with_for_update())

    async def working_week(self, tenant_id: int) -> WorkingWeek:
        openings: dict[int, list[TimeRange]] = defaultdict(list)
        breaks: dict[int, list[TimeRange]] = defaultdict(list)
        hours = await self.session.scalars(select(WorkingHours).where(WorkingHours.tenant_id == tenant_id))
        for row in hours:
            openings[row.weekday].append(TimeRange(start=row.open_time, end=row.close_time))
        pauses = await self.session.scalars(select(WorkingBreak).where(WorkingBreak.tenant_id == tenant_id))
        for row in pauses:
            breaks[row.weekday].append(TimeRange(start=row.start_time, end=row.end_time))
        return {
            weekday: WorkingDay(openings=tuple(ranges), breaks=tuple(breaks.get(weekday, ())))
            for weekday, ranges in openings.items()
        }

    async def is_member(self, tenant_id: int, user_id: int) -> bool:
        stmt = select(TenantMember.id).where(
            TenantMember.tenant_id == tenant_id,
            TenantMember.user_id == user_id,
        )
        return await self.session.scalar(stmt) is not None

    async def memberships(self, user_id: int) -> frozenset[int]:
        rows = await self.session.scalars(select(TenantMember.tenant_id).where(TenantMember.user_id == user_id))
        return frozenset(int(tenant_id) for tenant_id in rows)


def new_short_code() -> str:
    return uuid.uuid4().hex[:8].upper()
