from __future__ import annotations

import logging
from datetime import date, datetime

from ..config import Settings
from ..domain.errors import (
    CrossTenantAccessDenied,
    InvalidCapacity,
    InvalidRange,
    OverlapConflict,
    SlotHasBookings,
    SlotNotFound,
)
from ..domain.generator import (
    GenerationReport,
    WorkingWeek,
    plan_slots,
    validate_generation_request,
)
from ..domain.repositories import BookingRepository, SlotRepository, TenantRepository, TenantSettings
from ..models import TimeSlot
from ..utils.time import find_zone, get_zone, today_in, utc_naive_to_zone

logger = logging.getLogger(__name__)


async def generate_slots(
    slot_repo: SlotRepository,
    tenant_repo: TenantRepository,
    *,
    tenant_id: int,
    slot_duration_minutes: int,
    start_date: date,
    end_date: date,
    settings: Settings,
    working_week: WorkingWeek | None = None,
    max_capacity: int = 1,
    today: date | None = None,
) -> GenerationReport:
    """Insert every missing slot boundary between ``start_date`` and ``end_date``.

    Re-running over an overlapping range is safe: a boundary that is already
    stored, or that would overlap a stored slot, is counted as skipped and
    nothing existing is touched.
    """
    tenant = await _require_tenant(tenant_repo, tenant_id)
    zone = find_zone(tenant.timezone)
    if zone is None:
        raise InvalidRange(f"tenant timezone {tenant.timezone!r} is not a known zone")
    validate_generation_request(
        slot_duration_minutes=slot_duration_minutes,
        start_date=start_date,
        end_date=end_date,
        today=today or today_in(zone),
        min_generation_days=_or_default(tenant.min_generation_days, settings.default_min_generation_days),
        max_generation_days=_or_default(tenant.max_generation_days, settings.default_max_generation_days),
        min_slot_duration_minutes=settings.min_slot_duration_minutes,
    )
    if max_capacity < 1:
        raise InvalidCapacity()
    week = working_week if working_week is not None else await tenant_repo.working_week(tenant_id)

    await tenant_repo.lock(tenant_id)
    created = skipped = 0
    for day, boundaries in plan_slots(
        start_date, end_date, week, slot_duration_minutes=slot_duration_minutes, zone=zone
    ):
        if not boundaries:
            continue
        # One snapshot per day; boundaries created below join it.
        existing = await slot_repo.list_in_range(
            tenant_id, start=boundaries[0].start_time, end=boundaries[-1].end_time
        )
        taken = [(slot.start_time, slot.end_time) for slot in existing]
        for boundary in boundaries:
            if any(start < boundary.end_time and boundary.start_time < end for start, end in taken):
                skipped += 1
                continue
            await slot_repo.create(
                tenant_id=tenant_id,
                start_time=boundary.start_time,
                end_time=boundary.end_time,
                max_capacity=max_capacity,
            )
            taken.append((boundary.start_time, boundary.end_time))
            created += 1
        logger.debug("planned %s boundaries for tenant %s on %s", len(boundaries), tenant_id, day)

    logger.info(
        "generated slots for tenant %s from %s to %s: created=%s skipped=%s",
        tenant_id,
        start_date,
        end_date,
        created,
        skipped,
    )
    return GenerationReport(created=created, skipped=skipped)


async def create_slot(
    slot_repo: SlotRepository,
    tenant_repo: TenantRepository,
    *,
    tenant_id: int,
    start_time: datetime,
    end_time: datetime,
    max_capacity: int = 1,
) -> TimeSlot:
    if start_time >= end_time:
        raise InvalidRange("start_time must be earlier than end_time")
    if max_capacity < 1:
        raise InvalidCapacity()
    await tenant_repo.lock(tenant_id)
    if await slot_repo.find_overlapping(tenant_id, start_time, end_time):
        raise OverlapConflict()
    return await slot_repo.create(
        tenant_id=tenant_id,
        start_time=start_time,
        end_time=end_time,
        max_capacity=max_capacity,
    )


async def update_slot(
    slot_repo: SlotRepository,
    tenant_repo: TenantRepository,
    *,
    tenant_id: int,
    slot_id: int,
    start_time: datetime | None = None,
    end_time: datetime | None = None,
) -> TimeSlot:
    await tenant_repo.lock(tenant_id)
    slot = await slot_repo.get(tenant_id, slot_id)
    if slot is None:
        raise SlotNotFound()
    new_start = start_time if start_time is not None else slot.start_time
    new_end = end_time if end_time is not None else slot.end_time
    if new_start >= new_end:
        raise InvalidRange("start_time must be earlier than end_time")
    if await slot_repo.find_overlapping(tenant_id, new_start, new_end, exclude_slot_id=slot.id):
        raise OverlapConflict()
    return await slot_repo.update_times(slot, start_time=new_start, end_time=new_end)


async def delete_slot(
    slot_repo: SlotRepository,
    booking_repo: BookingRepository,
    *,
    tenant_id: int,
    slot_id: int,
) -> None:
    slot = await slot_repo.get(tenant_id, slot_id)
    if slot is None:
        raise SlotNotFound()
    if slot.booked_count > 0:
        raise SlotHasBookings()
    # Cancelled bookings still point at the slot; keep their history intact.
    if await booking_repo.has_bookings_on_slot(tenant_id, slot_id):
        raise SlotHasBookings("slot is referenced by past bookings")
    if not await slot_repo.delete_if_unbooked(tenant_id, slot_id):
        raise SlotHasBookings()


async def get_slot(slot_repo: SlotRepository, *, tenant_id: int, slot_id: int) -> TimeSlot:
    slot = await slot_repo.get(tenant_id, slot_id)
    if slot is None:
        raise SlotNotFound()
    return slot


async def list_slots(
    slot_repo: SlotRepository,
    tenant_repo: TenantRepository,
    *,
    tenant_id: int,
    start: datetime | None = None,
    end: datetime | None = None,
    weekday: int | None = None,
) -> list[TimeSlot]:
    slots = await slot_repo.list_in_range(tenant_id, start=start, end=end)
    if weekday is None:
        return slots
    tenant = await _require_tenant(tenant_repo, tenant_id)
    zone = get_zone(tenant.timezone)
    return [slot for slot in slots if utc_naive_to_zone(slot.start_time, zone).weekday() == weekday]


async def _require_tenant(tenant_repo: TenantRepository, tenant_id: int) -> TenantSettings:
    tenant = await tenant_repo.get_settings(tenant_id)
    if tenant is None:
        raise CrossTenantAccessDenied()
    return tenant


def _or_default(value: int | None, default: int) -> int:
    return default if value is None else value
