from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from ..domain.errors import BookingNotFound, CrossTenantAccessDenied, ServiceNotFound, SlotNotFound, StaffNotFound
from ..domain.ledger import CapacityLedger
from ..domain.lifecycle import (
    SideEffect,
    check_transition,
    ensure_editable,
    ensure_staff_assignable,
    initial_status,
    is_repeat,
)
from ..domain.repositories import (
    BookingRepository,
    CustomerRef,
    ServiceCatalog,
    SlotRepository,
    TenantRepository,
)
from ..models import Booking, BookingStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompensationPolicy:
    max_attempts: int = 3
    backoff_seconds: float = 0.05


@dataclass(frozen=True)
class StatusChange:
    booking: Booking
    previous_status: BookingStatus
    changed: bool
    side_effect: SideEffect = SideEffect.NONE


async def create_booking(
    slot_repo: SlotRepository,
    booking_repo: BookingRepository,
    tenant_repo: TenantRepository,
    catalog: ServiceCatalog,
    *,
    tenant_id: int,
    slot_id: int,
    service_id: int,
    customer: CustomerRef,
    notes: str | None = None,
    special_requests: dict[str, Any] | None = None,
    compensation: CompensationPolicy = CompensationPolicy(),
) -> Booking:
    quote = await catalog.quote(tenant_id, service_id)
    if quote is None:
        raise ServiceNotFound()
    return await _reserve_and_record(
        slot_repo,
        booking_repo,
        tenant_repo,
        tenant_id=tenant_id,
        slot_id=slot_id,
        service_id=quote.service_id,
        price=quote.price,
        customer=customer,
        notes=notes,
        special_requests=special_requests,
        compensation=compensation,
    )


async def book_slot(
    slot_repo: SlotRepository,
    booking_repo: BookingRepository,
    tenant_repo: TenantRepository,
    *,
    tenant_id: int,
    slot_id: int,
    customer: CustomerRef,
    compensation: CompensationPolicy = CompensationPolicy(),
) -> Booking:
    """Take one seat on a slot for a customer without a catalog service attached."""
    return await _reserve_and_record(
        slot_repo,
        booking_repo,
        tenant_repo,
        tenant_id=tenant_id,
        slot_id=slot_id,
        service_id=None,
        price=None,
        customer=customer,
        notes=None,
        special_requests=None,
        compensation=compensation,
    )


async def unbook_slot(
    slot_repo: SlotRepository,
    booking_repo: BookingRepository,
    *,
    tenant_id: int,
    slot_id: int,
    customer: CustomerRef | None = None,
) -> StatusChange:
    if await slot_repo.get(tenant_id, slot_id) is None:
        raise SlotNotFound()
    booking = await booking_repo.find_active_on_slot(tenant_id, slot_id, customer=customer)
    if booking is None:
        raise BookingNotFound("no active booking on this slot")
    return await update_booking_status(
        slot_repo,
        booking_repo,
        tenant_id=tenant_id,
        booking_id=booking.id,
        new_status=BookingStatus.CANCELLED,
    )


async def update_booking_status(
    slot_repo: SlotRepository,
    booking_repo: BookingRepository,
    *,
    tenant_id: int,
    booking_id: int,
    new_status: BookingStatus,
) -> StatusChange:
    # The row lock makes the status check below the gate for capacity release.
    booking = await booking_repo.get_for_update(tenant_id, booking_id)
    if booking is None:
        raise BookingNotFound()
    previous = booking.status
    if is_repeat(previous, new_status):
        return StatusChange(booking=booking, previous_status=previous, changed=False)

    effect = check_transition(previous, new_status)
    if effect is SideEffect.RELEASE_CAPACITY:
        await CapacityLedger(slot_repo).release(tenant_id, booking.time_slot_id)
    booking.status = new_status
    booking = await booking_repo.save(booking)
    logger.info(
        "booking %s of tenant %s moved %s -> %s",
        booking.id,
        tenant_id,
        previous.value,
        new_status.value,
    )
    return StatusChange(booking=booking, previous_status=previous, changed=True, side_effect=effect)


async def assign_staff(
    booking_repo: BookingRepository,
    tenant_repo: TenantRepository,
    *,
    tenant_id: int,
    booking_id: int,
    staff_id: int | None,
) -> Booking:
    booking = await booking_repo.get_for_update(tenant_id, booking_id)
    if booking is None:
        raise BookingNotFound()
    ensure_staff_assignable(booking.status)
    if staff_id is not None and not await tenant_repo.is_member(tenant_id, staff_id):
        raise StaffNotFound()
    booking.staff_id = staff_id
    return await booking_repo.save(booking)


async def update_booking_details(
    booking_repo: BookingRepository,
    *,
    tenant_id: int,
    booking_id: int,
    notes: str | None = None,
    special_requests: dict[str, Any] | None = None,
) -> Booking:
    """Edit the free-text parts of an open booking; ``None`` leaves a field as is."""
    booking = await booking_repo.get_for_update(tenant_id, booking_id)
    if booking is None:
        raise BookingNotFound()
    ensure_editable(booking.status)
    if notes is not None:
        booking.notes = notes
    if special_requests is not None:
        booking.special_requests = special_requests
    return await booking_repo.save(booking)


async def cancel_customer_booking(
    slot_repo: SlotRepository,
    booking_repo: BookingRepository,
    *,
    tenant_id: int,
    booking_id: int,
    customer_id: int,
) -> StatusChange:
    # Someone else's booking answers exactly like a missing one.
    booking = await booking_repo.get(tenant_id, booking_id)
    if booking is None or booking.customer_id != customer_id:
        raise BookingNotFound()
    return await update_booking_status(
        slot_repo,
        booking_repo,
        tenant_id=tenant_id,
        booking_id=booking_id,
        new_status=BookingStatus.CANCELLED,
    )


async def get_booking(booking_repo: BookingRepository, *, tenant_id: int, booking_id: int) -> Booking:
    booking = await booking_repo.get(tenant_id, booking_id)
    if booking is None:
        raise BookingNotFound()
    return booking


async def list_bookings(
    booking_repo: BookingRepository,
    *,
    tenant_id: int,
    status: BookingStatus | None = None,
    customer_id: int | None = None,
) -> list[Booking]:
    return await booking_repo.list_for_tenant(tenant_id, status=status, customer_id=customer_id)


async def _reserve_and_record(
    slot_repo: SlotRepository,
    booking_repo: BookingRepository,
    tenant_repo: TenantRepository,
    *,
    tenant_id: int,
    slot_id: int,
    service_id: int | None,
    price: Decimal | None,
    customer: CustomerRef,
    notes: str | None,
    special_requests: dict[str, Any] | None,
    compensation: CompensationPolicy,
) -> Booking:
    tenant = await tenant_repo.get_settings(tenant_id)
    if tenant is None:
        raise CrossTenantAccessDenied()
    status = initial_status(auto_confirm=tenant.auto_confirm_bookings)

    ledger = CapacityLedger(slot_repo)
    await ledger.reserve(tenant_id, slot_id)
    try:
        booking = await booking_repo.create(
            tenant_id=tenant_id,
            slot_id=slot_id,
            service_id=service_id,
            customer=customer,
            status=status,
            price=price,
            notes=notes,
            special_requests=special_requests,
        )
    except Exception:
        # A transactional store rolls the reservation back with the booking.
        if not booking_repo.transactional:
            await ledger.compensate(
                tenant_id,
                slot_id,
                max_attempts=compensation.max_attempts,
                backoff_seconds=compensation.backoff_seconds,
            )
        raise
    logger.info(
        "booking %s created on slot %s of tenant %s as %s",
        booking.id,
        slot_id,
        tenant_id,
        status.value,
    )
    return booking
