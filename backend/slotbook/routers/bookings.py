from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, status

from ..deps import get_caller, get_current_user_id, get_scheduling_engine
from ..domain.errors import DomainError
from ..domain.guard import CallerIdentity
from ..engine import SchedulingEngine
from ..models import BookingStatus
from ..schemas import BookingCreate, BookingDetailsUpdate, BookingRead, BookingStatusUpdate, StaffAssign
from ..usecases.bookings import StatusChange
from .errors import audit, http_error, unwrap

router = APIRouter(
    prefix="/tenants/{tenant_id}/bookings",
    tags=["bookings"],
    dependencies=[Depends(get_current_user_id)],
)


@router.post("", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate,
    tenant_id: int = Path(..., ge=1),
    caller: CallerIdentity = Depends(get_caller),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
) -> BookingRead:
    try:
        customer = payload.to_ref()
    except DomainError as exc:
        raise http_error(exc) from exc
    booking = unwrap(
        await engine.create_booking(
            caller,
            tenant_id,
            service_id=payload.service_id,
            slot_id=payload.slot_id,
            customer=customer,
            notes=payload.notes,
            special_requests=payload.special_requests,
        )
    )
    audit(
        action="booking.created",
        tenant_id=tenant_id,
        user_id=caller.user_id,
        slot_id=booking.time_slot_id,
        booking_id=booking.id,
        status_to=booking.status,
    )
    return BookingRead.from_db(booking=booking)


@router.get("", response_model=List[BookingRead])
async def list_bookings(
    tenant_id: int = Path(..., ge=1),
    status_filter: Optional[BookingStatus] = Query(default=None, alias="status"),
    customer_id: Optional[int] = Query(default=None, ge=1),
    caller: CallerIdentity = Depends(get_caller),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
) -> list[BookingRead]:
    bookings = unwrap(
        await engine.list_bookings(caller, tenant_id, status=status_filter, customer_id=customer_id)
    )
    return [BookingRead.from_db(booking=booking) for booking in bookings]


@router.get("/mine", response_model=List[BookingRead])
async def list_my_bookings(
    tenant_id: int = Path(..., ge=1),
    status_filter: Optional[BookingStatus] = Query(default=None, alias="status"),
    caller: CallerIdentity = Depends(get_caller),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
) -> list[BookingRead]:
    bookings = unwrap(await engine.list_customer_bookings(caller, tenant_id, status=status_filter))
    return [BookingRead.from_db(booking=booking) for booking in bookings]


@router.post("/mine/{booking_id}/cancel", response_model=BookingRead)
async def cancel_my_booking(
    tenant_id: int = Path(..., ge=1),
    booking_id: int = Path(..., ge=1),
    caller: CallerIdentity = Depends(get_caller),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
) -> BookingRead:
    change = unwrap(await engine.cancel_customer_booking(caller, tenant_id, booking_id))
    _audit_status_change(tenant_id, caller, change)
    return BookingRead.from_db(booking=change.booking)


@router.get("/{booking_id}", response_model=BookingRead)
async def get_booking(
    tenant_id: int = Path(..., ge=1),
    booking_id: int = Path(..., ge=1),
    caller: CallerIdentity = Depends(get_caller),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
) -> BookingRead:
    booking = unwrap(await engine.get_booking(caller, tenant_id, booking_id))
    return BookingRead.from_db(booking=booking)


@router.patch("/{booking_id}", response_model=BookingRead)
async def update_booking_details(
    payload: BookingDetailsUpdate,
    tenant_id: int = Path(..., ge=1),
    booking_id: int = Path(..., ge=1),
    caller: CallerIdentity = Depends(get_caller),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
) -> BookingRead:
    booking = unwrap(
        await engine.update_booking_details(
            caller,
            tenant_id,
            booking_id,
            notes=payload.notes,
            special_requests=payload.special_requests,
        )
    )
    audit(
        action="booking.updated",
        tenant_id=tenant_id,
        user_id=caller.user_id,
        booking_id=booking.id,
        extra={"fields": sorted(payload.model_dump(exclude_none=True))},
    )
    return BookingRead.from_db(booking=booking)


@router.put("/{booking_id}/status", response_model=BookingRead)
async def update_booking_status(
    payload: BookingStatusUpdate,
    tenant_id: int = Path(..., ge=1),
    booking_id: int = Path(..., ge=1),
    caller: CallerIdentity = Depends(get_caller),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
) -> BookingRead:
    change = unwrap(await engine.change_booking_status(caller, tenant_id, booking_id, payload.status))
    _audit_status_change(tenant_id, caller, change)
    return BookingRead.from_db(booking=change.booking)


@router.post("/{booking_id}/cancel", response_model=BookingRead)
async def cancel_booking(
    tenant_id: int = Path(..., ge=1),
    booking_id: int = Path(..., ge=1),
    caller: CallerIdentity = Depends(get_caller),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
) -> BookingRead:
    change = unwrap(
        await engine.change_booking_status(caller, tenant_id, booking_id, BookingStatus.CANCELLED)
    )
    _audit_status_change(tenant_id, caller, change)
    return BookingRead.from_db(booking=change.booking)


@router.put("/{booking_id}/staff", response_model=BookingRead)
async def assign_staff(
    payload: StaffAssign,
    tenant_id: int = Path(..., ge=1),
    booking_id: int = Path(..., ge=1),
    caller: CallerIdentity = Depends(get_caller),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
) -> BookingRead:
    booking = unwrap(await engine.assign_staff(caller, tenant_id, booking_id, payload.staff_id))
    audit(
        action="booking.staff_assigned",
        tenant_id=tenant_id,
        user_id=caller.user_id,
        booking_id=booking.id,
        extra={"staff_id": booking.staff_id},
    )
    return BookingRead.from_db(booking=booking)


def _audit_status_change(tenant_id: int, caller: CallerIdentity, change: StatusChange) -> None:
    # A repeated request leaves nothing to record.
    if not change.changed:
        return
    booking = change.booking
    audit(
        action="booking.status_changed",
        tenant_id=tenant_id,
        user_id=caller.user_id,
        slot_id=booking.time_slot_id,
        booking_id=booking.id,
        status_from=change.previous_status,
        status_to=booking.status,
    )
