from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Response, status

from ..deps import get_caller, get_current_user_id, get_scheduling_engine
from ..domain.errors import DomainError
from ..domain.guard import CallerIdentity
from ..engine import SchedulingEngine
from ..schemas import (
    BookingRead,
    GenerationResult,
    SlotBook,
    SlotCapacityUpdate,
    SlotCreate,
    SlotGenerateRequest,
    SlotRead,
    SlotUnbook,
    SlotUpdate,
)
from ..utils.time import to_utc_naive
from .errors import audit, http_error, unwrap

router = APIRouter(
    prefix="/tenants/{tenant_id}/slots",
    tags=["slots"],
    dependencies=[Depends(get_current_user_id)],
)


def _utc(value: Optional[datetime], field: str) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{field} must have timezone")
    return to_utc_naive(value)


@router.post("/generate", response_model=GenerationResult)
async def generate_slots(
    payload: SlotGenerateRequest,
    tenant_id: int = Path(..., ge=1),
    caller: CallerIdentity = Depends(get_caller),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
) -> GenerationResult:
    try:
        working_week = payload.working_week()
    except DomainError as exc:
        raise http_error(exc) from exc
    report = unwrap(
        await engine.generate_slots(
            caller,
            tenant_id,
            slot_duration_minutes=payload.slot_duration_minutes,
            start_date=payload.start_date,
            end_date=payload.end_date,
            working_week=working_week,
            max_capacity=payload.max_capacity,
        )
    )
    audit(
        action="slot.generated",
        tenant_id=tenant_id,
        user_id=caller.user_id,
        extra={"created": report.created, "skipped": report.skipped},
    )
    return GenerationResult.from_report(report)


@router.post("", response_model=SlotRead, status_code=status.HTTP_201_CREATED)
async def create_slot(
    payload: SlotCreate,
    tenant_id: int = Path(..., ge=1),
    caller: CallerIdentity = Depends(get_caller),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
) -> SlotRead:
    slot = unwrap(
        await engine.create_slot(
            caller,
            tenant_id,
            start_time=_utc(payload.start_time, "start_time"),
            end_time=_utc(payload.end_time, "end_time"),
            max_capacity=payload.max_capacity,
        )
    )
    audit(action="slot.created", tenant_id=tenant_id, user_id=caller.user_id, slot_id=slot.id)
    return SlotRead.from_db(slot=slot)


@router.get("", response_model=List[SlotRead])
async def list_slots(
    tenant_id: int = Path(..., ge=1),
    start: Optional[datetime] = Query(default=None, description="inclusive window start (ISO 8601 with offset)"),
    end: Optional[datetime] = Query(default=None, description="exclusive window end (ISO 8601 with offset)"),
    weekday: Optional[int] = Query(default=None, ge=0, le=6, description="0 = Monday, tenant local time"),
    caller: CallerIdentity = Depends(get_caller),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
) -> list[SlotRead]:
    slots = unwrap(
        await engine.list_slots(
            caller,
            tenant_id,
            start=_utc(start, "start"),
            end=_utc(end, "end"),
            weekday=weekday,
        )
    )
    return [SlotRead.from_db(slot=slot) for slot in slots]


@router.get("/{slot_id}", response_model=SlotRead)
async def get_slot(
    tenant_id: int = Path(..., ge=1),
    slot_id: int = Path(..., ge=1),
    caller: CallerIdentity = Depends(get_caller),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
) -> SlotRead:
    slot = unwrap(await engine.get_slot(caller, tenant_id, slot_id))
    return SlotRead.from_db(slot=slot)


@router.patch("/{slot_id}", response_model=SlotRead)
async def update_slot(
    payload: SlotUpdate,
    tenant_id: int = Path(..., ge=1),
    slot_id: int = Path(..., ge=1),
    caller: CallerIdentity = Depends(get_caller),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
) -> SlotRead:
    slot = unwrap(
        await engine.update_slot(
            caller,
            tenant_id,
            slot_id,
            start_time=_utc(payload.start_time, "start_time"),
            end_time=_utc(payload.end_time, "end_time"),
        )
    )
    audit(action="slot.updated", tenant_id=tenant_id, user_id=caller.user_id, slot_id=slot.id)
    return SlotRead.from_db(slot=slot)


@router.delete("/{slot_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_slot(
    tenant_id: int = Path(..., ge=1),
    slot_id: int = Path(..., ge=1),
    caller: CallerIdentity = Depends(get_caller),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
) -> Response:
    unwrap(await engine.delete_slot(caller, tenant_id, slot_id))
    audit(action="slot.deleted", tenant_id=tenant_id, user_id=caller.user_id, slot_id=slot_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{slot_id}/block", response_model=SlotRead)
async def block_slot(
    tenant_id: int = Path(..., ge=1),
    slot_id: int = Path(..., ge=1),
    caller: CallerIdentity = Depends(get_caller),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
) -> SlotRead:
    slot = unwrap(await engine.block_slot(caller, tenant_id, slot_id))
    audit(action="slot.blocked", tenant_id=tenant_id, user_id=caller.user_id, slot_id=slot_id)
    return SlotRead.from_db(slot=slot)


@router.post("/{slot_id}/unblock", response_model=SlotRead)
async def unblock_slot(
    tenant_id: int = Path(..., ge=1),
    slot_id: int = Path(..., ge=1),
    caller: CallerIdentity = Depends(get_caller),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
) -> SlotRead:
    slot = unwrap(await engine.unblock_slot(caller, tenant_id, slot_id))
    audit(action="slot.unblocked", tenant_id=tenant_id, user_id=caller.user_id, slot_id=slot_id)
    return SlotRead.from_db(slot=slot)


@router.put("/{slot_id}/capacity", response_model=SlotRead)
async def update_slot_capacity(
    payload: SlotCapacityUpdate,
    tenant_id: int = Path(..., ge=1),
    slot_id: int = Path(..., ge=1),
    caller: CallerIdentity = Depends(get_caller),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
) -> SlotRead:
    slot = unwrap(await engine.update_slot_capacity(caller, tenant_id, slot_id, payload.max_capacity))
    audit(
        action="slot.capacity_changed",
        tenant_id=tenant_id,
        user_id=caller.user_id,
        slot_id=slot_id,
        extra={"max_capacity": slot.max_capacity},
    )
    return SlotRead.from_db(slot=slot)


@router.post("/{slot_id}/book", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
async def book_slot(
    payload: SlotBook,
    tenant_id: int = Path(..., ge=1),
    slot_id: int = Path(..., ge=1),
    caller: CallerIdentity = Depends(get_caller),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
) -> BookingRead:
    try:
        customer = payload.to_ref()
    except DomainError as exc:
        raise http_error(exc) from exc
    booking = unwrap(await engine.book_slot(caller, tenant_id, slot_id, customer))
    audit(
        action="slot.booked",
        tenant_id=tenant_id,
        user_id=caller.user_id,
        slot_id=slot_id,
        booking_id=booking.id,
        status_to=booking.status,
    )
    return BookingRead.from_db(booking=booking)


@router.post("/{slot_id}/unbook", response_model=BookingRead)
async def unbook_slot(
    payload: Optional[SlotUnbook] = None,
    tenant_id: int = Path(..., ge=1),
    slot_id: int = Path(..., ge=1),
    caller: CallerIdentity = Depends(get_caller),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
) -> BookingRead:
    try:
        customer = payload.to_ref() if payload is not None else None
    except DomainError as exc:
        raise http_error(exc) from exc
    booking = unwrap(await engine.unbook_slot(caller, tenant_id, slot_id, customer))
    audit(
        action="slot.unbooked",
        tenant_id=tenant_id,
        user_id=caller.user_id,
        slot_id=slot_id,
        booking_id=booking.id,
        status_to=booking.status,
    )
    return BookingRead.from_db(booking=booking)
