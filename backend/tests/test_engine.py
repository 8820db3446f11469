import asyncio
from datetime import date, time
from decimal import Decimal

import pytest
from slotbook.config import Settings
from slotbook.domain.errors import (
    CrossTenantAccessDenied,
    InfrastructureError,
    SlotFull,
    Unauthorized,
)
from slotbook.domain.generator import TimeRange, WorkingDay
from slotbook.domain.guard import CallerIdentity
from slotbook.domain.repositories import CustomerRef, ServiceQuote
from slotbook.domain.results import Err, Ok
from slotbook.engine import SchedulingEngine
from slotbook.models import BookingStatus
from sqlalchemy.exc import OperationalError
from tests.fakes import (
    FakeBookingRepo,
    FakeServiceCatalog,
    FakeSlotRepo,
    FakeTenantRepo,
    FakeUnitOfWork,
    RecordingNotifier,
    RecordingReceipts,
    make_booking,
    make_slot,
    tenant_settings,
)

OWNER = CallerIdentity(user_id=100, tenant_ids=frozenset({1}))
ALICE = CustomerRef(customer_id=10)


def _engine(
    uow: FakeUnitOfWork,
    *,
    receipts: RecordingReceipts | None = None,
    notifier: RecordingNotifier | None = None,
) -> SchedulingEngine:
    settings = Settings(compensation_backoff_seconds=0)
    return SchedulingEngine(lambda: uow, settings=settings, receipts=receipts, notifier=notifier)


def _uow(*slots, bookings=(), auto_confirm: bool = False) -> FakeUnitOfWork:
    return FakeUnitOfWork(
        FakeSlotRepo(*slots),
        FakeBookingRepo(*bookings),
        FakeTenantRepo(
            tenant_settings(auto_confirm=auto_confirm),
            tenant_settings(2),
            members={1: {100, 50}, 2: {200}},
        ),
        FakeServiceCatalog({(1, 5): ServiceQuote(service_id=5, price=Decimal("25.00"), duration_minutes=60)}),
    )


@pytest.mark.asyncio
async def test_generation_is_repeatable() -> None:
    uow = _uow()
    engine = _engine(uow)
    week = {0: WorkingDay(openings=(TimeRange(time(9), time(11)),))}
    kwargs = dict(
        slot_duration_minutes=60,
        start_date=date(2030, 1, 7),
        end_date=date(2030, 1, 7),
        working_week=week,
        today=date(2030, 1, 1),
    )

    first = await engine.generate_slots(OWNER, 1, **kwargs)  # type: ignore[arg-type]
    assert isinstance(first, Ok)
    assert (first.value.created, first.value.skipped) == (2, 0)
    hours = sorted((s.start_time.hour, s.end_time.hour) for s in uow.slots.slots.values())
    assert hours == [(9, 10), (10, 11)]

    second = await engine.generate_slots(OWNER, 1, **kwargs)  # type: ignore[arg-type]
    assert isinstance(second, Ok)
    assert (second.value.created, second.value.skipped) == (0, 2)


@pytest.mark.asyncio
async def test_capacity_two_admits_two_bookings() -> None:
    uow = _uow(make_slot(max_capacity=2))
    engine = _engine(uow)
    assert isinstance(await engine.book_slot(OWNER, 1, 1, ALICE), Ok)
    assert isinstance(await engine.book_slot(OWNER, 1, 1, CustomerRef(email="b@example.com")), Ok)
    assert uow.slots.slots[1].booked_count == 2

    third = await engine.book_slot(OWNER, 1, 1, CustomerRef(customer_id=12))
    assert isinstance(third, Err)
    assert isinstance(third.error, SlotFull)
    assert uow.slots.slots[1].booked_count == 2


@pytest.mark.asyncio
async def test_cancel_releases_seat_and_repeats_as_no_op() -> None:
    notifier = RecordingNotifier()
    uow = _uow(make_slot(booked_count=1), bookings=[make_booking(status=BookingStatus.CONFIRMED)])
    engine = _engine(uow, notifier=notifier)

    result = await engine.cancel_booking(OWNER, 1, 1)
    assert isinstance(result, Ok)
    assert result.value.status == BookingStatus.CANCELLED
    assert uow.slots.slots[1].booked_count == 0

    again = await engine.cancel_booking(OWNER, 1, 1)
    assert isinstance(again, Ok)
    assert again.value.status == BookingStatus.CANCELLED
    assert uow.slots.slots[1].booked_count == 0
    # Only the real transition is announced.
    assert [e.kind for e in notifier.events] == ["booking.status_changed"]
    assert notifier.events[0].previous_status == BookingStatus.CONFIRMED


@pytest.mark.asyncio
async def test_completion_generates_one_receipt() -> None:
    receipts = RecordingReceipts()
    uow = _uow(make_slot(booked_count=1), bookings=[make_booking(7, status=BookingStatus.CONFIRMED)])
    engine = _engine(uow, receipts=receipts)

    result = await engine.update_booking_status(OWNER, 1, 7, BookingStatus.COMPLETED)
    assert isinstance(result, Ok)
    assert receipts.generated == [7]
    assert uow.slots.slots[1].booked_count == 1

    again = await engine.update_booking_status(OWNER, 1, 7, BookingStatus.COMPLETED)
    assert isinstance(again, Err) and again.code == "invalid_transition"
    assert receipts.generated == [7]


@pytest.mark.asyncio
async def test_receipt_failure_does_not_undo_completion() -> None:
    receipts = RecordingReceipts(fail=True)
    uow = _uow(make_slot(booked_count=1), bookings=[make_booking(status=BookingStatus.CONFIRMED)])
    engine = _engine(uow, receipts=receipts)
    result = await engine.update_booking_status(OWNER, 1, 1, BookingStatus.COMPLETED)
    assert isinstance(result, Ok)
    assert uow.bookings.bookings[1].status == BookingStatus.COMPLETED


@pytest.mark.asyncio
async def test_cross_tenant_request_touches_nothing() -> None:
    uow = _uow(bookings=[make_booking(3, tenant_id=2)])
    engine = _engine(uow)
    result = await engine.get_booking(OWNER, 2, 3)
    assert isinstance(result, Err)
    assert isinstance(result.error, CrossTenantAccessDenied)
    assert uow.opened == 0


@pytest.mark.asyncio
async def test_booking_of_other_tenant_is_invisible_in_own_scope() -> None:
    uow = _uow(bookings=[make_booking(3, tenant_id=2)])
    result = await _engine(uow).get_booking(OWNER, 1, 3)
    assert isinstance(result, Err)
    assert result.code == "booking_not_found"


@pytest.mark.asyncio
async def test_anonymous_caller_is_unauthorized() -> None:
    uow = _uow(make_slot())
    result = await _engine(uow).book_slot(None, 1, 1, ALICE)
    assert isinstance(result, Err)
    assert isinstance(result.error, Unauthorized)
    assert uow.opened == 0


@pytest.mark.asyncio
async def test_concurrent_bookings_admit_exactly_one() -> None:
    uow = _uow(make_slot(max_capacity=1))
    engine = _engine(uow)
    results = await asyncio.gather(
        *(engine.book_slot(OWNER, 1, 1, CustomerRef(customer_id=1000 + i)) for i in range(20))
    )
    successes = [r for r in results if isinstance(r, Ok)]
    failures = [r for r in results if isinstance(r, Err)]
    assert len(successes) == 1
    assert len(failures) == 19
    assert all(isinstance(r.error, SlotFull) for r in failures)
    assert uow.slots.slots[1].booked_count == 1
    assert len(uow.bookings.bookings) == 1


@pytest.mark.asyncio
async def test_create_booking_notifies_and_survives_notifier_failure() -> None:
    notifier = RecordingNotifier(fail=True)
    uow = _uow(make_slot(), auto_confirm=True)
    result = await _engine(uow, notifier=notifier).create_booking(
        OWNER, 1, service_id=5, slot_id=1, customer=ALICE
    )
    assert isinstance(result, Ok)
    assert result.value.status == BookingStatus.CONFIRMED
    assert result.value.price == Decimal("25.00")
    assert [e.kind for e in notifier.events] == ["booking.created"]


@pytest.mark.asyncio
async def test_assign_staff_emits_event() -> None:
    notifier = RecordingNotifier()
    uow = _uow(make_slot(), bookings=[make_booking()])
    result = await _engine(uow, notifier=notifier).assign_staff(OWNER, 1, 1, 50)
    assert isinstance(result, Ok)
    assert result.value.staff_id == 50
    assert notifier.events[0].kind == "booking.staff_assigned"
    assert notifier.events[0].staff_id == 50


@pytest.mark.asyncio
async def test_slot_admin_operations() -> None:
    uow = _uow(make_slot(max_capacity=3, booked_count=2))
    engine = _engine(uow)

    blocked = await engine.block_slot(OWNER, 1, 1)
    assert isinstance(blocked, Ok) and blocked.value.is_blocked
    refused = await engine.book_slot(OWNER, 1, 1, ALICE)
    assert isinstance(refused, Err) and refused.code == "slot_blocked"
    assert isinstance(await engine.unblock_slot(OWNER, 1, 1), Ok)

    shrink = await engine.update_slot_capacity(OWNER, 1, 1, 1)
    assert isinstance(shrink, Err) and shrink.code == "capacity_below_booked"
    grown = await engine.update_slot_capacity(OWNER, 1, 1, 5)
    assert isinstance(grown, Ok) and grown.value.remaining == 3

    busy = await engine.delete_slot(OWNER, 1, 1)
    assert isinstance(busy, Err) and busy.code == "slot_has_bookings"


@pytest.mark.asyncio
async def test_storage_failure_is_raised_not_returned() -> None:
    uow = _uow(make_slot())

    async def broken(*args: object, **kwargs: object) -> bool:
        raise OperationalError("UPDATE time_slots", {}, Exception("server has gone away"))

    uow.slots.try_reserve = broken  # type: ignore[method-assign]
    with pytest.raises(InfrastructureError) as excinfo:
        await _engine(uow).book_slot(OWNER, 1, 1, ALICE)
    assert isinstance(excinfo.value.__cause__, OperationalError)
    assert uow.rolled_back == 1


@pytest.mark.asyncio
async def test_status_change_reports_the_transition_it_made() -> None:
    uow = _uow(make_slot(booked_count=1), bookings=[make_booking(status=BookingStatus.CONFIRMED)])
    engine = _engine(uow)

    first = await engine.change_booking_status(OWNER, 1, 1, BookingStatus.CANCELLED)
    assert isinstance(first, Ok)
    assert first.value.changed
    assert first.value.previous_status == BookingStatus.CONFIRMED

    second = await engine.change_booking_status(OWNER, 1, 1, BookingStatus.CANCELLED)
    assert isinstance(second, Ok)
    assert not second.value.changed
    assert second.value.previous_status == BookingStatus.CANCELLED


@pytest.mark.asyncio
async def test_booking_details_follow_tenant_scope() -> None:
    uow = _uow(make_slot(), bookings=[make_booking(), make_booking(2, status=BookingStatus.COMPLETED)])
    engine = _engine(uow)

    edited = await engine.update_booking_details(OWNER, 1, 1, notes="bring a towel")
    assert isinstance(edited, Ok) and edited.value.notes == "bring a towel"
    closed = await engine.update_booking_details(OWNER, 1, 2, notes="too late")
    assert isinstance(closed, Err) and closed.code == "invalid_state"
    foreign = await engine.update_booking_details(CallerIdentity(user_id=10), 1, 1, notes="mine")
    assert isinstance(foreign, Err) and isinstance(foreign.error, CrossTenantAccessDenied)


@pytest.mark.asyncio
async def test_customer_scope_needs_no_membership() -> None:
    customer = CallerIdentity(user_id=10)
    uow = _uow(
        make_slot(max_capacity=3, booked_count=2),
        bookings=[make_booking(1, customer_id=10), make_booking(2, customer_id=11)],
    )
    engine = _engine(uow)

    listed = await engine.list_customer_bookings(customer, 1)
    assert isinstance(listed, Ok) and [b.id for b in listed.value] == [1]

    cancelled = await engine.cancel_customer_booking(customer, 1, 1)
    assert isinstance(cancelled, Ok) and cancelled.value.booking.status == BookingStatus.CANCELLED
    assert uow.slots.slots[1].booked_count == 1

    other = await engine.cancel_customer_booking(customer, 1, 2)
    assert isinstance(other, Err) and other.code == "booking_not_found"
    anonymous = await engine.list_customer_bookings(None, 1)
    assert isinstance(anonymous, Err) and isinstance(anonymous.error, Unauthorized)
