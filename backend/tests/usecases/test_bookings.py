from decimal import Decimal

import pytest
from slotbook.domain.errors import (
    BookingNotFound,
    CompensationFailed,
    InvalidState,
    InvalidTransition,
    ServiceNotFound,
    SlotFull,
    SlotNotFound,
    StaffNotFound,
)
from slotbook.domain.lifecycle import SideEffect
from slotbook.domain.repositories import CustomerRef, ServiceQuote
from slotbook.models import BookingStatus
from slotbook.usecases import bookings as uc
from slotbook.usecases.bookings import CompensationPolicy
from tests.fakes import (
    FakeBookingRepo,
    FakeServiceCatalog,
    FakeSlotRepo,
    FakeTenantRepo,
    make_booking,
    make_slot,
    tenant_settings,
)

ALICE = CustomerRef(customer_id=10)
GUEST = CustomerRef(email="guest@example.com")
NO_WAIT = CompensationPolicy(max_attempts=2, backoff_seconds=0)


def _catalog() -> FakeServiceCatalog:
    return FakeServiceCatalog({(1, 5): ServiceQuote(service_id=5, price=Decimal("40.00"), duration_minutes=60)})


@pytest.mark.asyncio
async def test_create_booking_reserves_and_prices() -> None:
    slot_repo = FakeSlotRepo(make_slot(max_capacity=2))
    booking_repo = FakeBookingRepo()
    booking = await uc.create_booking(
        slot_repo,
        booking_repo,
        FakeTenantRepo(tenant_settings()),
        _catalog(),
        tenant_id=1,
        slot_id=1,
        service_id=5,
        customer=ALICE,
        notes="window seat",
        special_requests={"allergies": ["nuts"]},
    )
    assert booking.status == BookingStatus.PENDING
    assert booking.price == Decimal("40.00")
    assert booking.service_id == 5
    assert booking.special_requests == {"allergies": ["nuts"]}
    assert slot_repo.slots[1].booked_count == 1


@pytest.mark.asyncio
async def test_create_booking_auto_confirms_for_tenant() -> None:
    booking = await uc.create_booking(
        FakeSlotRepo(make_slot()),
        FakeBookingRepo(),
        FakeTenantRepo(tenant_settings(auto_confirm=True)),
        _catalog(),
        tenant_id=1,
        slot_id=1,
        service_id=5,
        customer=GUEST,
    )
    assert booking.status == BookingStatus.CONFIRMED
    assert booking.non_user_email == "guest@example.com"
    assert booking.customer_id is None


@pytest.mark.asyncio
async def test_create_booking_rejects_unknown_service_without_reserving() -> None:
    slot_repo = FakeSlotRepo(make_slot())
    with pytest.raises(ServiceNotFound):
        await uc.create_booking(
            slot_repo,
            FakeBookingRepo(),
            FakeTenantRepo(tenant_settings()),
            _catalog(),
            tenant_id=1,
            slot_id=1,
            service_id=99,
            customer=ALICE,
        )
    assert slot_repo.slots[1].booked_count == 0


@pytest.mark.asyncio
async def test_book_slot_fails_when_full() -> None:
    slot_repo = FakeSlotRepo(make_slot(booked_count=1))
    booking_repo = FakeBookingRepo()
    with pytest.raises(SlotFull):
        await uc.book_slot(
            slot_repo, booking_repo, FakeTenantRepo(tenant_settings()), tenant_id=1, slot_id=1, customer=ALICE
        )
    assert booking_repo.bookings == {}


@pytest.mark.asyncio
async def test_failed_booking_write_releases_reserved_seat() -> None:
    slot_repo = FakeSlotRepo(make_slot())
    booking_repo = FakeBookingRepo()
    booking_repo.fail_create = ConnectionError("insert failed")
    with pytest.raises(ConnectionError):
        await uc.book_slot(
            slot_repo,
            booking_repo,
            FakeTenantRepo(tenant_settings()),
            tenant_id=1,
            slot_id=1,
            customer=ALICE,
            compensation=NO_WAIT,
        )
    assert slot_repo.slots[1].booked_count == 0


@pytest.mark.asyncio
async def test_exhausted_compensation_is_reported() -> None:
    slot_repo = FakeSlotRepo(make_slot())
    slot_repo.fail_release = 5
    booking_repo = FakeBookingRepo()
    booking_repo.fail_create = ConnectionError("insert failed")
    with pytest.raises(CompensationFailed):
        await uc.book_slot(
            slot_repo,
            booking_repo,
            FakeTenantRepo(tenant_settings()),
            tenant_id=1,
            slot_id=1,
            customer=ALICE,
            compensation=NO_WAIT,
        )


@pytest.mark.asyncio
async def test_transactional_store_skips_compensation() -> None:
    slot_repo = FakeSlotRepo(make_slot())
    booking_repo = FakeBookingRepo()
    booking_repo.transactional = True
    booking_repo.fail_create = ConnectionError("insert failed")
    with pytest.raises(ConnectionError):
        await uc.book_slot(
            slot_repo, booking_repo, FakeTenantRepo(tenant_settings()), tenant_id=1, slot_id=1, customer=ALICE
        )
    # Left to the surrounding transaction's rollback.
    assert slot_repo.slots[1].booked_count == 1


@pytest.mark.asyncio
async def test_cancel_releases_capacity_once() -> None:
    slot_repo = FakeSlotRepo(make_slot(booked_count=1))
    booking_repo = FakeBookingRepo(make_booking(status=BookingStatus.CONFIRMED))
    change = await uc.update_booking_status(
        slot_repo, booking_repo, tenant_id=1, booking_id=1, new_status=BookingStatus.CANCELLED
    )
    assert change.changed
    assert change.side_effect is SideEffect.RELEASE_CAPACITY
    assert change.previous_status == BookingStatus.CONFIRMED
    assert slot_repo.slots[1].booked_count == 0

    again = await uc.update_booking_status(
        slot_repo, booking_repo, tenant_id=1, booking_id=1, new_status=BookingStatus.CANCELLED
    )
    assert not again.changed
    assert slot_repo.slots[1].booked_count == 0
    assert booking_repo.saved == [1]


@pytest.mark.asyncio
async def test_complete_keeps_capacity_and_requests_receipt() -> None:
    slot_repo = FakeSlotRepo(make_slot(booked_count=1))
    booking_repo = FakeBookingRepo(make_booking(status=BookingStatus.CONFIRMED))
    change = await uc.update_booking_status(
        slot_repo, booking_repo, tenant_id=1, booking_id=1, new_status=BookingStatus.COMPLETED
    )
    assert change.side_effect is SideEffect.GENERATE_RECEIPT
    assert slot_repo.slots[1].booked_count == 1


@pytest.mark.asyncio
async def test_terminal_bookings_cannot_move() -> None:
    slot_repo = FakeSlotRepo(make_slot())
    booking_repo = FakeBookingRepo(make_booking(status=BookingStatus.CANCELLED))
    with pytest.raises(InvalidTransition):
        await uc.update_booking_status(
            slot_repo, booking_repo, tenant_id=1, booking_id=1, new_status=BookingStatus.CONFIRMED
        )
    assert booking_repo.bookings[1].status == BookingStatus.CANCELLED


@pytest.mark.asyncio
async def test_status_change_on_foreign_booking_is_not_found() -> None:
    booking_repo = FakeBookingRepo(make_booking(tenant_id=2))
    with pytest.raises(BookingNotFound):
        await uc.update_booking_status(
            FakeSlotRepo(), booking_repo, tenant_id=1, booking_id=1, new_status=BookingStatus.CONFIRMED
        )


@pytest.mark.asyncio
async def test_unbook_cancels_latest_active_booking() -> None:
    slot_repo = FakeSlotRepo(make_slot(max_capacity=3, booked_count=2))
    booking_repo = FakeBookingRepo(
        make_booking(1, customer_id=10),
        make_booking(2, customer_id=11),
        make_booking(3, customer_id=12, status=BookingStatus.CANCELLED),
    )
    change = await uc.unbook_slot(slot_repo, booking_repo, tenant_id=1, slot_id=1)
    assert change.booking.id == 2
    assert change.booking.status == BookingStatus.CANCELLED
    assert slot_repo.slots[1].booked_count == 1

    change = await uc.unbook_slot(slot_repo, booking_repo, tenant_id=1, slot_id=1, customer=ALICE)
    assert change.booking.id == 1


@pytest.mark.asyncio
async def test_unbook_without_active_booking() -> None:
    slot_repo = FakeSlotRepo(make_slot())
    with pytest.raises(BookingNotFound):
        await uc.unbook_slot(slot_repo, FakeBookingRepo(), tenant_id=1, slot_id=1)
    with pytest.raises(SlotNotFound):
        await uc.unbook_slot(slot_repo, FakeBookingRepo(), tenant_id=1, slot_id=7)


@pytest.mark.asyncio
async def test_assign_staff_requires_tenant_member() -> None:
    booking_repo = FakeBookingRepo(make_booking())
    tenant_repo = FakeTenantRepo(tenant_settings(), members={1: {50}, 2: {60}})
    booking = await uc.assign_staff(booking_repo, tenant_repo, tenant_id=1, booking_id=1, staff_id=50)
    assert booking.staff_id == 50
    with pytest.raises(StaffNotFound):
        await uc.assign_staff(booking_repo, tenant_repo, tenant_id=1, booking_id=1, staff_id=60)
    booking = await uc.assign_staff(booking_repo, tenant_repo, tenant_id=1, booking_id=1, staff_id=None)
    assert booking.staff_id is None


@pytest.mark.asyncio
async def test_assign_staff_refused_on_finished_booking() -> None:
    booking_repo = FakeBookingRepo(make_booking(status=BookingStatus.COMPLETED))
    tenant_repo = FakeTenantRepo(tenant_settings(), members={1: {50}})
    with pytest.raises(InvalidState):
        await uc.assign_staff(booking_repo, tenant_repo, tenant_id=1, booking_id=1, staff_id=50)


@pytest.mark.asyncio
async def test_list_bookings_filters() -> None:
    booking_repo = FakeBookingRepo(
        make_booking(1, customer_id=10),
        make_booking(2, customer_id=11, status=BookingStatus.CONFIRMED),
        make_booking(3, tenant_id=2),
    )
    assert [b.id for b in await uc.list_bookings(booking_repo, tenant_id=1)] == [2, 1]
    confirmed = await uc.list_bookings(booking_repo, tenant_id=1, status=BookingStatus.CONFIRMED)
    assert [b.id for b in confirmed] == [2]
    mine = await uc.list_bookings(booking_repo, tenant_id=1, customer_id=10)
    assert [b.id for b in mine] == [1]


@pytest.mark.asyncio
async def test_completing_twice_is_an_invalid_transition() -> None:
    slot_repo = FakeSlotRepo(make_slot(booked_count=1))
    booking_repo = FakeBookingRepo(make_booking(status=BookingStatus.COMPLETED))
    with pytest.raises(InvalidTransition):
        await uc.update_booking_status(
            slot_repo, booking_repo, tenant_id=1, booking_id=1, new_status=BookingStatus.COMPLETED
        )
    assert booking_repo.saved == []


@pytest.mark.asyncio
async def test_update_details_edits_only_given_fields() -> None:
    booking_repo = FakeBookingRepo(make_booking())
    booking_repo.bookings[1].notes = "window seat"
    booking = await uc.update_booking_details(
        booking_repo, tenant_id=1, booking_id=1, special_requests={"allergies": "nuts"}
    )
    assert booking.notes == "window seat"
    assert booking.special_requests == {"allergies": "nuts"}

    booking = await uc.update_booking_details(booking_repo, tenant_id=1, booking_id=1, notes="aisle seat")
    assert booking.notes == "aisle seat"
    assert booking.special_requests == {"allergies": "nuts"}
    assert booking_repo.saved == [1, 1]


@pytest.mark.asyncio
async def test_update_details_refused_on_closed_booking() -> None:
    booking_repo = FakeBookingRepo(make_booking(status=BookingStatus.CANCELLED))
    with pytest.raises(InvalidState):
        await uc.update_booking_details(booking_repo, tenant_id=1, booking_id=1, notes="too late")
    with pytest.raises(BookingNotFound):
        await uc.update_booking_details(booking_repo, tenant_id=2, booking_id=1, notes="wrong tenant")


@pytest.mark.asyncio
async def test_customer_cancels_only_own_booking() -> None:
    slot_repo = FakeSlotRepo(make_slot(max_capacity=2, booked_count=2))
    booking_repo = FakeBookingRepo(make_booking(1, customer_id=10), make_booking(2, customer_id=11))
    with pytest.raises(BookingNotFound):
        await uc.cancel_customer_booking(slot_repo, booking_repo, tenant_id=1, booking_id=2, customer_id=10)
    assert slot_repo.slots[1].booked_count == 2

    change = await uc.cancel_customer_booking(slot_repo, booking_repo, tenant_id=1, booking_id=1, customer_id=10)
    assert change.changed
    assert change.booking.status == BookingStatus.CANCELLED
    assert slot_repo.slots[1].booked_count == 1
