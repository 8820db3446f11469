from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from types import TracebackType
from typing import Any, Protocol

from ..models import Booking, BookingStatus, TimeSlot
from .errors import InvalidCustomer
from .generator import WorkingWeek


@dataclass(frozen=True)
class TenantSettings:
    tenant_id: int
    timezone: str
    auto_confirm_bookings: bool
    min_generation_days: int | None
    max_generation_days: int | None


@dataclass(frozen=True)
class ServiceQuote:
    service_id: int
    price: Decimal
    duration_minutes: int


@dataclass(frozen=True)
class CustomerRef:
    """A registered customer id or a guest email, never both."""

    customer_id: int | None = None
    email: str | None = None

    def __post_init__(self) -> None:
        if (self.customer_id is None) == (self.email is None):
            raise InvalidCustomer()
        if self.email is not None and "@" not in self.email:
            raise InvalidCustomer("non_user_email is not a valid email address")


@dataclass(frozen=True)
class BookingEvent:
    kind: str
    tenant_id: int
    booking_id: int
    status: BookingStatus
    previous_status: BookingStatus | None = None
    staff_id: int | None = None


class SlotRepository(Protocol):
    async def get(self, tenant_id: int, slot_id: int) -> TimeSlot | None: ...

    async def list_in_range(
        self,
        tenant_id: int,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[TimeSlot]: ...

    async def find_overlapping(
        self,
        tenant_id: int,
        start: datetime,
        end: datetime,
        *,
        exclude_slot_id: int | None = None,
    ) -> list[TimeSlot]: ...

    async def create(
        self,
        *,
        tenant_id: int,
        start_time: datetime,
        end_time: datetime,
        max_capacity: int,
    ) -> TimeSlot: ...

    async def update_times(self, slot: TimeSlot, *, start_time: datetime, end_time: datetime) -> TimeSlot: ...

    async def delete_if_unbooked(self, tenant_id: int, slot_id: int) -> bool: ...

    async def try_reserve(self, tenant_id: int, slot_id: int) -> bool: ...

    async def release(self, tenant_id: int, slot_id: int) -> bool: ...

    async def set_blocked(self, tenant_id: int, slot_id: int, blocked: bool) -> bool: ...

    async def set_capacity(self, tenant_id: int, slot_id: int, max_capacity: int) -> bool: ...


class BookingRepository(Protocol):
    # False when the store cannot roll a booking write back together with
    # the capacity reservation made before it.
    transactional: bool

    async def get(self, tenant_id: int, booking_id: int) -> Booking | None: ...

    async def get_for_update(self, tenant_id: int, booking_id: int) -> Booking | None: ...

    async def list_for_tenant(
        self,
        tenant_id: int,
        *,
        status: BookingStatus | None = None,
        customer_id: int | None = None,
    ) -> list[Booking]: ...

    async def find_active_on_slot(
        self,
        tenant_id: int,
        slot_id: int,
        *,
        customer: CustomerRef | None = None,
    ) -> Booking | None: ...

    async def has_bookings_on_slot(self, tenant_id: int, slot_id: int) -> bool: ...

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
    ) -> Booking: ...

    async def save(self, booking: Booking) -> Booking: ...


class TenantRepository(Protocol):
    async def get_settings(self, tenant_id: int) -> TenantSettings | None: ...

    async def lock(self, tenant_id: int) -> None: ...

    async def working_week(self, tenant_id: int) -> WorkingWeek: ...

    async def is_member(self, tenant_id: int, user_id: int) -> bool: ...

    async def memberships(self, user_id: int) -> frozenset[int]: ...


class ServiceCatalog(Protocol):
    async def quote(self, tenant_id: int, service_id: int) -> ServiceQuote | None: ...


class ReceiptGenerator(Protocol):
    async def generate(self, booking_id: int) -> None: ...


class NotificationDispatcher(Protocol):
    async def notify(self, event: BookingEvent) -> None: ...


class UnitOfWork(Protocol):
    """One storage transaction: committed on clean exit, rolled back on error."""

    slots: SlotRepository
    bookings: BookingRepository
    tenants: TenantRepository
    services: ServiceCatalog

    async def __aenter__(self) -> "UnitOfWork": ...

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None: ...
