from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field, field_serializer, model_validator

from .domain.generator import GenerationReport, TimeRange, WorkingDay
from .domain.repositories import CustomerRef
from .models import Booking, BookingStatus, TimeSlot
from .utils.time import UTC, utc_naive_to_aware


class _UtcModel(BaseModel):
    @field_serializer("start_time", "end_time", "created_at", "updated_at", check_fields=False)
    def _ser_datetime(self, dt: Optional[datetime]) -> Optional[str]:
        if dt is None:
            return None
        return dt.astimezone(UTC).isoformat()


class Interval(BaseModel):
    start: time
    end: time

    @model_validator(mode="after")
    def _check_order(self) -> "Interval":
        if self.start >= self.end:
            raise ValueError("interval start must be earlier than its end")
        return self


class WorkingDayIn(BaseModel):
    weekday: int = Field(ge=0, le=6, description="0 = Monday")
    openings: list[Interval] = Field(min_length=1)
    breaks: list[Interval] = Field(default_factory=list)


class SlotGenerateRequest(BaseModel):
    slot_duration_minutes: int = Field(ge=1)
    start_date: date
    end_date: date
    max_capacity: int = Field(default=1, ge=1)
    # Falls back to the tenant's stored working hours when omitted.
    working_hours: Optional[list[WorkingDayIn]] = None

    def working_week(self) -> Optional[dict[int, WorkingDay]]:
        if self.working_hours is None:
            return None
        return {
            day.weekday: WorkingDay(
                openings=tuple(TimeRange(i.start, i.end) for i in day.openings),
                breaks=tuple(TimeRange(i.start, i.end) for i in day.breaks),
            )
            for day in self.working_hours
        }


class GenerationResult(BaseModel):
    created: int
    skipped: int

    @classmethod
    def from_report(cls, report: GenerationReport) -> "GenerationResult":
        return cls(created=report.created, skipped=report.skipped)


class SlotCreate(BaseModel):
    start_time: datetime
    end_time: datetime
    max_capacity: int = Field(default=1, ge=1)


class SlotUpdate(BaseModel):
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


class SlotCapacityUpdate(BaseModel):
    max_capacity: int


class SlotRead(_UtcModel):
    slot_id: int
    tenant_id: int
    start_time: datetime
    end_time: datetime
    max_capacity: int
    booked_count: int
    remaining: int
    is_blocked: bool

    @classmethod
    def from_db(cls, *, slot: TimeSlot) -> "SlotRead":
        return cls(
            slot_id=slot.id,
            tenant_id=slot.tenant_id,
            start_time=utc_naive_to_aware(slot.start_time),
            end_time=utc_naive_to_aware(slot.end_time),
            max_capacity=slot.max_capacity,
            booked_count=slot.booked_count,
            remaining=slot.remaining,
            is_blocked=slot.is_blocked,
        )


class CustomerIn(BaseModel):
    """Either a registered user id or a contact email for a guest, never both."""

    customer_id: Optional[int] = Field(default=None, ge=1)
    email: Optional[str] = Field(default=None, max_length=255)

    def to_ref(self) -> CustomerRef:
        return CustomerRef(customer_id=self.customer_id, email=self.email)


class SlotBook(CustomerIn):
    pass


class SlotUnbook(BaseModel):
    customer_id: Optional[int] = Field(default=None, ge=1)
    email: Optional[str] = Field(default=None, max_length=255)

    def to_ref(self) -> Optional[CustomerRef]:
        if self.customer_id is None and self.email is None:
            return None
        return CustomerRef(customer_id=self.customer_id, email=self.email)


class BookingCreate(CustomerIn):
    service_id: int = Field(ge=1)
    slot_id: int = Field(ge=1)
    notes: Optional[str] = Field(default=None, max_length=2000)
    special_requests: Optional[dict[str, Any]] = None


class BookingStatusUpdate(BaseModel):
    status: BookingStatus


class BookingDetailsUpdate(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=2000)
    special_requests: Optional[dict[str, Any]] = None


class StaffAssign(BaseModel):
    # None removes the current assignment.
    staff_id: Optional[int] = Field(default=None, ge=1)


class BookingRead(_UtcModel):
    booking_id: int
    tenant_id: int
    slot_id: int
    service_id: Optional[int]
    customer_id: Optional[int]
    non_user_email: Optional[str]
    staff_id: Optional[int]
    status: BookingStatus
    short_code: str
    notes: Optional[str]
    special_requests: Optional[dict[str, Any]]
    price: Optional[Decimal]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_db(cls, *, booking: Booking) -> "BookingRead":
        return cls(
            booking_id=booking.id,
            tenant_id=booking.tenant_id,
            slot_id=booking.time_slot_id,
            service_id=booking.service_id,
            customer_id=booking.customer_id,
            non_user_email=booking.non_user_email,
            staff_id=booking.staff_id,
            status=booking.status,
            short_code=booking.short_code,
            notes=booking.notes,
            special_requests=booking.special_requests,
            price=booking.price,
            created_at=utc_naive_to_aware(booking.created_at),
            updated_at=utc_naive_to_aware(booking.updated_at),
        )
