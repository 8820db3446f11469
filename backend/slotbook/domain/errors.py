"""Error taxonomy of the scheduling core.

Expected domain conditions derive from ``DomainError`` and are turned into
``Err`` results by the engine. Storage and other infrastructure failures derive
from ``InfrastructureError`` and propagate to the caller as exceptions.
"""

from __future__ import annotations

from typing import ClassVar, Literal

ErrorCategory = Literal["validation", "conflict", "not_found", "authorization", "state"]


class DomainError(Exception):
    code: ClassVar[str] = "domain_error"
    category: ClassVar[ErrorCategory] = "validation"
    default_message: ClassVar[str] = "request rejected"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


# validation


class InvalidRange(DomainError):
    code = "invalid_range"
    default_message = "invalid time range"


class InvalidCustomer(DomainError):
    code = "invalid_customer"
    default_message = "exactly one of customer_id or non_user_email is required"


class InvalidCapacity(DomainError):
    code = "invalid_capacity"
    default_message = "capacity must be at least 1"


# conflicts


class OverlapConflict(DomainError):
    code = "overlap_conflict"
    category = "conflict"
    default_message = "slot overlaps an existing slot"


class SlotFull(DomainError):
    code = "slot_full"
    category = "conflict"
    default_message = "slot has no remaining capacity"


class SlotBlocked(DomainError):
    code = "slot_blocked"
    category = "conflict"
    default_message = "slot is blocked"


class CapacityBelowBooked(DomainError):
    code = "capacity_below_booked"
    category = "conflict"
    default_message = "capacity cannot be lower than booked seats"


class SlotHasBookings(DomainError):
    code = "slot_has_bookings"
    category = "conflict"
    default_message = "slot has bookings"


# lookups


class SlotNotFound(DomainError):
    code = "slot_not_found"
    category = "not_found"
    default_message = "slot not found"


class BookingNotFound(DomainError):
    code = "booking_not_found"
    category = "not_found"
    default_message = "booking not found"


class ServiceNotFound(DomainError):
    code = "service_not_found"
    category = "not_found"
    default_message = "service not found"


class StaffNotFound(DomainError):
    code = "staff_not_found"
    category = "not_found"
    default_message = "staff member not found"


# authorization


class Unauthorized(DomainError):
    code = "unauthorized"
    category = "authorization"
    default_message = "authentication required"


class CrossTenantAccessDenied(DomainError):
    code = "cross_tenant_access_denied"
    category = "authorization"
    default_message = "access denied"


# lifecycle


class InvalidTransition(DomainError):
    code = "invalid_transition"
    category = "state"
    default_message = "status transition not allowed"


class InvalidState(DomainError):
    code = "invalid_state"
    category = "state"
    default_message = "operation not allowed in the current booking state"


class InfrastructureError(Exception):
    """Storage or connectivity failure; distinct from a rejected request."""


class CompensationFailed(InfrastructureError):
    """A compensating capacity release exhausted its retry budget."""

    def __init__(self, message: str, *, tenant_id: int, slot_id: int) -> None:
        super().__init__(message)
        self.tenant_id = tenant_id
        self.slot_id = slot_id
