from __future__ import annotations

import asyncio
import logging
from enum import Enum

from ..models import TimeSlot
from .errors import (
    CapacityBelowBooked,
    CompensationFailed,
    InvalidCapacity,
    SlotBlocked,
    SlotFull,
    SlotNotFound,
)
from .repositories import SlotRepository

logger = logging.getLogger(__name__)


class ReleaseOutcome(str, Enum):
    OK = "ok"
    ALREADY_AT_ZERO = "already_at_zero"


class CapacityLedger:
    """Seat accounting for time slots.

    Every change to ``booked_count`` is a single conditional update in the
    store; the ledger never reads a count and writes it back. Reads only
    happen after a rejected update, to name the reason.
    """

    def __init__(self, slots: SlotRepository) -> None:
        self.slots = slots

    async def reserve(self, tenant_id: int, slot_id: int) -> TimeSlot:
        if await self.slots.try_reserve(tenant_id, slot_id):
            return await self._require(tenant_id, slot_id)

        slot = await self.slots.get(tenant_id, slot_id)
        if slot is None:
            raise SlotNotFound()
        if slot.is_blocked:
            raise SlotBlocked()
        raise SlotFull()

    async def release(self, tenant_id: int, slot_id: int) -> ReleaseOutcome:
        if await self.slots.release(tenant_id, slot_id):
            return ReleaseOutcome.OK
        logger.info("release on slot %s of tenant %s found no booked seat", slot_id, tenant_id)
        return ReleaseOutcome.ALREADY_AT_ZERO

    async def compensate(
        self,
        tenant_id: int,
        slot_id: int,
        *,
        max_attempts: int,
        backoff_seconds: float,
    ) -> ReleaseOutcome:
        """Undo a reservation whose booking write failed, retrying a bounded number of times."""
        last_exc: Exception | None = None
        for attempt in range(1, max_attempts + 1):
            try:
                return await self.release(tenant_id, slot_id)
            except Exception as exc:
                last_exc = exc
                logger.warning(
                    "compensating release attempt %s/%s failed for slot %s of tenant %s: %s",
                    attempt,
                    max_attempts,
                    slot_id,
                    tenant_id,
                    exc,
                )
                if attempt < max_attempts and backoff_seconds:
                    await asyncio.sleep(backoff_seconds * attempt)
        logger.error(
            "capacity reconciliation required: slot %s of tenant %s holds a seat with no booking",
            slot_id,
            tenant_id,
        )
        raise CompensationFailed(
            "compensating release exhausted its retry budget",
            tenant_id=tenant_id,
            slot_id=slot_id,
        ) from last_exc

    async def block(self, tenant_id: int, slot_id: int) -> TimeSlot:
        return await self._set_blocked(tenant_id, slot_id, True)

    async def unblock(self, tenant_id: int, slot_id: int) -> TimeSlot:
        return await self._set_blocked(tenant_id, slot_id, False)

    async def set_capacity(self, tenant_id: int, slot_id: int, max_capacity: int) -> TimeSlot:
        if max_capacity < 1:
            raise InvalidCapacity()
        if not await self.slots.set_capacity(tenant_id, slot_id, max_capacity):
            if await self.slots.get(tenant_id, slot_id) is None:
                raise SlotNotFound()
            raise CapacityBelowBooked()
        return await self._require(tenant_id, slot_id)

    async def _set_blocked(self, tenant_id: int, slot_id: int, blocked: bool) -> TimeSlot:
        # Blocking freezes new reservations only; booked seats stay booked.
        if not await self.slots.set_blocked(tenant_id, slot_id, blocked):
            raise SlotNotFound()
        return await self._require(tenant_id, slot_id)

    async def _require(self, tenant_id: int, slot_id: int) -> TimeSlot:
        slot = await self.slots.get(tenant_id, slot_id)
        if slot is None:
            raise SlotNotFound()
        return slot
