from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from .request_id import get_request_id

AuditAction = Literal[
    "slot.generated",
    "slot.created",
    "slot.updated",
    "slot.deleted",
    "slot.booked",
    "slot.unbooked",
    "slot.blocked",
    "slot.unblocked",
    "slot.capacity_changed",
    "booking.created",
    "booking.status_changed",
    "booking.staff_assigned",
    "booking.updated",
]

_audit_logger = logging.getLogger("audit")
_audit_logger.setLevel(logging.INFO)
if not _audit_logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    _audit_logger.addHandler(handler)
_audit_logger.propagate = False


def _enum_to_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(getattr(value, "value", value))


def emit_audit_log(
    *,
    action: AuditAction,
    tenant_id: int,
    user_id: Optional[int],
    slot_id: Optional[int] = None,
    booking_id: Optional[int] = None,
    status_from: Any = None,
    status_to: Any = None,
    message: Optional[str] = None,
    extra: Optional[dict[str, Any]] = None,
) -> None:
    """Write one JSON line to the ``audit`` logger.

    Every state-changing request is audited after it succeeds. A write that
    cannot be recorded raises ``RuntimeError`` so the request fails loudly
    instead of leaving an unaudited change behind silently.
    """
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": "info",
        "action": action,
        "request_id": get_request_id(),
        "tenant_id": tenant_id,
        "user_id": user_id,
        "slot_id": slot_id,
        "booking_id": booking_id,
        "status_from": _enum_to_str(status_from),
        "status_to": _enum_to_str(status_to),
    }
    if message is not None:
        payload["message"] = message
    if extra:
        payload.update(extra)

    compact_payload = {k: v for k, v in payload.items() if v is not None}
    try:
        _audit_logger.info(json.dumps(compact_payload, ensure_ascii=True, default=str))
    except Exception as exc:
        raise RuntimeError("failed to emit audit log") from exc
