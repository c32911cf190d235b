from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Literal, Optional

from .request_id import get_request_id

AuditAction = Literal[
    "reservation.created",
    "reservation.quote_requested",
    "reservation.cancelled",
    "reservation.declined",
    "reservation.completed",
]
AuditInitiator = Literal["user", "owner", "admin", "system"]

_audit_logger = logging.getLogger("audit")
_audit_logger.setLevel(logging.INFO)
if not _audit_logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    _audit_logger.addHandler(handler)
_audit_logger.propagate = False


def _to_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "value"):
        return str(value.value)
    return str(value)


def emit_audit_log(
    *,
    action: AuditAction,
    initiator: AuditInitiator,
    tenant_code: str,
    reservation_id: int,
    slot_id: Optional[int],
    renter_id: Optional[int],
    actor_id: Optional[int],
    status_from: Any,
    status_to: Any,
    version: Optional[int],
    total_price: Optional[Decimal] = None,
    message: Optional[str] = None,
    extra: Optional[dict[str, Any]] = None,
) -> None:
    """Emit structured JSON audit log. Raises RuntimeError if logging fails."""
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": "info",
        "action": action,
        "initiator": initiator,
        "request_id": get_request_id(),
        "tenant_code": tenant_code,
        "reservation_id": reservation_id,
        "slot_id": slot_id,
        "renter_id": renter_id,
        "actor_id": actor_id,
        "status_from": _to_str(status_from),
        "status_to": _to_str(status_to),
        "version": version,
        "total_price": _to_str(total_price),
    }
    if message is not None:
        payload["message"] = message
    if extra:
        payload.update({k: _to_str(v) if isinstance(v, (Decimal, datetime)) else v for k, v in extra.items()})

    # Drop None values to keep the log compact.
    compact_payload = {k: v for k, v in payload.items() if v is not None}
    try:
        _audit_logger.info(json.dumps(compact_payload, ensure_ascii=True))
    except Exception as exc:  # pragma: no cover - exercised via fake logger
        raise RuntimeError("failed to emit audit log") from exc
