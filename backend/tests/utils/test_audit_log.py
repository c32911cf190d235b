import json
from decimal import Decimal
from typing import Any, List

import pytest
from parkshare.models import ReservationStatus
from parkshare.utils import audit_log
from parkshare.utils.request_id import set_request_id


def test_emit_audit_log_outputs_json(monkeypatch) -> None:
    messages: List[str] = []

    class DummyLogger:
        def info(self, message: str) -> None:
            messages.append(message)

    monkeypatch.setattr(audit_log, "_audit_logger", DummyLogger())

    set_request_id("req-123")
    audit_log.emit_audit_log(
        action="reservation.created",
        initiator="user",
        tenant_code="LMR",
        reservation_id=1,
        slot_id=2,
        renter_id=4,
        actor_id=4,
        status_from=None,
        status_to=ReservationStatus.CONFIRMED,
        version=1,
        total_price=Decimal("200.00"),
    )
    set_request_id(None)

    assert len(messages) == 1
    payload = json.loads(messages[0])
    assert payload["action"] == "reservation.created"
    assert payload["initiator"] == "user"
    assert payload["request_id"] == "req-123"
    assert payload["tenant_code"] == "LMR"
    assert payload["status_to"] == "confirmed"
    assert payload["total_price"] == "200.00"
    assert "status_from" not in payload
    assert "timestamp" in payload


def test_quote_request_has_no_price(monkeypatch) -> None:
    messages: List[str] = []

    class DummyLogger:
        def info(self, message: str) -> None:
            messages.append(message)

    monkeypatch.setattr(audit_log, "_audit_logger", DummyLogger())

    audit_log.emit_audit_log(
        action="reservation.quote_requested",
        initiator="owner",
        tenant_code="LMR",
        reservation_id=5,
        slot_id=3,
        renter_id=3,
        actor_id=3,
        status_from=None,
        status_to=ReservationStatus.PENDING,
        version=1,
    )
    payload = json.loads(messages[0])
    assert payload["status_to"] == "pending"
    assert "total_price" not in payload


def test_emit_audit_log_raises_on_logger_failure(monkeypatch) -> None:
    class DummyLogger:
        def info(self, _: Any) -> None:
            raise ValueError("fail")

    monkeypatch.setattr(audit_log, "_audit_logger", DummyLogger())

    with pytest.raises(RuntimeError):
        audit_log.emit_audit_log(
            action="reservation.cancelled",
            initiator="user",
            tenant_code="LMR",
            reservation_id=1,
            slot_id=2,
            renter_id=4,
            actor_id=4,
            status_from=ReservationStatus.CONFIRMED,
            status_to=ReservationStatus.CANCELLED,
            version=2,
        )
