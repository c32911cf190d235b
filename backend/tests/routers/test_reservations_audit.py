from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, cast

import pytest
from fastapi import HTTPException
from fastapi.responses import JSONResponse
from parkshare.domain.context import ActorContext
from parkshare.domain.services import QuoteRequired
from parkshare.models import Reservation, ReservationStatus, Slot, SlotStatus, SlotType, User, UserRole
from parkshare.routers import admin as admin_router
from parkshare.routers import reservations as router
from parkshare.schemas import ReservationCancel, ReservationCreate, ReservationRead
from parkshare.usecases.reservations import ReservationOutcome
from sqlalchemy.ext.asyncio import AsyncSession

ACTOR = ActorContext(user_id=200, tenant_code="LMR", role=UserRole.RESIDENT)


class DummySession:
    async def __aenter__(self) -> "DummySession":
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:
        return False

    def begin(self) -> "DummySession":
        return self


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _slot(*, owner_id: int | None = None, rate: Decimal | None = Decimal("50.00")) -> Slot:
    return Slot(
        id=1,
        tenant_code="LMR",
        label="S1",
        slot_type=SlotType.COVERED,
        owner_id=owner_id,
        rate=rate,
        status=SlotStatus.ACTIVE,
        created_at=_now(),
        updated_at=_now(),
    )


def _reservation(status: ReservationStatus = ReservationStatus.CONFIRMED, price: Decimal | None = Decimal("200.00")) -> Reservation:
    starts = _now() + timedelta(days=1)
    return Reservation(
        id=100,
        tenant_code="LMR",
        slot_id=1,
        renter_id=ACTOR.user_id,
        starts_at=starts,
        ends_at=starts + timedelta(hours=4),
        status=status,
        total_price=price,
        version=1,
        created_at=_now(),
        updated_at=_now(),
    )


def _payload() -> ReservationCreate:
    starts = datetime.now(timezone.utc) + timedelta(days=1)
    return ReservationCreate(slot_id=1, start_time=starts, end_time=starts + timedelta(hours=4))


def _patch_repos(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(router, "SqlAlchemySlotRepository", lambda s, **kw: s)  # type: ignore[assignment]
    monkeypatch.setattr(router, "SqlAlchemyReservationRepository", lambda s, **kw: s)  # type: ignore[assignment]


@pytest.mark.asyncio
async def test_create_reservation_emits_audit(monkeypatch: pytest.MonkeyPatch) -> None:
    slot = _slot()
    reservation = _reservation()

    async def fake_create_reservation(*args: object, **kwargs: object) -> ReservationOutcome:
        return ReservationOutcome(reservation=reservation, slot=slot)

    calls: list[dict[str, Any]] = []

    _patch_repos(monkeypatch)
    monkeypatch.setattr(router.reservation_usecase, "create_reservation", fake_create_reservation)  # type: ignore[attr-defined]
    monkeypatch.setattr(router, "emit_audit_log", lambda **kwargs: calls.append(kwargs))

    result: ReservationRead = await router.create_reservation(
        payload=_payload(),
        session=cast(AsyncSession, DummySession()),
        actor=ACTOR,
    )

    assert result.reservation_id == reservation.id
    assert len(calls) == 1
    assert calls[0]["action"] == "reservation.created"
    assert calls[0]["tenant_code"] == "LMR"
    assert calls[0]["total_price"] == Decimal("200.00")


@pytest.mark.asyncio
async def test_quote_request_is_accepted_and_audited(monkeypatch: pytest.MonkeyPatch) -> None:
    slot = _slot(owner_id=None, rate=None)
    reservation = _reservation(status=ReservationStatus.PENDING, price=None)

    async def fake_create_reservation(*args: object, **kwargs: object) -> ReservationOutcome:
        return ReservationOutcome(reservation=reservation, slot=slot, quote=QuoteRequired(slot_id=slot.id))

    calls: list[dict[str, Any]] = []

    _patch_repos(monkeypatch)
    monkeypatch.setattr(router.reservation_usecase, "create_reservation", fake_create_reservation)  # type: ignore[attr-defined]
    monkeypatch.setattr(router, "emit_audit_log", lambda **kwargs: calls.append(kwargs))

    result = await router.create_reservation(
        payload=_payload(),
        session=cast(AsyncSession, DummySession()),
        actor=ACTOR,
    )

    assert isinstance(result, JSONResponse)
    assert result.status_code == 202
    assert calls[0]["action"] == "reservation.quote_requested"


@pytest.mark.asyncio
async def test_cancel_reservation_log_failure_returns_500(monkeypatch: pytest.MonkeyPatch) -> None:
    slot = _slot()
    reservation = _reservation(status=ReservationStatus.CANCELLED)

    async def fake_cancel(*args: object, **kwargs: object) -> tuple[Reservation, Slot, ReservationStatus]:
        return reservation, slot, ReservationStatus.CONFIRMED

    def fake_emit(**kwargs: Any) -> None:
        raise RuntimeError("fail log")

    _patch_repos(monkeypatch)
    monkeypatch.setattr(router.reservation_usecase, "cancel_reservation", fake_cancel)  # type: ignore[attr-defined]
    monkeypatch.setattr(router, "emit_audit_log", fake_emit)

    with pytest.raises(HTTPException) as excinfo:
        await router.cancel_reservation(
            reservation_id=reservation.id,
            payload=ReservationCancel(version=1),
            if_match='"1"',
            session=cast(AsyncSession, DummySession()),
            actor=ACTOR,
        )
    assert excinfo.value.status_code == 500


@pytest.mark.asyncio
async def test_idempotent_cancel_is_not_audited_twice(monkeypatch: pytest.MonkeyPatch) -> None:
    slot = _slot()
    reservation = _reservation(status=ReservationStatus.CANCELLED)

    async def fake_cancel(*args: object, **kwargs: object) -> tuple[Reservation, Slot, ReservationStatus]:
        return reservation, slot, ReservationStatus.CANCELLED

    calls: list[dict[str, Any]] = []

    _patch_repos(monkeypatch)
    monkeypatch.setattr(router.reservation_usecase, "cancel_reservation", fake_cancel)  # type: ignore[attr-defined]
    monkeypatch.setattr(router, "emit_audit_log", lambda **kwargs: calls.append(kwargs))

    result = await router.cancel_reservation(
        reservation_id=reservation.id,
        payload=None,
        if_match=None,
        session=cast(AsyncSession, DummySession()),
        actor=ACTOR,
    )
    assert result.status == ReservationStatus.CANCELLED
    assert calls == []


@pytest.mark.asyncio
async def test_admin_complete_log_failure_returns_500(monkeypatch: pytest.MonkeyPatch) -> None:
    admin = ActorContext(user_id=9, tenant_code="LMR", role=UserRole.ADMIN)
    slot = _slot()
    reservation = _reservation(status=ReservationStatus.COMPLETED)

    async def fake_complete(*args: object, **kwargs: object) -> tuple[Reservation, Slot, ReservationStatus]:
        return reservation, slot, ReservationStatus.CONFIRMED

    def fake_emit(**kwargs: Any) -> None:
        raise RuntimeError("fail log")

    monkeypatch.setattr(admin_router, "SqlAlchemyReservationRepository", lambda s, **kw: s)  # type: ignore[assignment]
    monkeypatch.setattr(admin_router.reservation_usecase, "complete_reservation", fake_complete)  # type: ignore[attr-defined]
    monkeypatch.setattr(router, "emit_audit_log", fake_emit)

    with pytest.raises(HTTPException) as excinfo:
        await admin_router.complete_reservation(
            reservation_id=reservation.id,
            session=cast(AsyncSession, DummySession()),
            actor=admin,
        )
    assert excinfo.value.status_code == 500
    assert excinfo.value.detail == "audit log failed"


@pytest.mark.asyncio
async def test_admin_sweep_audits_as_system(monkeypatch: pytest.MonkeyPatch) -> None:
    admin = ActorContext(user_id=9, tenant_code="LMR", role=UserRole.ADMIN)
    slot = _slot()
    reservation = _reservation(status=ReservationStatus.COMPLETED)

    async def fake_complete_due(*args: object, **kwargs: object) -> list[tuple[Reservation, Slot]]:
        return [(reservation, slot)]

    calls: list[dict[str, Any]] = []

    monkeypatch.setattr(admin_router, "SqlAlchemyReservationRepository", lambda s, **kw: s)  # type: ignore[assignment]
    monkeypatch.setattr(admin_router.reservation_usecase, "complete_due_reservations", fake_complete_due)  # type: ignore[attr-defined]
    monkeypatch.setattr(router, "emit_audit_log", lambda **kwargs: calls.append(kwargs))

    summary = await admin_router.complete_due_reservations(session=cast(AsyncSession, DummySession()), actor=admin)
    assert summary.reservation_ids == [reservation.id]
    assert calls[0]["initiator"] == "system"
    assert calls[0]["actor_id"] == admin.user_id
