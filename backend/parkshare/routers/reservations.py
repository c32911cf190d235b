from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Path, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import get_actor, get_session
from ..domain.context import ActorContext
from ..domain.errors import DomainError
from ..infrastructure.repositories import SqlAlchemyReservationRepository, SqlAlchemySlotRepository, SqlAlchemyUserRepository
from ..infrastructure.transactions import run_atomic
from ..models import Reservation, ReservationStatus, Slot
from ..schemas import ReservationCancel, ReservationCreate, ReservationRead
from ..usecases import reservations as reservation_usecase
from ..utils.audit_log import AuditAction, AuditInitiator, emit_audit_log
from ..utils.time import to_utc_naive
from .errors import to_http

router = APIRouter(prefix="", tags=["reservations"], dependencies=[Depends(get_actor)])


def _extract_version(if_match: Optional[str], payload: Optional[ReservationCancel]) -> Optional[int]:
    """If-Match wins over the body; both are optional for cancellation."""
    raw: Optional[str] = None
    if if_match:
        raw = if_match.strip()
        if raw.startswith("W/"):
            raw = raw[2:]
        raw = raw.strip('"')
    elif payload is not None and payload.version is not None:
        raw = str(payload.version)
    if raw is None:
        return None
    try:
        version = int(raw)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid version") from exc
    if version < 1:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid version")
    return version


def _initiator(actor: ActorContext, reservation: Reservation, slot: Slot) -> AuditInitiator:
    if actor.is_admin:
        return "admin"
    if slot.owner_id == actor.user_id and reservation.renter_id != actor.user_id:
        return "owner"
    return "user"


def audit_transition(
    *,
    action: AuditAction,
    actor: ActorContext,
    reservation: Reservation,
    slot: Slot,
    status_from: Optional[ReservationStatus],
    initiator: Optional[AuditInitiator] = None,
) -> None:
    """Emit the audit line for a state change; a logging failure becomes a 500."""
    try:
        emit_audit_log(
            action=action,
            initiator=initiator or _initiator(actor, reservation, slot),
            tenant_code=reservation.tenant_code,
            reservation_id=reservation.id,
            slot_id=slot.id,
            renter_id=reservation.renter_id,
            actor_id=actor.user_id,
            status_from=status_from,
            status_to=reservation.status,
            version=reservation.version,
            total_price=reservation.total_price,
        )
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit log failed") from exc


@router.post("/reservations", response_model=ReservationRead, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    payload: ReservationCreate,
    session: AsyncSession = Depends(get_session),
    actor: ActorContext = Depends(get_actor),
):
    try:
        start = to_utc_naive(payload.start_time)
        end = to_utc_naive(payload.end_time)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="start/end must have timezone") from exc

    settings = get_settings()
    slot_repo = SqlAlchemySlotRepository(session, tenant_code=actor.tenant_code)
    res_repo = SqlAlchemyReservationRepository(session, tenant_code=actor.tenant_code)
    try:
        outcome = await run_atomic(
            session,
            lambda: reservation_usecase.create_reservation(
                slot_repo,
                res_repo,
                actor=actor,
                slot_id=payload.slot_id,
                start=start,
                end=end,
                policy=settings.booking_policy(),
            ),
            attempts=settings.contention_retries,
        )
    except DomainError as exc:
        raise to_http(exc) from exc

    if not outcome.quote_required:
        audit_transition(action="reservation.created", actor=actor, reservation=outcome.reservation, slot=outcome.slot, status_from=None)
        return ReservationRead.from_db(reservation=outcome.reservation, slot=outcome.slot)

    audit_transition(action="reservation.quote_requested", actor=actor, reservation=outcome.reservation, slot=outcome.slot, status_from=None)
    owner = None
    if outcome.slot.owner_id is not None:
        owner = await SqlAlchemyUserRepository(session).get_contact(outcome.slot.owner_id)
    body = ReservationRead.from_db(
        reservation=outcome.reservation,
        slot=outcome.slot,
        owner=owner,
    )
    return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content=body.model_dump(mode="json"))


@router.get("/me/reservations", response_model=List[ReservationRead])
async def list_my_reservations(
    status_filter: Optional[ReservationStatus] = Query(default=None, alias="status"),
    session: AsyncSession = Depends(get_session),
    actor: ActorContext = Depends(get_actor),
) -> list[ReservationRead]:
    res_repo = SqlAlchemyReservationRepository(session, tenant_code=actor.tenant_code)
    rows = await reservation_usecase.list_user_reservations(res_repo, actor=actor, status=status_filter)
    return [ReservationRead.from_db(reservation=res, slot=slot) for res, slot in rows]


@router.get("/reservations/{reservation_id}", response_model=ReservationRead)
async def get_reservation(
    reservation_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: ActorContext = Depends(get_actor),
) -> ReservationRead:
    res_repo = SqlAlchemyReservationRepository(session, tenant_code=actor.tenant_code)
    try:
        reservation, slot = await reservation_usecase.get_reservation(
            res_repo, actor=actor, reservation_id=reservation_id
        )
    except DomainError as exc:
        raise to_http(exc) from exc
    return ReservationRead.from_db(reservation=reservation, slot=slot)


@router.post("/reservations/{reservation_id}/cancel", response_model=ReservationRead)
async def cancel_reservation(
    reservation_id: int = Path(..., ge=1),
    payload: Optional[ReservationCancel] = Body(default=None),
    if_match: Optional[str] = Header(default=None, alias="If-Match"),
    session: AsyncSession = Depends(get_session),
    actor: ActorContext = Depends(get_actor),
) -> ReservationRead:
    version = _extract_version(if_match, payload)
    settings = get_settings()
    res_repo = SqlAlchemyReservationRepository(session, tenant_code=actor.tenant_code)
    try:
        updated, slot, status_from = await run_atomic(
            session,
            lambda: reservation_usecase.cancel_reservation(
                res_repo,
                actor=actor,
                reservation_id=reservation_id,
                policy=settings.booking_policy(),
                version=version,
            ),
            attempts=settings.contention_retries,
        )
    except DomainError as exc:
        raise to_http(exc) from exc

    if status_from != updated.status:
        audit_transition(action="reservation.cancelled", actor=actor, reservation=updated, slot=slot, status_from=status_from)
    return ReservationRead.from_db(reservation=updated, slot=slot)


@router.post("/reservations/{reservation_id}/decline", response_model=ReservationRead)
async def decline_reservation(
    reservation_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: ActorContext = Depends(get_actor),
) -> ReservationRead:
    settings = get_settings()
    res_repo = SqlAlchemyReservationRepository(session, tenant_code=actor.tenant_code)
    try:
        updated, slot, status_from = await run_atomic(
            session,
            lambda: reservation_usecase.decline_reservation(res_repo, actor=actor, reservation_id=reservation_id),
            attempts=settings.contention_retries,
        )
    except DomainError as exc:
        raise to_http(exc) from exc

    if status_from != updated.status:
        audit_transition(action="reservation.declined", actor=actor, reservation=updated, slot=slot, status_from=status_from)
    return ReservationRead.from_db(reservation=updated, slot=slot)
