from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import get_session, require_admin
from ..domain.context import ActorContext
from ..domain.errors import DomainError
from ..infrastructure.repositories import SqlAlchemyReservationRepository
from ..infrastructure.transactions import run_atomic
from ..models import ReservationStatus
from ..schemas import CompletionSummary, ReservationRead
from ..usecases import reservations as reservation_usecase
from .errors import to_http
from .reservations import audit_transition

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/reservations", response_model=List[ReservationRead])
async def list_tenant_reservations(
    status_filter: Optional[ReservationStatus] = Query(default=None, alias="status"),
    session: AsyncSession = Depends(get_session),
    actor: ActorContext = Depends(require_admin),
) -> list[ReservationRead]:
    res_repo = SqlAlchemyReservationRepository(session, tenant_code=actor.tenant_code)
    try:
        rows = await reservation_usecase.list_tenant_reservations(res_repo, actor=actor, status=status_filter)
    except DomainError as exc:
        raise to_http(exc) from exc
    return [ReservationRead.from_db(reservation=res, slot=slot) for res, slot in rows]


@router.post("/reservations/{reservation_id}/complete", response_model=ReservationRead)
async def complete_reservation(
    reservation_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: ActorContext = Depends(require_admin),
) -> ReservationRead:
    res_repo = SqlAlchemyReservationRepository(session, tenant_code=actor.tenant_code)
    try:
        reservation, slot, status_from = await run_atomic(
            session,
            lambda: reservation_usecase.complete_reservation(res_repo, actor=actor, reservation_id=reservation_id),
            attempts=get_settings().contention_retries,
        )
    except DomainError as exc:
        raise to_http(exc) from exc

    if status_from != reservation.status:
        audit_transition(
            action="reservation.completed",
            actor=actor,
            reservation=reservation,
            slot=slot,
            status_from=status_from,
            initiator="admin",
        )
    return ReservationRead.from_db(reservation=reservation, slot=slot)


@router.post("/reservations/complete-due", response_model=CompletionSummary)
async def complete_due_reservations(
    session: AsyncSession = Depends(get_session),
    actor: ActorContext = Depends(require_admin),
) -> CompletionSummary:
    res_repo = SqlAlchemyReservationRepository(session, tenant_code=actor.tenant_code)
    try:
        completed = await run_atomic(
            session,
            lambda: reservation_usecase.complete_due_reservations(res_repo),
            attempts=get_settings().contention_retries,
        )
    except DomainError as exc:
        raise to_http(exc) from exc

    for reservation, slot in completed:
        audit_transition(
            action="reservation.completed",
            actor=actor,
            reservation=reservation,
            slot=slot,
            status_from=ReservationStatus.CONFIRMED,
            initiator="system",
        )
    return CompletionSummary(completed=len(completed), reservation_ids=[res.id for res, _ in completed])
