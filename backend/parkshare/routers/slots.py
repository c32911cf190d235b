from datetime import datetime
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import get_actor, get_session
from ..domain.context import ActorContext
from ..domain.errors import DomainError
from ..infrastructure.repositories import SqlAlchemyReservationRepository, SqlAlchemySlotRepository, SqlAlchemyUserRepository
from ..infrastructure.transactions import run_atomic
from ..schemas import BookedWindow, SlotCreate, SlotRead, SlotUpdate
from ..usecases import slots as slot_usecase
from ..utils.time import to_utc_naive
from .errors import to_http

router = APIRouter(prefix="/slots", tags=["slots"], dependencies=[Depends(get_actor)])


@router.get("", response_model=List[SlotRead])
async def list_active_slots(
    session: AsyncSession = Depends(get_session),
    actor: ActorContext = Depends(get_actor),
) -> list[SlotRead]:
    slot_repo = SqlAlchemySlotRepository(session, tenant_code=actor.tenant_code)
    slots = await slot_usecase.list_active_slots(slot_repo, actor=actor)
    return [SlotRead.from_db(slot=slot) for slot in slots]


@router.post("", response_model=SlotRead, status_code=status.HTTP_201_CREATED)
async def create_slot(
    payload: SlotCreate,
    session: AsyncSession = Depends(get_session),
    actor: ActorContext = Depends(get_actor),
) -> SlotRead:
    slot_repo = SqlAlchemySlotRepository(session, tenant_code=actor.tenant_code)
    user_repo = SqlAlchemyUserRepository(session)
    try:
        slot = await run_atomic(
            session,
            lambda: slot_usecase.create_slot(
                slot_repo,
                user_repo,
                actor=actor,
                owner_id=payload.owner_id,
                label=payload.label,
                slot_type=payload.slot_type,
                rate=payload.rate,
                description=payload.description,
            ),
            attempts=get_settings().contention_retries,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except IntegrityError as exc:
        # Concurrent insert of the same label lost the race at the unique index.
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="label already used") from exc
    except DomainError as exc:
        raise to_http(exc) from exc
    return SlotRead.from_db(slot=slot)


@router.get("/{slot_id}", response_model=SlotRead)
async def get_slot(
    slot_id: int,
    session: AsyncSession = Depends(get_session),
    actor: ActorContext = Depends(get_actor),
) -> SlotRead:
    slot_repo = SqlAlchemySlotRepository(session, tenant_code=actor.tenant_code)
    try:
        slot = await slot_usecase.get_slot(slot_repo, actor=actor, slot_id=slot_id)
    except DomainError as exc:
        raise to_http(exc) from exc
    return SlotRead.from_db(slot=slot)


@router.patch("/{slot_id}", response_model=SlotRead)
async def update_slot(
    slot_id: int,
    payload: SlotUpdate,
    session: AsyncSession = Depends(get_session),
    actor: ActorContext = Depends(get_actor),
) -> SlotRead:
    slot_repo = SqlAlchemySlotRepository(session, tenant_code=actor.tenant_code)
    changes: Dict[str, Any] = payload.model_dump(exclude_unset=True)
    try:
        slot = await run_atomic(
            session,
            lambda: slot_usecase.update_slot(slot_repo, actor=actor, slot_id=slot_id, **changes),
            attempts=get_settings().contention_retries,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except IntegrityError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="label already used") from exc
    except DomainError as exc:
        raise to_http(exc) from exc
    return SlotRead.from_db(slot=slot)


@router.get("/{slot_id}/booked", response_model=List[BookedWindow])
async def list_booked_windows(
    slot_id: int,
    start: datetime = Query(..., description="range start (ISO 8601 with offset)"),
    end: datetime = Query(..., description="range end (ISO 8601 with offset)"),
    session: AsyncSession = Depends(get_session),
    actor: ActorContext = Depends(get_actor),
) -> list[BookedWindow]:
    if start.tzinfo is None or end.tzinfo is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="start/end must have timezone")
    slot_repo = SqlAlchemySlotRepository(session, tenant_code=actor.tenant_code)
    res_repo = SqlAlchemyReservationRepository(session, tenant_code=actor.tenant_code)
    try:
        rows = await slot_usecase.list_booked_windows(
            slot_repo,
            res_repo,
            actor=actor,
            slot_id=slot_id,
            start=to_utc_naive(start),
            end=to_utc_naive(end),
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except DomainError as exc:
        raise to_http(exc) from exc
    return [BookedWindow.from_db(reservation=res) for res in rows]
