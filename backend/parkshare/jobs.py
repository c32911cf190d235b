"""Periodic maintenance. Run with ``python -m parkshare.jobs``."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .domain.errors import DomainError
from .infrastructure.repositories import SqlAlchemyReservationRepository
from .infrastructure.tenancy import unscoped
from .infrastructure.transactions import run_atomic
from .models import ReservationStatus
from .usecases import reservations as reservation_usecase
from .utils.audit_log import emit_audit_log

logger = logging.getLogger(__name__)


async def complete_due_everywhere(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    now: Optional[datetime] = None,
    attempts: int = 3,
) -> list[int]:
    """Complete every confirmed reservation whose end has passed, across communities."""
    async with session_factory() as session:
        res_repo = SqlAlchemyReservationRepository(session, tenant_code=None)
        with unscoped(session):
            completed = await run_atomic(
                session,
                lambda: reservation_usecase.complete_due_reservations(res_repo, now=now),
                attempts=attempts,
            )

    for reservation, slot in completed:
        emit_audit_log(
            action="reservation.completed",
            initiator="system",
            tenant_code=reservation.tenant_code,
            reservation_id=reservation.id,
            slot_id=slot.id,
            renter_id=reservation.renter_id,
            actor_id=None,
            status_from=ReservationStatus.CONFIRMED,
            status_to=reservation.status,
            version=reservation.version,
            total_price=reservation.total_price,
        )
    logger.info("completed %d due reservations", len(completed))
    return [reservation.id for reservation, _ in completed]


def main() -> None:
    from .config import get_settings
    from .database import async_session

    logging.basicConfig(level=logging.INFO)
    try:
        asyncio.run(complete_due_everywhere(async_session, attempts=get_settings().contention_retries))
    except DomainError:
        logger.exception("completion sweep failed")
        raise


if __name__ == "__main__":
    main()
