from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import is_contention_error
from ..domain.errors import ContendedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_atomic(
    session: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    backoff_seconds: float = 0.05,
) -> T:
    """
    Run `operation` in one transaction. A lock timeout or deadlock rolls the
    whole attempt back and retries in a fresh transaction; after `attempts`
    tries it surfaces as ContendedError. Domain errors roll back and propagate.
    """
    for attempt in range(1, attempts + 1):
        try:
            async with session.begin():
                return await operation()
        except OperationalError as exc:
            if not is_contention_error(exc):
                raise
            logger.warning("transaction contended (attempt %d/%d): %s", attempt, attempts, exc.orig)
            if attempt == attempts:
                raise ContendedError("store is busy, try again") from exc
            await asyncio.sleep(backoff_seconds * attempt)
    raise ContendedError("store is busy, try again")  # pragma: no cover - loop always returns or raises
