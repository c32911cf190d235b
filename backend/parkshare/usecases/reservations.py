from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from ..domain.context import ActorContext
from ..domain.errors import (
    AlreadyBookedError,
    CancelNotAllowedError,
    DenyReason,
    InvalidTransitionError,
    NotFoundError,
    ReservationDeniedError,
    VersionConflictError,
)
from ..domain.repositories import ReservationRepository, SlotRepository
from ..domain.services import (
    BookingPolicy,
    QuoteRequired,
    SlotSnapshot,
    can_reserve,
    compute_price,
    validate_window,
)
from ..models import Reservation, ReservationStatus, Slot
from ..utils.time import utc_now_naive


@dataclass(frozen=True)
class ReservationOutcome:
    reservation: Reservation
    slot: Slot
    quote: Optional[QuoteRequired] = None

    @property
    def quote_required(self) -> bool:
        return self.quote is not None


def snapshot_of(slot: Slot) -> SlotSnapshot:
    return SlotSnapshot(
        slot_id=slot.id,
        tenant_code=slot.tenant_code,
        status=slot.status,
        owner_id=slot.owner_id,
        rate=slot.rate,
    )


def _load_visible(actor: ActorContext, row: Optional[tuple[Reservation, Slot]]) -> tuple[Reservation, Slot]:
    if row is None:
        raise NotFoundError("reservation not found")
    reservation, slot = row
    if reservation.tenant_code != actor.tenant_code or slot.tenant_code != actor.tenant_code:
        raise NotFoundError("reservation not found")
    return reservation, slot


def _is_party(actor: ActorContext, reservation: Reservation, slot: Slot) -> bool:
    return actor.is_admin or actor.user_id in (reservation.renter_id, slot.owner_id)


async def create_reservation(
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    *,
    actor: ActorContext,
    slot_id: int,
    start: datetime,
    end: datetime,
    policy: BookingPolicy,
    now: Optional[datetime] = None,
) -> ReservationOutcome:
    """
    Must run inside one transaction. The slot row is locked first, so the
    conflict check and the insert below cannot interleave with another
    attempt on the same slot.
    """
    now = now or utc_now_naive()
    slot = await slot_repo.get_for_update(slot_id)
    if slot is None or slot.tenant_code != actor.tenant_code:
        raise NotFoundError("slot not found")

    snapshot = snapshot_of(slot)
    decision = can_reserve(actor, snapshot)
    if not decision.allowed:
        raise ReservationDeniedError(decision.reason or DenyReason.SLOT_UNAVAILABLE)

    validate_window(start, end, now=now, policy=policy)

    if await res_repo.has_conflict(slot.id, start, end):
        raise AlreadyBookedError("slot is already booked for this time period")

    price = compute_price(snapshot, start, end)
    if isinstance(price, QuoteRequired):
        reservation = await res_repo.create(
            slot_id=slot.id,
            renter_id=actor.user_id,
            starts_at=start,
            ends_at=end,
            status=ReservationStatus.PENDING,
            total_price=None,
        )
        return ReservationOutcome(reservation=reservation, slot=slot, quote=price)

    reservation = await res_repo.create(
        slot_id=slot.id,
        renter_id=actor.user_id,
        starts_at=start,
        ends_at=end,
        status=ReservationStatus.CONFIRMED,
        total_price=price,
    )
    return ReservationOutcome(reservation=reservation, slot=slot)


def _transition(reservation: Reservation, status: ReservationStatus, now: datetime) -> None:
    reservation.status = status
    reservation.version += 1
    reservation.updated_at = now


async def cancel_reservation(
    res_repo: ReservationRepository,
    *,
    actor: ActorContext,
    reservation_id: int,
    policy: BookingPolicy,
    version: Optional[int] = None,
    now: Optional[datetime] = None,
) -> tuple[Reservation, Slot, ReservationStatus]:
    """Returns the reservation, its slot and the status it had before the call."""
    now = now or utc_now_naive()
    reservation, slot = _load_visible(actor, await res_repo.get_for_update(reservation_id))
    if not _is_party(actor, reservation, slot):
        raise NotFoundError("reservation not found")

    previous = reservation.status
    # Idempotent: already cancelled returns as-is
    if previous == ReservationStatus.CANCELLED:
        return reservation, slot, previous
    if previous not in (ReservationStatus.PENDING, ReservationStatus.CONFIRMED):
        raise CancelNotAllowedError(f"cannot cancel a {previous} reservation")
    if version is not None and reservation.version != version:
        raise VersionConflictError("version mismatch")

    privileged = actor.is_admin or slot.owner_id == actor.user_id
    if not privileged and now >= reservation.starts_at - policy.cancel_grace:
        raise CancelNotAllowedError("cancellation window closed")

    _transition(reservation, ReservationStatus.CANCELLED, now)
    updated = await res_repo.save(reservation)
    return updated, slot, previous


async def decline_reservation(
    res_repo: ReservationRepository,
    *,
    actor: ActorContext,
    reservation_id: int,
    now: Optional[datetime] = None,
) -> tuple[Reservation, Slot, ReservationStatus]:
    """Slot owner or admin turns down a pending quote request."""
    now = now or utc_now_naive()
    reservation, slot = _load_visible(actor, await res_repo.get_for_update(reservation_id))
    if not _is_party(actor, reservation, slot):
        raise NotFoundError("reservation not found")
    if not actor.is_admin and slot.owner_id != actor.user_id:
        raise ReservationDeniedError(DenyReason.NOT_SLOT_OWNER)

    previous = reservation.status
    if previous == ReservationStatus.REJECTED:
        return reservation, slot, previous
    if previous != ReservationStatus.PENDING:
        raise InvalidTransitionError(f"cannot decline a {previous} reservation")

    _transition(reservation, ReservationStatus.REJECTED, now)
    return await res_repo.save(reservation), slot, previous


def _complete(reservation: Reservation, now: datetime) -> bool:
    if reservation.status == ReservationStatus.COMPLETED:
        return False
    if reservation.status != ReservationStatus.CONFIRMED:
        raise InvalidTransitionError(f"cannot complete a {reservation.status} reservation")
    _transition(reservation, ReservationStatus.COMPLETED, now)
    return True


async def complete_reservation(
    res_repo: ReservationRepository,
    *,
    actor: Optional[ActorContext],
    reservation_id: int,
    now: Optional[datetime] = None,
) -> tuple[Reservation, Slot, ReservationStatus]:
    """
    Idempotent. `actor=None` is the system path and only completes a
    reservation whose end has passed; an admin may complete one early.
    """
    now = now or utc_now_naive()
    row = await res_repo.get_for_update(reservation_id)
    if actor is not None:
        if not actor.is_admin:
            raise ReservationDeniedError(DenyReason.ADMIN_ONLY)
        reservation, slot = _load_visible(actor, row)
    else:
        if row is None:
            raise NotFoundError("reservation not found")
        reservation, slot = row

    previous = reservation.status
    if actor is None and previous == ReservationStatus.CONFIRMED and now < reservation.ends_at:
        raise InvalidTransitionError("reservation has not ended yet")
    if _complete(reservation, now):
        await res_repo.save(reservation)
    return reservation, slot, previous


async def complete_due_reservations(
    res_repo: ReservationRepository,
    *,
    now: Optional[datetime] = None,
) -> List[tuple[Reservation, Slot]]:
    now = now or utc_now_naive()
    completed: List[tuple[Reservation, Slot]] = []
    for reservation, slot in await res_repo.list_due_for_completion(now):
        if _complete(reservation, now):
            await res_repo.save(reservation)
            completed.append((reservation, slot))
    return completed


async def list_user_reservations(
    res_repo: ReservationRepository,
    *,
    actor: ActorContext,
    status: Optional[ReservationStatus] = None,
) -> List[tuple[Reservation, Slot]]:
    rows = await res_repo.list_by_renter(actor.user_id, status)
    return [(res, slot) for res, slot in rows if res.tenant_code == actor.tenant_code]


async def list_tenant_reservations(
    res_repo: ReservationRepository,
    *,
    actor: ActorContext,
    status: Optional[ReservationStatus] = None,
) -> List[tuple[Reservation, Slot]]:
    if not actor.is_admin:
        raise ReservationDeniedError(DenyReason.ADMIN_ONLY)
    rows = await res_repo.list_for_tenant(status)
    return [(res, slot) for res, slot in rows if res.tenant_code == actor.tenant_code]


async def get_reservation(
    res_repo: ReservationRepository,
    *,
    actor: ActorContext,
    reservation_id: int,
) -> tuple[Reservation, Slot]:
    reservation, slot = _load_visible(actor, await res_repo.get(reservation_id))
    if not _is_party(actor, reservation, slot):
        raise NotFoundError("reservation not found")
    return reservation, slot
