from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from ..domain.context import ActorContext
from ..domain.errors import (
    DenyReason,
    DuplicateLabelError,
    InvalidOwnerError,
    NotFoundError,
    ReservationDeniedError,
)
from ..domain.repositories import ReservationRepository, SlotRepository, UserRepository
from ..models import Reservation, Slot, SlotStatus, SlotType


def _ensure_tenant(actor: ActorContext, slot: Optional[Slot]) -> Slot:
    if slot is None or slot.tenant_code != actor.tenant_code:
        raise NotFoundError("slot not found")
    return slot


def _validate_rate(rate: Optional[Decimal]) -> None:
    if rate is not None and rate <= 0:
        raise ValueError("rate must be positive")


async def get_slot(slot_repo: SlotRepository, *, actor: ActorContext, slot_id: int) -> Slot:
    return _ensure_tenant(actor, await slot_repo.get(slot_id))


async def list_active_slots(slot_repo: SlotRepository, *, actor: ActorContext) -> List[Slot]:
    slots = await slot_repo.list_active()
    return [slot for slot in slots if slot.tenant_code == actor.tenant_code]


async def create_slot(
    slot_repo: SlotRepository,
    user_repo: UserRepository,
    *,
    actor: ActorContext,
    owner_id: Optional[int],
    label: str,
    slot_type: SlotType,
    rate: Optional[Decimal],
    description: Optional[str] = None,
) -> Slot:
    """
    Residents always become the owner of the slot they list. Admins may list a
    shared slot (owner_id=None) or assign it to any member of the community.
    """
    label = label.strip()
    if not label:
        raise ValueError("label is required")
    _validate_rate(rate)
    if not actor.is_admin:
        owner_id = actor.user_id
    if owner_id is not None and not await user_repo.is_member(actor.tenant_code, owner_id):
        raise InvalidOwnerError("owner is not a member of this community")
    if await slot_repo.label_exists(label):
        raise DuplicateLabelError(f"label {label!r} already used")
    return await slot_repo.create(
        owner_id=owner_id,
        label=label,
        slot_type=slot_type,
        rate=rate,
        description=description,
        status=SlotStatus.ACTIVE,
    )


_UNSET = object()


async def update_slot(
    slot_repo: SlotRepository,
    *,
    actor: ActorContext,
    slot_id: int,
    label: Optional[str] = None,
    slot_type: Optional[SlotType] = None,
    description: Optional[str] = None,
    status: Optional[SlotStatus] = None,
    rate: object = _UNSET,
) -> Slot:
    """Owner or admin edit. `rate=None` turns the slot into quote-required."""
    slot = _ensure_tenant(actor, await slot_repo.get_for_update(slot_id))
    if not actor.is_admin and slot.owner_id != actor.user_id:
        raise ReservationDeniedError(DenyReason.NOT_SLOT_OWNER)

    if label is not None:
        label = label.strip()
        if not label:
            raise ValueError("label is required")
        if label != slot.label and await slot_repo.label_exists(label, excluding_slot_id=slot.id):
            raise DuplicateLabelError(f"label {label!r} already used")
        slot.label = label
    if slot_type is not None:
        slot.slot_type = slot_type
    if description is not None:
        slot.description = description
    if status is not None:
        slot.status = status
    if rate is not _UNSET:
        new_rate = rate if rate is None else Decimal(str(rate))
        _validate_rate(new_rate)
        slot.rate = new_rate
    return await slot_repo.save(slot)


async def list_booked_windows(
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    *,
    actor: ActorContext,
    slot_id: int,
    start: datetime,
    end: datetime,
) -> List[Reservation]:
    if start >= end:
        raise ValueError("start must be earlier than end")
    slot = _ensure_tenant(actor, await slot_repo.get(slot_id))
    return await res_repo.list_blocking(slot.id, start, end)
