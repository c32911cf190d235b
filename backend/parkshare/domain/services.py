from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from ..models import SlotStatus
from .context import ActorContext
from .errors import DenyReason, InvalidWindowError

MINOR_UNIT = Decimal("0.01")
_SECONDS_PER_HOUR = Decimal(3600)


@dataclass(frozen=True)
class SlotSnapshot:
    slot_id: int
    tenant_code: str
    status: SlotStatus
    owner_id: Optional[int]
    rate: Optional[Decimal]

    @property
    def is_shared(self) -> bool:
        return self.owner_id is None


@dataclass(frozen=True)
class BookingPolicy:
    min_duration: timedelta = timedelta(hours=1)
    max_duration: timedelta = timedelta(hours=24)
    max_advance: timedelta = timedelta(days=30)
    cancel_grace: timedelta = timedelta(0)


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[DenyReason] = None

    @classmethod
    def allow(cls) -> "Decision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: DenyReason) -> "Decision":
        return cls(allowed=False, reason=reason)


@dataclass(frozen=True)
class QuoteRequired:
    """Price outcome for a slot without a rate: route the renter to the owner."""

    slot_id: int


Price = Union[Decimal, QuoteRequired]


def can_reserve(actor: ActorContext, slot: SlotSnapshot) -> Decision:
    """
    Ownership gate. Pure; evaluated inside the booking transaction so a slot
    that changed owner or status since the renter looked at it is caught.
    """
    if slot.status != SlotStatus.ACTIVE:
        return Decision.deny(DenyReason.SLOT_UNAVAILABLE)
    if actor.is_admin:
        return Decision.allow()
    if slot.is_shared:
        return Decision.allow()
    if slot.owner_id == actor.user_id:
        return Decision.allow()
    return Decision.deny(DenyReason.SLOT_RESERVED_BY_ANOTHER_RESIDENT)


def validate_window(start: datetime, end: datetime, *, now: datetime, policy: BookingPolicy) -> None:
    if start >= end:
        raise InvalidWindowError("end must be after start")
    if start < now:
        raise InvalidWindowError("start is in the past")
    duration = end - start
    if duration < policy.min_duration:
        raise InvalidWindowError(f"minimum duration is {policy.min_duration}")
    if duration > policy.max_duration:
        raise InvalidWindowError(f"maximum duration is {policy.max_duration}")
    if start - now > policy.max_advance:
        raise InvalidWindowError(f"cannot book more than {policy.max_advance.days} days ahead")


def windows_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open [start, end) intersection; touching windows do not overlap."""
    return a_start < b_end and a_end > b_start


def duration_hours(start: datetime, end: datetime) -> Decimal:
    delta = end - start
    seconds = Decimal(delta.days * 86400 + delta.seconds) + Decimal(delta.microseconds) / Decimal(1_000_000)
    return seconds / _SECONDS_PER_HOUR


def compute_price(slot: SlotSnapshot, start: datetime, end: datetime) -> Price:
    """rate * hours, fixed-point, rounded half-up to the currency minor unit."""
    if slot.rate is None:
        return QuoteRequired(slot_id=slot.slot_id)
    total = Decimal(slot.rate) * duration_hours(start, end)
    return total.quantize(MINOR_UNIT, rounding=ROUND_HALF_UP)
