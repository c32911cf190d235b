from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from .config import get_settings
from .models import Reservation, ReservationStatus, Slot, SlotStatus, SlotType, User
from .utils.time import utc_naive_to_zone


def _display(dt: datetime) -> datetime:
    return utc_naive_to_zone(dt, get_settings().display_timezone)


class SlotCreate(BaseModel):
    label: str = Field(min_length=1, max_length=50)
    slot_type: SlotType = SlotType.COVERED
    rate: Optional[Decimal] = Field(default=None, gt=0, max_digits=10, decimal_places=2)
    description: Optional[str] = Field(default=None, max_length=500)
    # Honoured for admins only; residents always own what they list.
    owner_id: Optional[int] = None


class SlotUpdate(BaseModel):
    label: Optional[str] = Field(default=None, min_length=1, max_length=50)
    slot_type: Optional[SlotType] = None
    rate: Optional[Decimal] = Field(default=None, gt=0, max_digits=10, decimal_places=2)
    description: Optional[str] = Field(default=None, max_length=500)
    status: Optional[SlotStatus] = None


class SlotRead(BaseModel):
    slot_id: int
    tenant_code: str
    label: str
    slot_type: SlotType
    description: Optional[str]
    owner_id: Optional[int]
    rate: Optional[Decimal]
    status: SlotStatus
    shared: bool
    quote_required: bool

    @classmethod
    def from_db(cls, *, slot: Slot) -> "SlotRead":
        return cls(
            slot_id=slot.id,
            tenant_code=slot.tenant_code,
            label=slot.label,
            slot_type=slot.slot_type,
            description=slot.description,
            owner_id=slot.owner_id,
            rate=slot.rate,
            status=slot.status,
            shared=slot.owner_id is None,
            quote_required=slot.rate is None,
        )


class BookedWindow(BaseModel):
    reservation_id: int
    starts_at: datetime
    ends_at: datetime
    status: ReservationStatus

    @field_serializer("starts_at", "ends_at")
    def _ser_datetime(self, dt: datetime) -> str:
        return dt.isoformat()

    @classmethod
    def from_db(cls, *, reservation: Reservation) -> "BookedWindow":
        return cls(
            reservation_id=reservation.id,
            starts_at=_display(reservation.starts_at),
            ends_at=_display(reservation.ends_at),
            status=reservation.status,
        )


class ReservationCreate(BaseModel):
    # Unknown fields (a client-side total_price, renter_id, status) are dropped.
    model_config = ConfigDict(extra="ignore")

    slot_id: int = Field(ge=1)
    start_time: datetime
    end_time: datetime


class ReservationCancel(BaseModel):
    version: Optional[int] = Field(default=None, ge=1)


class OwnerContact(BaseModel):
    name: str
    phone: Optional[str]
    email: str
    unit_number: Optional[str]

    @classmethod
    def from_db(cls, *, user: User) -> "OwnerContact":
        return cls(name=user.name, phone=user.phone, email=user.email, unit_number=user.unit_number)


class ReservationRead(BaseModel):
    reservation_id: int
    slot_id: int
    slot_label: str
    renter_id: int
    status: ReservationStatus
    starts_at: datetime
    ends_at: datetime
    total_price: Optional[Decimal]
    version: int
    quote_required: bool = False
    owner_contact: Optional[OwnerContact] = None

    @field_serializer("starts_at", "ends_at")
    def _ser_datetime(self, dt: datetime) -> str:
        return dt.isoformat()

    @classmethod
    def from_db(
        cls,
        *,
        reservation: Reservation,
        slot: Slot,
        owner: Optional[User] = None,
    ) -> "ReservationRead":
        return cls(
            reservation_id=reservation.id,
            slot_id=reservation.slot_id,
            slot_label=slot.label,
            renter_id=reservation.renter_id,
            status=reservation.status,
            starts_at=_display(reservation.starts_at),
            ends_at=_display(reservation.ends_at),
            total_price=reservation.total_price,
            version=reservation.version,
            quote_required=reservation.status == ReservationStatus.PENDING and reservation.total_price is None,
            owner_contact=OwnerContact.from_db(user=owner) if owner is not None else None,
        )


class CompletionSummary(BaseModel):
    completed: int
    reservation_ids: list[int]
