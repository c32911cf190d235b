from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Protocol

from ..models import Reservation, ReservationStatus, Slot, SlotStatus, SlotType, Tenant, User


class UserRepository(Protocol):
    async def get_with_tenant(self, user_id: int) -> tuple[User, Tenant | None] | None: ...

    async def is_member(self, tenant_code: str, user_id: int) -> bool: ...

    async def get_contact(self, user_id: int) -> User | None: ...


class SlotRepository(Protocol):
    tenant_code: str

    async def get(self, slot_id: int) -> Slot | None: ...

    async def get_for_update(self, slot_id: int) -> Slot | None: ...

    async def list_active(self) -> list[Slot]: ...

    async def label_exists(self, label: str, *, excluding_slot_id: int | None = None) -> bool: ...

    async def create(
        self,
        *,
        owner_id: int | None,
        label: str,
        slot_type: SlotType,
        rate: Decimal | None,
        description: str | None,
        status: SlotStatus,
    ) -> Slot: ...

    async def save(self, slot: Slot) -> Slot: ...


class ReservationRepository(Protocol):
    tenant_code: str

    async def has_conflict(
        self,
        slot_id: int,
        start: datetime,
        end: datetime,
        excluding_reservation_id: int | None = None,
    ) -> bool: ...

    async def create(
        self,
        *,
        slot_id: int,
        renter_id: int,
        starts_at: datetime,
        ends_at: datetime,
        status: ReservationStatus,
        total_price: Decimal | None,
    ) -> Reservation: ...

    async def get(self, reservation_id: int) -> tuple[Reservation, Slot] | None: ...

    async def get_for_update(self, reservation_id: int) -> tuple[Reservation, Slot] | None: ...

    async def list_by_renter(
        self,
        renter_id: int,
        status: ReservationStatus | None = None,
    ) -> list[tuple[Reservation, Slot]]: ...

    async def list_for_tenant(self, status: ReservationStatus | None = None) -> list[tuple[Reservation, Slot]]: ...

    async def list_blocking(self, slot_id: int, start: datetime, end: datetime) -> list[Reservation]: ...

    async def list_due_for_completion(self, now: datetime) -> list[tuple[Reservation, Slot]]: ...

    async def save(self, reservation: Reservation) -> Reservation: ...
