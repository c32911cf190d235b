from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple, cast

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.repositories import ReservationRepository, SlotRepository, UserRepository
from ..models import (
    BLOCKING_STATUSES,
    Reservation,
    ReservationStatus,
    Slot,
    SlotStatus,
    SlotType,
    Tenant,
    User,
)
from ..utils.time import utc_now_naive


class SqlAlchemyUserRepository(UserRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_with_tenant(self, user_id: int) -> Optional[Tuple[User, Optional[Tenant]]]:
        stmt = (
            select(User, Tenant)
            .outerjoin(Tenant, User.tenant_code == Tenant.code)
            .where(User.id == user_id)
        )
        row = (await self.session.execute(stmt)).first()
        return cast(Optional[Tuple[User, Optional[Tenant]]], row)

    async def is_member(self, tenant_code: str, user_id: int) -> bool:
        stmt = select(User.id).where(
            User.id == user_id,
            User.tenant_code == tenant_code,
            User.is_active.is_(True),
        )
        return await self.session.scalar(stmt) is not None

    async def get_contact(self, user_id: int) -> User | None:
        return await self.session.scalar(select(User).where(User.id == user_id))


class SqlAlchemySlotRepository(SlotRepository):
    """Slot access confined to one tenant, in addition to the session-level filter."""

    def __init__(self, session: AsyncSession, *, tenant_code: str) -> None:
        self.session = session
        self.tenant_code = tenant_code

    def _scoped(self) -> Select[Tuple[Slot]]:
        return select(Slot).where(Slot.tenant_code == self.tenant_code)

    async def get(self, slot_id: int) -> Slot | None:
        return await self.session.scalar(self._scoped().where(Slot.id == slot_id))

    async def get_for_update(self, slot_id: int) -> Slot | None:
        # The slot row lock serialises every booking attempt on this slot.
        stmt = self._scoped().where(Slot.id == slot_id).with_for_update()
        return await self.session.scalar(stmt)

    async def list_active(self) -> List[Slot]:
        stmt = self._scoped().where(Slot.status == SlotStatus.ACTIVE).order_by(Slot.label.asc(), Slot.id.asc())
        return list((await self.session.scalars(stmt)).all())

    async def label_exists(self, label: str, *, excluding_slot_id: int | None = None) -> bool:
        stmt = select(Slot.id).where(Slot.tenant_code == self.tenant_code, Slot.label == label)
        if excluding_slot_id is not None:
            stmt = stmt.where(Slot.id != excluding_slot_id)
        return await self.session.scalar(stmt) is not None

    async def create(
        self,
        *,
        owner_id: int | None,
        label: str,
        slot_type: SlotType,
        rate: Decimal | None,
        description: str | None,
        status: SlotStatus,
    ) -> Slot:
        now = utc_now_naive()
        slot = Slot(
            tenant_code=self.tenant_code,
            owner_id=owner_id,
            label=label,
            slot_type=slot_type,
            rate=rate,
            description=description,
            status=status,
            created_at=now,
            updated_at=now,
        )
        self.session.add(slot)
        await self.session.flush()
        return slot

    async def save(self, slot: Slot) -> Slot:
        slot.updated_at = utc_now_naive()
        self.session.add(slot)
        await self.session.flush()
        return slot


class SqlAlchemyReservationRepository(ReservationRepository):
    def __init__(self, session: AsyncSession, *, tenant_code: str | None) -> None:
        self.session = session
        # None only for system jobs running in an unscoped session.
        self.tenant_code = tenant_code

    def _with_slot(self) -> Select[Tuple[Reservation, Slot]]:
        stmt = select(Reservation, Slot).join(Slot, Reservation.slot_id == Slot.id)
        if self.tenant_code is not None:
            stmt = stmt.where(Reservation.tenant_code == self.tenant_code, Slot.tenant_code == self.tenant_code)
        return stmt

    async def has_conflict(
        self,
        slot_id: int,
        start: datetime,
        end: datetime,
        excluding_reservation_id: int | None = None,
    ) -> bool:
        stmt = select(Reservation.id).where(
            Reservation.slot_id == slot_id,
            Reservation.status.in_(BLOCKING_STATUSES),
            Reservation.starts_at < end,
            Reservation.ends_at > start,
        )
        if excluding_reservation_id is not None:
            stmt = stmt.where(Reservation.id != excluding_reservation_id)
        return await self.session.scalar(stmt.limit(1)) is not None

    async def create(
        self,
        *,
        slot_id: int,
        renter_id: int,
        starts_at: datetime,
        ends_at: datetime,
        status: ReservationStatus,
        total_price: Decimal | None,
    ) -> Reservation:
        if self.tenant_code is None:
            raise ValueError("reservations are created within a tenant")
        now = utc_now_naive()
        reservation = Reservation(
            tenant_code=self.tenant_code,
            slot_id=slot_id,
            renter_id=renter_id,
            starts_at=starts_at,
            ends_at=ends_at,
            status=status,
            total_price=total_price,
            version=1,
            created_at=now,
            updated_at=now,
        )
        self.session.add(reservation)
        await self.session.flush()
        return reservation

    async def get(self, reservation_id: int) -> Optional[Tuple[Reservation, Slot]]:
        stmt = self._with_slot().where(Reservation.id == reservation_id)
        row = (await self.session.execute(stmt)).first()
        return cast(Optional[Tuple[Reservation, Slot]], row)

    async def get_for_update(self, reservation_id: int) -> Optional[Tuple[Reservation, Slot]]:
        stmt = self._with_slot().where(Reservation.id == reservation_id).with_for_update()
        row = (await self.session.execute(stmt)).first()
        return cast(Optional[Tuple[Reservation, Slot]], row)

    async def list_by_renter(
        self,
        renter_id: int,
        status: ReservationStatus | None = None,
    ) -> List[Tuple[Reservation, Slot]]:
        stmt = self._with_slot().where(Reservation.renter_id == renter_id)
        if status is not None:
            stmt = stmt.where(Reservation.status == status)
        rows = await self.session.execute(stmt.order_by(Reservation.starts_at.asc(), Reservation.id.asc()))
        return cast(List[Tuple[Reservation, Slot]], list(rows.all()))

    async def list_for_tenant(self, status: ReservationStatus | None = None) -> List[Tuple[Reservation, Slot]]:
        stmt = self._with_slot()
        if status is not None:
            stmt = stmt.where(Reservation.status == status)
        rows = await self.session.execute(stmt.order_by(Reservation.starts_at.asc(), Reservation.id.asc()))
        return cast(List[Tuple[Reservation, Slot]], list(rows.all()))

    async def list_blocking(self, slot_id: int, start: datetime, end: datetime) -> List[Reservation]:
        stmt = (
            select(Reservation)
            .where(
                Reservation.slot_id == slot_id,
                Reservation.status.in_(BLOCKING_STATUSES),
                Reservation.starts_at < end,
                Reservation.ends_at > start,
            )
            .order_by(Reservation.starts_at.asc())
        )
        return list((await self.session.scalars(stmt)).all())

    async def list_due_for_completion(self, now: datetime) -> List[Tuple[Reservation, Slot]]:
        stmt = (
            self._with_slot()
            .where(Reservation.status == ReservationStatus.CONFIRMED, Reservation.ends_at <= now)
            .order_by(Reservation.ends_at.asc())
            .with_for_update()
        )
        rows = await self.session.execute(stmt)
        return cast(List[Tuple[Reservation, Slot]], list(rows.all()))

    async def save(self, reservation: Reservation) -> Reservation:
        self.session.add(reservation)
        await self.session.flush()
        return reservation
