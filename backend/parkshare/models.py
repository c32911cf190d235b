from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Enum, ForeignKey, Index, Numeric, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, validates
from sqlalchemy.sql.sqltypes import BigInteger, DateTime, Integer, String

from .domain.errors import PriceImmutableError

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigIntId = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    pass


def _enum_column(enum_cls: type[StrEnum]) -> Enum:
    return Enum(
        enum_cls,
        values_callable=lambda cls: [e.value for e in cls],
        native_enum=False,
        length=32,
    )


class UserRole(StrEnum):
    RESIDENT = "resident"
    ADMIN = "admin"


class SlotType(StrEnum):
    COVERED = "covered"
    UNCOVERED = "uncovered"
    TANDEM = "tandem"


class SlotStatus(StrEnum):
    ACTIVE = "active"
    MAINTENANCE = "maintenance"
    DISABLED = "disabled"


class ReservationStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


# Statuses that hold a slot's time window.
BLOCKING_STATUSES = (ReservationStatus.PENDING, ReservationStatus.CONFIRMED)


class TenantScoped:
    """Marks rows owned by one community; queries on them are tenant-filtered."""

    tenant_code: Mapped[str] = mapped_column(ForeignKey("tenants.code"), nullable=False)


class Tenant(Base):
    __tablename__ = "tenants"

    code: Mapped[str] = mapped_column(String(32), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class User(TenantScoped, Base):
    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("email", name="uq_users_email"),
        Index("idx_users_tenant", "tenant_code"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    # Nullable so a misconfigured account can be detected at sign-in.
    tenant_code: Mapped[Optional[str]] = mapped_column(ForeignKey("tenants.code"), nullable=True)
    role: Mapped[UserRole] = mapped_column(_enum_column(UserRole), nullable=False, default=UserRole.RESIDENT)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    unit_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class Slot(TenantScoped, Base):
    __tablename__ = "slots"
    __table_args__ = (
        CheckConstraint("rate IS NULL OR rate > 0", name="chk_slots_rate"),
        UniqueConstraint("tenant_code", "label", name="uq_slots_tenant_label"),
        Index("idx_slots_tenant_status", "tenant_code", "status"),
        Index("idx_slots_owner", "owner_id"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    label: Mapped[str] = mapped_column(String(50), nullable=False)
    slot_type: Mapped[SlotType] = mapped_column(_enum_column(SlotType), nullable=False, default=SlotType.COVERED)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    owner_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    status: Mapped[SlotStatus] = mapped_column(_enum_column(SlotStatus), nullable=False, default=SlotStatus.ACTIVE)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    owner: Mapped[Optional["User"]] = relationship(lazy="raise")
    reservations: Mapped[list["Reservation"]] = relationship(back_populates="slot", lazy="raise")


class Reservation(TenantScoped, Base):
    __tablename__ = "reservations"
    __table_args__ = (
        CheckConstraint("starts_at < ends_at", name="chk_res_time"),
        CheckConstraint("total_price IS NULL OR total_price >= 0", name="chk_res_price"),
        Index("idx_res_slot_window", "slot_id", "status", "starts_at"),
        Index("idx_res_renter", "renter_id", "starts_at"),
        Index("idx_res_tenant", "tenant_code"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    slot_id: Mapped[int] = mapped_column(ForeignKey("slots.id"), nullable=False)
    renter_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    status: Mapped[ReservationStatus] = mapped_column(
        _enum_column(ReservationStatus),
        nullable=False,
        default=ReservationStatus.PENDING,
    )
    total_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    slot: Mapped["Slot"] = relationship(back_populates="reservations", lazy="raise")

    @validates("total_price")
    def _freeze_total_price(self, key: str, value: Optional[Decimal]) -> Optional[Decimal]:
        current = self.__dict__.get(key)
        if current is not None and value != current:
            raise PriceImmutableError("total_price is already set")
        return value
