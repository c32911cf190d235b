"""Shared fixtures: a file-backed SQLite store seeded with two communities."""

from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from parkshare.database import create_engine_for, make_sessionmaker
from parkshare.domain.context import ActorContext
from parkshare.infrastructure.tenancy import unscoped
from parkshare.models import Base, Slot, SlotStatus, SlotType, Tenant, User, UserRole

SEEDED_AT = datetime(2023, 12, 1)


@dataclass
class World:
    tenant: str
    other_tenant: str
    u1: int
    u2: int
    u3: int
    u4: int
    admin: int
    outsider: int
    orphan: int
    s1_shared: int
    s2_owned_by_u3: int
    s3_quote: int
    s4_other_tenant: int

    def actor(self, user_id: int, *, role: UserRole = UserRole.RESIDENT, tenant: str | None = None) -> ActorContext:
        return ActorContext(user_id=user_id, tenant_code=tenant or self.tenant, role=role)


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncIterator[AsyncEngine]:
    eng = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'parkshare.db'}", lock_wait_timeout=5)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_sessionmaker(engine)


def _user(tenant: str | None, email: str, name: str, *, role: UserRole = UserRole.RESIDENT, phone: str | None = None) -> User:
    return User(
        tenant_code=tenant,
        role=role,
        email=email,
        name=name,
        phone=phone,
        unit_number=None,
        is_active=True,
        created_at=SEEDED_AT,
        updated_at=SEEDED_AT,
    )


def _slot(tenant: str, label: str, *, owner_id: int | None, rate: Decimal | None) -> Slot:
    return Slot(
        tenant_code=tenant,
        label=label,
        slot_type=SlotType.COVERED,
        owner_id=owner_id,
        rate=rate,
        status=SlotStatus.ACTIVE,
        created_at=SEEDED_AT,
        updated_at=SEEDED_AT,
    )


@pytest_asyncio.fixture
async def world(session_factory: async_sessionmaker[AsyncSession]) -> World:
    async with session_factory() as session:
        with unscoped(session):
            session.add_all(
                [
                    Tenant(code="LMR", name="Lumiere Residences", is_active=True, created_at=SEEDED_AT),
                    Tenant(code="SRP", name="Sunrise Park", is_active=True, created_at=SEEDED_AT),
                ]
            )
            await session.flush()

            users = {
                "u1": _user("LMR", "u1@example.com", "Ana"),
                "u2": _user("LMR", "u2@example.com", "Ben"),
                "u3": _user("LMR", "u3@example.com", "Carla", phone="+63 900 000 0003"),
                "u4": _user("LMR", "u4@example.com", "Dario"),
                "admin": _user("LMR", "admin@example.com", "Admin", role=UserRole.ADMIN),
                "outsider": _user("SRP", "v1@example.com", "Vic"),
                "orphan": _user(None, "orphan@example.com", "Nobody"),
            }
            session.add_all(users.values())
            await session.flush()

            slots = {
                "s1": _slot("LMR", "S1", owner_id=None, rate=Decimal("50.00")),
                "s2": _slot("LMR", "S2", owner_id=users["u3"].id, rate=Decimal("40.00")),
                "s3": _slot("LMR", "S3", owner_id=users["u3"].id, rate=None),
                "s4": _slot("SRP", "S1", owner_id=None, rate=Decimal("30.00")),
            }
            session.add_all(slots.values())
            await session.flush()
            await session.commit()

            return World(
                tenant="LMR",
                other_tenant="SRP",
                u1=users["u1"].id,
                u2=users["u2"].id,
                u3=users["u3"].id,
                u4=users["u4"].id,
                admin=users["admin"].id,
                outsider=users["outsider"].id,
                orphan=users["orphan"].id,
                s1_shared=slots["s1"].id,
                s2_owned_by_u3=slots["s2"].id,
                s3_quote=slots["s3"].id,
                s4_other_tenant=slots["s4"].id,
            )
