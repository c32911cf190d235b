"""Tenant isolation at the session level.

Every ORM statement that touches a tenant-owned entity gets a
``tenant_code = <bound tenant>`` criterion, and flushes refuse to write rows
for any other tenant. A session with no tenant bound refuses tenant-owned
queries unless it was explicitly opened with :func:`unscoped`.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator, Union

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import ORMExecuteState, Session, with_loader_criteria

from ..domain.errors import TenantIsolationError
from ..models import TenantScoped

_TENANT_KEY = "tenant_code"
_UNSCOPED_KEY = "tenant_unscoped"


class TenantSession(Session):
    pass


def _sync(session: Union[Session, AsyncSession]) -> Session:
    return session.sync_session if isinstance(session, AsyncSession) else session


def bind_tenant(session: Union[Session, AsyncSession], tenant_code: str) -> None:
    _sync(session).info[_TENANT_KEY] = tenant_code


def bound_tenant(session: Union[Session, AsyncSession]) -> str | None:
    return _sync(session).info.get(_TENANT_KEY)


@contextmanager
def unscoped(session: Union[Session, AsyncSession]) -> Iterator[None]:
    """Lift the tenant filter; for identity resolution and system jobs only."""
    info = _sync(session).info
    previous = info.get(_UNSCOPED_KEY, False)
    info[_UNSCOPED_KEY] = True
    try:
        yield
    finally:
        info[_UNSCOPED_KEY] = previous


def _touches_tenant_rows(state: ORMExecuteState) -> bool:
    return any(issubclass(mapper.class_, TenantScoped) for mapper in state.all_mappers)


@event.listens_for(TenantSession, "do_orm_execute")
def _scope_statement(state: ORMExecuteState) -> None:
    if state.is_column_load or state.is_relationship_load:
        return
    if not (state.is_select or state.is_update or state.is_delete):
        return
    if not _touches_tenant_rows(state):
        return
    info = state.session.info
    if info.get(_UNSCOPED_KEY):
        return
    tenant_code = info.get(_TENANT_KEY)
    if tenant_code is None:
        raise TenantIsolationError("no tenant bound to session")
    state.statement = state.statement.options(
        with_loader_criteria(
            TenantScoped,
            lambda cls: cls.tenant_code == tenant_code,
            include_aliases=True,
        )
    )


@event.listens_for(TenantSession, "before_flush")
def _check_writes(session: Session, flush_context: Any, instances: Any) -> None:
    if session.info.get(_UNSCOPED_KEY):
        return
    tenant_code = session.info.get(_TENANT_KEY)
    for obj in [*session.new, *session.dirty]:
        if isinstance(obj, TenantScoped) and obj.tenant_code != tenant_code:
            raise TenantIsolationError("write outside the bound tenant")
