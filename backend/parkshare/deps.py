from typing import AsyncIterator

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.exc import ProgrammingError
from sqlalchemy.ext.asyncio import AsyncSession

from .config import get_settings
from .database import async_session
from .domain.context import ActorContext
from .domain.errors import NoTenantAssignedError, UnauthenticatedError
from .infrastructure.repositories import SqlAlchemyUserRepository
from .infrastructure.tenancy import bind_tenant, unscoped
from .usecases.actors import resolve_actor
from .utils.auth import decode_access_token, parse_bearer


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_actor(
    authorization: str | None = Header(default=None),
    session: AsyncSession = Depends(get_session),
) -> ActorContext:
    """
    Resolve the bearer token to an ActorContext and bind its tenant to the
    request session. Fails closed: no partially-populated context is returned.
    """
    settings = get_settings()
    try:
        token = parse_bearer(authorization)
        user_id = decode_access_token(token, secret=settings.auth_secret, algorithms=[settings.auth_algorithm])
        with unscoped(session):
            actor = await resolve_actor(SqlAlchemyUserRepository(session), user_id=user_id)
    except UnauthenticatedError as exc:
        raise _unauthorized("please sign in") from exc
    except NoTenantAssignedError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="no community assigned") from exc
    except ProgrammingError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="identity store unavailable") from exc
    finally:
        # Close the read-only lookup so the engine can open its own transaction.
        await session.rollback()

    bind_tenant(session, actor.tenant_code)
    return actor


async def require_admin(actor: ActorContext = Depends(get_actor)) -> ActorContext:
    if not actor.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="admin_only")
    return actor
