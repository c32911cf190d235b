from ..domain.context import ActorContext
from ..domain.errors import NoTenantAssignedError, UnauthenticatedError
from ..domain.repositories import UserRepository


async def resolve_actor(user_repo: UserRepository, *, user_id: int) -> ActorContext:
    row = await user_repo.get_with_tenant(user_id)
    if row is None:
        raise UnauthenticatedError("user not found")
    user, tenant = row
    if not user.is_active:
        raise UnauthenticatedError("user is disabled")
    if user.tenant_code is None or tenant is None or not tenant.is_active:
        raise NoTenantAssignedError(f"user {user.id} has no active community")
    return ActorContext(user_id=user.id, tenant_code=user.tenant_code, role=user.role)
