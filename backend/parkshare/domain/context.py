from dataclasses import dataclass

from ..models import UserRole


@dataclass(frozen=True)
class ActorContext:
    """Who is acting and for which community. Built once per request."""

    user_id: int
    tenant_code: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
