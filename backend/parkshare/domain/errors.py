from enum import StrEnum


class DomainError(Exception):
    """Base class for reservation engine errors."""


class UnauthenticatedError(DomainError):
    pass


class NoTenantAssignedError(DomainError):
    pass


class NotFoundError(DomainError):
    """Missing, or belonging to another tenant. Both are reported the same way."""


class DenyReason(StrEnum):
    SLOT_UNAVAILABLE = "slot_unavailable"
    SLOT_RESERVED_BY_ANOTHER_RESIDENT = "slot_reserved_by_another_resident"
    NOT_SLOT_OWNER = "not_slot_owner"
    ADMIN_ONLY = "admin_only"


class ReservationDeniedError(DomainError):
    def __init__(self, reason: DenyReason) -> None:
        super().__init__(reason.value)
        self.reason = reason


class InvalidWindowError(DomainError):
    pass


class AlreadyBookedError(DomainError):
    pass


class ContendedError(DomainError):
    """Lock could not be acquired in time; safe to retry."""


class DuplicateLabelError(DomainError):
    pass


class InvalidOwnerError(DomainError):
    pass


class CancelNotAllowedError(DomainError):
    pass


class InvalidTransitionError(DomainError):
    pass


class VersionConflictError(DomainError):
    pass


class PriceImmutableError(DomainError):
    pass


class TenantIsolationError(DomainError):
    pass
