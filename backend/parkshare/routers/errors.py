from fastapi import HTTPException, status

from ..domain.errors import (
    AlreadyBookedError,
    CancelNotAllowedError,
    ContendedError,
    DomainError,
    DuplicateLabelError,
    InvalidOwnerError,
    InvalidTransitionError,
    InvalidWindowError,
    NoTenantAssignedError,
    NotFoundError,
    PriceImmutableError,
    ReservationDeniedError,
    UnauthenticatedError,
    VersionConflictError,
)

_STATUS_BY_ERROR: dict[type[DomainError], int] = {
    NoTenantAssignedError: status.HTTP_403_FORBIDDEN,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidWindowError: status.HTTP_400_BAD_REQUEST,
    InvalidOwnerError: status.HTTP_400_BAD_REQUEST,
    AlreadyBookedError: status.HTTP_409_CONFLICT,
    DuplicateLabelError: status.HTTP_409_CONFLICT,
    VersionConflictError: status.HTTP_409_CONFLICT,
    CancelNotAllowedError: status.HTTP_409_CONFLICT,
    InvalidTransitionError: status.HTTP_409_CONFLICT,
    PriceImmutableError: status.HTTP_409_CONFLICT,
}


def to_http(exc: DomainError) -> HTTPException:
    """Map a domain error to the response the presentation layer renders."""
    if isinstance(exc, UnauthenticatedError):
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="please sign in",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if isinstance(exc, ReservationDeniedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail={"reason": exc.reason.value})
    if isinstance(exc, ContendedError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="busy, try again",
            headers={"Retry-After": "1"},
        )
    if isinstance(exc, NotFoundError):
        # Same body whether the row is missing or belongs to another community.
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    for error_cls, code in _STATUS_BY_ERROR.items():
        if isinstance(exc, error_cls):
            return HTTPException(status_code=code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="internal error")
