from datetime import datetime, timedelta, timezone
from typing import Sequence

import jwt
from jwt import InvalidTokenError

from ..domain.errors import UnauthenticatedError

TOKEN_AUDIENCE = "parkshare"


def create_access_token(
    *,
    user_id: int,
    secret: str,
    algorithm: str = "HS256",
    expires_delta: timedelta | None = None,
) -> str:
    now = datetime.now(timezone.utc)
    exp = now + (expires_delta or timedelta(minutes=30))
    payload = {"sub": str(user_id), "aud": TOKEN_AUDIENCE, "iat": now, "exp": exp}
    return jwt.encode(payload, secret, algorithm=algorithm)


def decode_access_token(
    token: str,
    *,
    secret: str,
    algorithms: Sequence[str],
) -> int:
    """Return the user id carried by a session token. Tenant and role are never read from it."""
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=list(algorithms),
            audience=TOKEN_AUDIENCE,
            options={"require": ["sub", "exp"]},
        )
    except InvalidTokenError as exc:  # includes ExpiredSignatureError
        raise UnauthenticatedError("invalid token") from exc

    try:
        return int(payload["sub"])
    except (TypeError, ValueError) as exc:
        raise UnauthenticatedError("token sub is not an integer") from exc


def parse_bearer(authorization: str | None) -> str:
    if not authorization:
        raise UnauthenticatedError("missing Authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise UnauthenticatedError("expected a Bearer token")
    return token.strip()
