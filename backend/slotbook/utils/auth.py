from datetime import datetime, timedelta, timezone
from typing import Sequence

import jwt
from jwt import InvalidTokenError

BEARER_PREFIX = "bearer "


class TokenError(ValueError):
    """Raised for any token that must not authenticate a caller."""


def create_access_token(
    *,
    user_id: int,
    secret: str,
    algorithm: str = "HS256",
    expires_delta: timedelta | None = None,
) -> str:
    now = datetime.now(timezone.utc)
    exp = now + (expires_delta or timedelta(minutes=30))
    payload = {"sub": str(user_id), "iat": now, "exp": exp}
    return jwt.encode(payload, secret, algorithm=algorithm)


def extract_bearer_token(authorization: str | None) -> str:
    if not authorization or not authorization.lower().startswith(BEARER_PREFIX):
        raise TokenError("bearer token required")
    token = authorization[len(BEARER_PREFIX):].strip()
    if not token:
        raise TokenError("bearer token required")
    return token


def decode_access_token(
    token: str,
    *,
    secret: str,
    algorithms: Sequence[str],
) -> int:
    """Return the user id carried in ``sub``; expired and forged tokens raise ``TokenError``."""
    try:
        payload = jwt.decode(token, secret, algorithms=list(algorithms), options={"require": ["exp", "sub"]})
    except InvalidTokenError as exc:
        raise TokenError("invalid token") from exc

    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError) as exc:
        raise TokenError("token sub is not an integer") from exc
    if user_id < 1:
        raise TokenError("token sub is not a user id")
    return user_id
