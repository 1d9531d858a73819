"""
Bearer token verification.

Tokens are HS256 JWTs whose ``sub`` claim is the caller's user id.  The
server never logs anyone in; ``issue_token`` exists for operators and
tests.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt

from oa_kernel.exceptions import UnauthenticatedError

ALGORITHM = "HS256"


def issue_token(
    user_id: int,
    secret: str,
    expire_seconds: int = 86400,
    now: datetime | None = None,
) -> str:
    issued = now or datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "iat": issued,
        "exp": issued + timedelta(seconds=expire_seconds),
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def decode_token(token: str, secret: str) -> int:
    """User id carried by ``token``.

    Raises:
        UnauthenticatedError: bad signature, expired, or no usable subject.
    """
    try:
        claims = jwt.decode(
            token, secret, algorithms=[ALGORITHM], options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise UnauthenticatedError("token expired") from None
    except jwt.InvalidTokenError:
        raise UnauthenticatedError("invalid token") from None

    subject = str(claims.get("sub") or "").strip()
    if not subject.isdigit() or int(subject) < 1:
        raise UnauthenticatedError("token has no caller identity")
    return int(subject)


def bearer_token(authorization: str | None) -> str:
    if not authorization:
        raise UnauthenticatedError("missing bearer token")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise UnauthenticatedError("authorization must be 'Bearer <token>'")
    return token.strip()
