"""Session token issuance and local verification.

Learn: Session tokens are stateless HS256 JWTs. Validity is decided
purely by signature and expiry — there is no server-side revocation list.
Lifetime is fixed at issuance (one hour by default).

Claims: iss, sub, aud="authenticated", iat, exp, email?, phone?,
app_metadata?, user_metadata?, role.
"""

import time
from typing import Any, Optional

import jwt

from jotter.config import Settings
from jotter.errors import BadRequest

AUDIENCE = "authenticated"
DEFAULT_ROLE = "authenticated"


class TokenError(Exception):
    """Raised when token verification fails."""


def issue_session_token(
    settings: Settings,
    payload: dict[str, Any],
    now: Optional[int] = None,
) -> str:
    """Mint a signed session token for a principal-shaped payload.

    ``payload`` needs an ``id``; ``email``, ``phone``, ``app_metadata``,
    ``user_metadata`` and ``role`` are optional. Raises BadRequest if the
    id is missing.
    """
    user_id = payload.get("id") if payload else None
    if not user_id:
        raise BadRequest("User data required")

    issued_at = int(time.time()) if now is None else now
    claims: dict[str, Any] = {
        "iss": settings.jwt_issuer,
        "sub": str(user_id),
        "aud": AUDIENCE,
        "iat": issued_at,
        "exp": issued_at + settings.session_ttl_seconds,
        "role": payload.get("role") or DEFAULT_ROLE,
        "user_metadata": payload.get("user_metadata") or {},
    }
    for optional in ("email", "phone", "app_metadata"):
        if payload.get(optional):
            claims[optional] = payload[optional]

    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_session_token(settings: Settings, token: str) -> dict[str, Any]:
    """Verify signature and expiry and return the claims.

    Raises TokenError on any failure, including a missing ``sub``.
    Audience is not enforced so tokens minted by the identity provider
    with the shared secret are accepted too.
    """
    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"verify_aud": False, "require": ["exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid token: {e}")

    if not claims.get("sub"):
        raise TokenError("Token has no subject")
    return claims
