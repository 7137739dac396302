"""
JWT helpers for registry callers.

Tokens are issued by the external identity provider; the registry only
verifies them. ``issue_token`` mints compatible tokens for development,
the simulation script and tests.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from trikeride.app.core.config import settings

logger = logging.getLogger(__name__)

REQUIRED_CLAIMS = ("user_id", "role")


def issue_token(
    user_id: int,
    role: str,
    username: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Mint a token carrying the claims the registry reads.

    Args:
        user_id: Passenger or driver id
        role: ``PASSENGER``, ``DRIVER`` or ``ADMIN``
        username: Subject claim, defaults to ``user<id>``
        expires_delta: Lifetime, defaults to ``access_token_expire_minutes``

    Example payload:
        {"sub": "juan", "user_id": 123, "role": "DRIVER", "exp": 1234567890}
    """
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    claims = {
        "sub": username or f"user{user_id}",
        "user_id": user_id,
        "role": role,
        "exp": datetime.utcnow() + lifetime,
    }
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Verify signature and expiry and check the registry's required claims.

    Returns:
        Claims if the token is usable, None otherwise
    """
    try:
        claims = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError as e:
        logger.debug("Rejected bearer token: %s", e)
        return None

    if any(not claims.get(name) for name in REQUIRED_CLAIMS):
        logger.debug("Bearer token missing %s", ", ".join(REQUIRED_CLAIMS))
        return None
    if not isinstance(claims["user_id"], int):
        return None
    return claims
