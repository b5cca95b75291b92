"""
JWT helpers shared with the identity service.

The API only verifies bearer tokens (verify_token). Tokens are issued by the
identity service with the same secret, issuer and audience; create_token and
create_access_token mint compatible tokens for tests and local tooling.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from jose import jwt, JWTError

from settings.config import get_settings


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_token(
    subject: str,
    token_type: str,
    expires_delta: timedelta,
    extra_claims: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Create a signed JWT. Issuer and audience are checked on verification.
    """
    settings = get_settings()
    now = _utcnow()
    payload: Dict[str, Any] = {
        "sub": subject,
        "jti": str(uuid.uuid4()),
        "type": token_type,
        "iat": int(now.timestamp()),
        "nbf": int(now.timestamp()),
        "exp": int((now + expires_delta).timestamp()),
        "iss": settings.JWT_ISSUER,
        "aud": settings.JWT_AUDIENCE,
    }
    if extra_claims:
        payload.update(extra_claims)
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def create_access_token(
    subject: str,
    roles: Optional[List[str]] = None,
    permissions: Optional[List[str]] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Access token carrying the 'roles' and 'permissions' claims read by the permission checker.
    """
    settings = get_settings()
    return create_token(
        subject=subject,
        token_type="access",
        expires_delta=expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
        extra_claims={"roles": list(roles or []), "permissions": list(permissions or [])},
    )


def verify_token(token: str, expected_token_type: Optional[str] = None) -> Dict[str, Any]:
    """
    Verify a JWT's signature, expiration, issuer, and audience.
    Optionally enforce token type (e.g., 'access').
    Returns decoded claims on success; raises JWTError on failure.
    """
    settings = get_settings()
    payload = jwt.decode(
        token,
        settings.JWT_SECRET_KEY,
        algorithms=[settings.JWT_ALGORITHM],
        audience=settings.JWT_AUDIENCE,
        issuer=settings.JWT_ISSUER,
        options={"require_exp": True, "require_sub": True, "require_iat": True, "require_nbf": True},
    )
    if expected_token_type and payload.get("type") != expected_token_type:
        raise JWTError("Invalid token type.")
    return payload
