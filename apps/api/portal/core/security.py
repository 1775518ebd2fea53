"""Security utilities for access-token (JWT) verification."""

from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt

from portal.core.config import settings


# =============================================================================
# Access Token (JWT bearer)
# =============================================================================

def create_access_token(user_id: UUID, email: str | None = None, expires_hours: int = 1) -> str:
    """
    Create signed access JWT.

    The auth provider issues these in production; the API only mints them
    for local tooling and tests. Always signs with the current secret.
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "email": email,
        "iat": now,
        "exp": now + timedelta(hours=expires_hours),
    }
    if settings.JWT_AUDIENCE:
        payload["aud"] = settings.JWT_AUDIENCE
    return jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")


def decode_access_token(token: str) -> dict:
    """
    Decode and verify access JWT.

    Tries current secret first, then previous (for rotation support).

    Raises:
        jwt.InvalidTokenError: If token invalid with all secrets
    """
    options = {"require": ["sub", "exp"]}
    audience = settings.JWT_AUDIENCE or None
    if audience is None:
        options["verify_aud"] = False

    last_error = None
    for secret in settings.jwt_secrets:
        try:
            return jwt.decode(
                token,
                secret,
                algorithms=["HS256"],
                audience=audience,
                options=options,
            )
        except jwt.InvalidTokenError as e:
            last_error = e
            continue
    raise last_error  # type: ignore
