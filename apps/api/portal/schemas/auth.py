"""Authentication-related Pydantic schemas."""

from uuid import UUID

from pydantic import BaseModel


class TokenPayload(BaseModel):
    """Decoded access-token payload (only the claims the API relies on)."""
    sub: UUID  # user_id
    email: str | None = None


class UserSession(BaseModel):
    """
    Session context for authenticated requests.

    `access_token` is forwarded as the credential for edge-function media calls.
    """
    user_id: UUID
    email: str | None = None
    access_token: str
