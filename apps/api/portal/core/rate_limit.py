"""Rate limiting for the portal API."""

import os

from slowapi import Limiter
from slowapi.util import get_remote_address

from portal.core.config import settings

IS_TESTING = os.getenv("TESTING", "").lower() in ("1", "true", "yes")
DEFAULT_LIMITS = [] if settings.RATE_LIMIT_API <= 0 else [f"{settings.RATE_LIMIT_API}/minute"]

# Use RATE_LIMIT_STORAGE_URI=redis://... when running several workers.
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://" if IS_TESTING else settings.RATE_LIMIT_STORAGE_URI,
    default_limits=DEFAULT_LIMITS,
    enabled=not IS_TESTING,
)


def upload_limit() -> str:
    return f"{settings.RATE_LIMIT_UPLOAD}/minute"


def upload_limit_disabled() -> bool:
    return settings.RATE_LIMIT_UPLOAD <= 0
