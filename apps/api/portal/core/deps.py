"""FastAPI dependencies for authentication, database access, and media storage."""

import logging
from contextlib import contextmanager
from typing import Generator, Iterator

import jwt
from fastapi import Depends, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from portal.core.errors import (
    AuthenticationError,
    RecordNotFoundError,
    RecordWriteError,
    StorageError,
    UploadError,
    VersionConflictError,
)
from portal.core.security import decode_access_token
from portal.db.session import SessionLocal
from portal.schemas.auth import TokenPayload, UserSession
from portal.services import object_store, profile_service

logger = logging.getLogger(__name__)

BEARER_PREFIX = "bearer "


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_object_store() -> object_store.ObjectStore:
    """Configured media store; overridden in tests."""
    return object_store.get_object_store()


def _bearer_token(request: Request) -> str:
    header = request.headers.get("Authorization", "")
    if not header.lower().startswith(BEARER_PREFIX):
        raise AuthenticationError()
    token = header[len(BEARER_PREFIX):].strip()
    if not token:
        raise AuthenticationError()
    return token


def get_current_session(
    request: Request,
    db: Session = Depends(get_db),
) -> UserSession:
    """
    Resolve the caller's session from the bearer access token.

    The raw token is kept on the session: it is the credential the edge
    media functions check. The base profile row is created on first use.

    Raises:
        HTTPException 401: No valid session
    """
    try:
        token = _bearer_token(request)
        claims = TokenPayload.model_validate(decode_access_token(token))
    except (AuthenticationError, jwt.InvalidTokenError, ValidationError):
        raise HTTPException(status_code=401, detail=AuthenticationError().args[0])

    profile_service.ensure_profile(db, claims.sub, claims.email)
    return UserSession(user_id=claims.sub, email=claims.email, access_token=token)


@contextmanager
def service_errors() -> Iterator[None]:
    """Map service-layer exceptions to HTTP errors."""
    try:
        yield
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except RecordNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except VersionConflictError as e:
        raise HTTPException(
            status_code=409,
            detail={"message": str(e), "expected": e.expected, "actual": e.actual},
        )
    except UploadError as e:
        logger.warning("Media upload failed: %s", e)
        raise HTTPException(status_code=502, detail="File upload failed. Please try again.")
    except StorageError as e:
        logger.warning("Media storage failed: %s", e)
        raise HTTPException(status_code=502, detail="Media storage is unavailable.")
    except RecordWriteError as e:
        logger.error("Record write failed: %s", e, exc_info=e.__cause__ or e)
        raise HTTPException(status_code=500, detail="Failed to save changes.")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
