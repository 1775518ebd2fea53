"""Liveness endpoint."""

from fastapi import APIRouter
from sqlalchemy import text

from portal.core.config import settings
from portal.db.session import engine

router = APIRouter()


@router.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
