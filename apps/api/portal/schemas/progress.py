"""Pydantic schemas for case progress updates."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field


class ProgressCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    amount: Decimal | None = Field(None, ge=0)  # funds used for this update


class ProgressEdit(BaseModel):
    """Edit form. `amount` is only changed when sent; the document only when a file is attached."""
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    amount: Decimal | None = Field(None, ge=0)


class ProgressRead(BaseModel):
    model_config = {"from_attributes": True}

    id: UUID
    case_id: UUID
    title: str
    description: str | None
    doc_url: str | None
    amount: Decimal | None
    created_at: datetime
    updated_at: datetime
