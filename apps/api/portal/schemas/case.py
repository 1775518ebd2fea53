"""Pydantic schemas for cases."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from portal.db.enums import CaseCategory, CaseStatus, UrgencyLevel


class CaseFields(BaseModel):
    """Scalar fields shared by create and edit forms."""

    # Beneficiary
    name: str = Field(..., min_length=1, max_length=255)
    cnic: str | None = Field(None, max_length=20)
    phone: str | None = Field(None, max_length=30)
    address: str | None = None

    # Narrative
    title: str = Field(..., min_length=1, max_length=255)
    short_story: str | None = None
    full_story: str | None = None

    # Classification
    category: CaseCategory = CaseCategory.OTHER
    urgency_level: UrgencyLevel = UrgencyLevel.MEDIUM

    # Funding
    required_amount: Decimal = Field(..., gt=0)
    family_members: int | None = Field(None, ge=0, le=50)
    monthly_income: Decimal | None = Field(None, ge=0)
    is_recurring: bool = False
    recurring_duration: int | None = Field(None, gt=0)  # days
    location: str | None = Field(None, max_length=255)

    @field_validator("cnic", "phone", "address", "short_story", "full_story", "location")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        if v is None or v.strip() == "":
            return None
        return v.strip()

    @model_validator(mode="after")
    def drop_duration_when_not_recurring(self):
        if not self.is_recurring:
            self.recurring_duration = None
        return self


class CaseCreate(CaseFields):
    """
    Request schema for creating a case.

    `doc_names` pairs with the `doc_files` multipart parts by position.
    """
    doc_names: list[str] = Field(default_factory=list)


class CaseEditDocument(BaseModel):
    """
    One document row of the edit form.

    Pre-existing rows carry their current `url`.
    New or replaced rows point at a `doc_files` part with `file_index`.
    """
    name: str = Field(..., min_length=1, max_length=255)
    url: str | None = None
    file_index: int | None = Field(None, ge=0)
    is_old_one: bool = False


class CaseEdit(CaseFields):
    """Request schema for editing a case (full form)."""

    status: CaseStatus = CaseStatus.ACTIVE
    case_image: str | None = None  # existing URL, kept unless a new image is sent
    docs: list[CaseEditDocument] = Field(default_factory=list)
    removed_docs: list[CaseEditDocument] = Field(default_factory=list)
    expected_version: int | None = Field(None, ge=1)


class CaseDocumentRead(BaseModel):
    name: str
    url: str


class CaseRead(BaseModel):
    model_config = {"from_attributes": True}

    id: UUID
    user_id: UUID
    name: str
    cnic: str | None
    phone: str | None
    address: str | None
    title: str
    short_story: str | None
    full_story: str | None
    category: str
    urgency_level: str
    status: str
    required_amount: Decimal
    raised_amount: Decimal
    progress_percent: float = 0.0
    family_members: int | None
    monthly_income: Decimal | None
    is_recurring: bool
    recurring_duration: int | None
    location: str | None
    case_image: str | None
    docs: list[CaseDocumentRead]
    version: int
    created_at: datetime
    updated_at: datetime


class CaseCreated(BaseModel):
    id: UUID


class DeleteResponse(BaseModel):
    success: bool = True
    warnings: list[str] = Field(default_factory=list)
