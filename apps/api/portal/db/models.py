"""SQLAlchemy ORM models for profiles, cases, and progress updates."""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    JSON, Boolean, CheckConstraint, ForeignKey, Index, Integer, Numeric, String, Text, Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from portal.db.base import Base
from portal.db.enums import DEFAULT_CASE_STATUS, ProfileRole


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Profiles
# =============================================================================

class Profile(Base):
    """
    Base account profile, one per auth user.

    `id` is the auth provider's user id (JWT `sub`).
    """
    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(20), default=ProfileRole.CARETAKER.value, nullable=False)
    is_profile_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    needy_profile: Mapped["NeedyProfile | None"] = relationship(back_populates="profile")


class NeedyProfile(Base):
    """
    Beneficiary profile with role-dependent document slots.

    Each slot keeps its public URL and the object-store key it was uploaded
    under, so replacements can delete the old object without parsing URLs.
    Which slots apply is decided by `role_type` (see profile_service.DOCUMENT_SLOTS).
    """
    __tablename__ = "needy_profiles"

    profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True
    )
    role_type: Mapped[str] = mapped_column(String(20), nullable=False)  # widow | orphan
    area_of_operations: Mapped[str | None] = mapped_column(String(255), nullable=True)
    guardian_info: Mapped[str | None] = mapped_column(Text, nullable=True)
    childrens: Mapped[list | None] = mapped_column(JSON, nullable=True)

    # Widow slots
    cnic_self_front_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    cnic_self_front_public_id: Mapped[str | None] = mapped_column(String(512), nullable=True)
    cnic_self_back_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    cnic_self_back_public_id: Mapped[str | None] = mapped_column(String(512), nullable=True)
    cnic_spouse_front_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    cnic_spouse_front_public_id: Mapped[str | None] = mapped_column(String(512), nullable=True)
    cnic_spouse_back_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    cnic_spouse_back_public_id: Mapped[str | None] = mapped_column(String(512), nullable=True)
    death_certificate_spouse_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    death_certificate_spouse_public_id: Mapped[str | None] = mapped_column(String(512), nullable=True)

    # Orphan slots
    death_certificate_parents_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    death_certificate_parents_public_id: Mapped[str | None] = mapped_column(String(512), nullable=True)
    birth_certificate_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    birth_certificate_public_id: Mapped[str | None] = mapped_column(String(512), nullable=True)
    supporting_document_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    supporting_document_public_id: Mapped[str | None] = mapped_column(String(512), nullable=True)

    # Shared
    profile_pic_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    profile_pic_public_id: Mapped[str | None] = mapped_column(String(512), nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    profile: Mapped["Profile"] = relationship(back_populates="needy_profile")


# =============================================================================
# Cases
# =============================================================================

class Case(Base):
    """
    A funding request for a beneficiary.

    The id is generated before any write so it can name the media folder
    (`<root>/cases/<id>`) ahead of the row existing. `docs` is an ordered
    list of `{name, url, public_id}`. `version` backs optimistic locking for
    concurrent edits.
    """
    __tablename__ = "cases"
    __table_args__ = (
        Index("idx_cases_user_created", "user_id", "created_at"),
        CheckConstraint("required_amount > 0", name="ck_cases_required_amount_positive"),
        CheckConstraint("raised_amount >= 0", name="ck_cases_raised_amount_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )

    # Beneficiary
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    cnic: Mapped[str | None] = mapped_column(String(20), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Narrative
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    short_story: Mapped[str | None] = mapped_column(Text, nullable=True)
    full_story: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Classification
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    urgency_level: Mapped[str] = mapped_column(String(10), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=DEFAULT_CASE_STATUS.value, nullable=False
    )

    # Funding
    required_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    raised_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    family_members: Mapped[int | None] = mapped_column(Integer, nullable=True)
    monthly_income: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    recurring_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)  # days
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Media
    case_image: Mapped[str | None] = mapped_column(Text, nullable=True)
    case_image_public_id: Mapped[str | None] = mapped_column(String(512), nullable=True)
    docs: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    updates: Mapped[list["CaseUpdate"]] = relationship(
        back_populates="case", cascade="all, delete-orphan"
    )


class CaseUpdate(Base):
    """Progress note on a case with at most one supporting document."""
    __tablename__ = "case_updates"
    __table_args__ = (Index("idx_case_updates_case", "case_id", "created_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    case_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("cases.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    doc_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    doc_public_id: Mapped[str | None] = mapped_column(String(512), nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    case: Mapped["Case"] = relationship(back_populates="updates")


class CaseDonation(Base):
    """Donation ledger row. Written by the donation subsystem; read here to notify donors."""
    __tablename__ = "case_donations"
    __table_args__ = (Index("idx_case_donations_case", "case_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    case_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("cases.id", ondelete="CASCADE"), nullable=False
    )
    donator_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
