"""Baseline migration - profiles, needy profiles, cases, progress updates, donations

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-19

Media columns store both the public URL and the object-store key the file
was uploaded under (`*_public_id`).
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

NEEDY_DOCUMENT_SLOTS = (
    "cnic_self_front",
    "cnic_self_back",
    "cnic_spouse_front",
    "cnic_spouse_back",
    "death_certificate_spouse",
    "death_certificate_parents",
    "birth_certificate",
    "supporting_document",
    "profile_pic",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # ==========================================================================
    # Profiles
    # ==========================================================================
    op.create_table(
        "profiles",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="caretaker"),
        sa.Column("is_profile_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    slot_columns = []
    for slot in NEEDY_DOCUMENT_SLOTS:
        slot_columns.append(sa.Column(f"{slot}_url", sa.Text(), nullable=True))
        slot_columns.append(sa.Column(f"{slot}_public_id", sa.String(512), nullable=True))

    op.create_table(
        "needy_profiles",
        sa.Column(
            "profile_id", sa.Uuid(),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("role_type", sa.String(20), nullable=False),
        sa.Column("area_of_operations", sa.String(255), nullable=True),
        sa.Column("guardian_info", sa.Text(), nullable=True),
        sa.Column("childrens", sa.JSON(), nullable=True),
        *slot_columns,
        *_timestamps(),
    )

    # ==========================================================================
    # Cases
    # ==========================================================================
    op.create_table(
        "cases",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("cnic", sa.String(20), nullable=True),
        sa.Column("phone", sa.String(30), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("short_story", sa.Text(), nullable=True),
        sa.Column("full_story", sa.Text(), nullable=True),
        sa.Column("category", sa.String(20), nullable=False),
        sa.Column("urgency_level", sa.String(10), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("required_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("raised_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("family_members", sa.Integer(), nullable=True),
        sa.Column("monthly_income", sa.Numeric(12, 2), nullable=True),
        sa.Column("is_recurring", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("recurring_duration", sa.Integer(), nullable=True),
        sa.Column("location", sa.String(255), nullable=True),
        sa.Column("case_image", sa.Text(), nullable=True),
        sa.Column("case_image_public_id", sa.String(512), nullable=True),
        sa.Column("docs", sa.JSON(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.CheckConstraint("required_amount > 0", name="ck_cases_required_amount_positive"),
        sa.CheckConstraint("raised_amount >= 0", name="ck_cases_raised_amount_non_negative"),
    )
    op.create_index("idx_cases_user_created", "cases", ["user_id", "created_at"])

    op.create_table(
        "case_updates",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("case_id", sa.Uuid(), sa.ForeignKey("cases.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("doc_url", sa.Text(), nullable=True),
        sa.Column("doc_public_id", sa.String(512), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_case_updates_case", "case_updates", ["case_id", "created_at"])

    op.create_table(
        "case_donations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("case_id", sa.Uuid(), sa.ForeignKey("cases.id", ondelete="CASCADE"), nullable=False),
        sa.Column("donator_id", sa.Uuid(), sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_case_donations_case", "case_donations", ["case_id"])


def downgrade() -> None:
    op.drop_index("idx_case_donations_case", table_name="case_donations")
    op.drop_table("case_donations")
    op.drop_index("idx_case_updates_case", table_name="case_updates")
    op.drop_table("case_updates")
    op.drop_index("idx_cases_user_created", table_name="cases")
    op.drop_table("cases")
    op.drop_table("needy_profiles")
    op.drop_table("profiles")
