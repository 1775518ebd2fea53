"""Pydantic schemas for needy profiles."""

from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from portal.db.enums import NeedyRole


class Child(BaseModel):
    bform_no: str = Field(..., min_length=1, max_length=30)
    name: str | None = Field(None, max_length=255)


class NeedyProfileFields(BaseModel):
    area_of_operations: str = Field(..., min_length=1, max_length=255)
    children: list[Child] = Field(default_factory=list)  # widows only
    guardian_info: str | None = None  # orphans only

    @field_validator("guardian_info")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        if v is None or v.strip() == "":
            return None
        return v.strip()


class NeedyProfileCreate(NeedyProfileFields):
    role_type: NeedyRole


class NeedyProfileEdit(NeedyProfileFields):
    pass


class NeedyProfileRead(BaseModel):
    profile_id: UUID
    role_type: NeedyRole
    area_of_operations: str | None
    guardian_info: str | None
    children: list[Child]
    documents: dict[str, str | None]  # slot key -> URL


class ProfileCompletionRead(BaseModel):
    user_id: UUID
    is_profile_completed: bool
