"""Pydantic schemas for API request/response models."""

from portal.schemas.auth import TokenPayload, UserSession
from portal.schemas.case import (
    CaseCreate,
    CaseCreated,
    CaseDocumentRead,
    CaseEdit,
    CaseEditDocument,
    CaseRead,
    DeleteResponse,
)
from portal.schemas.progress import ProgressCreate, ProgressEdit, ProgressRead
from portal.schemas.profile import (
    Child,
    NeedyProfileCreate,
    NeedyProfileEdit,
    NeedyProfileRead,
    ProfileCompletionRead,
)
