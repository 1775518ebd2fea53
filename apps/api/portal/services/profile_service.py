"""
Needy profiles: the welcome flow, profile edits, and the completion flag.

Which documents a profile carries depends on its role. Widows and orphans
each get their own slot set; submitting a slot from the other set is an
error rather than being silently stored.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from portal.core.config import settings
from portal.core.errors import RecordNotFoundError
from portal.core.structured_logging import build_log_context
from portal.db.enums import NeedyRole
from portal.db.models import NeedyProfile, Profile, utcnow
from portal.schemas.auth import UserSession
from portal.schemas.profile import NeedyProfileCreate, NeedyProfileEdit
from portal.services.case_service import commit_or_raise, epoch_ms, require_session, stored_public_id
from portal.services.object_store import ObjectStore
from portal.services.saga import MediaBatch, Saga
from portal.utils.file_upload import UploadSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocumentSlot:
    key: str

    @property
    def url_column(self) -> str:
        return f"{self.key}_url"

    @property
    def public_id_column(self) -> str:
        return f"{self.key}_public_id"

    def object_name(self) -> str:
        return f"{self.key}-{epoch_ms()}"


PROFILE_PIC = DocumentSlot("profile_pic")

DOCUMENT_SLOTS: dict[NeedyRole, tuple[DocumentSlot, ...]] = {
    NeedyRole.WIDOW: (
        DocumentSlot("cnic_self_front"),
        DocumentSlot("cnic_self_back"),
        DocumentSlot("cnic_spouse_front"),
        DocumentSlot("cnic_spouse_back"),
        DocumentSlot("death_certificate_spouse"),
        PROFILE_PIC,
    ),
    NeedyRole.ORPHAN: (
        DocumentSlot("death_certificate_parents"),
        DocumentSlot("birth_certificate"),
        DocumentSlot("supporting_document"),
        PROFILE_PIC,
    ),
}

ALL_SLOT_KEYS = frozenset(slot.key for slots in DOCUMENT_SLOTS.values() for slot in slots)


def profile_folder(user_id: UUID | str) -> str:
    return f"{settings.profiles_folder}/{user_id}"


def resolve_slots(role: NeedyRole, files: dict[str, UploadSource]) -> list[tuple[DocumentSlot, UploadSource]]:
    """Pair submitted files with the role's slots, in slot order."""
    slots = {slot.key: slot for slot in DOCUMENT_SLOTS[role]}
    invalid = sorted(key for key in files if key not in slots)
    if invalid:
        raise ValueError(f"Document(s) not valid for a {role.value} profile: {', '.join(invalid)}")
    return [(slots[key], files[key]) for key in slots if files.get(key) is not None]


def slot_documents(needy: NeedyProfile) -> dict[str, str | None]:
    role = NeedyRole(needy.role_type)
    return {slot.key: getattr(needy, slot.url_column) for slot in DOCUMENT_SLOTS[role]}


# =============================================================================
# Completion flag cache
# =============================================================================

class ProfileCompletionCache:
    """
    Read-through cache of `profiles.is_profile_completed`.

    Only a completed flag is cached: it never flips back, while an
    incomplete profile can be completed from another process at any time.
    `mark_completed` is the one place that changes the cached value.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._completed: dict[UUID, bool] = {}

    def get(self, db: Session, user_id: UUID) -> bool:
        with self._lock:
            if self._completed.get(user_id):
                return True
        completed = bool(
            db.scalar(select(Profile.is_profile_completed).where(Profile.id == user_id))
        )
        if completed:
            self.mark_completed(user_id)
        return completed

    def mark_completed(self, user_id: UUID) -> None:
        with self._lock:
            self._completed[user_id] = True

    def reset(self) -> None:
        with self._lock:
            self._completed.clear()


completion_cache = ProfileCompletionCache()


# =============================================================================
# Profiles
# =============================================================================

def ensure_profile(db: Session, user_id: UUID, email: str | None = None) -> Profile:
    """Return the base profile for an auth user, creating it on first sight."""
    profile = db.get(Profile, user_id)
    if profile is not None:
        return profile
    profile = Profile(id=user_id, email=email)
    db.add(profile)
    commit_or_raise(db, "create profile")
    return profile


def get_needy_profile(db: Session, user_id: UUID) -> NeedyProfile:
    needy = db.get(NeedyProfile, user_id)
    if needy is None:
        raise RecordNotFoundError("Needy profile not found")
    return needy


async def complete_profile(
    db: Session,
    store: ObjectStore,
    session: UserSession | None,
    payload: NeedyProfileCreate,
    files: dict[str, UploadSource] | None = None,
) -> NeedyProfile:
    """
    Welcome flow: upload the role's documents, store the needy profile, and
    mark the base profile completed in the same transaction.
    """
    session = require_session(session)
    user_id = session.user_id
    slot_files = resolve_slots(payload.role_type, files or {})

    if db.get(NeedyProfile, user_id) is not None:
        raise ValueError("Profile is already completed")
    profile = ensure_profile(db, user_id, session.email)

    async with Saga("profile.complete", user_id=str(user_id)) as saga:
        media = MediaBatch(saga, store, session.access_token, profile_folder(user_id))
        results = await media.upload_many(
            [(source, slot.object_name()) for slot, source in slot_files]
        )

        columns: dict[str, str] = {}
        for (slot, _), result in zip(slot_files, results):
            columns[slot.url_column] = result.url
            columns[slot.public_id_column] = result.public_id

        is_widow = payload.role_type is NeedyRole.WIDOW
        now = utcnow()
        needy = NeedyProfile(
            profile_id=user_id,
            role_type=payload.role_type.value,
            area_of_operations=payload.area_of_operations,
            guardian_info=None if is_widow else payload.guardian_info,
            childrens=[child.model_dump() for child in payload.children] if is_widow and payload.children else None,
            created_at=now,
            updated_at=now,
            **columns,
        )
        db.add(needy)
        profile.is_profile_completed = True
        commit_or_raise(db, "complete profile")

    completion_cache.mark_completed(user_id)
    logger.info(
        "Profile completed with %d document(s)", len(results),
        extra=build_log_context(user_id=str(user_id), operation="profile.complete"),
    )
    db.refresh(needy)
    return needy


async def edit_profile(
    db: Session,
    store: ObjectStore,
    session: UserSession | None,
    payload: NeedyProfileEdit,
    files: dict[str, UploadSource] | None = None,
) -> NeedyProfile:
    """
    Update profile fields and swap any re-submitted documents.

    Replacements upload concurrently; the documents they replace are deleted
    only after the row update commits.
    """
    session = require_session(session)
    user_id = session.user_id
    needy = get_needy_profile(db, user_id)
    role = NeedyRole(needy.role_type)
    slot_files = resolve_slots(role, files or {})

    async with Saga("profile.edit", user_id=str(user_id)) as saga:
        media = MediaBatch(saga, store, session.access_token, profile_folder(user_id))
        results = await media.upload_many(
            [(source, slot.object_name()) for slot, source in slot_files]
        )

        for (slot, _), result in zip(slot_files, results):
            old_public_id = stored_public_id(
                store,
                getattr(needy, slot.public_id_column),
                getattr(needy, slot.url_column),
            )
            if old_public_id != result.public_id:
                media.retire(old_public_id)
            setattr(needy, slot.url_column, result.url)
            setattr(needy, slot.public_id_column, result.public_id)

        needy.area_of_operations = payload.area_of_operations
        if role is NeedyRole.WIDOW:
            needy.childrens = [child.model_dump() for child in payload.children] or None
        else:
            needy.guardian_info = payload.guardian_info
        needy.updated_at = utcnow()
        commit_or_raise(db, "update profile")

    logger.info(
        "Profile updated: %d document(s) replaced", len(results),
        extra=build_log_context(user_id=str(user_id), operation="profile.edit"),
    )
    db.refresh(needy)
    return needy
