"""Case service: add, update, and delete cases with their media.

Media and rows live in different stores, so every mutation runs as a saga
(see portal.services.saga). Media for a case lives under
`<STORAGE_ROOT>/cases/<case_id>/`; the id is generated before anything is
written so the folder can be named up front.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from decimal import Decimal

import anyio
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from portal.core.config import settings
from portal.core.errors import (
    AuthenticationError,
    FolderNotEmptyError,
    RecordNotFoundError,
    RecordWriteError,
    VersionConflictError,
)
from portal.core.structured_logging import build_log_context
from portal.db.enums import CaseStatus
from portal.db.models import Case, utcnow
from portal.schemas.auth import UserSession
from portal.schemas.case import CaseCreate, CaseEdit, CaseFields
from portal.services.object_store import ObjectStore
from portal.services.saga import MediaBatch, Saga
from portal.utils.file_upload import UploadSource
from portal.utils.public_id import strip_extension

logger = logging.getLogger(__name__)

CASE_IMAGE_NAME = "case-image"


@dataclass(frozen=True)
class NewDocument:
    name: str
    source: UploadSource


@dataclass(frozen=True)
class EditDocument:
    """A document row from the edit form; `source` is set when a new file was attached."""
    name: str
    url: str | None = None
    source: UploadSource | None = None
    is_old_one: bool = False


@dataclass
class DeleteResult:
    success: bool = True
    warnings: list[str] = field(default_factory=list)


# =============================================================================
# Helpers
# =============================================================================

def case_folder(case_id: uuid.UUID | str) -> str:
    return f"{settings.cases_folder}/{case_id}"


def epoch_ms() -> int:
    return int(time.time() * 1000)


def object_token() -> str:
    return uuid.uuid4().hex[:8]


def unique_name(base_name: str) -> str:
    """`<base_name>-<token>`: a key that no stored object already uses."""
    return f"{base_name}-{object_token()}"


def require_session(session: UserSession | None) -> UserSession:
    if session is None or not session.access_token:
        raise AuthenticationError()
    return session


def commit_or_raise(db: Session, action: str) -> None:
    """Commit, converting database failures into RecordWriteError."""
    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        raise RecordWriteError(f"Failed to {action}") from exc


def calculate_progress(raised: Decimal | float | None, required: Decimal | float | None) -> float:
    """Percentage of the required amount raised, capped at 100 and rounded to 2 places."""
    if not raised or not required or required <= 0:
        return 0.0
    progress = float(raised) / float(required) * 100
    return round(min(progress, 100.0), 2)


def _scalar_columns(payload: CaseFields) -> dict:
    return {
        "name": payload.name,
        "cnic": payload.cnic,
        "phone": payload.phone,
        "address": payload.address,
        "title": payload.title,
        "short_story": payload.short_story,
        "full_story": payload.full_story,
        "category": payload.category.value,
        "urgency_level": payload.urgency_level.value,
        "required_amount": payload.required_amount,
        "family_members": payload.family_members,
        "monthly_income": payload.monthly_income,
        "is_recurring": payload.is_recurring,
        "recurring_duration": payload.recurring_duration,
        "location": payload.location,
    }


def stored_public_id(store: ObjectStore, public_id: str | None, url: str | None) -> str | None:
    """Prefer the key saved with the row; fall back to deriving it from the URL."""
    return public_id or store.public_id_from_url(url)


# =============================================================================
# Queries
# =============================================================================

def get_case(db: Session, case_id: uuid.UUID, user_id: uuid.UUID | None = None) -> Case | None:
    query = select(Case).where(Case.id == case_id)
    if user_id is not None:
        query = query.where(Case.user_id == user_id)
    return db.scalars(query).first()


def get_owned_case(db: Session, case_id: uuid.UUID, user_id: uuid.UUID) -> Case:
    case = get_case(db, case_id, user_id)
    if case is None:
        raise RecordNotFoundError("Case not found")
    return case


def list_cases(
    db: Session,
    user_id: uuid.UUID,
    *,
    status: CaseStatus | None = None,
    category: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> list[Case]:
    query = select(Case).where(Case.user_id == user_id)
    if status is not None:
        query = query.where(Case.status == status.value)
    if category:
        query = query.where(Case.category == category)
    query = query.order_by(Case.created_at.desc()).offset(offset).limit(limit)
    return list(db.scalars(query).all())


# =============================================================================
# Add
# =============================================================================

def _check_new_names(docs: list[NewDocument], has_image: bool) -> None:
    """A new case stores each document under its name; reject names that share a key."""
    taken = {CASE_IMAGE_NAME} if has_image else set()
    for doc in docs:
        base_name = strip_extension(doc.name)
        if base_name in taken:
            raise ValueError(f"Duplicate document name '{doc.name}'")
        taken.add(base_name)


async def add_case(
    db: Session,
    store: ObjectStore,
    session: UserSession | None,
    payload: CaseCreate,
    image: UploadSource | None = None,
    docs: list[NewDocument] | None = None,
) -> uuid.UUID:
    """
    Create a case with its image and documents.

    Uploads finish before the row is inserted. Any failure removes
    everything under the case folder and re-raises; nothing is left behind
    for a case id that was never stored.
    """
    session = require_session(session)
    case_id = uuid.uuid4()
    docs = docs or []
    _check_new_names(docs, has_image=image is not None)

    async with Saga("case.add", user_id=str(session.user_id), case_id=str(case_id)) as saga:
        media = MediaBatch(saga, store, session.access_token, case_folder(case_id))
        media.rollback_by_prefix()

        image_upload = await media.upload(image, CASE_IMAGE_NAME) if image else None
        doc_uploads = await media.upload_many(
            [(doc.source, strip_extension(doc.name)) for doc in docs]
        )

        now = utcnow()
        db.add(
            Case(
                id=case_id,
                user_id=session.user_id,
                **_scalar_columns(payload),
                raised_amount=Decimal("0"),
                status=CaseStatus.ACTIVE.value,
                case_image=image_upload.url if image_upload else None,
                case_image_public_id=image_upload.public_id if image_upload else None,
                docs=[
                    {"name": doc.name, "url": result.url, "public_id": result.public_id}
                    for doc, result in zip(docs, doc_uploads)
                ],
                created_at=now,
                updated_at=now,
            )
        )
        commit_or_raise(db, "create case")

    logger.info(
        "Case created with %d document(s)", len(docs),
        extra=build_log_context(user_id=str(session.user_id), case_id=str(case_id), operation="case.add"),
    )
    return case_id


# =============================================================================
# Update
# =============================================================================

def _check_kept_urls(case: Case, docs: list[EditDocument]) -> dict[str, dict]:
    """Index the row's current documents by URL; reject kept URLs the row doesn't have."""
    existing = {doc["url"]: doc for doc in case.docs or [] if doc.get("url")}
    for doc in docs:
        if doc.source is None and doc.url and doc.url not in existing:
            raise ValueError(f"Unknown document URL for '{doc.name}'")
    return existing


async def update_case(
    db: Session,
    store: ObjectStore,
    session: UserSession | None,
    case_id: uuid.UUID,
    payload: CaseEdit,
    image: UploadSource | None = None,
    docs: list[EditDocument] | None = None,
    removed_docs: list[EditDocument] | None = None,
) -> Case:
    """
    Apply an edit form to a case.

    New files are uploaded first; objects they replace (and removed
    documents) are deleted only after the row update commits. If anything
    fails, the objects uploaded by this call are deleted and the row is
    left as it was.
    """
    session = require_session(session)
    docs = docs or []
    removed_docs = removed_docs or []

    case = get_owned_case(db, case_id, session.user_id)
    loaded_version = case.version
    if payload.expected_version is not None and payload.expected_version != loaded_version:
        raise VersionConflictError(payload.expected_version, loaded_version)
    existing = _check_kept_urls(case, docs)

    log_context = build_log_context(
        user_id=str(session.user_id), case_id=str(case_id), operation="case.update"
    )
    async with Saga("case.update", user_id=str(session.user_id), case_id=str(case_id)) as saga:
        media = MediaBatch(saga, store, session.access_token, case_folder(case_id))

        # Image: replace, clear, or keep
        image_url, image_public_id = case.case_image, case.case_image_public_id
        old_image_public_id = stored_public_id(store, case.case_image_public_id, case.case_image)
        if image is not None:
            uploaded = await media.upload(image, unique_name(CASE_IMAGE_NAME))
            media.retire(old_image_public_id)
            image_url, image_public_id = uploaded.url, uploaded.public_id
        elif "case_image" in payload.model_fields_set and payload.case_image is None:
            media.retire(old_image_public_id)
            image_url, image_public_id = None, None

        # Removed documents (only ones the row actually holds)
        stale: list[str | None] = []
        for doc in removed_docs:
            if not doc.is_old_one or not doc.url:
                continue
            known = existing.get(doc.url)
            if known is None:
                logger.warning("Ignoring removed document not on the case", extra=log_context)
                continue
            stale.append(stored_public_id(store, known.get("public_id"), doc.url))

        # New and replaced documents; fresh keys so an old object is never overwritten
        new_docs = [doc for doc in docs if doc.source is not None]
        results = iter(
            await media.upload_many(
                [(doc.source, unique_name(strip_extension(doc.name))) for doc in new_docs]
            )
        )

        final_docs = []
        for doc in docs:
            if doc.source is not None:
                result = next(results)
                if doc.url in existing:
                    known = existing[doc.url]
                    stale.append(stored_public_id(store, known.get("public_id"), doc.url))
                final_docs.append({"name": doc.name, "url": result.url, "public_id": result.public_id})
            elif doc.url:
                known = existing[doc.url]
                final_docs.append({
                    "name": doc.name,
                    "url": doc.url,
                    "public_id": stored_public_id(store, known.get("public_id"), doc.url),
                })

        # A document both kept and removed stays
        kept = {doc["public_id"] for doc in final_docs}
        for public_id in stale:
            if public_id in kept:
                logger.warning("Not deleting removed document that is still kept", extra=log_context)
                continue
            media.retire(public_id)

        for column, value in _scalar_columns(payload).items():
            setattr(case, column, value)
        case.status = payload.status.value
        case.case_image = image_url
        case.case_image_public_id = image_public_id
        case.docs = final_docs
        case.updated_at = utcnow()

        try:
            commit_or_raise(db, "update case")
        except StaleDataError as exc:
            actual = db.scalar(select(Case.version).where(Case.id == case_id)) or 0
            raise VersionConflictError(loaded_version, actual) from exc

    logger.info(
        "Case updated: %d new object(s), %d retired", len(media.uploaded), len(media.retired),
        extra=log_context,
    )
    db.refresh(case)
    return case


# =============================================================================
# Delete
# =============================================================================

async def _remove_case_folder(
    store: ObjectStore, credential: str, folder: str, log_context: dict
) -> str | None:
    """
    Remove the case folder, retrying while the store still reports objects.

    Bulk deletes are eventually consistent: the folder can look non-empty
    right after its objects were deleted. Returns a warning, or None.
    """
    for attempt in range(settings.STORAGE_DELETE_MAX_RETRIES):
        try:
            await store.delete_folder(credential, folder)
            return None
        except FolderNotEmptyError as exc:
            if attempt == settings.STORAGE_DELETE_MAX_RETRIES - 1:
                logger.info("Folder deletion attempt %d failed (%s)", attempt + 1, exc, extra=log_context)
                break
            delay = settings.STORAGE_DELETE_BACKOFF_SECONDS * (2 ** attempt)
            logger.info(
                "Folder deletion attempt %d failed (%s), retrying in %.1fs",
                attempt + 1, exc, delay, extra=log_context,
            )
            await anyio.sleep(delay)
            try:
                await store.delete_by_prefix(credential, f"{folder}/")
            except Exception as prefix_exc:
                logger.warning("Prefix delete retry failed", exc_info=prefix_exc, extra=log_context)
        except Exception as exc:
            logger.warning("Folder deletion failed", exc_info=exc, extra=log_context)
            return f"Folder: {exc}"
    return "Folder deletion failed after retries"


async def delete_case(
    db: Session,
    store: ObjectStore,
    session: UserSession | None,
    case_id: uuid.UUID,
) -> DeleteResult:
    """
    Delete a case, its progress updates, and all of its media.

    Media cleanup problems are returned as warnings; the row delete is the
    outcome that counts and is attempted whatever happened to the media.
    """
    session = require_session(session)
    case = get_owned_case(db, case_id, session.user_id)
    folder = case_folder(case_id)
    log_context = build_log_context(
        user_id=str(session.user_id), case_id=str(case_id), operation="case.delete"
    )
    warnings: list[str] = []

    try:
        await store.delete_by_prefix(session.access_token, f"{folder}/")
    except Exception as exc:
        logger.warning("Failed to delete resources by prefix", exc_info=exc, extra=log_context)
        warnings.append(f"Resources: {exc}")

    await anyio.sleep(settings.STORAGE_DELETE_PROPAGATION_SECONDS)
    folder_warning = await _remove_case_folder(store, session.access_token, folder, log_context)
    if folder_warning:
        warnings.append(folder_warning)

    db.delete(case)
    commit_or_raise(db, "delete case")

    logger.info("Case deleted with %d warning(s)", len(warnings), extra=log_context)
    return DeleteResult(success=True, warnings=warnings)
