"""
Progress updates posted by caretakers on their cases.

Each update can carry one supporting document, stored in the case's media
folder. Add and edit follow the same upload-then-write pattern as cases;
delete removes the row first and treats document cleanup as best effort.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from portal.core.errors import RecordNotFoundError
from portal.core.structured_logging import build_log_context
from portal.db.models import Case, CaseUpdate, utcnow
from portal.schemas.auth import UserSession
from portal.schemas.progress import ProgressCreate, ProgressEdit
from portal.services import notification_service
from portal.services.case_service import (
    DeleteResult,
    case_folder,
    commit_or_raise,
    get_owned_case,
    require_session,
    stored_public_id,
    unique_name,
)
from portal.services.object_store import ObjectStore
from portal.services.saga import MediaBatch, Saga
from portal.utils.file_upload import UploadSource
from portal.utils.public_id import strip_extension

logger = logging.getLogger(__name__)

PROGRESS_DOC_PREFIX = "progress"


def progress_object_name(filename: str) -> str:
    """Progress documents share the case folder, so they get their own fresh keys."""
    return unique_name(f"{PROGRESS_DOC_PREFIX}-{strip_extension(filename)}")


def _case_media_ids(store: ObjectStore, case: Case | None) -> set[str]:
    if case is None:
        return set()
    ids = {stored_public_id(store, case.case_image_public_id, case.case_image)}
    ids.update(stored_public_id(store, doc.get("public_id"), doc.get("url")) for doc in case.docs or [])
    ids.discard(None)
    return ids


def list_progress(db: Session, case_id: UUID) -> list[CaseUpdate]:
    return list(
        db.scalars(
            select(CaseUpdate)
            .where(CaseUpdate.case_id == case_id)
            .order_by(CaseUpdate.created_at.desc())
        ).all()
    )


def get_owned_progress(db: Session, progress_id: UUID, user_id: UUID) -> CaseUpdate:
    """Load a progress update whose case belongs to `user_id`."""
    update = db.scalars(
        select(CaseUpdate)
        .join(Case, Case.id == CaseUpdate.case_id)
        .where(CaseUpdate.id == progress_id, Case.user_id == user_id)
    ).first()
    if update is None:
        raise RecordNotFoundError("Progress update not found")
    return update


async def add_progress(
    db: Session,
    store: ObjectStore,
    session: UserSession | None,
    case_id: UUID,
    payload: ProgressCreate,
    document: UploadSource | None = None,
) -> CaseUpdate:
    session = require_session(session)
    case = get_owned_case(db, case_id, session.user_id)

    async with Saga("progress.add", user_id=str(session.user_id), case_id=str(case_id)) as saga:
        media = MediaBatch(saga, store, session.access_token, case_folder(case_id))
        uploaded = (
            await media.upload(document, progress_object_name(document.filename))
            if document else None
        )
        now = utcnow()
        update = CaseUpdate(
            case_id=case_id,
            title=payload.title,
            description=payload.description,
            doc_url=uploaded.url if uploaded else None,
            doc_public_id=uploaded.public_id if uploaded else None,
            amount=payload.amount,
            created_at=now,
            updated_at=now,
        )
        db.add(update)
        commit_or_raise(db, "add progress update")

    db.refresh(update)
    await notification_service.notify_donors_of_progress(db, case_id, case.title, payload.amount)
    return update


async def edit_progress(
    db: Session,
    store: ObjectStore,
    session: UserSession | None,
    progress_id: UUID,
    payload: ProgressEdit,
    document: UploadSource | None = None,
) -> CaseUpdate:
    """
    Edit a progress update.

    The document changes only when a new file is attached, and `amount`
    only when it was sent. The old document is deleted after the row update
    commits; a failed update deletes the new one instead.
    """
    session = require_session(session)
    update = get_owned_progress(db, progress_id, session.user_id)
    case_id = update.case_id

    async with Saga("progress.edit", user_id=str(session.user_id), case_id=str(case_id)) as saga:
        media = MediaBatch(saga, store, session.access_token, case_folder(case_id))
        if document is not None:
            uploaded = await media.upload(document, progress_object_name(document.filename))
            old_public_id = stored_public_id(store, update.doc_public_id, update.doc_url)
            if old_public_id not in _case_media_ids(store, db.get(Case, case_id)):
                media.retire(old_public_id)
            update.doc_url = uploaded.url
            update.doc_public_id = uploaded.public_id

        update.title = payload.title
        update.description = payload.description
        if "amount" in payload.model_fields_set:
            update.amount = payload.amount
        update.updated_at = utcnow()
        commit_or_raise(db, "update progress update")

    db.refresh(update)
    return update


async def delete_progress(
    db: Session,
    store: ObjectStore,
    session: UserSession | None,
    progress_id: UUID,
) -> DeleteResult:
    session = require_session(session)
    update = get_owned_progress(db, progress_id, session.user_id)
    log_context = build_log_context(
        user_id=str(session.user_id), case_id=str(update.case_id), operation="progress.delete"
    )
    public_id = stored_public_id(store, update.doc_public_id, update.doc_url)
    if public_id in _case_media_ids(store, db.get(Case, update.case_id)):
        # Older rows could point at one of the case's own documents
        logger.warning("Keeping progress document still used by the case", extra=log_context)
        public_id = None

    db.delete(update)
    commit_or_raise(db, "delete progress update")

    result = DeleteResult()
    if public_id:
        try:
            await store.delete(session.access_token, public_id)
        except Exception as exc:
            logger.warning("Progress document deletion failed", exc_info=exc, extra=log_context)
            result.warnings.append(f"Document: {exc}")
    return result
