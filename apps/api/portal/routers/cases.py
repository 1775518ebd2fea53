"""Case endpoints: create, list, read, edit, and delete cases with their media."""

from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile
from sqlalchemy.orm import Session

from portal.core.deps import get_current_session, get_db, get_object_store, service_errors
from portal.core.rate_limit import limiter, upload_limit, upload_limit_disabled
from portal.db.enums import CaseCategory, CaseStatus
from portal.db.models import Case
from portal.routers.uploads import check_request_size, parse_payload, read_file, read_files
from portal.schemas.auth import UserSession
from portal.schemas.case import CaseCreate, CaseCreated, CaseEdit, CaseRead, DeleteResponse
from portal.services import case_service
from portal.services.object_store import ObjectStore

router = APIRouter()


def _to_read(case: Case) -> CaseRead:
    read = CaseRead.model_validate(case)
    read.progress_percent = case_service.calculate_progress(case.raised_amount, case.required_amount)
    return read


@router.post("", response_model=CaseCreated, status_code=201)
@limiter.limit(upload_limit, exempt_when=upload_limit_disabled)
async def create_case(
    request: Request,
    payload: str = Form(...),
    case_image: UploadFile | None = File(None),
    doc_files: list[UploadFile] | None = File(None),
    db: Session = Depends(get_db),
    store: ObjectStore = Depends(get_object_store),
    session: UserSession = Depends(get_current_session),
):
    """
    Create a case.

    `payload` is the case JSON; `doc_names[i]` names `doc_files[i]`.
    Documents submitted without a file are skipped.
    """
    check_request_size(request)
    data = parse_payload(CaseCreate, payload)
    sources = await read_files(doc_files)
    if len(sources) != len(data.doc_names):
        raise HTTPException(status_code=400, detail="doc_names must match doc_files")

    docs = [
        case_service.NewDocument(name=name, source=source)
        for name, source in zip(data.doc_names, sources)
        if source is not None
    ]
    image = await read_file(case_image)

    with service_errors():
        case_id = await case_service.add_case(db, store, session, data, image=image, docs=docs)
    return CaseCreated(id=case_id)


@router.get("", response_model=list[CaseRead])
def list_cases(
    status: CaseStatus | None = None,
    category: CaseCategory | None = None,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
):
    """List the caller's cases, newest first."""
    cases = case_service.list_cases(
        db,
        session.user_id,
        status=status,
        category=category.value if category else None,
        limit=limit,
        offset=offset,
    )
    return [_to_read(case) for case in cases]


@router.get("/{case_id}", response_model=CaseRead)
def get_case(
    case_id: UUID,
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
):
    with service_errors():
        case = case_service.get_owned_case(db, case_id, session.user_id)
    return _to_read(case)


@router.patch("/{case_id}", response_model=CaseRead)
@limiter.limit(upload_limit, exempt_when=upload_limit_disabled)
async def update_case(
    request: Request,
    case_id: UUID,
    payload: str = Form(...),
    case_image: UploadFile | None = File(None),
    doc_files: list[UploadFile] | None = File(None),
    db: Session = Depends(get_db),
    store: ObjectStore = Depends(get_object_store),
    session: UserSession = Depends(get_current_session),
):
    """
    Edit a case (full form).

    Documents in `payload.docs` either keep their current `url` or point at
    a `doc_files` part via `file_index`. Send `case_image: null` to remove
    the image.
    """
    check_request_size(request)
    data = parse_payload(CaseEdit, payload)
    sources = await read_files(doc_files)

    docs = []
    for doc in data.docs:
        source = None
        if doc.file_index is not None:
            if doc.file_index >= len(sources):
                raise HTTPException(status_code=400, detail=f"No file for document '{doc.name}'")
            source = sources[doc.file_index]
        docs.append(
            case_service.EditDocument(
                name=doc.name, url=doc.url, source=source, is_old_one=doc.is_old_one
            )
        )
    removed = [
        case_service.EditDocument(name=doc.name, url=doc.url, is_old_one=doc.is_old_one)
        for doc in data.removed_docs
    ]
    image = await read_file(case_image)

    with service_errors():
        case = await case_service.update_case(
            db, store, session, case_id, data, image=image, docs=docs, removed_docs=removed
        )
    return _to_read(case)


@router.delete("/{case_id}", response_model=DeleteResponse)
async def delete_case(
    case_id: UUID,
    db: Session = Depends(get_db),
    store: ObjectStore = Depends(get_object_store),
    session: UserSession = Depends(get_current_session),
):
    """Delete a case and its media. Media cleanup problems come back as warnings."""
    with service_errors():
        result = await case_service.delete_case(db, store, session, case_id)
    return DeleteResponse(success=result.success, warnings=result.warnings)
