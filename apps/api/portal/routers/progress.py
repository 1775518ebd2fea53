"""Progress update endpoints: /cases/{id}/progress and /progress/{id}."""

from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from sqlalchemy.orm import Session

from portal.core.deps import get_current_session, get_db, get_object_store, service_errors
from portal.core.rate_limit import limiter, upload_limit, upload_limit_disabled
from portal.routers.uploads import check_request_size, parse_payload, read_file
from portal.schemas.auth import UserSession
from portal.schemas.case import DeleteResponse
from portal.schemas.progress import ProgressCreate, ProgressEdit, ProgressRead
from portal.services import case_service, progress_service
from portal.services.object_store import ObjectStore

router = APIRouter()


@router.get("/cases/{case_id}/progress", response_model=list[ProgressRead])
def list_progress(
    case_id: UUID,
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
):
    with service_errors():
        case_service.get_owned_case(db, case_id, session.user_id)
    return progress_service.list_progress(db, case_id)


@router.post("/cases/{case_id}/progress", response_model=ProgressRead, status_code=201)
@limiter.limit(upload_limit, exempt_when=upload_limit_disabled)
async def add_progress(
    request: Request,
    case_id: UUID,
    payload: str = Form(...),
    document: UploadFile | None = File(None),
    db: Session = Depends(get_db),
    store: ObjectStore = Depends(get_object_store),
    session: UserSession = Depends(get_current_session),
):
    """Post a progress update; donors to the case are emailed afterwards."""
    check_request_size(request)
    data = parse_payload(ProgressCreate, payload)
    source = await read_file(document)

    with service_errors():
        return await progress_service.add_progress(db, store, session, case_id, data, source)


@router.patch("/progress/{progress_id}", response_model=ProgressRead)
@limiter.limit(upload_limit, exempt_when=upload_limit_disabled)
async def edit_progress(
    request: Request,
    progress_id: UUID,
    payload: str = Form(...),
    document: UploadFile | None = File(None),
    db: Session = Depends(get_db),
    store: ObjectStore = Depends(get_object_store),
    session: UserSession = Depends(get_current_session),
):
    """Edit a progress update. The document is replaced only when a file is attached."""
    check_request_size(request)
    data = parse_payload(ProgressEdit, payload)
    source = await read_file(document)

    with service_errors():
        return await progress_service.edit_progress(db, store, session, progress_id, data, source)


@router.delete("/progress/{progress_id}", response_model=DeleteResponse)
async def delete_progress(
    progress_id: UUID,
    db: Session = Depends(get_db),
    store: ObjectStore = Depends(get_object_store),
    session: UserSession = Depends(get_current_session),
):
    with service_errors():
        result = await progress_service.delete_progress(db, store, session, progress_id)
    return DeleteResponse(success=result.success, warnings=result.warnings)
