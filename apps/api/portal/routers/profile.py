"""Needy profile endpoints: welcome flow, edits, and the completion flag."""

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from sqlalchemy.orm import Session

from portal.core.deps import get_current_session, get_db, get_object_store, service_errors
from portal.core.rate_limit import limiter, upload_limit, upload_limit_disabled
from portal.db.models import NeedyProfile
from portal.routers.uploads import check_request_size, parse_payload, read_file
from portal.schemas.auth import UserSession
from portal.schemas.profile import (
    Child,
    NeedyProfileCreate,
    NeedyProfileEdit,
    NeedyProfileRead,
    ProfileCompletionRead,
)
from portal.services import profile_service
from portal.services.object_store import ObjectStore
from portal.utils.file_upload import UploadSource

router = APIRouter()


class SlotFiles:
    """Multipart file parts, one optional field per document slot."""

    def __init__(
        self,
        cnic_self_front: UploadFile | None = File(None),
        cnic_self_back: UploadFile | None = File(None),
        cnic_spouse_front: UploadFile | None = File(None),
        cnic_spouse_back: UploadFile | None = File(None),
        death_certificate_spouse: UploadFile | None = File(None),
        death_certificate_parents: UploadFile | None = File(None),
        birth_certificate: UploadFile | None = File(None),
        supporting_document: UploadFile | None = File(None),
        profile_pic: UploadFile | None = File(None),
    ):
        self.parts = {
            "cnic_self_front": cnic_self_front,
            "cnic_self_back": cnic_self_back,
            "cnic_spouse_front": cnic_spouse_front,
            "cnic_spouse_back": cnic_spouse_back,
            "death_certificate_spouse": death_certificate_spouse,
            "death_certificate_parents": death_certificate_parents,
            "birth_certificate": birth_certificate,
            "supporting_document": supporting_document,
            "profile_pic": profile_pic,
        }

    async def read(self) -> dict[str, UploadSource]:
        sources = {}
        for key, part in self.parts.items():
            source = await read_file(part)
            if source is not None:
                sources[key] = source
        return sources


def _to_read(needy: NeedyProfile) -> NeedyProfileRead:
    return NeedyProfileRead(
        profile_id=needy.profile_id,
        role_type=needy.role_type,
        area_of_operations=needy.area_of_operations,
        guardian_info=needy.guardian_info,
        children=[Child.model_validate(child) for child in needy.childrens or []],
        documents=profile_service.slot_documents(needy),
    )


@router.get("/completion", response_model=ProfileCompletionRead)
def get_completion(
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
):
    completed = profile_service.completion_cache.get(db, session.user_id)
    return ProfileCompletionRead(user_id=session.user_id, is_profile_completed=completed)


@router.get("/needy", response_model=NeedyProfileRead)
def get_needy_profile(
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
):
    with service_errors():
        needy = profile_service.get_needy_profile(db, session.user_id)
    return _to_read(needy)


@router.post("/needy", response_model=NeedyProfileRead, status_code=201)
@limiter.limit(upload_limit, exempt_when=upload_limit_disabled)
async def complete_profile(
    request: Request,
    payload: str = Form(...),
    files: SlotFiles = Depends(),
    db: Session = Depends(get_db),
    store: ObjectStore = Depends(get_object_store),
    session: UserSession = Depends(get_current_session),
):
    """Welcome flow: store the needy profile and its documents, then mark the profile completed."""
    check_request_size(request)
    data = parse_payload(NeedyProfileCreate, payload)
    sources = await files.read()

    with service_errors():
        needy = await profile_service.complete_profile(db, store, session, data, sources)
    return _to_read(needy)


@router.patch("/needy", response_model=NeedyProfileRead)
@limiter.limit(upload_limit, exempt_when=upload_limit_disabled)
async def edit_profile(
    request: Request,
    payload: str = Form(...),
    files: SlotFiles = Depends(),
    db: Session = Depends(get_db),
    store: ObjectStore = Depends(get_object_store),
    session: UserSession = Depends(get_current_session),
):
    """Edit profile fields; any attached slot files replace the current documents."""
    check_request_size(request)
    data = parse_payload(NeedyProfileEdit, payload)
    sources = await files.read()

    with service_errors():
        needy = await profile_service.edit_profile(db, store, session, data, sources)
    return _to_read(needy)
