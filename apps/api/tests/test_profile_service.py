import itertools
import uuid

import pytest
from sqlalchemy import select

from conftest import make_source
from portal.core.config import settings
from portal.core.errors import RecordNotFoundError, RecordWriteError, UploadError
from portal.db.enums import NeedyRole
from portal.db.models import NeedyProfile, Profile
from portal.schemas.profile import NeedyProfileCreate, NeedyProfileEdit
from portal.services import profile_service
from portal.services.profile_service import DOCUMENT_SLOTS, ProfileCompletionCache


@pytest.fixture(autouse=True)
def _ticking_clock(monkeypatch):
    """Object names carry a millisecond stamp; keep them distinct within a test."""
    ticks = itertools.count(1_700_000_000_000)
    monkeypatch.setattr(profile_service, "epoch_ms", lambda: next(ticks))


def _folder(user_id) -> str:
    return f"{settings.profiles_folder}/{user_id}"


def _widow_payload(**overrides) -> NeedyProfileCreate:
    data = {
        "role_type": "widow",
        "area_of_operations": "Multan",
        "children": [{"bform_no": "12345-6789012-3", "name": "Sara"}],
        "guardian_info": "ignored for widows",
    }
    data.update(overrides)
    return NeedyProfileCreate(**data)


def test_slot_sets_per_role():
    widow = [slot.key for slot in DOCUMENT_SLOTS[NeedyRole.WIDOW]]
    orphan = [slot.key for slot in DOCUMENT_SLOTS[NeedyRole.ORPHAN]]
    assert widow == [
        "cnic_self_front", "cnic_self_back", "cnic_spouse_front",
        "cnic_spouse_back", "death_certificate_spouse", "profile_pic",
    ]
    assert orphan == ["death_certificate_parents", "birth_certificate", "supporting_document", "profile_pic"]
    for slots in DOCUMENT_SLOTS.values():
        for slot in slots:
            assert hasattr(NeedyProfile, slot.url_column)
            assert hasattr(NeedyProfile, slot.public_id_column)


def test_resolve_slots_rejects_other_roles_documents():
    with pytest.raises(ValueError, match="birth_certificate"):
        profile_service.resolve_slots(NeedyRole.WIDOW, {"birth_certificate": make_source()})


async def test_complete_profile_uploads_and_marks_completed(db, store, session):
    needy = await profile_service.complete_profile(
        db, store, session, _widow_payload(),
        {"cnic_self_front": make_source("front.jpg"), "profile_pic": make_source("me.png")},
    )

    folder = _folder(session.user_id)
    assert needy.role_type == "widow"
    assert needy.childrens == [{"bform_no": "12345-6789012-3", "name": "Sara"}]
    assert needy.guardian_info is None
    assert needy.cnic_self_front_public_id.startswith(f"{folder}/cnic_self_front-")
    assert needy.profile_pic_public_id.startswith(f"{folder}/profile_pic-")
    assert needy.cnic_self_back_url is None
    assert db.get(Profile, session.user_id).is_profile_completed is True
    assert profile_service.completion_cache.get(db, session.user_id) is True


async def test_complete_profile_failure_deletes_uploads(db, store, session, monkeypatch):
    def _fail(db, action):
        db.rollback()
        raise RecordWriteError("boom")

    monkeypatch.setattr(profile_service, "commit_or_raise", _fail)

    with pytest.raises(RecordWriteError):
        await profile_service.complete_profile(
            db, store, session, _widow_payload(), {"cnic_self_front": make_source("front.jpg")}
        )

    assert store.objects == {}
    assert db.get(NeedyProfile, session.user_id) is None
    assert db.get(Profile, session.user_id).is_profile_completed is False
    assert profile_service.completion_cache.get(db, session.user_id) is False


async def test_complete_profile_rejects_invalid_slot_before_upload(db, store, session):
    with pytest.raises(ValueError):
        await profile_service.complete_profile(
            db, store, session, _widow_payload(), {"supporting_document": make_source()}
        )
    assert store.calls == []


async def test_complete_profile_twice_is_rejected(db, store, session):
    await profile_service.complete_profile(db, store, session, _widow_payload())
    with pytest.raises(ValueError, match="already completed"):
        await profile_service.complete_profile(db, store, session, _widow_payload())


async def test_edit_profile_swaps_documents(db, store, session):
    await profile_service.complete_profile(
        db, store, session,
        NeedyProfileCreate(role_type="orphan", area_of_operations="Quetta", guardian_info="Uncle"),
        {"birth_certificate": make_source("bc.pdf"), "profile_pic": make_source("me.png")},
    )
    needy = db.get(NeedyProfile, session.user_id)
    old_birth = needy.birth_certificate_public_id
    old_pic = needy.profile_pic_public_id
    store.calls.clear()

    edited = await profile_service.edit_profile(
        db, store, session,
        NeedyProfileEdit(area_of_operations="Karachi", guardian_info="  Aunt  ", children=[{"bform_no": "1"}]),
        {"birth_certificate": make_source("bc2.pdf")},
    )

    assert edited.area_of_operations == "Karachi"
    assert edited.guardian_info == "Aunt"
    assert edited.childrens is None  # children only apply to widows
    assert edited.birth_certificate_public_id != old_birth
    assert edited.profile_pic_public_id == old_pic
    assert store.ops("delete") == [old_birth]


async def test_edit_profile_same_key_upload_is_not_deleted(db, store, session, monkeypatch):
    monkeypatch.setattr(profile_service, "epoch_ms", lambda: 1_700_000_000_000)
    await profile_service.complete_profile(
        db, store, session, _widow_payload(), {"profile_pic": make_source("me.png")}
    )
    store.calls.clear()

    edited = await profile_service.edit_profile(
        db, store, session, NeedyProfileEdit(area_of_operations="Multan"), {"profile_pic": make_source("me2.png")}
    )

    key = f"{_folder(session.user_id)}/profile_pic-1700000000000"
    assert edited.profile_pic_public_id == key
    assert store.ops("delete") == []
    assert store.under(_folder(session.user_id)) == [key]


async def test_edit_profile_upload_failure_keeps_old_documents(db, store, session):
    await profile_service.complete_profile(
        db, store, session, _widow_payload(),
        {"cnic_self_front": make_source("f.jpg"), "cnic_self_back": make_source("b.jpg")},
    )
    needy = db.get(NeedyProfile, session.user_id)
    old_front, old_back = needy.cnic_self_front_public_id, needy.cnic_self_back_public_id
    store.calls.clear()

    def fail_back(public_id):
        if "cnic_self_back" in public_id:
            raise UploadError("Upload failed: network")

    store.before_upload = fail_back

    with pytest.raises(UploadError):
        await profile_service.edit_profile(
            db, store, session, NeedyProfileEdit(area_of_operations="Lahore"),
            {"cnic_self_front": make_source("f2.jpg"), "cnic_self_back": make_source("b2.jpg")},
        )

    deleted = store.ops("delete")
    assert len(deleted) == 1 and deleted[0].startswith(f"{_folder(session.user_id)}/cnic_self_front-")
    assert old_front in store.objects and old_back in store.objects
    db.expire_all()
    assert db.get(NeedyProfile, session.user_id).cnic_self_front_public_id == old_front


async def test_edit_profile_without_needy_profile(db, store, session):
    with pytest.raises(RecordNotFoundError):
        await profile_service.edit_profile(db, store, session, NeedyProfileEdit(area_of_operations="x"))


def test_completion_cache_reads_through_until_completed(db, test_user):
    user_id = test_user.id
    cache = ProfileCompletionCache()
    assert cache.get(db, user_id) is False

    db.execute(
        Profile.__table__.update().where(Profile.id == user_id).values(is_profile_completed=True)
    )
    db.commit()
    assert cache.get(db, user_id) is True

    # Cached from here on, even if the row is unreadable
    db.execute(Profile.__table__.delete().where(Profile.id == user_id))
    db.commit()
    assert cache.get(db, user_id) is True

    cache.reset()
    assert cache.get(db, user_id) is False


def test_ensure_profile_creates_once(db):
    user_id = uuid.uuid4()
    first = profile_service.ensure_profile(db, user_id, "new@test.com")
    second = profile_service.ensure_profile(db, user_id, "other@test.com")
    assert first is second
    assert db.scalars(select(Profile).where(Profile.id == user_id)).one().email == "new@test.com"
