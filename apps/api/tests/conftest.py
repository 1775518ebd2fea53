"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database, recreated for each test
- An in-memory object store that records every call and can inject failures
- JWT access-token minting for authenticated tests
- HTTPX AsyncClient wired to the app with store and DB overrides
"""
import itertools
import os
import uuid
from dataclasses import dataclass, field
from typing import AsyncGenerator, Callable, Generator

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["TESTING"] = "1"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["JWT_SECRET_PREVIOUS"] = ""
os.environ["JWT_AUDIENCE"] = ""
os.environ["EMAIL_SERVICE_URL"] = ""
os.environ["STORAGE_BACKEND"] = "local"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from portal.core.config import settings
from portal.core.deps import get_db, get_object_store
from portal.core.errors import FolderNotEmptyError, StorageError, UploadError
from portal.core.security import create_access_token
from portal.db.base import Base
from portal.db.models import Profile
from portal.db.session import SessionLocal, engine
from portal.main import app
from portal.schemas.auth import UserSession
from portal.services import case_service
from portal.services.object_store import ObjectStore, UploadResult
from portal.services.profile_service import completion_cache
from portal.utils.file_upload import UploadSource
from portal.utils.public_id import extract_public_id

MEDIA_BASE_URL = "https://media.test/demo/image/upload"


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def _schema() -> Generator[None, None, None]:
    Base.metadata.create_all(engine)
    completion_cache.reset()
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture(autouse=True)
def _no_storage_waits(monkeypatch):
    """Folder deletion waits and backs off in production; not in tests."""
    monkeypatch.setattr(settings, "STORAGE_DELETE_PROPAGATION_SECONDS", 0.0)
    monkeypatch.setattr(settings, "STORAGE_DELETE_BACKOFF_SECONDS", 0.0)


@pytest.fixture(autouse=True)
def _numbered_object_keys(monkeypatch):
    """Fresh object keys end in 1, 2, 3, ... instead of random tokens."""
    tokens = itertools.count(1)
    monkeypatch.setattr(case_service, "object_token", lambda: str(next(tokens)))


@pytest.fixture
def db() -> Generator[Session, None, None]:
    session = SessionLocal()
    yield session
    session.close()


# =============================================================================
# Object store double
# =============================================================================

@dataclass
class RecordingObjectStore(ObjectStore):
    """
    In-memory store with the media host's URL shape.

    `calls` records (operation, argument) in order. Failures are injected by
    base name, with or without its key token (`fail_uploads`), public id
    (`fail_deletes`), or operation (`fail_prefix_deletes`,
    `folder_not_empty_times`).
    """
    objects: dict[str, UploadSource] = field(default_factory=dict)
    calls: list[tuple[str, str]] = field(default_factory=list)
    fail_uploads: set[str] = field(default_factory=set)
    fail_deletes: set[str] = field(default_factory=set)
    fail_prefix_deletes: bool = False
    folder_not_empty_times: int = 0
    fail_folder_delete: bool = False
    before_upload: Callable[[str], None] | None = None

    def __post_init__(self):
        super().__init__()

    async def _upload(self, credential, source, public_id, folder, base_name) -> UploadResult:
        self.calls.append(("upload", public_id))
        if self.before_upload is not None:
            self.before_upload(public_id)
        if any(base_name == name or base_name.startswith(f"{name}-") for name in self.fail_uploads):
            raise UploadError(f"Upload failed: {base_name}")
        self.objects[public_id] = source
        return UploadResult(url=f"{MEDIA_BASE_URL}/v1/{public_id}.{source.extension}", public_id=public_id)

    async def delete(self, credential, public_id) -> None:
        self.calls.append(("delete", public_id))
        if public_id in self.fail_deletes:
            raise StorageError(f"Delete failed: {public_id}")
        self.objects.pop(public_id, None)

    async def delete_by_prefix(self, credential, prefix) -> None:
        self.calls.append(("delete_by_prefix", prefix))
        if self.fail_prefix_deletes:
            raise StorageError("Delete folder failed")
        for public_id in [key for key in self.objects if key.startswith(prefix)]:
            del self.objects[public_id]

    async def delete_folder(self, credential, folder) -> None:
        self.calls.append(("delete_folder", folder))
        if self.fail_folder_delete:
            raise StorageError("Delete folder failed")
        if self.folder_not_empty_times > 0:
            self.folder_not_empty_times -= 1
            raise FolderNotEmptyError("Folder is not empty")

    def public_id_from_url(self, url):
        return extract_public_id(url)

    def ops(self, name: str) -> list[str]:
        return [arg for op, arg in self.calls if op == name]

    def under(self, prefix: str) -> list[str]:
        return sorted(key for key in self.objects if key.startswith(prefix))


@pytest.fixture
def store() -> RecordingObjectStore:
    return RecordingObjectStore()


def make_source(filename: str = "file.pdf", data: bytes = b"%PDF-1.4 test", content_type: str = "application/pdf") -> UploadSource:
    return UploadSource(filename=filename, content_type=content_type, data=data)


# =============================================================================
# Auth Fixtures
# =============================================================================

@pytest.fixture
def test_user(db: Session) -> Profile:
    profile = Profile(id=uuid.uuid4(), email=f"caretaker-{uuid.uuid4().hex[:8]}@test.com")
    db.add(profile)
    db.commit()
    return profile


@pytest.fixture
def session(test_user: Profile) -> UserSession:
    token = create_access_token(test_user.id, email=test_user.email)
    return UserSession(user_id=test_user.id, email=test_user.email, access_token=token)


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture
async def client(db: Session, store: RecordingObjectStore) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated client."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_object_store] = lambda: store

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
async def authed_client(
    db: Session, store: RecordingObjectStore, session: UserSession
) -> AsyncGenerator[AsyncClient, None]:
    """Client sending the test user's bearer token."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_object_store] = lambda: store

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"Authorization": f"Bearer {session.access_token}"},
    ) as c:
        yield c

    app.dependency_overrides.clear()
