"""Object store backends: local filesystem, edge functions (MockTransport), and S3 (Stubber)."""

import json

import boto3
import httpx
import pytest
from botocore.stub import Stubber

from conftest import make_source
from portal.core.config import settings
from portal.core.errors import FolderNotEmptyError, StorageError, UploadError
from portal.services import object_store
from portal.services.object_store import (
    EdgeFunctionObjectStore,
    LocalObjectStore,
    S3ObjectStore,
    join_key,
)

FOLDER = "needy-portal/cases/c1"


# =============================================================================
# Keys
# =============================================================================

def test_join_key_flattens_separators_in_names():
    assert join_key("needy-portal/cases/c1/", "a/b\\c") == "needy-portal/cases/c1/a-b-c"


@pytest.mark.parametrize("name", ["", "  ", ".", ".."])
def test_join_key_rejects_empty_and_dot_names(name):
    with pytest.raises(UploadError):
        join_key(FOLDER, name)


# =============================================================================
# Local filesystem
# =============================================================================

@pytest.fixture
def local_store(tmp_path):
    return LocalObjectStore(root=str(tmp_path), public_base_url="http://localhost:8000/media")


async def test_local_upload_round_trips_public_id(local_store, tmp_path):
    result = await local_store.upload("token", make_source("School Fees.v2.pdf"), "School Fees.v2", FOLDER)

    assert result.public_id == f"{FOLDER}/School Fees.v2"
    assert result.url == "http://localhost:8000/media/upload/needy-portal/cases/c1/School%20Fees.v2.pdf"
    assert local_store.public_id_from_url(result.url) == result.public_id
    assert (tmp_path / FOLDER / "School Fees.v2.pdf").read_bytes() == b"%PDF-1.4 test"


async def test_local_same_public_id_overwrites_other_extension(local_store, tmp_path):
    await local_store.upload(None, make_source("photo.png", b"png"), "case-image", FOLDER)
    await local_store.upload(None, make_source("photo.jpg", b"jpg"), "case-image", FOLDER)

    assert sorted(p.name for p in (tmp_path / FOLDER).iterdir()) == ["case-image.jpg"]
    assert await local_store.list_public_ids(FOLDER) == [f"{FOLDER}/case-image"]


async def test_local_upload_rejects_disallowed_type(local_store):
    with pytest.raises(UploadError, match="not allowed"):
        await local_store.upload(None, make_source("script.sh", b"#!/bin/sh"), "script", FOLDER)


async def test_local_upload_rejects_oversized_file(tmp_path):
    store = LocalObjectStore(root=str(tmp_path), max_upload_bytes=4)
    with pytest.raises(UploadError, match="exceeds"):
        await store.upload(None, make_source("big.pdf", b"12345"), "big", FOLDER)


async def test_local_delete_is_idempotent(local_store):
    result = await local_store.upload(None, make_source("a.pdf"), "a", FOLDER)
    await local_store.delete(None, result.public_id)
    await local_store.delete(None, result.public_id)
    assert await local_store.list_public_ids(FOLDER) == []


async def test_local_folder_delete_requires_empty_folder(local_store, tmp_path):
    await local_store.upload(None, make_source("a.pdf"), "a", FOLDER)
    await local_store.upload(None, make_source("b.pdf"), "b", "needy-portal/cases/c10")

    with pytest.raises(FolderNotEmptyError):
        await local_store.delete_folder(None, FOLDER)

    await local_store.delete_by_prefix(None, f"{FOLDER}/")
    await local_store.delete_folder(None, FOLDER)

    assert not (tmp_path / FOLDER).exists()
    # Sibling folder sharing the id prefix is untouched
    assert await local_store.list_public_ids("needy-portal/cases/c10/") == ["needy-portal/cases/c10/b"]


async def test_local_paths_cannot_escape_root(local_store):
    with pytest.raises(StorageError):
        await local_store.delete_folder(None, "../outside")


# =============================================================================
# Edge functions
# =============================================================================

def _edge_store(handler) -> EdgeFunctionObjectStore:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return EdgeFunctionObjectStore(base_url="https://edge.test/functions/v1/", client=client)


async def test_edge_upload_posts_multipart_with_bearer():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = request.content
        return httpx.Response(
            200,
            json={
                "url": "https://res.example.com/demo/raw/upload/v17/needy-portal/cases/c1/Invoice.pdf",
                "public_id": "needy-portal/cases/c1/Invoice",
            },
        )

    store = _edge_store(handler)
    result = await store.upload("tok-123", make_source("Invoice.pdf"), "Invoice", FOLDER)

    assert seen["path"] == "/functions/v1/upload-cloudinary"
    assert seen["auth"] == "Bearer tok-123"
    assert b'name="public_id"' in seen["body"] and b"Invoice" in seen["body"]
    assert b'name="folder"' in seen["body"] and FOLDER.encode() in seen["body"]
    assert result.public_id == "needy-portal/cases/c1/Invoice"
    assert store.public_id_from_url(result.url) == result.public_id


async def test_edge_upload_error_message_from_body():
    store = _edge_store(lambda request: httpx.Response(403, json={"error": "Unauthorized"}))
    with pytest.raises(UploadError, match="Unauthorized"):
        await store.upload("bad", make_source(), "file", FOLDER)


async def test_edge_upload_network_error_is_upload_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(UploadError):
        await _edge_store(handler).upload("tok", make_source(), "file", FOLDER)


async def test_edge_delete_sends_public_id():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["json"] = json.loads(request.content)
        return httpx.Response(200, json={"result": "ok"})

    await _edge_store(handler).delete("tok", f"{FOLDER}/Invoice")
    assert seen == {"path": "/functions/v1/delete-cloudinary", "json": {"public_id": f"{FOLDER}/Invoice"}}


async def test_edge_delete_folder_not_empty():
    def handler(request):
        return httpx.Response(400, json={"error": "Folder is not empty"})

    with pytest.raises(FolderNotEmptyError):
        await _edge_store(handler).delete_folder("tok", FOLDER)


async def test_edge_delete_by_prefix_failure_is_storage_error():
    seen = {}

    def handler(request):
        seen["json"] = json.loads(request.content)
        return httpx.Response(500, text="internal error")

    with pytest.raises(StorageError) as exc_info:
        await _edge_store(handler).delete_by_prefix("tok", f"{FOLDER}/")
    assert not isinstance(exc_info.value, FolderNotEmptyError)
    assert seen["json"] == {"folder": f"{FOLDER}/"}


def test_edge_requires_base_url(monkeypatch):
    monkeypatch.setattr(settings, "STORAGE_EDGE_BASE_URL", "")
    with pytest.raises(StorageError):
        EdgeFunctionObjectStore()


# =============================================================================
# S3
# =============================================================================

@pytest.fixture
def s3_client(monkeypatch):
    monkeypatch.setattr(settings, "S3_PUBLIC_BASE_URL", "")
    monkeypatch.setattr(settings, "S3_URL_STYLE", "path")
    return boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="test",
        aws_secret_access_key="test",
    )


async def test_s3_upload_puts_object_with_extension(s3_client):
    store = S3ObjectStore(bucket="media", client=s3_client)
    source = make_source("Invoice.pdf")
    with Stubber(s3_client) as stubber:
        stubber.add_response(
            "put_object",
            {},
            {
                "Bucket": "media",
                "Key": f"{FOLDER}/Invoice.pdf",
                "Body": source.data,
                "ContentType": "application/pdf",
            },
        )
        result = await store.upload(None, source, "Invoice", FOLDER)
        stubber.assert_no_pending_responses()

    assert result.public_id == f"{FOLDER}/Invoice"
    assert result.url == f"https://s3.amazonaws.com/media/{FOLDER}/Invoice.pdf"
    assert store.public_id_from_url(result.url) == result.public_id


async def test_s3_upload_client_error_is_upload_error(s3_client):
    store = S3ObjectStore(bucket="media", client=s3_client)
    with Stubber(s3_client) as stubber:
        stubber.add_client_error("put_object", service_error_code="AccessDenied", http_status_code=403)
        with pytest.raises(UploadError):
            await store.upload(None, make_source(), "file", FOLDER)


async def test_s3_delete_matches_any_extension(s3_client):
    store = S3ObjectStore(bucket="media", client=s3_client)
    with Stubber(s3_client) as stubber:
        stubber.add_response(
            "list_objects_v2",
            {
                "Contents": [
                    {"Key": f"{FOLDER}/Invoice.pdf"},
                    {"Key": f"{FOLDER}/Invoice.backup.pdf"},
                ],
                "IsTruncated": False,
            },
            {"Bucket": "media", "Prefix": f"{FOLDER}/Invoice."},
        )
        stubber.add_response(
            "delete_objects",
            {"Deleted": [{"Key": f"{FOLDER}/Invoice.pdf"}]},
            {"Bucket": "media", "Delete": {"Objects": [{"Key": f"{FOLDER}/Invoice.pdf"}], "Quiet": True}},
        )
        await store.delete(None, f"{FOLDER}/Invoice")
        stubber.assert_no_pending_responses()


async def test_s3_delete_folder_not_empty(s3_client):
    store = S3ObjectStore(bucket="media", client=s3_client)
    with Stubber(s3_client) as stubber:
        stubber.add_response(
            "list_objects_v2",
            {"Contents": [{"Key": f"{FOLDER}/"}, {"Key": f"{FOLDER}/late.pdf"}], "IsTruncated": False},
            {"Bucket": "media", "Prefix": f"{FOLDER}/"},
        )
        with pytest.raises(FolderNotEmptyError):
            await store.delete_folder(None, FOLDER)


async def test_s3_delete_folder_removes_marker(s3_client):
    store = S3ObjectStore(bucket="media", client=s3_client)
    with Stubber(s3_client) as stubber:
        stubber.add_response(
            "list_objects_v2",
            {"Contents": [{"Key": f"{FOLDER}/"}], "IsTruncated": False},
            {"Bucket": "media", "Prefix": f"{FOLDER}/"},
        )
        stubber.add_response("delete_object", {}, {"Bucket": "media", "Key": f"{FOLDER}/"})
        await store.delete_folder(None, FOLDER)
        stubber.assert_no_pending_responses()


# =============================================================================
# Factory
# =============================================================================

def test_get_object_store_selects_backend(monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "LOCAL_STORAGE_PATH", str(tmp_path / "media"))
    monkeypatch.setattr(settings, "STORAGE_BACKEND", "local")
    assert isinstance(object_store.get_object_store(), LocalObjectStore)
    assert (tmp_path / "media").is_dir()

    monkeypatch.setattr(settings, "STORAGE_BACKEND", "S3")
    assert isinstance(object_store.get_object_store(), S3ObjectStore)

    monkeypatch.setattr(settings, "STORAGE_BACKEND", "edge")
    monkeypatch.setattr(settings, "STORAGE_EDGE_BASE_URL", "https://edge.test/functions/v1")
    assert isinstance(object_store.get_object_store(), EdgeFunctionObjectStore)


def test_get_object_store_rejects_unknown_backend(monkeypatch):
    monkeypatch.setattr(settings, "STORAGE_BACKEND", "ftp")
    with pytest.raises(ValueError, match="ftp"):
        object_store.get_object_store()
