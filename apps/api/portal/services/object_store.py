"""Object store gateway for case and profile media.

Three backends share one contract:

- edge: serverless functions that proxy the media host (production)
- s3: an S3-compatible bucket
- local: the filesystem (dev/tests)

An upload either fully succeeds or raises UploadError. Objects are addressed
by a public id of the form `<folder>/<base_name>`; URLs map back to it via
`public_id_from_url`.
"""

from __future__ import annotations

import logging
import os
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote

import anyio
import httpx
from botocore.client import BaseClient
from botocore.exceptions import BotoCoreError, ClientError

from portal.core.config import settings
from portal.core.errors import FolderNotEmptyError, StorageError, UploadError
from portal.services import storage_url_service
from portal.services.storage_client import get_media_s3_client
from portal.utils.file_upload import UploadSource, validate_upload
from portal.utils.public_id import extract_public_id, strip_extension

logger = logging.getLogger(__name__)

S3_DELETE_BATCH_SIZE = 1000
FOLDER_NOT_EMPTY_MESSAGE = "Folder is not empty"


@dataclass(frozen=True)
class UploadResult:
    url: str
    public_id: str


def join_key(folder: str, base_name: str) -> str:
    """Build `<folder>/<base_name>`, rejecting names that would escape the folder."""
    name = base_name.strip().replace("\\", "-").replace("/", "-")
    if not name or name in {".", ".."}:
        raise UploadError(f"Invalid object name: {base_name!r}")
    return f"{folder.strip('/')}/{name}"


class ObjectStore(ABC):
    """Gateway contract consumed by the mutation sagas."""

    def __init__(self, *, max_upload_bytes: int | None = None):
        self.max_upload_bytes = max_upload_bytes or settings.MAX_UPLOAD_SIZE_BYTES

    async def upload(
        self,
        credential: str | None,
        source: UploadSource,
        base_name: str,
        folder: str,
    ) -> UploadResult:
        """Store one object under `<folder>/<base_name>`."""
        error = validate_upload(source, max_size_bytes=self.max_upload_bytes)
        if error:
            raise UploadError(error)
        public_id = join_key(folder, base_name)
        result = await self._upload(credential, source, public_id, folder, base_name)
        logger.info("Uploaded media object %s (%d bytes)", result.public_id, source.size)
        return result

    @abstractmethod
    async def _upload(
        self,
        credential: str | None,
        source: UploadSource,
        public_id: str,
        folder: str,
        base_name: str,
    ) -> UploadResult:
        ...

    @abstractmethod
    async def delete(self, credential: str | None, public_id: str) -> None:
        """Delete one object by public id."""

    @abstractmethod
    async def delete_by_prefix(self, credential: str | None, prefix: str) -> None:
        """Delete every object whose public id starts with `prefix`."""

    @abstractmethod
    async def delete_folder(self, credential: str | None, folder: str) -> None:
        """
        Remove an (empty) folder.

        Raises FolderNotEmptyError while objects are still visible under it.
        """

    @abstractmethod
    def public_id_from_url(self, url: str | None) -> str | None:
        """Derive the public id from a URL this store produced; None if it can't."""


# =============================================================================
# Edge functions (media host proxy)
# =============================================================================

class EdgeFunctionObjectStore(ObjectStore):
    """Calls the `upload-cloudinary`, `delete-cloudinary`, and `delete-folder-byprefix` functions."""

    UPLOAD_FUNCTION = "upload-cloudinary"
    DELETE_FUNCTION = "delete-cloudinary"
    DELETE_FOLDER_FUNCTION = "delete-folder-byprefix"

    def __init__(
        self,
        *,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        max_upload_bytes: int | None = None,
    ):
        super().__init__(max_upload_bytes=max_upload_bytes)
        self.base_url = (base_url or settings.STORAGE_EDGE_BASE_URL).rstrip("/")
        if not self.base_url:
            raise StorageError("STORAGE_EDGE_BASE_URL is not configured")
        self._client = client

    def _function_url(self, name: str) -> str:
        return f"{self.base_url}/{name}"

    async def _post(self, credential: str | None, name: str, **kwargs) -> httpx.Response:
        headers = {"Authorization": f"Bearer {credential or ''}"}
        if self._client is not None:
            return await self._client.post(self._function_url(name), headers=headers, **kwargs)
        async with httpx.AsyncClient(timeout=settings.STORAGE_EDGE_TIMEOUT_SECONDS) as client:
            return await client.post(self._function_url(name), headers=headers, **kwargs)

    @staticmethod
    def _error_message(response: httpx.Response, default: str) -> str:
        try:
            body = response.json()
        except ValueError:
            text = response.text[:50]
            return f"{default}: {text}..." if text else default
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
        return default

    async def _upload(self, credential, source, public_id, folder, base_name) -> UploadResult:
        try:
            response = await self._post(
                credential,
                self.UPLOAD_FUNCTION,
                files={"file": (source.filename, source.data, source.content_type)},
                data={"public_id": base_name, "folder": folder.strip("/")},
            )
        except httpx.HTTPError as exc:
            raise UploadError(f"Upload failed: {exc}") from exc

        if response.is_error:
            raise UploadError(self._error_message(response, "Upload failed"))
        try:
            body = response.json()
            return UploadResult(url=body["url"], public_id=body.get("public_id") or public_id)
        except (ValueError, KeyError, TypeError) as exc:
            raise UploadError("Upload failed: malformed response") from exc

    async def delete(self, credential, public_id) -> None:
        try:
            response = await self._post(
                credential, self.DELETE_FUNCTION, json={"public_id": public_id}
            )
        except httpx.HTTPError as exc:
            raise StorageError(f"Delete failed: {exc}") from exc
        if response.is_error:
            raise StorageError(self._error_message(response, "Delete failed"))

    async def _delete_folder_request(self, credential, folder: str) -> httpx.Response:
        try:
            return await self._post(
                credential, self.DELETE_FOLDER_FUNCTION, json={"folder": folder}
            )
        except httpx.HTTPError as exc:
            raise StorageError(f"Delete folder failed: {exc}") from exc

    async def delete_by_prefix(self, credential, prefix) -> None:
        response = await self._delete_folder_request(credential, prefix)
        if response.is_error:
            raise StorageError(self._error_message(response, "Delete folder failed"))

    async def delete_folder(self, credential, folder) -> None:
        response = await self._delete_folder_request(credential, folder.rstrip("/"))
        if not response.is_error:
            return
        message = self._error_message(response, "Delete folder failed")
        if response.status_code == 400 or FOLDER_NOT_EMPTY_MESSAGE in message:
            raise FolderNotEmptyError(message)
        raise StorageError(message)

    def public_id_from_url(self, url):
        return extract_public_id(url, settings.STORAGE_UPLOAD_MARKER)


# =============================================================================
# S3-compatible bucket
# =============================================================================

class S3ObjectStore(ObjectStore):
    """Objects live at `<public_id>.<ext>`; the extension is dropped from the public id."""

    def __init__(
        self,
        *,
        bucket: str | None = None,
        client: BaseClient | None = None,
        max_upload_bytes: int | None = None,
    ):
        super().__init__(max_upload_bytes=max_upload_bytes)
        self.bucket = bucket or settings.S3_BUCKET
        self._client = client

    @property
    def client(self) -> BaseClient:
        if self._client is None:
            self._client = get_media_s3_client()
        return self._client

    def _list_keys(self, prefix: str) -> list[str]:
        keys: list[str] = []
        paginator = self.client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            keys.extend(item["Key"] for item in page.get("Contents", []))
        return keys

    def _delete_keys(self, keys: list[str]) -> None:
        for start in range(0, len(keys), S3_DELETE_BATCH_SIZE):
            batch = keys[start:start + S3_DELETE_BATCH_SIZE]
            response = self.client.delete_objects(
                Bucket=self.bucket,
                Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
            )
            errors = response.get("Errors") or []
            if errors:
                first = errors[0]
                raise StorageError(
                    f"Delete failed for {len(errors)} object(s): {first.get('Key')} ({first.get('Code')})"
                )

    async def _upload(self, credential, source, public_id, folder, base_name) -> UploadResult:
        key = f"{public_id}.{source.extension}"

        def _put() -> None:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=source.data,
                ContentType=source.content_type,
            )

        try:
            await anyio.to_thread.run_sync(_put)
        except (ClientError, BotoCoreError) as exc:
            raise UploadError(f"Upload failed: {exc}") from exc
        return UploadResult(
            url=storage_url_service.build_public_url(self.bucket, key),
            public_id=public_id,
        )

    async def delete(self, credential, public_id) -> None:
        def _delete() -> None:
            keys = [
                key for key in self._list_keys(f"{public_id}.")
                if strip_extension(key) == public_id
            ]
            if keys:
                self._delete_keys(keys)

        try:
            await anyio.to_thread.run_sync(_delete)
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Delete failed: {exc}") from exc

    async def delete_by_prefix(self, credential, prefix) -> None:
        def _delete_prefix() -> None:
            keys = self._list_keys(prefix)
            if keys:
                self._delete_keys(keys)

        try:
            await anyio.to_thread.run_sync(_delete_prefix)
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Delete folder failed: {exc}") from exc

    async def delete_folder(self, credential, folder) -> None:
        marker = f"{folder.rstrip('/')}/"

        def _remove_marker() -> None:
            remaining = [key for key in self._list_keys(marker) if key != marker]
            if remaining:
                raise FolderNotEmptyError(FOLDER_NOT_EMPTY_MESSAGE)
            self.client.delete_object(Bucket=self.bucket, Key=marker)

        try:
            await anyio.to_thread.run_sync(_remove_marker)
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Delete folder failed: {exc}") from exc

    def public_id_from_url(self, url):
        return storage_url_service.public_id_from_bucket_url(url, self.bucket)

    async def list_public_ids(self, prefix: str) -> list[str]:
        keys = await anyio.to_thread.run_sync(self._list_keys, prefix)
        return sorted(strip_extension(key) for key in keys if not key.endswith("/"))


# =============================================================================
# Local filesystem
# =============================================================================

class LocalObjectStore(ObjectStore):
    """Files live at `<root>/<public_id>.<ext>`; URLs use the media host's `/upload/` shape."""

    def __init__(
        self,
        *,
        root: str | None = None,
        public_base_url: str | None = None,
        max_upload_bytes: int | None = None,
    ):
        super().__init__(max_upload_bytes=max_upload_bytes)
        self.root = Path(root or settings.LOCAL_STORAGE_PATH)
        self.public_base_url = (public_base_url or settings.LOCAL_PUBLIC_BASE_URL).rstrip("/")

    def _path(self, relative: str) -> Path:
        path = (self.root / relative).resolve()
        if not path.is_relative_to(self.root.resolve()):
            raise StorageError(f"Path escapes storage root: {relative!r}")
        return path

    def _matching_files(self, public_id: str) -> list[Path]:
        target = self._path(public_id)
        if not target.parent.is_dir():
            return []
        return [
            candidate for candidate in target.parent.iterdir()
            if candidate.is_file() and strip_extension(candidate.name) == target.name
        ]

    def _all_public_ids(self) -> list[str]:
        if not self.root.is_dir():
            return []
        return [
            strip_extension(path.relative_to(self.root).as_posix())
            for path in self.root.rglob("*")
            if path.is_file()
        ]

    async def _upload(self, credential, source, public_id, folder, base_name) -> UploadResult:
        def _write() -> str:
            # Same public id overwrites, whatever the previous extension was.
            for existing in self._matching_files(public_id):
                existing.unlink()
            path = self._path(f"{public_id}.{source.extension}")
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(source.data)
            return path.name

        try:
            filename = await anyio.to_thread.run_sync(_write)
        except OSError as exc:
            raise UploadError(f"Upload failed: {exc}") from exc
        folder_part = public_id.rsplit("/", 1)[0]
        url = (
            f"{self.public_base_url}/{settings.STORAGE_UPLOAD_MARKER}/"
            f"{quote(folder_part)}/{quote(filename)}"
        )
        return UploadResult(url=url, public_id=public_id)

    async def delete(self, credential, public_id) -> None:
        def _remove() -> None:
            for path in self._matching_files(public_id):
                path.unlink()

        try:
            await anyio.to_thread.run_sync(_remove)
        except OSError as exc:
            raise StorageError(f"Delete failed: {exc}") from exc

    async def delete_by_prefix(self, credential, prefix) -> None:
        def _remove_prefix() -> None:
            for public_id in self._all_public_ids():
                if public_id.startswith(prefix):
                    for path in self._matching_files(public_id):
                        path.unlink()

        try:
            await anyio.to_thread.run_sync(_remove_prefix)
        except OSError as exc:
            raise StorageError(f"Delete folder failed: {exc}") from exc

    async def delete_folder(self, credential, folder) -> None:
        def _rmdir() -> None:
            path = self._path(folder.rstrip("/"))
            if not path.exists():
                return
            if any(child.is_file() for child in path.rglob("*")):
                raise FolderNotEmptyError(FOLDER_NOT_EMPTY_MESSAGE)
            shutil.rmtree(path)

        try:
            await anyio.to_thread.run_sync(_rmdir)
        except OSError as exc:
            raise StorageError(f"Delete folder failed: {exc}") from exc

    def public_id_from_url(self, url):
        return extract_public_id(url, settings.STORAGE_UPLOAD_MARKER)

    async def list_public_ids(self, prefix: str) -> list[str]:
        public_ids = await anyio.to_thread.run_sync(self._all_public_ids)
        return sorted(public_id for public_id in public_ids if public_id.startswith(prefix))


# =============================================================================
# Factory
# =============================================================================

def get_object_store() -> ObjectStore:
    """Return the configured object store (FastAPI dependency)."""
    backend = (settings.STORAGE_BACKEND or "local").strip().lower()
    if backend == "edge":
        return EdgeFunctionObjectStore()
    if backend == "s3":
        return S3ObjectStore()
    if backend == "local":
        os.makedirs(settings.LOCAL_STORAGE_PATH, exist_ok=True)
        return LocalObjectStore()
    raise ValueError(f"Unknown STORAGE_BACKEND: {settings.STORAGE_BACKEND!r}")
