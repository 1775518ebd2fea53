"""Helpers for turning multipart uploads into store-ready payloads."""

from __future__ import annotations

from dataclasses import dataclass
from os import SEEK_END

from fastapi import UploadFile
from starlette.concurrency import run_in_threadpool


MULTIPART_OVERHEAD_BYTES = 64 * 1024

ALLOWED_EXTENSIONS = {"pdf", "png", "jpg", "jpeg", "webp", "heic", "doc", "docx"}


@dataclass(frozen=True)
class UploadSource:
    """File bytes plus the metadata the object store needs."""

    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        return self.filename.rsplit(".", 1)[-1].lower() if "." in self.filename else ""


def content_length_exceeds_limit(
    content_length_header: str | None,
    *,
    max_size_bytes: int,
    overhead_bytes: int = MULTIPART_OVERHEAD_BYTES,
) -> bool:
    """Return True when Content-Length clearly exceeds the allowed file size."""
    if not content_length_header:
        return False
    try:
        content_length = int(content_length_header)
    except (TypeError, ValueError):
        return False
    return content_length > (max_size_bytes + overhead_bytes)


async def get_upload_file_size(file: UploadFile) -> int:
    """Read size from the underlying file object without loading into memory."""

    def _get_size() -> int:
        stream = file.file
        original_pos = stream.tell()
        try:
            stream.seek(0, SEEK_END)
            return stream.tell()
        finally:
            stream.seek(original_pos)

    return await run_in_threadpool(_get_size)


async def read_upload(file: UploadFile | None) -> UploadSource | None:
    """Read an optional multipart file; empty or missing parts become None."""
    if file is None or not file.filename:
        return None
    if await get_upload_file_size(file) == 0:
        return None
    data = await file.read()
    return UploadSource(
        filename=file.filename,
        content_type=file.content_type or "application/octet-stream",
        data=data,
    )


def validate_upload(source: UploadSource, *, max_size_bytes: int) -> str | None:
    """Return an error message when the file breaks size/type limits, else None."""
    if source.extension not in ALLOWED_EXTENSIONS:
        return f"File extension '.{source.extension}' not allowed"
    if source.size > max_size_bytes:
        max_mb = max_size_bytes / (1024 * 1024)
        return f"File size exceeds {max_mb:.0f} MB limit"
    return None
