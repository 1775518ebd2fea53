"""Shared multipart helpers for routers that accept a JSON `payload` plus files."""

from typing import TypeVar

from fastapi import HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, ValidationError

from portal.core.config import settings
from portal.utils.file_upload import UploadSource, content_length_exceeds_limit, read_upload, validate_upload

ModelT = TypeVar("ModelT", bound=BaseModel)

MAX_FILES_PER_REQUEST = 12


def parse_payload(model: type[ModelT], raw: str | None) -> ModelT:
    """Validate the `payload` form field as JSON for `model` (422 on failure)."""
    try:
        return model.model_validate_json(raw or "{}")
    except ValidationError as e:
        raise RequestValidationError(e.errors(include_url=False))


def check_request_size(request: Request) -> None:
    """Reject requests whose Content-Length can't fit the allowed files."""
    if content_length_exceeds_limit(
        request.headers.get("content-length"),
        max_size_bytes=settings.MAX_UPLOAD_SIZE_BYTES * MAX_FILES_PER_REQUEST,
    ):
        raise HTTPException(status_code=413, detail="Request too large")


async def read_file(file: UploadFile | None) -> UploadSource | None:
    """Read and validate one optional part; invalid files are rejected before any upload."""
    source = await read_upload(file)
    if source is None:
        return None
    error = validate_upload(source, max_size_bytes=settings.MAX_UPLOAD_SIZE_BYTES)
    if error:
        raise HTTPException(status_code=400, detail=f"{source.filename}: {error}")
    return source


async def read_files(files: list[UploadFile] | None) -> list[UploadSource | None]:
    files = files or []
    if len(files) > MAX_FILES_PER_REQUEST:
        raise HTTPException(status_code=400, detail=f"At most {MAX_FILES_PER_REQUEST} files per request")
    return [await read_file(file) for file in files]
