"""Helpers for creating the media bucket's S3 client."""

from __future__ import annotations

from urllib.parse import urlparse

import boto3
from botocore.client import BaseClient
from botocore.config import Config

from portal.core.config import settings

# Media calls are attempt-once; the saga decides what to retry.
MEDIA_CLIENT_RETRIES = {"max_attempts": 1, "mode": "standard"}
MEDIA_CONNECT_TIMEOUT_SECONDS = 5
MEDIA_READ_TIMEOUT_SECONDS = 60


def _normalize_endpoint(endpoint_url: str | None) -> str | None:
    if endpoint_url:
        return endpoint_url.rstrip("/")
    return None


def _is_gcs_compat_endpoint(endpoint_url: str | None) -> bool:
    if not endpoint_url:
        return False
    hostname = (urlparse(endpoint_url).hostname or "").lower()
    return hostname == "storage.googleapis.com" or hostname.endswith(".storage.googleapis.com")


def _resolve_region(endpoint_url: str | None) -> str | None:
    selected = settings.S3_REGION or None
    if _is_gcs_compat_endpoint(endpoint_url) and (selected is None or selected == "us-east-1"):
        # GCS XML API expects region "auto" for SigV4 signing.
        return "auto"
    return selected


def _build_media_config() -> Config:
    options: dict = {
        "retries": MEDIA_CLIENT_RETRIES,
        "connect_timeout": MEDIA_CONNECT_TIMEOUT_SECONDS,
        "read_timeout": MEDIA_READ_TIMEOUT_SECONDS,
    }
    style = (settings.S3_URL_STYLE or "").strip().lower()
    if style in {"path", "virtual"}:
        options["s3"] = {"addressing_style": style}
    return Config(**options)


def get_media_s3_client() -> BaseClient:
    """Return an S3 client for the media bucket (supports S3-compatible endpoints)."""
    endpoint = _normalize_endpoint(settings.S3_ENDPOINT_URL)
    return boto3.client(
        "s3",
        region_name=_resolve_region(endpoint),
        aws_access_key_id=settings.AWS_ACCESS_KEY_ID or None,
        aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY or None,
        endpoint_url=endpoint,
        config=_build_media_config(),
    )
