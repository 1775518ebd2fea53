"""Public URLs for bucket objects, and the reverse mapping back to keys."""

from __future__ import annotations

from urllib.parse import quote, unquote, urlparse

from portal.core.config import settings
from portal.utils.public_id import strip_extension

AWS_S3_HOST = "s3.amazonaws.com"


def _public_base() -> tuple[str, str]:
    """(scheme, host) of S3_PUBLIC_BASE_URL, defaulting to AWS."""
    base = (settings.S3_PUBLIC_BASE_URL or "").strip().rstrip("/")
    if not base:
        return "https", AWS_S3_HOST
    parsed = urlparse(base if "://" in base else f"https://{base}")
    return parsed.scheme or "https", parsed.netloc


def _virtual_hosted() -> bool:
    return (settings.S3_URL_STYLE or "path").lower() == "virtual"


def build_public_url(bucket: str, key: str) -> str:
    """URL under which `key` is served, honouring the configured addressing style."""
    scheme, host = _public_base()
    if _virtual_hosted():
        return f"{scheme}://{bucket}.{host}/{quote(key)}"
    return f"{scheme}://{host}/{bucket}/{quote(key)}"


def extract_storage_key(url: str, bucket: str) -> str | None:
    """Object key for a URL built by `build_public_url` (or a legacy AWS URL); None otherwise."""
    parsed = urlparse(url)
    host = parsed.netloc
    if not host:
        return None
    path = unquote(parsed.path.lstrip("/"))
    _, base_host = _public_base()

    bucket_hosts = {f"{bucket}.{base_host}"} if _virtual_hosted() else set()
    path_hosts = set() if _virtual_hosted() else {base_host}

    # Older rows may carry AWS URLs from either addressing style
    if host.startswith(f"{bucket}.s3"):
        bucket_hosts.add(host)
    if host == AWS_S3_HOST or host.startswith("s3."):
        path_hosts.add(host)

    if host in bucket_hosts:
        return path
    if host in path_hosts and path.startswith(f"{bucket}/"):
        return path[len(bucket) + 1:]
    return None


def public_id_from_bucket_url(url: object, bucket: str) -> str | None:
    """Map a bucket URL to the object's public id (key without extension). Never raises."""
    if not isinstance(url, str) or not url:
        return None
    try:
        key = extract_storage_key(url, bucket)
    except ValueError:
        return None
    if not key:
        return None
    return strip_extension(key) or None
