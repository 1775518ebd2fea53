"""Map stored media URLs back to object-store keys ("public ids")."""

from __future__ import annotations

import re
from urllib.parse import unquote, urlsplit

_VERSION_PREFIX = re.compile(r"^v\d+/")
_EXTENSION = re.compile(r"\.[A-Za-z0-9]{1,5}$")


def strip_extension(name: str) -> str:
    """Drop the final extension only ("report.v2.pdf" -> "report.v2")."""
    head, sep, tail = name.rpartition("/")
    stem = _EXTENSION.sub("", tail) or tail
    return f"{head}{sep}{stem}"


def extract_public_id(url: object, marker: str = "upload") -> str | None:
    """
    Derive the public id from a media URL.

    Handles the media-host shape `.../<marker>/[v<digits>/]<folder>/<name>.<ext>[?query]`.
    Returns None for anything else (external hosts, malformed input); never raises.
    The path is URL-decoded exactly once.
    """
    if not isinstance(url, str) or not url:
        return None
    try:
        path = urlsplit(url).path
    except ValueError:
        return None

    token = f"/{marker.strip('/')}/"
    index = path.find(token)
    if index < 0:
        return None

    remainder = _VERSION_PREFIX.sub("", path[index + len(token):], count=1)
    public_id = unquote(strip_extension(remainder).strip("/"))
    return public_id or None
