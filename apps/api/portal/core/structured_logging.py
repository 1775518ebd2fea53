"""Structured logging helpers (PII-safe)."""

import logging
from typing import Any

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the API process."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def build_log_context(
    *,
    user_id: str | None = None,
    case_id: str | None = None,
    operation: str | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict (ids only, never names or CNIC numbers)."""
    context: dict[str, Any] = {}
    if user_id:
        context["user_id"] = user_id
    if case_id:
        context["case_id"] = case_id
    if operation:
        context["operation"] = operation
    if request_id:
        context["request_id"] = request_id
    return context
