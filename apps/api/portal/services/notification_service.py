"""
Donor notifications.

When a caretaker posts a progress update, everyone who donated to the case
gets an email. Delivery is handled by an external email service; failures
here never affect the progress update itself.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from uuid import UUID

import httpx
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from portal.core.config import settings
from portal.core.structured_logging import build_log_context
from portal.db.models import CaseDonation, Profile
from portal.services.http_service import request_with_retries

logger = logging.getLogger(__name__)

EMAIL_TIMEOUT_SECONDS = 10.0


def get_donor_emails(db: Session, case_id: UUID) -> list[str]:
    """Unique, non-empty emails of everyone who donated to the case."""
    donor_ids = select(CaseDonation.donator_id).where(CaseDonation.case_id == case_id).distinct()
    emails = db.scalars(
        select(Profile.email).where(Profile.id.in_(donor_ids)).order_by(Profile.email)
    ).all()
    return [email for email in emails if email]


async def send_progress_email(
    emails: list[str],
    case_title: str,
    amount: Decimal | None,
    *,
    client: httpx.AsyncClient | None = None,
) -> bool:
    """POST the notification to the email service. Returns False when nothing was sent."""
    url = settings.EMAIL_SERVICE_URL
    if not url or not emails:
        return False

    body = {
        "caseTitle": case_title,
        "amount": float(amount) if amount is not None else None,
        "emails": emails,
    }

    async def _send(http: httpx.AsyncClient) -> httpx.Response:
        return await request_with_retries(lambda: http.post(url, json=body))

    if client is not None:
        response = await _send(client)
    else:
        async with httpx.AsyncClient(timeout=EMAIL_TIMEOUT_SECONDS) as http:
            response = await _send(http)

    response.raise_for_status()
    return True


async def notify_donors_of_progress(
    db: Session,
    case_id: UUID,
    title: str,
    amount: Decimal | None,
    *,
    client: httpx.AsyncClient | None = None,
) -> bool:
    """Best effort: look up the case's donors and email them about a progress update."""
    log_context = build_log_context(case_id=str(case_id), operation="progress.notify")
    if not settings.EMAIL_SERVICE_URL:
        return False
    try:
        emails = get_donor_emails(db, case_id)
        if not emails:
            return False
        sent = await send_progress_email(emails, title, amount, client=client)
    except (SQLAlchemyError, httpx.HTTPError) as exc:
        logger.warning("Donor notification failed", exc_info=exc, extra=log_context)
        return False

    logger.info("Notified %d donor(s) of progress update", len(emails), extra=log_context)
    return sent
