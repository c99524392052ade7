"""
Outbound DMCA email delivery through the Resend HTTP API.

``send_email`` is the delivery capability used by the send queue. It never
raises for delivery problems: every failure comes back as
``SendResult(success=False, error=...)`` so the queue can apply its retry policy.
"""

import os
from typing import Dict, List, Optional

import httpx

from src.logger import get_logger
from takedown_core.models import SendResult

logger = get_logger(__name__)

RESEND_API_URL = os.environ.get("RESEND_API_URL", "https://api.resend.com/emails")
DEFAULT_FROM_EMAIL = "dmca@productguard.ai"
REQUEST_TIMEOUT_SECONDS = 15.0

DMCA_HEADERS = {
    "X-DMCA-Notice": "true",
    "X-ProductGuard-Version": "1.0",
}


def get_from_email() -> str:
    return os.environ.get("DMCA_FROM_EMAIL", DEFAULT_FROM_EMAIL)


def format_from_header(sender_name: str) -> str:
    return f"{sender_name} via ProductGuard <{get_from_email()}>"


async def send_email(
    sender_name: str,
    to: str,
    reply_to: Optional[str],
    subject: str,
    body_text: str,
    headers: Optional[Dict[str, str]] = None,
    cc: Optional[List[str]] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> SendResult:
    """
    Send a plain-text notice email.

    Args:
        sender_name: Display name of the rights holder; shown as "<name> via ProductGuard"
        to: Recipient DMCA address
        reply_to: Where provider replies should go
        subject: Email subject
        body_text: Plain-text notice body
        headers: Extra headers, merged over the DMCA headers
        cc: Optional CC recipients
        client: Optional pre-configured HTTP client (used by tests)

    Returns:
        SendResult: success with the provider message id, or failure with an error
    """
    api_key = os.environ.get("RESEND_API_KEY")
    if not api_key:
        logger.error("RESEND_API_KEY not configured; cannot send email")
        return SendResult(success=False, error="RESEND_API_KEY not configured")

    payload = {
        "from": format_from_header(sender_name),
        "to": [to],
        "subject": subject,
        "text": body_text,
        "headers": {**DMCA_HEADERS, **(headers or {})},
    }
    if reply_to:
        payload["reply_to"] = reply_to
    if cc:
        payload["cc"] = cc

    owns_client = client is None
    http = client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SECONDS)
    try:
        response = await http.post(
            RESEND_API_URL,
            json=payload,
            headers={"Authorization": f"Bearer {api_key}"},
        )
        if response.status_code >= 400:
            try:
                detail = response.json().get("message") or response.text
            except ValueError:
                detail = response.text
            logger.error(f"Resend rejected email to {to}: {response.status_code} {detail}")
            return SendResult(success=False, error=f"Email delivery failed: {detail}")

        message_id = response.json().get("id")
        logger.info(f"Notice sent to {to} (ID: {message_id})")
        return SendResult(success=True, message_id=message_id)
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"Email delivery to {to} failed: {str(e)}")
        return SendResult(success=False, error=str(e) or "Unknown error sending email")
    finally:
        if owns_client:
            await http.aclose()
