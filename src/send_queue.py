"""
DMCA send queue: enqueueing, bulk submission, and the rate-limited processor.

Notices bound for an email address are written to ``dmca_send_queue`` and
dispatched by ``process_queue``, which is invoked on a schedule (see
``src/main.py``). Each cycle claims a small batch atomically, sends one email
at a time with a fixed delay between sends, and records the outcome:

* success: a takedown row is written, the infringement advances from
  ``active`` to ``takedown_sent`` (guarded), the queue item becomes ``sent``
  and the communication is logged.
* failure: the attempt is counted; the item is rescheduled a few minutes later
  or, once its attempts are exhausted, marked ``failed`` for good.

Web-form and manual notices never enter the queue; the user submits those.
"""

import asyncio
import os
import uuid
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.db import (
    advance_infringement_status,
    claim_pending_items,
    get_async_session,
    get_infringement,
    get_profile,
    insert_queue_items,
    insert_takedown,
    last_batch_submitted_at,
    list_batch_items,
    list_queue_items,
    log_communication,
    skip_pending_batch_items,
    update_queue_item,
)
from src.logger import exception, info, warning
from src.mailer import get_from_email, send_email
from src.models import utcnow
from takedown_core.models import (
    BatchCancelResult,
    BatchStatus,
    BatchSummary,
    BuiltNotice,
    BulkSubmissionItem,
    BulkSubmissionResult,
    EnforcementTargetType,
    InlineSendResult,
    ProcessResult,
    ProviderInfo,
    QueueItem,
    QueueItemOutcome,
    SendResult,
    Takedown,
)

QUEUE_BATCH_SIZE = int(os.environ.get("QUEUE_BATCH_SIZE", "5"))
QUEUE_SEND_DELAY_MS = int(os.environ.get("QUEUE_SEND_DELAY_MS", "200"))
QUEUE_RETRY_DELAY_MINUTES = int(os.environ.get("QUEUE_RETRY_DELAY_MINUTES", "5"))
QUEUE_MAX_ATTEMPTS = int(os.environ.get("QUEUE_MAX_ATTEMPTS", "3"))
BULK_EMAIL_STAGGER_MINUTES = int(os.environ.get("BULK_EMAIL_STAGGER_MINUTES", "3"))

MAX_BULK_ITEMS = 50
BULK_RATE_LIMIT_MINUTES = 5
NO_RECIPIENT_ERROR = "No recipient email address"

Sender = Callable[..., Awaitable[SendResult]]
SessionFactory = async_sessionmaker[AsyncSession]


class BulkSubmissionError(ValueError):
    """A bulk submission was rejected before anything was enqueued."""


class RateLimitError(BulkSubmissionError):
    """The user submitted another batch too recently."""


def sign_notice_body(body: str, signature_name: str, signed_at: datetime) -> str:
    """Append the electronic signature block the user attested to."""
    return (
        f"{body}\n\n---\n"
        f"Electronic Signature: /{signature_name}/\n"
        f"Signed at: {signed_at.isoformat()}"
    )


async def _resolve_factory(session_factory: Optional[SessionFactory]) -> SessionFactory:
    return session_factory or await get_async_session()


# --- Enqueueing ---

async def enqueue_notice(
    user_id: str,
    notice: BuiltNotice,
    provider: ProviderInfo,
    target_type: Optional[EnforcementTargetType] = None,
    infringement_id: Optional[str] = None,
    cc_emails: Optional[List[str]] = None,
    priority: int = 0,
    scheduled_for: Optional[datetime] = None,
    session_factory: Optional[SessionFactory] = None,
) -> QueueItem:
    """
    Queue a single built notice for email delivery.

    Raises:
        ValueError: If the notice has no recipient email address. Web-form and
            manual notices are not queued.
    """
    if not notice.recipient_email:
        raise ValueError(
            f"{provider.name} has no DMCA email address; submit this notice "
            "through the provider's web form or send it manually"
        )

    factory = await _resolve_factory(session_factory)
    item = QueueItem(
        user_id=user_id,
        infringement_id=infringement_id,
        recipient_email=notice.recipient_email,
        recipient_name=notice.recipient_name,
        provider_name=provider.name,
        target_type=target_type,
        delivery_method="email",
        form_url=notice.recipient_form_url,
        notice_subject=notice.subject,
        notice_body=notice.body,
        cc_emails=cc_emails or [],
        priority=priority,
        max_attempts=QUEUE_MAX_ATTEMPTS,
        scheduled_for=scheduled_for or utcnow(),
    )
    async with factory() as session:
        [queued] = await insert_queue_items(session, [item])
        await session.commit()

    info("Notice queued", queue_item_id=queued.id, user_id=user_id, provider_name=provider.name)
    return queued


async def submit_bulk(
    user_id: str,
    items: List[BulkSubmissionItem],
    signature_name: str,
    perjury_confirmed: bool,
    liability_confirmed: bool,
    session_factory: Optional[SessionFactory] = None,
    now: Optional[datetime] = None,
) -> BulkSubmissionResult:
    """
    Sign and dispatch a reviewed bulk batch.

    Email notices are enqueued under one batch id, staggered a few minutes
    apart so a single provider is not flooded. Web-form and manual notices are
    returned to the caller for the user to submit.

    Raises:
        BulkSubmissionError: Empty or oversized batch, missing signature, or
            missing attestations.
        RateLimitError: The user submitted a batch within the rate-limit window.
    """
    if not items:
        raise BulkSubmissionError("No notices to submit")
    if len(items) > MAX_BULK_ITEMS:
        raise BulkSubmissionError(f"Maximum {MAX_BULK_ITEMS} notices per batch")
    if not signature_name or not signature_name.strip():
        raise BulkSubmissionError("Electronic signature is required")
    if not perjury_confirmed:
        raise BulkSubmissionError("You must confirm the statements under penalty of perjury")
    if not liability_confirmed:
        raise BulkSubmissionError("You must acknowledge liability for misrepresentation")

    now = now or utcnow()
    factory = await _resolve_factory(session_factory)
    signature_name = signature_name.strip()

    async with factory() as session:
        last_submitted = await last_batch_submitted_at(session, user_id)
        if last_submitted and now - last_submitted < timedelta(minutes=BULK_RATE_LIMIT_MINUTES):
            warning("Bulk submission rate limited", user_id=user_id, last_submitted=last_submitted)
            raise RateLimitError(
                f"Please wait {BULK_RATE_LIMIT_MINUTES} minutes between bulk submissions"
            )

        batch_id = str(uuid.uuid4())
        email_items: List[BulkSubmissionItem] = []
        web_form_items: List[BulkSubmissionItem] = []
        manual_items: List[BulkSubmissionItem] = []
        for item in items:
            if item.delivery_method == "email" and item.recipient_email:
                email_items.append(item)
            elif item.delivery_method == "web_form" and item.form_url:
                web_form_items.append(item)
            else:
                manual_items.append(item)

        rows = [
            QueueItem(
                user_id=user_id,
                infringement_id=item.infringement_id,
                batch_id=batch_id,
                recipient_email=item.recipient_email,
                recipient_name=item.recipient_name,
                provider_name=item.provider_name,
                target_type=item.target_type,
                delivery_method="email",
                form_url=item.form_url,
                notice_subject=item.notice_subject,
                notice_body=sign_notice_body(item.notice_body, signature_name, now),
                cc_emails=item.cc_emails,
                priority=0,
                max_attempts=QUEUE_MAX_ATTEMPTS,
                scheduled_for=now + timedelta(minutes=index * BULK_EMAIL_STAGGER_MINUTES),
            )
            for index, item in enumerate(email_items)
        ]
        queued = await insert_queue_items(session, rows) if rows else []
        await session.commit()

    info(
        "Bulk batch submitted",
        batch_id=batch_id,
        user_id=user_id,
        email_count=len(email_items),
        web_form_count=len(web_form_items),
        manual_count=len(manual_items),
    )
    return BulkSubmissionResult(
        batch_id=batch_id,
        total_submitted=len(items),
        email_count=len(email_items),
        web_form_count=len(web_form_items),
        manual_count=len(manual_items),
        estimated_completion_minutes=max(len(email_items) - 1, 0) * BULK_EMAIL_STAGGER_MINUTES,
        queued=queued,
        web_form_items=web_form_items,
        manual_items=manual_items,
    )


async def queue_status(
    user_id: str,
    limit: int = 50,
    session_factory: Optional[SessionFactory] = None,
) -> List[QueueItem]:
    factory = await _resolve_factory(session_factory)
    async with factory() as session:
        return await list_queue_items(session, user_id, limit=limit)


async def batch_status(
    user_id: str,
    batch_id: str,
    session_factory: Optional[SessionFactory] = None,
) -> Optional[BatchStatus]:
    """Summary and items of one batch; None when the user has no such batch."""
    factory = await _resolve_factory(session_factory)
    async with factory() as session:
        items = await list_batch_items(session, user_id, batch_id)
    if not items:
        return None
    return BatchStatus(batch=BatchSummary.from_items(batch_id, items), items=items)


async def cancel_batch(
    user_id: str,
    batch_id: str,
    session_factory: Optional[SessionFactory] = None,
    now: Optional[datetime] = None,
) -> Optional[BatchCancelResult]:
    """
    Stop the rest of a staggered batch.

    Only items still ``pending`` become ``skipped``; anything already claimed
    by a queue run finishes normally.

    Returns:
        The number of cancelled items, or None when the user has no such batch.
    """
    factory = await _resolve_factory(session_factory)
    async with factory() as session:
        if not await list_batch_items(session, user_id, batch_id):
            return None
        cancelled = await skip_pending_batch_items(session, user_id, batch_id, now=now)
        await session.commit()

    info("Bulk batch cancelled", batch_id=batch_id, user_id=user_id, cancelled_count=cancelled)
    return BatchCancelResult(batch_id=batch_id, cancelled_count=cancelled)


# --- Delivery ---

async def _record_delivery(
    session: AsyncSession,
    user_id: str,
    infringement_id: Optional[str],
    recipient_email: str,
    cc_emails: List[str],
    notice_body: str,
    sent_at: datetime,
) -> Takedown:
    infringing_url = ""
    if infringement_id:
        infringement = await get_infringement(session, infringement_id)
        if infringement:
            infringing_url = infringement.source_url
        else:
            warning("Infringement not found for sent notice", infringement_id=infringement_id)

    takedown = await insert_takedown(
        session,
        Takedown(
            infringement_id=infringement_id,
            user_id=user_id,
            type="dmca",
            status="sent",
            recipient_email=recipient_email,
            cc_emails=cc_emails,
            notice_content=notice_body,
            infringing_url=infringing_url,
            submitted_at=sent_at,
            sent_at=sent_at,
        ),
    )
    if infringement_id:
        advanced = await advance_infringement_status(session, infringement_id)
        if not advanced:
            info("Infringement status left unchanged", infringement_id=infringement_id)
    return takedown


async def _record_failure(
    factory: SessionFactory,
    item: QueueItem,
    error_message: str,
    now: datetime,
    terminal: bool = False,
) -> QueueItemOutcome:
    attempts = item.attempt_count + 1
    final = terminal or attempts >= item.max_attempts
    values = dict(
        attempt_count=attempts,
        error_message=error_message,
        processing_started_at=None,
    )
    if final:
        values.update(status="failed", completed_at=now)
    else:
        values.update(status="pending", scheduled_for=now + timedelta(minutes=QUEUE_RETRY_DELAY_MINUTES))

    async with factory() as session:
        await update_queue_item(session, item.id, **values)
        await session.commit()

    if final:
        warning("Queue item failed permanently", queue_item_id=item.id, attempts=attempts, error_message=error_message)
    else:
        info("Queue item rescheduled", queue_item_id=item.id, attempts=attempts, error_message=error_message)
    return QueueItemOutcome(id=item.id, status="failed" if final else "retrying", error=error_message)


async def _process_item(
    factory: SessionFactory,
    item: QueueItem,
    sender: Sender,
    now: datetime,
) -> QueueItemOutcome:
    if not item.recipient_email:
        return await _record_failure(factory, item, NO_RECIPIENT_ERROR, now, terminal=True)

    try:
        async with factory() as session:
            profile = await get_profile(session, item.user_id)
        sender_name = profile.sender_name if profile else "ProductGuard User"
        reply_to = profile.reply_to if profile else None

        result = await sender(
            sender_name=sender_name,
            to=item.recipient_email,
            reply_to=reply_to,
            subject=item.notice_subject,
            body_text=item.notice_body,
            cc=item.cc_emails or None,
        )
        if not result.success:
            return await _record_failure(factory, item, result.error or "Email delivery failed", now)

        async with factory() as session:
            takedown = await _record_delivery(
                session,
                item.user_id,
                item.infringement_id,
                item.recipient_email,
                item.cc_emails,
                item.notice_body,
                now,
            )
            await update_queue_item(
                session,
                item.id,
                status="sent",
                takedown_id=takedown.id,
                message_id=result.message_id,
                completed_at=now,
                attempt_count=item.attempt_count + 1,
                processing_started_at=None,
                error_message=None,
            )
            await session.commit()
    except Exception as e:
        exception("Queue item processing error", exc=e, queue_item_id=item.id)
        return await _record_failure(factory, item, str(e) or "Unknown error", now)

    await log_communication(
        factory,
        user_id=item.user_id,
        to_email=item.recipient_email,
        subject=item.notice_subject,
        body=item.notice_body,
        infringement_id=item.infringement_id,
        takedown_id=takedown.id,
        from_email=get_from_email(),
        reply_to_email=reply_to,
        external_message_id=result.message_id,
        provider_name=item.provider_name,
    )
    info("Queue item sent", queue_item_id=item.id, takedown_id=takedown.id, message_id=result.message_id)
    return QueueItemOutcome(id=item.id, status="sent", message_id=result.message_id)


async def process_queue(
    session_factory: Optional[SessionFactory] = None,
    limit: int = QUEUE_BATCH_SIZE,
    send_delay_ms: int = QUEUE_SEND_DELAY_MS,
    sender: Optional[Sender] = None,
    now: Optional[datetime] = None,
) -> ProcessResult:
    """
    Run one queue cycle.

    Args:
        session_factory: Session maker; defaults to the configured database
        limit: Maximum number of items to claim this cycle
        send_delay_ms: Pause between consecutive sends
        sender: Email delivery callable; defaults to ``send_email``
        now: Cycle clock, used for claiming and rescheduling

    Returns:
        ProcessResult: Counts of processed, sent, rescheduled and permanently failed items
    """
    factory = await _resolve_factory(session_factory)
    sender = sender or send_email
    now = now or utcnow()

    async with factory() as session:
        claimed = await claim_pending_items(session, limit, now=now)
        await session.commit()

    result = ProcessResult()
    if not claimed:
        info("Send queue empty")
        return result

    info("Processing send queue", claimed=len(claimed))
    for index, item in enumerate(claimed):
        if index and send_delay_ms > 0:
            await asyncio.sleep(send_delay_ms / 1000)

        try:
            outcome = await _process_item(factory, item, sender, now)
        except Exception as e:
            # The failure bookkeeping itself failed; the item stays in processing.
            exception("Could not record queue item outcome", exc=e, queue_item_id=item.id)
            outcome = QueueItemOutcome(id=item.id, status="failed", error=str(e))

        result.processed += 1
        if outcome.status == "sent":
            result.sent += 1
        elif outcome.status == "retrying":
            result.retried += 1
        else:
            result.failed += 1
        result.items.append(outcome)

    info(
        "Send queue cycle complete",
        processed=result.processed,
        sent=result.sent,
        retried=result.retried,
        failed=result.failed,
    )
    return result


async def send_notice_now(
    user_id: str,
    notice: BuiltNotice,
    provider: ProviderInfo,
    infringement_id: Optional[str] = None,
    cc_emails: Optional[List[str]] = None,
    session_factory: Optional[SessionFactory] = None,
    sender: Optional[Sender] = None,
) -> InlineSendResult:
    """
    Send one notice immediately, bypassing the queue.

    Records the takedown, advances the infringement and logs the
    communication exactly as a queued delivery would.

    Raises:
        ValueError: If the notice has no recipient email address.
    """
    if not notice.recipient_email:
        raise ValueError(f"{provider.name} has no DMCA email address; this notice cannot be emailed")

    factory = await _resolve_factory(session_factory)
    sender = sender or send_email

    async with factory() as session:
        profile = await get_profile(session, user_id)
    sender_name = profile.sender_name if profile else "ProductGuard User"
    reply_to = profile.reply_to if profile else None

    result = await sender(
        sender_name=sender_name,
        to=notice.recipient_email,
        reply_to=reply_to,
        subject=notice.subject,
        body_text=notice.body,
        cc=cc_emails or None,
    )
    if not result.success:
        warning("Inline notice send failed", user_id=user_id, provider_name=provider.name, error_message=result.error)
        return InlineSendResult(success=False, error=result.error)

    now = utcnow()
    async with factory() as session:
        takedown = await _record_delivery(
            session,
            user_id,
            infringement_id,
            notice.recipient_email,
            cc_emails or [],
            notice.body,
            now,
        )
        await session.commit()

    await log_communication(
        factory,
        user_id=user_id,
        to_email=notice.recipient_email,
        subject=notice.subject,
        body=notice.body,
        infringement_id=infringement_id,
        takedown_id=takedown.id,
        from_email=get_from_email(),
        reply_to_email=reply_to,
        external_message_id=result.message_id,
        provider_name=provider.name,
    )
    info("Notice sent inline", user_id=user_id, takedown_id=takedown.id, message_id=result.message_id)
    return InlineSendResult(success=True, takedown_id=takedown.id, message_id=result.message_id)
