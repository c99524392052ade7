"""
Tests for the DMCA send queue.

Runs against a real SQLite database (sqlite+aiosqlite) so the atomic claim,
status guards and retry bookkeeping go through actual SQL. Email delivery is
replaced with AsyncMock senders.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from src import send_queue
from src.db import claim_pending_items, insert_queue_items
from src.models import CommunicationOrm, InfringementOrm, ProfileOrm, QueueItemOrm, TakedownOrm, utcnow
from src.send_queue import (
    BulkSubmissionError,
    RateLimitError,
    batch_status,
    cancel_batch,
    enqueue_notice,
    process_queue,
    queue_status,
    send_notice_now,
    submit_bulk,
)
from takedown_core.models import BulkSubmissionItem, QueueItem, SendResult
from takedown_core.providers import PROVIDERS


def _ok_sender(message_id: str = "msg_123") -> AsyncMock:
    return AsyncMock(return_value=SendResult(success=True, message_id=message_id))


def _failing_sender(error: str = "550 mailbox unavailable") -> AsyncMock:
    return AsyncMock(return_value=SendResult(success=False, error=error))


async def _seed_user_and_infringement(session_factory, status: str = "active") -> None:
    async with session_factory() as session:
        session.add(ProfileOrm(
            id="user-1",
            email="jordan@example-trading.com",
            full_name="Jordan Reyes",
            dmca_reply_email="legal@example-trading.com",
        ))
        session.add(InfringementOrm(
            id="inf-1",
            user_id="user-1",
            source_url="https://t.me/somechannel/4512",
            platform="telegram",
            status=status,
        ))
        await session.commit()


async def _insert(session_factory, **fields) -> QueueItem:
    values = dict(
        user_id="user-1",
        infringement_id="inf-1",
        recipient_email="dmca@telegram.org",
        recipient_name="Telegram DMCA Agent",
        provider_name="Telegram",
        notice_subject="DMCA Takedown Notice",
        notice_body="Notice body",
        scheduled_for=utcnow() - timedelta(seconds=1),
    )
    values.update(fields)
    async with session_factory() as session:
        [item] = await insert_queue_items(session, [QueueItem(**values)])
        await session.commit()
    return item


async def _stored(session_factory, item_id: str) -> QueueItemOrm:
    async with session_factory() as session:
        return await session.get(QueueItemOrm, item_id)


class TestProcessQueue:
    """Tests for process_queue."""

    @pytest.mark.asyncio
    async def test_successful_send_records_everything(self, session_factory):
        await _seed_user_and_infringement(session_factory)
        item = await _insert(session_factory, cc_emails=["counsel@example-trading.com"])
        sender = _ok_sender()

        result = await process_queue(session_factory, send_delay_ms=0, sender=sender)

        assert (result.processed, result.sent, result.retried, result.failed) == (1, 1, 0, 0)
        assert result.items[0].status == "sent"
        assert result.items[0].message_id == "msg_123"

        sender.assert_awaited_once()
        kwargs = sender.call_args.kwargs
        assert kwargs["sender_name"] == "Jordan Reyes"
        assert kwargs["reply_to"] == "legal@example-trading.com"
        assert kwargs["to"] == "dmca@telegram.org"
        assert kwargs["cc"] == ["counsel@example-trading.com"]

        stored = await _stored(session_factory, item.id)
        assert stored.status == "sent"
        assert stored.attempt_count == 1
        assert stored.message_id == "msg_123"
        assert stored.completed_at is not None
        assert stored.takedown_id is not None

        async with session_factory() as session:
            takedown = await session.get(TakedownOrm, stored.takedown_id)
            infringement = await session.get(InfringementOrm, "inf-1")
            communications = (await session.execute(select(CommunicationOrm))).scalars().all()

        assert takedown.status == "sent"
        assert takedown.notice_content == "Notice body"
        assert takedown.infringing_url == "https://t.me/somechannel/4512"
        assert takedown.recipient_email == "dmca@telegram.org"
        assert infringement.status == "takedown_sent"
        assert len(communications) == 1
        assert communications[0].takedown_id == takedown.id
        assert communications[0].external_message_id == "msg_123"
        assert communications[0].provider_name == "Telegram"
        assert communications[0].direction == "outbound"

    @pytest.mark.asyncio
    async def test_status_advance_is_guarded(self, session_factory):
        """A removed infringement stays removed even when a late notice goes out."""
        await _seed_user_and_infringement(session_factory, status="removed")
        await _insert(session_factory)

        result = await process_queue(session_factory, send_delay_ms=0, sender=_ok_sender())

        assert result.sent == 1
        async with session_factory() as session:
            infringement = await session.get(InfringementOrm, "inf-1")
        assert infringement.status == "removed"

    @pytest.mark.asyncio
    async def test_final_attempt_fails_permanently(self, session_factory):
        """attempt_count 2 of 3 plus one more failure: failed, completed, not rescheduled."""
        await _seed_user_and_infringement(session_factory)
        item = await _insert(session_factory, attempt_count=2, max_attempts=3)

        result = await process_queue(session_factory, send_delay_ms=0, sender=_failing_sender())

        assert (result.processed, result.sent, result.retried, result.failed) == (1, 0, 0, 1)
        stored = await _stored(session_factory, item.id)
        assert stored.attempt_count == 3
        assert stored.status == "failed"
        assert stored.completed_at is not None
        assert stored.error_message == "550 mailbox unavailable"

        again = await process_queue(session_factory, send_delay_ms=0, sender=_failing_sender(),
                                    now=utcnow() + timedelta(hours=1))
        assert again.processed == 0

    @pytest.mark.asyncio
    async def test_always_failing_item_stops_after_max_attempts(self, session_factory):
        await _seed_user_and_infringement(session_factory)
        item = await _insert(session_factory)
        sender = AsyncMock(side_effect=[
            SendResult(success=False, error="timeout 1"),
            SendResult(success=False, error="timeout 2"),
            SendResult(success=False, error="timeout 3"),
        ])
        start = utcnow()

        outcomes = []
        for cycle in range(4):
            result = await process_queue(session_factory, send_delay_ms=0, sender=sender,
                                         now=start + timedelta(minutes=6 * cycle))
            outcomes.append([o.status for o in result.items])

        assert outcomes == [["retrying"], ["retrying"], ["failed"], []]
        assert sender.await_count == 3
        stored = await _stored(session_factory, item.id)
        assert stored.status == "failed"
        assert stored.attempt_count == 3
        assert stored.error_message == "timeout 3"

    @pytest.mark.asyncio
    async def test_retry_is_rescheduled_not_immediate(self, session_factory):
        await _seed_user_and_infringement(session_factory)
        item = await _insert(session_factory)
        now = utcnow()

        await process_queue(session_factory, send_delay_ms=0, sender=_failing_sender(), now=now)
        stored = await _stored(session_factory, item.id)
        assert stored.status == "pending"
        assert stored.attempt_count == 1
        assert stored.processing_started_at is None

        soon = await process_queue(session_factory, send_delay_ms=0, sender=_ok_sender(),
                                   now=now + timedelta(minutes=1))
        assert soon.processed == 0

        later = await process_queue(session_factory, send_delay_ms=0, sender=_ok_sender(),
                                    now=now + timedelta(minutes=6))
        assert later.sent == 1

    @pytest.mark.asyncio
    async def test_missing_recipient_fails_without_sending(self, session_factory):
        await _seed_user_and_infringement(session_factory)
        item = await _insert(session_factory, recipient_email=None)
        sender = _ok_sender()

        result = await process_queue(session_factory, send_delay_ms=0, sender=sender)

        assert result.failed == 1
        sender.assert_not_awaited()
        stored = await _stored(session_factory, item.id)
        assert stored.status == "failed"
        assert stored.attempt_count == 1
        assert stored.error_message == "No recipient email address"

    @pytest.mark.asyncio
    async def test_exception_is_treated_as_failed_attempt(self, session_factory):
        await _seed_user_and_infringement(session_factory)
        first = await _insert(session_factory, notice_subject="first", priority=0)
        second = await _insert(session_factory, notice_subject="second", priority=1)
        sender = AsyncMock(side_effect=[RuntimeError("boom"), SendResult(success=True, message_id="msg_2")])

        result = await process_queue(session_factory, send_delay_ms=0, sender=sender)

        assert [(o.id, o.status) for o in result.items] == [(first.id, "retrying"), (second.id, "sent")]
        stored = await _stored(session_factory, first.id)
        assert stored.status == "pending"
        assert stored.error_message == "boom"

    @pytest.mark.asyncio
    async def test_claim_respects_limit_priority_and_schedule(self, session_factory):
        low = await _insert(session_factory, priority=5)
        high = await _insert(session_factory, priority=0)
        await _insert(session_factory, priority=0, scheduled_for=utcnow() + timedelta(hours=1))

        async with session_factory() as session:
            claimed = await claim_pending_items(session, limit=1)
            await session.commit()

        assert [c.id for c in claimed] == [high.id]
        assert claimed[0].status == "processing"
        assert (await _stored(session_factory, low.id)).status == "pending"

    @pytest.mark.asyncio
    async def test_concurrent_claims_never_overlap(self, session_factory):
        for n in range(6):
            await _insert(session_factory, notice_subject=f"notice {n}")

        async def claim():
            async with session_factory() as session:
                items = await claim_pending_items(session, limit=4)
                await session.commit()
                return {i.id for i in items}

        first, second = await asyncio.gather(claim(), claim())

        assert first.isdisjoint(second)
        assert len(first | second) == 6

    @pytest.mark.asyncio
    async def test_empty_queue(self, session_factory):
        result = await process_queue(session_factory, send_delay_ms=0, sender=_ok_sender())
        assert result.processed == 0
        assert result.items == []


class TestSubmission:
    """Tests for enqueue_notice, submit_bulk, send_notice_now and queue_status."""

    @staticmethod
    def _bulk_items():
        return [
            BulkSubmissionItem(
                infringement_id="inf-1", recipient_email="dmca@telegram.org", recipient_name="Telegram DMCA Agent",
                provider_name="Telegram", target_type="platform", delivery_method="email",
                notice_subject="Notice 1", notice_body="Body 1",
            ),
            BulkSubmissionItem(
                infringement_id="inf-2", recipient_email="copyright@youtube.com", recipient_name="YouTube Copyright Team",
                provider_name="YouTube", target_type="platform", delivery_method="email",
                notice_subject="Notice 2", notice_body="Body 2",
            ),
            BulkSubmissionItem(
                infringement_id="inf-3", provider_name="Google", target_type="search_engine",
                delivery_method="web_form", form_url="https://support.google.com/legal/troubleshooter/1114905",
                notice_subject="Notice 3", notice_body="Body 3",
            ),
            BulkSubmissionItem(
                infringement_id="inf-4", provider_name="obscure.example", target_type="platform",
                delivery_method="manual", notice_subject="Notice 4", notice_body="Body 4",
            ),
        ]

    @pytest.mark.asyncio
    async def test_enqueue_notice(self, session_factory, built_notice):
        queued = await enqueue_notice(
            "user-1", built_notice, PROVIDERS["telegram"], target_type="platform",
            infringement_id="inf-1", session_factory=session_factory,
        )
        assert queued.id
        assert queued.status == "pending"
        assert queued.max_attempts == 3
        assert queued.recipient_email == "dmca@telegram.org"
        assert queued.notice_body == built_notice.body

    @pytest.mark.asyncio
    async def test_enqueue_rejects_form_only_notice(self, session_factory, built_notice):
        form_only = built_notice.model_copy(update={"recipient_email": ""})
        with pytest.raises(ValueError):
            await enqueue_notice("user-1", form_only, PROVIDERS["google"], session_factory=session_factory)

    @pytest.mark.asyncio
    async def test_submit_bulk_queues_email_items_staggered(self, session_factory):
        now = utcnow()
        result = await submit_bulk(
            "user-1", self._bulk_items(), "  Jordan Reyes ", True, True,
            session_factory=session_factory, now=now,
        )

        assert result.total_submitted == 4
        assert (result.email_count, result.web_form_count, result.manual_count) == (2, 1, 1)
        assert result.estimated_completion_minutes == 3
        assert [i.infringement_id for i in result.web_form_items] == ["inf-3"]
        assert [i.infringement_id for i in result.manual_items] == ["inf-4"]

        first, second = result.queued
        assert first.batch_id == second.batch_id == result.batch_id
        assert second.scheduled_for - first.scheduled_for == timedelta(minutes=3)
        assert first.notice_body == (
            f"Body 1\n\n---\nElectronic Signature: /Jordan Reyes/\nSigned at: {now.isoformat()}"
        )

    @pytest.mark.asyncio
    async def test_second_batch_is_rate_limited(self, session_factory):
        await submit_bulk("user-1", self._bulk_items(), "Jordan Reyes", True, True, session_factory=session_factory)
        with pytest.raises(RateLimitError):
            await submit_bulk("user-1", self._bulk_items(), "Jordan Reyes", True, True, session_factory=session_factory)
        # Other users are unaffected
        other = await submit_bulk("user-2", self._bulk_items(), "Sam Lee", True, True, session_factory=session_factory)
        assert other.email_count == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "count, signature, perjury, liability",
        [
            (0, "Jordan Reyes", True, True),
            (51, "Jordan Reyes", True, True),
            (1, "   ", True, True),
            (1, "Jordan Reyes", False, True),
            (1, "Jordan Reyes", True, False),
        ],
    )
    async def test_submit_bulk_validation(self, session_factory, count, signature, perjury, liability):
        item = self._bulk_items()[0]
        with pytest.raises(BulkSubmissionError):
            await submit_bulk(
                "user-1", [item] * count, signature, perjury, liability, session_factory=session_factory,
            )
        assert await queue_status("user-1", session_factory=session_factory) == []

    @pytest.mark.asyncio
    async def test_send_notice_now(self, session_factory, built_notice):
        await _seed_user_and_infringement(session_factory)
        sender = _ok_sender("msg_inline")

        result = await send_notice_now(
            "user-1", built_notice, PROVIDERS["telegram"], infringement_id="inf-1",
            session_factory=session_factory, sender=sender,
        )

        assert result.success is True
        assert result.message_id == "msg_inline"
        async with session_factory() as session:
            takedown = await session.get(TakedownOrm, result.takedown_id)
            infringement = await session.get(InfringementOrm, "inf-1")
        assert takedown.notice_content == built_notice.body
        assert infringement.status == "takedown_sent"

    @pytest.mark.asyncio
    async def test_send_notice_now_failure_records_nothing(self, session_factory, built_notice):
        await _seed_user_and_infringement(session_factory)

        result = await send_notice_now(
            "user-1", built_notice, PROVIDERS["telegram"], infringement_id="inf-1",
            session_factory=session_factory, sender=_failing_sender("bounced"),
        )

        assert result.success is False
        assert result.error == "bounced"
        async with session_factory() as session:
            assert (await session.execute(select(TakedownOrm))).scalars().all() == []

    @pytest.mark.asyncio
    async def test_queue_status_newest_first(self, session_factory):
        await _insert(session_factory, notice_subject="older")
        await _insert(session_factory, notice_subject="newer")
        await _insert(session_factory, user_id="someone-else", notice_subject="not mine")

        items = await queue_status("user-1", session_factory=session_factory)
        assert [i.notice_subject for i in items] == ["newer", "older"]


class TestBatchLifecycle:
    """Tests for batch_status and cancel_batch."""

    @staticmethod
    async def _seed_batch(session_factory):
        now = utcnow()
        items = {
            "sent": await _insert(session_factory, batch_id="batch-1", status="sent",
                                  scheduled_for=now - timedelta(minutes=6), completed_at=now),
            "processing": await _insert(session_factory, batch_id="batch-1", status="processing",
                                        scheduled_for=now - timedelta(minutes=3)),
            "due": await _insert(session_factory, batch_id="batch-1", scheduled_for=now - timedelta(seconds=1)),
            "later": await _insert(session_factory, batch_id="batch-1", scheduled_for=now + timedelta(minutes=3)),
        }
        await _insert(session_factory, batch_id="batch-2")
        return items

    @pytest.mark.asyncio
    async def test_batch_status_lists_items_in_send_order(self, session_factory):
        items = await self._seed_batch(session_factory)

        status = await batch_status("user-1", "batch-1", session_factory=session_factory)

        assert [i.id for i in status.items] == [
            items["sent"].id, items["processing"].id, items["due"].id, items["later"].id,
        ]
        summary = status.batch
        assert summary.total_items == 4
        assert (summary.pending_count, summary.processing_count, summary.sent_count) == (2, 1, 1)
        assert summary.skipped_count == 0
        assert summary.next_scheduled == items["due"].scheduled_for

    @pytest.mark.asyncio
    async def test_unknown_or_foreign_batch_is_none(self, session_factory):
        await self._seed_batch(session_factory)
        assert await batch_status("user-2", "batch-1", session_factory=session_factory) is None
        assert await batch_status("user-1", "nope", session_factory=session_factory) is None
        assert await cancel_batch("user-2", "batch-1", session_factory=session_factory) is None

    @pytest.mark.asyncio
    async def test_cancel_skips_only_pending_items(self, session_factory):
        items = await self._seed_batch(session_factory)

        result = await cancel_batch("user-1", "batch-1", session_factory=session_factory)

        assert result.cancelled_count == 2
        for key in ("due", "later"):
            stored = await _stored(session_factory, items[key].id)
            assert stored.status == "skipped"
            assert stored.completed_at is not None
        assert (await _stored(session_factory, items["sent"].id)).status == "sent"
        assert (await _stored(session_factory, items["processing"].id)).status == "processing"

        status = await batch_status("user-1", "batch-1", session_factory=session_factory)
        assert status.batch.skipped_count == 2
        assert status.batch.next_scheduled is None

        again = await cancel_batch("user-1", "batch-1", session_factory=session_factory)
        assert again.cancelled_count == 0

    @pytest.mark.asyncio
    async def test_skipped_items_are_never_claimed(self, session_factory):
        await _seed_user_and_infringement(session_factory)
        await self._seed_batch(session_factory)
        await cancel_batch("user-1", "batch-1", session_factory=session_factory)
        sender = _ok_sender()

        result = await process_queue(session_factory, send_delay_ms=0, sender=sender,
                                     now=utcnow() + timedelta(hours=1))

        # Only the untouched item from the other batch goes out
        assert result.processed == 1
        sender.assert_awaited_once()


def test_signature_block():
    signed_at = utcnow()
    body = send_queue.sign_notice_body("Body", "Jordan Reyes", signed_at)
    assert body.endswith(f"Electronic Signature: /Jordan Reyes/\nSigned at: {signed_at.isoformat()}")
