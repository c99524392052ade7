"""
FastAPI application for DMCA notice generation and delivery.

This module provides HTTP endpoints for building and quality-checking notices,
bulk generation, the email send queue, and AI evidence analysis.
"""

import os
import secrets
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src import send_queue
from src.db import get_async_session, get_infringement
from src.logger import exception, info, warning
from takedown_core import models
from takedown_core.bulk import generate_bulk, generate_for_infringement
from takedown_core.evidence import analyze_evidence
from takedown_core.quality import build_quality_input, check_notice_quality

# Initialize FastAPI app
app = FastAPI(
    title="ProductGuard Takedown API",
    description="API for generating, checking and sending DMCA takedown notices",
    version="1.0.0"
)


async def get_session_factory() -> async_sessionmaker[AsyncSession]:
    try:
        return await get_async_session()
    except Exception as e:
        exception("Database unavailable", exc=e)
        raise HTTPException(status_code=500, detail=f"Database unavailable: {str(e)}")


def verify_cron_secret(x_cron_secret: Optional[str] = Header(default=None)) -> None:
    expected = os.environ.get("CRON_SECRET")
    if not expected or not x_cron_secret or not secrets.compare_digest(x_cron_secret, expected):
        warning("Rejected queue trigger with missing or invalid cron secret")
        raise HTTPException(status_code=401, detail="Unauthorized")


def _generate(request: models.NoticeGenerationRequest):
    contact = request.resolved_contact()
    if contact is None:
        raise HTTPException(status_code=422, detail="DMCA contact details are required")

    result = generate_for_infringement(
        models.BulkGenerationInput(
            infringement=request.infringement,
            product=request.product,
            contact=contact,
            evidence_snapshot=request.evidence_snapshot,
        )
    )
    quality = check_notice_quality(
        build_quality_input(
            contact,
            request.product,
            request.infringement,
            result.notice,
            request.evidence_snapshot,
        )
    )
    return result, quality


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.post("/notices/generate", response_model=models.NoticeGenerationResponse)
async def generate_notice(request: models.NoticeGenerationRequest) -> models.NoticeGenerationResponse:
    """
    Build a DMCA notice for one infringement against its recommended target.

    Args:
        request: Infringement, product, optional contact override and evidence snapshot

    Returns:
        NoticeGenerationResponse: Profile, every target, the chosen target, the notice and its quality check
    """
    try:
        result, quality = _generate(request)
    except HTTPException:
        raise
    except Exception as e:
        exception("Error generating notice", exc=e)
        raise HTTPException(status_code=500, detail=f"Error generating notice: {str(e)}")

    return models.NoticeGenerationResponse(
        profile=result.notice.profile,
        targets=result.all_targets,
        target=result.target,
        delivery_method=result.delivery_method,
        notice=result.notice,
        quality=quality,
    )


@app.post("/notices/quality", response_model=models.QualityResult)
async def check_quality(data: models.QualityInput) -> models.QualityResult:
    """Score a notice's completeness and legal strength."""
    return check_notice_quality(data)


@app.post("/notices/generate-bulk", response_model=models.BulkGenerationBatch)
async def generate_notices_bulk(request: models.BulkGenerationRequest) -> models.BulkGenerationBatch:
    """Generate notices for up to 50 infringements and group them by delivery channel."""
    batch = generate_bulk(request.items)
    info(
        "Bulk generation complete",
        generated=len(batch.results),
        failed=len(batch.failures),
    )
    return batch


@app.post("/queue/enqueue", response_model=models.EnqueueResponse)
async def enqueue_notice(
    request: models.EnqueueRequest,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> models.EnqueueResponse:
    """
    Build, quality-gate and queue a notice for email delivery.

    Raises:
        HTTPException: 404 unknown infringement, 403 infringement owned by
            another user, 422 failed quality check or no email channel
    """
    infringement_id = request.infringement.id
    if infringement_id:
        async with session_factory() as session:
            stored = await get_infringement(session, infringement_id)
        if stored is None:
            raise HTTPException(status_code=404, detail="Infringement not found")
        if stored.user_id and stored.user_id != request.user_id:
            raise HTTPException(status_code=403, detail="Infringement belongs to another user")

    result, quality = _generate(request)
    if not quality.passed:
        raise HTTPException(
            status_code=422,
            detail={
                "message": "Notice failed the quality check",
                "errors": [issue.model_dump() for issue in quality.errors],
                "warnings": [issue.model_dump() for issue in quality.warnings],
            },
        )

    try:
        queued = await send_queue.enqueue_notice(
            user_id=request.user_id,
            notice=result.notice,
            provider=result.provider,
            target_type=result.target.type,
            infringement_id=infringement_id,
            cc_emails=request.cc_emails,
            priority=request.priority,
            session_factory=session_factory,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except Exception as e:
        exception("Error enqueueing notice", exc=e, user_id=request.user_id)
        raise HTTPException(status_code=500, detail=f"Error enqueueing notice: {str(e)}")

    return models.EnqueueResponse(queue_item=queued, quality=quality)


@app.post("/queue/submit-bulk", response_model=models.BulkSubmissionResult)
async def submit_bulk(
    request: models.BulkSubmissionRequest,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> models.BulkSubmissionResult:
    """Sign and dispatch a reviewed bulk batch."""
    try:
        return await send_queue.submit_bulk(
            user_id=request.user_id,
            items=request.items,
            signature_name=request.signature_name,
            perjury_confirmed=request.perjury_confirmed,
            liability_confirmed=request.liability_confirmed,
            session_factory=session_factory,
        )
    except send_queue.RateLimitError as e:
        raise HTTPException(status_code=429, detail=str(e))
    except send_queue.BulkSubmissionError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except Exception as e:
        exception("Error submitting bulk batch", exc=e, user_id=request.user_id)
        raise HTTPException(status_code=500, detail=f"Error submitting batch: {str(e)}")


@app.post(
    "/queue/process",
    response_model=models.ProcessResult,
    dependencies=[Depends(verify_cron_secret)],
)
async def process_queue(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> models.ProcessResult:
    """Run one send-queue cycle."""
    try:
        return await send_queue.process_queue(session_factory=session_factory)
    except Exception as e:
        exception("Queue processing failed", exc=e)
        raise HTTPException(status_code=500, detail=f"Queue processing failed: {str(e)}")


@app.get("/queue/status/{user_id}", response_model=List[models.QueueItem])
async def queue_status(
    user_id: str,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> List[models.QueueItem]:
    """Most recent queue items for a user, newest first."""
    return await send_queue.queue_status(user_id, session_factory=session_factory)


@app.get("/queue/batch/{batch_id}", response_model=models.BatchStatus)
async def get_batch(
    batch_id: str,
    user_id: str,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> models.BatchStatus:
    """Status counts and items of one bulk batch, in send order."""
    status = await send_queue.batch_status(user_id, batch_id, session_factory=session_factory)
    if status is None:
        raise HTTPException(status_code=404, detail="Batch not found")
    return status


@app.delete("/queue/batch/{batch_id}", response_model=models.BatchCancelResult)
async def cancel_batch(
    batch_id: str,
    user_id: str,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> models.BatchCancelResult:
    """Cancel the batch items that have not been picked up yet."""
    try:
        result = await send_queue.cancel_batch(user_id, batch_id, session_factory=session_factory)
    except Exception as e:
        exception("Error cancelling batch", exc=e, batch_id=batch_id, user_id=user_id)
        raise HTTPException(status_code=500, detail=f"Error cancelling batch: {str(e)}")
    if result is None:
        raise HTTPException(status_code=404, detail="Batch not found")
    return result


@app.post("/evidence/analyze", response_model=models.EvidenceAnalysisResponse)
async def analyze(request: models.EvidenceAnalysisRequest) -> models.EvidenceAnalysisResponse:
    """
    Run AI evidence analysis on captured page text.

    The result is null when the page is too short or the model call fails.
    """
    result = await analyze_evidence(
        product=request.product,
        page_text=request.page_text,
        infringement_url=request.infringement_url,
        page_title=request.page_title,
        platform=request.platform,
    )
    return models.EvidenceAnalysisResponse(result=result)
