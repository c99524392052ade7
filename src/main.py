# src/main.py
"""
Google Cloud Function entry point for the DMCA send queue.

Cloud Scheduler calls this function every minute with the shared
``X-Cron-Secret`` header. Each invocation runs one queue cycle and returns the
cycle's ProcessResult as JSON.
"""

import asyncio
import json
import os
import secrets

import functions_framework
from flask import Request, Response

from src.db import dispose_engine
from src.logger import get_logger, info, warning, exception
from src.send_queue import process_queue
from takedown_core.models import ProcessResult

# Initialize logger
logger = get_logger(__name__)


def _json_response(payload: dict, status: int) -> Response:
    return Response(response=json.dumps(payload), status=status, mimetype="application/json")


def _authorized(request: Request) -> bool:
    expected = os.environ.get("CRON_SECRET")
    provided = request.headers.get("X-Cron-Secret")
    return bool(expected and provided and secrets.compare_digest(provided, expected))


async def run_queue_cycle() -> ProcessResult:
    """Run one cycle and release the engine; each invocation gets a fresh event loop."""
    try:
        return await process_queue()
    finally:
        await dispose_engine()


# --- Main Cloud Function Handler ---

@functions_framework.http
def handle_request(request: Request) -> Response:
    """
    Cloud Function entry point that runs one send-queue cycle.
    """
    if not _authorized(request):
        warning("Rejected queue trigger", path=request.path, method=request.method)
        return _json_response({"error": "Unauthorized"}, 401)

    info("Queue trigger received", method=request.method)
    try:
        result = asyncio.run(run_queue_cycle())
    except Exception as e:
        exception("Queue processing failed", exc=e)
        return _json_response({"error": f"Queue processing failed: {str(e)}"}, 500)

    return _json_response(result.model_dump(mode="json"), 200)


if __name__ == "__main__":
    # For local development
    import uvicorn
    from api.main import app
    port = int(os.environ.get("PORT", 8080))
    uvicorn.run(app, host="0.0.0.0", port=port)
