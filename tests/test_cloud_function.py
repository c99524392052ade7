"""Tests for the Cloud Function queue trigger."""

import json
from unittest.mock import AsyncMock, patch

import pytest
from flask import Flask, request

from src.main import handle_request
from takedown_core.models import ProcessResult

flask_app = Flask(__name__)


@pytest.fixture(autouse=True)
def cron_secret(monkeypatch):
    monkeypatch.setenv("CRON_SECRET", "s3cret")


def _call(headers=None):
    with flask_app.test_request_context("/", method="POST", headers=headers or {}):
        return handle_request(request)


def test_rejects_unauthenticated_trigger():
    with patch("src.main.process_queue", new_callable=AsyncMock) as mock_process:
        response = _call({"X-Cron-Secret": "nope"})

    assert response.status_code == 401
    assert json.loads(response.get_data()) == {"error": "Unauthorized"}
    mock_process.assert_not_called()


def test_runs_one_cycle_and_disposes_engine():
    result = ProcessResult(processed=3, sent=2, retried=0, failed=1)
    with patch("src.main.process_queue", new_callable=AsyncMock, return_value=result), \
            patch("src.main.dispose_engine", new_callable=AsyncMock) as mock_dispose:
        response = _call({"X-Cron-Secret": "s3cret"})

    assert response.status_code == 200
    body = json.loads(response.get_data())
    assert body["processed"] == 3
    assert body["failed"] == 1
    assert body["items"] == []
    mock_dispose.assert_awaited_once()


def test_processing_failure_is_500_and_still_disposes():
    with patch("src.main.process_queue", new_callable=AsyncMock, side_effect=RuntimeError("db down")), \
            patch("src.main.dispose_engine", new_callable=AsyncMock) as mock_dispose:
        response = _call({"X-Cron-Secret": "s3cret"})

    assert response.status_code == 500
    assert "db down" in json.loads(response.get_data())["error"]
    mock_dispose.assert_awaited_once()
