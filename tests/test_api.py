"""
HTTP endpoint tests for the takedown API.

Database-backed routes run against a throwaway SQLite file wired in through
FastAPI dependency overrides; the queue processor and the model call are
patched out.
"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient
from google.auth.exceptions import DefaultCredentialsError
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

from api.main import app, get_session_factory
from src.models import Base, InfringementOrm
from takedown_core.models import EvidenceAnalysisResult, ProcessResult


@pytest.fixture
def client():
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def database(tmp_path):
    """Seeded SQLite file plus a dependency override pointing the API at it."""
    path = tmp_path / "api.db"
    sync_engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(sync_engine)
    with Session(sync_engine) as session:
        session.add(InfringementOrm(
            id="inf-1", user_id="user-1", source_url="https://t.me/somechannel/4512",
            platform="telegram", status="active",
        ))
        session.add(InfringementOrm(
            id="inf-other", user_id="user-2", source_url="https://t.me/another/1",
            platform="telegram", status="active",
        ))
        session.commit()
    sync_engine.dispose()

    # NullPool: TestClient runs the app on its own event loop
    engine = create_async_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    app.dependency_overrides[get_session_factory] = lambda: factory
    yield factory
    app.dependency_overrides.clear()


def _notice_request(contact, product, infringement, **extra) -> dict:
    body = {
        "infringement": infringement.model_dump(mode="json"),
        "product": product.model_dump(mode="json"),
        "contact": contact.model_dump(mode="json") if contact else None,
    }
    body.update(extra)
    return body


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


class TestNoticeRoutes:
    """Tests for notice generation and quality endpoints."""

    def test_generate_notice(self, client, contact, product, infringement):
        response = client.post("/notices/generate", json=_notice_request(contact, product, infringement))

        assert response.status_code == 200
        data = response.json()
        assert data["profile"] == "leaked_download"
        assert data["target"]["provider"]["name"] == "Telegram"
        assert data["delivery_method"] == "email"
        assert data["notice"]["recipient_email"] == "dmca@telegram.org"
        assert [t["type"] for t in data["targets"]] == ["platform", "search_engine"]
        assert data["quality"]["passed"] is True

    def test_generate_uses_product_contact_when_none_given(self, client, contact, product, infringement):
        product = product.model_copy(update={"dmca_contact": contact})
        response = client.post("/notices/generate", json=_notice_request(None, product, infringement))
        assert response.status_code == 200
        assert "Jordan Reyes" in response.json()["notice"]["body"]

    def test_generate_without_any_contact(self, client, product, infringement):
        response = client.post("/notices/generate", json=_notice_request(None, product, infringement))
        assert response.status_code == 422

    def test_quality_endpoint(self, client):
        response = client.post("/notices/quality", json={"contact_name": "Jordan Reyes"})
        assert response.status_code == 200
        data = response.json()
        assert data["passed"] is False
        assert data["strength"] == "weak"
        assert "NO_CONTACT_EMAIL" in {e["code"] for e in data["errors"]}

    def test_generate_bulk(self, client, contact, product, infringement):
        item = _notice_request(contact, product, infringement)
        second = dict(item, infringement=dict(
            item["infringement"], id="inf-2", source_url="https://pirate.example/x", platform=None,
        ))
        response = client.post("/notices/generate-bulk", json={"items": [item, second]})

        assert response.status_code == 200
        data = response.json()
        assert [r["infringement_id"] for r in data["results"]] == ["inf-1", "inf-2"]
        assert data["summary"]["total_email"] == 1
        assert data["summary"]["total_web_form"] == 1

    def test_generate_bulk_rejects_empty_batch(self, client):
        response = client.post("/notices/generate-bulk", json={"items": []})
        assert response.status_code == 422


class TestQueueRoutes:
    """Tests for the send-queue endpoints."""

    def test_enqueue_and_status(self, client, database, contact, product, infringement):
        response = client.post(
            "/queue/enqueue",
            json=_notice_request(contact, product, infringement, user_id="user-1", priority=1),
        )

        assert response.status_code == 200
        queued = response.json()["queue_item"]
        assert queued["status"] == "pending"
        assert queued["recipient_email"] == "dmca@telegram.org"
        assert queued["infringement_id"] == "inf-1"
        assert queued["target_type"] == "platform"

        status = client.get("/queue/status/user-1")
        assert status.status_code == 200
        assert [i["id"] for i in status.json()] == [queued["id"]]

    def test_enqueue_unknown_infringement(self, client, database, contact, product, infringement):
        unknown = infringement.model_copy(update={"id": "missing"})
        response = client.post("/queue/enqueue", json=_notice_request(contact, product, unknown, user_id="user-1"))
        assert response.status_code == 404

    def test_enqueue_someone_elses_infringement(self, client, database, contact, product, infringement):
        theirs = infringement.model_copy(update={"id": "inf-other"})
        response = client.post("/queue/enqueue", json=_notice_request(contact, product, theirs, user_id="user-1"))
        assert response.status_code == 403

    def test_enqueue_blocked_by_quality_check(self, client, database, contact, product, infringement):
        no_address = contact.model_copy(update={"address": ""})
        response = client.post(
            "/queue/enqueue",
            json=_notice_request(no_address, product, infringement, user_id="user-1"),
        )

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert [e["code"] for e in detail["errors"]] == ["NO_CONTACT_ADDRESS"]
        assert client.get("/queue/status/user-1").json() == []

    def test_submit_bulk_validation_error(self, client, database):
        response = client.post("/queue/submit-bulk", json={"user_id": "user-1", "items": []})
        assert response.status_code == 422
        assert response.json()["detail"] == "No notices to submit"

    def test_submit_bulk_rate_limited(self, client, database):
        body = {
            "user_id": "user-1",
            "items": [{
                "infringement_id": "inf-1",
                "recipient_email": "dmca@telegram.org",
                "provider_name": "Telegram",
                "target_type": "platform",
                "delivery_method": "email",
                "notice_subject": "DMCA Takedown Notice",
                "notice_body": "Body",
            }],
            "signature_name": "Jordan Reyes",
            "perjury_confirmed": True,
            "liability_confirmed": True,
        }
        first = client.post("/queue/submit-bulk", json=body)
        assert first.status_code == 200
        assert first.json()["email_count"] == 1
        assert first.json()["estimated_completion_minutes"] == 0

        second = client.post("/queue/submit-bulk", json=body)
        assert second.status_code == 429

    def test_batch_status_and_cancel(self, client, database):
        body = {
            "user_id": "user-1",
            "items": [
                {
                    "infringement_id": f"inf-{n}",
                    "recipient_email": "dmca@telegram.org",
                    "provider_name": "Telegram",
                    "target_type": "platform",
                    "delivery_method": "email",
                    "notice_subject": f"Notice {n}",
                    "notice_body": "Body",
                }
                for n in range(3)
            ],
            "signature_name": "Jordan Reyes",
            "perjury_confirmed": True,
            "liability_confirmed": True,
        }
        batch_id = client.post("/queue/submit-bulk", json=body).json()["batch_id"]

        status = client.get(f"/queue/batch/{batch_id}", params={"user_id": "user-1"})
        assert status.status_code == 200
        assert status.json()["batch"]["pending_count"] == 3
        assert [i["notice_subject"] for i in status.json()["items"]] == ["Notice 0", "Notice 1", "Notice 2"]

        assert client.get(f"/queue/batch/{batch_id}", params={"user_id": "user-2"}).status_code == 404
        assert client.delete(f"/queue/batch/{batch_id}", params={"user_id": "user-2"}).status_code == 404

        cancelled = client.delete(f"/queue/batch/{batch_id}", params={"user_id": "user-1"})
        assert cancelled.status_code == 200
        assert cancelled.json() == {"batch_id": batch_id, "cancelled_count": 3}
        after = client.get(f"/queue/batch/{batch_id}", params={"user_id": "user-1"}).json()
        assert {i["status"] for i in after["items"]} == {"skipped"}


class TestProcessRoute:
    """Tests for the authenticated queue trigger."""

    @pytest.fixture(autouse=True)
    def cron_secret(self, monkeypatch):
        monkeypatch.setenv("CRON_SECRET", "s3cret")
        app.dependency_overrides[get_session_factory] = lambda: None

    @pytest.mark.parametrize("headers", [{}, {"X-Cron-Secret": "wrong"}])
    def test_rejects_missing_or_wrong_secret(self, client, headers):
        with patch("api.main.send_queue.process_queue", new_callable=AsyncMock) as mock_process:
            response = client.post("/queue/process", headers=headers)

        assert response.status_code == 401
        mock_process.assert_not_called()

    def test_runs_one_cycle(self, client):
        result = ProcessResult(processed=2, sent=1, retried=1, failed=0)
        with patch("api.main.send_queue.process_queue", new_callable=AsyncMock, return_value=result) as mock_process:
            response = client.post("/queue/process", headers={"X-Cron-Secret": "s3cret"})

        assert response.status_code == 200
        assert response.json()["processed"] == 2
        assert response.json()["retried"] == 1
        mock_process.assert_awaited_once()

    def test_processing_error_is_500(self, client):
        with patch("api.main.send_queue.process_queue", new_callable=AsyncMock, side_effect=RuntimeError("db down")):
            response = client.post("/queue/process", headers={"X-Cron-Secret": "s3cret"})
        assert response.status_code == 500


class TestEvidenceRoute:
    """Tests for the evidence analysis endpoint."""

    def test_short_page_gives_null_result(self, client, product):
        response = client.post("/evidence/analyze", json={
            "product": product.model_dump(mode="json"),
            "page_text": "too short",
            "infringement_url": "https://t.me/x",
        })
        assert response.status_code == 200
        assert response.json() == {"result": None}

    def test_analysis_result_is_returned(self, client, product):
        analysis = EvidenceAnalysisResult(summary="Verbatim copy.", strength_score=80, recommended_for_dmca=True)
        with patch("api.main.analyze_evidence", new_callable=AsyncMock, return_value=analysis) as mock_analyze:
            response = client.post("/evidence/analyze", json={
                "product": product.model_dump(mode="json"),
                "page_text": "A long enough page of leaked course material " * 3,
                "infringement_url": "https://t.me/x",
                "platform": "telegram",
            })

        assert response.status_code == 200
        assert response.json()["result"]["strength_score"] == 80
        assert mock_analyze.call_args.kwargs["platform"] == "telegram"

    def test_missing_model_credentials_give_null_result(self, client, product):
        with patch("takedown_core.llm.generate_json", new_callable=AsyncMock,
                   side_effect=DefaultCredentialsError("Your default credentials were not found")):
            response = client.post("/evidence/analyze", json={
                "product": product.model_dump(mode="json"),
                "page_text": "A long enough page of leaked course material " * 3,
                "infringement_url": "https://t.me/x",
            })

        assert response.status_code == 200
        assert response.json() == {"result": None}
