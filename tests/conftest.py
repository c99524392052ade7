"""Shared fixtures for the takedown pipeline tests."""

from datetime import datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.db import initialize_database
from takedown_core import models
from takedown_core.notice import build_notice
from takedown_core.providers import PROVIDERS


@pytest.fixture
def contact() -> models.DMCAContact:
    return models.DMCAContact(
        full_name="Jordan Reyes",
        company="Example Trading LLC",
        email="jordan@example-trading.com",
        phone="+1 555 0100",
        address="100 Market Street, Austin, TX 78701",
    )


@pytest.fixture
def fingerprint() -> models.ProductFingerprint:
    return models.ProductFingerprint(
        brand_identifiers=["SweepMaster"],
        unique_phrases=["exact order-block entries we use live"],
        keywords=["liquidity", "orderflow", "sweep", "trading"],
        copyrighted_terms=["SweepMaster Method™"],
    )


@pytest.fixture
def product(fingerprint) -> models.Product:
    return models.Product(
        id="prod-1",
        user_id="user-1",
        name="Liquidity Sweep Blueprint",
        type="course",
        price=497,
        url="https://example-trading.com/blueprint",
        description="A twelve-module video course on institutional order-flow trading.",
        copyright_info=models.CopyrightInfo(registration_number="TX 9-123-456", year=2024),
        ai_extracted_data=fingerprint,
    )


@pytest.fixture
def infringement() -> models.Infringement:
    return models.Infringement(
        id="inf-1",
        user_id="user-1",
        product_id="prod-1",
        source_url="https://t.me/somechannel/4512",
        platform="telegram",
        severity_score=82,
        status="active",
        first_seen_at=datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc),
        evidence=models.InfringementEvidence(
            matched_excerpts=["The Liquidity Sweep Blueprint shows the exact order-block entries we use live"],
            page_title="FREE Liquidity Sweep Blueprint (full course)",
        ),
    )


@pytest.fixture
def comparison_items() -> list:
    return [
        models.ComparisonItem(original="Original phrase one", infringing="Copied phrase one"),
        models.ComparisonItem(original="Original phrase two", infringing="Copied phrase two"),
        models.ComparisonItem(original="Original phrase three", infringing="Copied phrase three"),
    ]


@pytest.fixture
def evidence_packet() -> models.EvidencePacket:
    return models.EvidencePacket(
        content_hash="9f86d081884c7d659a2feaa0c55ad015a3bf4f1b2b0b822cd15d6c15b0f00a08",
        timestamp_proof='{"ots": "AAECAwQ="}',
        timestamp_status="confirmed",
        wayback_url="https://web.archive.org/web/20260314000000/https://t.me/somechannel/4512",
        captured_at=datetime(2026, 3, 14, 15, 5, tzinfo=timezone.utc),
        page_text_length=12400,
        page_links_count=37,
        html_storage_path="evidence/inf-1/page.html",
    )


@pytest.fixture
def built_notice(contact, product, infringement, comparison_items) -> models.BuiltNotice:
    return build_notice(
        contact=contact,
        product=product,
        infringement=infringement,
        profile="leaked_download",
        provider=PROVIDERS["telegram"],
        comparison_items=comparison_items,
    )


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Session maker over a fresh SQLite database with every table created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'takedown.db'}")
    await initialize_database(engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()
