# src/db.py
"""
Database connection management and data access for the takedown pipeline.

This module provides a reusable async SQLAlchemy engine configured to connect
to the Supabase Postgres instance, plus the row-level operations the pipeline
needs: point lookups, inserts, the atomic send-queue claim, and the
status-guarded infringement update.

Required Environment Variables:
    SUPABASE_URL: The Supabase project URL.
    SUPABASE_SERVICE_KEY: The Supabase service role key (used as the DB password).

Optional:
    DATABASE_URL: Explicit SQLAlchemy async URL; overrides the Supabase derivation.

Usage:
    from src.db import get_async_session, claim_pending_items

    SessionLocal = await get_async_session()
    async with SessionLocal() as session:
        items = await claim_pending_items(session, limit=5)
        await session.commit()
"""

import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import sqlalchemy
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.exc import OperationalError

from src.logger import get_logger, exception
from src.models import (
    Base,
    CommunicationOrm,
    InfringementOrm,
    ProfileOrm,
    QueueItemOrm,
    TakedownOrm,
    utcnow,
)
from takedown_core.models import Infringement, QueueItem, Takedown, UserProfile

logger = get_logger(__name__)

# Load environment variables from .env file for local development.
# In Cloud Functions, set these variables in the runtime environment settings.
try:
    from dotenv import load_dotenv

    load_dotenv()
except ImportError:
    logger.info("dotenv not installed, skipping .env file loading")


# Module-level variables to store instances for reuse
# within the same Cloud Function instance
_async_engine: Optional[AsyncEngine] = None
_async_session_local: Optional[async_sessionmaker[AsyncSession]] = None

BODY_PREVIEW_LENGTH = 500


def get_database_url() -> str:
    """
    Resolve the async database URL from the environment.

    Raises:
        ValueError: If neither DATABASE_URL nor the Supabase variables are set.
    """
    explicit = os.getenv("DATABASE_URL")
    if explicit:
        return explicit

    supabase_url: Optional[str] = os.getenv("SUPABASE_URL")
    db_password: Optional[str] = os.getenv("SUPABASE_SERVICE_KEY")
    db_host: Optional[str] = None

    if supabase_url:
        try:
            host_part = supabase_url.split("//")[1].rstrip("/")
            db_host = f"db.{host_part}"
        except IndexError:
            error_msg = "Invalid SUPABASE_URL format."
            logger.error(error_msg)
            raise ValueError(error_msg)

    if not all([db_host, db_password]):
        error_msg = "Missing required environment variables for DB engine: SUPABASE_URL, SUPABASE_SERVICE_KEY"
        logger.error(error_msg)
        raise ValueError(error_msg)

    return f"postgresql+asyncpg://postgres:{db_password}@{db_host}:5432/postgres"


async def get_async_engine() -> AsyncEngine:
    """
    Initializes and returns an asynchronous SQLAlchemy Engine.

    Ensures the engine is created only once per Cloud Function instance.

    Raises:
        ValueError: If required environment variables are not set.
        OperationalError: If the database connection fails.
    """
    global _async_engine

    if _async_engine:
        return _async_engine

    db_url = get_database_url()
    try:
        logger.info("Initializing async database engine")
        if db_url.startswith("sqlite"):
            async_engine = create_async_engine(db_url)
        else:
            async_engine = create_async_engine(
                db_url,
                pool_size=5,
                max_overflow=2,
                pool_timeout=30,
                pool_recycle=1800,
            )

        async with async_engine.connect() as connection:
            await connection.execute(sqlalchemy.text("SELECT 1"))

        _async_engine = async_engine
        logger.info("Async database engine created successfully.")
        return _async_engine
    except OperationalError as e:
        exception("Database connection failed", exc=e)
        raise
    except Exception as e:
        exception("Failed to create async database engine", exc=e)
        raise OperationalError(f"Failed to create async database engine: {e}", params={}, orig=e) from e


async def get_async_session() -> async_sessionmaker[AsyncSession]:
    """
    Returns an asynchronous SQLAlchemy sessionmaker bound to the async engine.

    Creates the sessionmaker only once.
    """
    global _async_session_local
    if _async_session_local is None:
        engine = await get_async_engine()
        _async_session_local = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        logger.info("Async session maker created.")
    return _async_session_local


async def initialize_database(engine: Optional[AsyncEngine] = None) -> None:
    """Create any missing tables."""
    engine = engine or await get_async_engine()
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")


# --- Row conversion helpers ---

def to_aware(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps coming back from the store as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _row_values(row: Any) -> Dict[str, Any]:
    if isinstance(row, Base):
        values = {attr.key: getattr(row, attr.key) for attr in sqlalchemy.inspect(row).mapper.column_attrs}
    else:
        values = dict(row)
    return {k: to_aware(v) if isinstance(v, datetime) else v for k, v in values.items()}


# --- Lookups ---

async def get_profile(session: AsyncSession, user_id: str) -> Optional[UserProfile]:
    row = await session.get(ProfileOrm, user_id)
    return UserProfile.model_validate(_row_values(row)) if row else None


async def get_infringement(session: AsyncSession, infringement_id: str) -> Optional[Infringement]:
    row = await session.get(InfringementOrm, infringement_id)
    return Infringement.model_validate(_row_values(row)) if row else None


async def list_queue_items(session: AsyncSession, user_id: str, limit: int = 50) -> List[QueueItem]:
    """Most recent queue items for a user, newest first."""
    stmt = (
        select(QueueItemOrm)
        .where(QueueItemOrm.user_id == user_id)
        .order_by(QueueItemOrm.created_at.desc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return [QueueItem.model_validate(_row_values(row)) for row in result.scalars().all()]


async def list_batch_items(session: AsyncSession, user_id: str, batch_id: str) -> List[QueueItem]:
    """Every item of one of the user's batches, in send order."""
    stmt = (
        select(QueueItemOrm)
        .where(QueueItemOrm.user_id == user_id, QueueItemOrm.batch_id == batch_id)
        .order_by(QueueItemOrm.scheduled_for, QueueItemOrm.created_at)
    )
    result = await session.execute(stmt)
    return [QueueItem.model_validate(_row_values(row)) for row in result.scalars().all()]


async def last_batch_submitted_at(session: AsyncSession, user_id: str) -> Optional[datetime]:
    """Creation time of the user's most recent bulk-submitted queue item."""
    stmt = select(sqlalchemy.func.max(QueueItemOrm.created_at)).where(
        QueueItemOrm.user_id == user_id,
        QueueItemOrm.batch_id.is_not(None),
    )
    result = await session.execute(stmt)
    return to_aware(result.scalar_one_or_none())


# --- Writes ---

async def insert_queue_items(session: AsyncSession, items: List[QueueItem]) -> List[QueueItem]:
    """Insert pending queue items. No commit; the caller owns the transaction."""
    rows = []
    for item in items:
        row = QueueItemOrm(**item.model_dump(exclude_none=True, exclude={"created_at"}))
        session.add(row)
        rows.append(row)
    await session.flush()
    return [QueueItem.model_validate(_row_values(row)) for row in rows]


async def claim_pending_items(session: AsyncSession, limit: int, now: Optional[datetime] = None) -> List[QueueItem]:
    """
    Atomically claim up to ``limit`` due queue items.

    A single UPDATE ... WHERE status = 'pending' ... RETURNING flips eligible
    rows to ``processing``; the eligible set is selected with
    FOR UPDATE SKIP LOCKED where the backend supports it. Two concurrent
    callers can therefore never both claim the same row.

    Returns:
        Claimed items ordered by priority, then schedule time.
    """
    now = now or utcnow()
    table = QueueItemOrm.__table__
    eligible = (
        select(table.c.id)
        .where(
            table.c.status == 'pending',
            table.c.scheduled_for <= now,
            table.c.attempt_count < table.c.max_attempts,
        )
        .order_by(table.c.priority, table.c.scheduled_for)
        .limit(limit)
        .with_for_update(skip_locked=True)
    )
    stmt = (
        update(table)
        .where(table.c.id.in_(eligible), table.c.status == 'pending')
        .values(status='processing', processing_started_at=now)
        .returning(*table.c)
    )
    result = await session.execute(stmt)
    claimed = [QueueItem.model_validate(_row_values(row)) for row in result.mappings().all()]
    claimed.sort(key=lambda item: (item.priority, item.scheduled_for or now))
    return claimed


async def update_queue_item(session: AsyncSession, item_id: str, **values: Any) -> None:
    await session.execute(update(QueueItemOrm).where(QueueItemOrm.id == item_id).values(**values))


async def skip_pending_batch_items(
    session: AsyncSession,
    user_id: str,
    batch_id: str,
    now: Optional[datetime] = None,
) -> int:
    """
    Mark a batch's still-pending items ``skipped``.

    Items already claimed, sent or failed are left untouched.

    Returns:
        Number of items skipped.
    """
    stmt = (
        update(QueueItemOrm)
        .where(
            QueueItemOrm.user_id == user_id,
            QueueItemOrm.batch_id == batch_id,
            QueueItemOrm.status == 'pending',
        )
        .values(status='skipped', completed_at=now or utcnow())
    )
    result = await session.execute(stmt)
    return result.rowcount


async def insert_takedown(session: AsyncSession, takedown: Takedown) -> Takedown:
    row = TakedownOrm(**takedown.model_dump(exclude_none=True, exclude={"id"}))
    session.add(row)
    await session.flush()
    return Takedown.model_validate(_row_values(row))


async def advance_infringement_status(
    session: AsyncSession,
    infringement_id: str,
    to_status: str = 'takedown_sent',
    from_status: str = 'active',
) -> bool:
    """
    Move an infringement to ``to_status`` only if it is currently ``from_status``.

    Returns:
        True if a row was updated.
    """
    stmt = (
        update(InfringementOrm)
        .where(InfringementOrm.id == infringement_id, InfringementOrm.status == from_status)
        .values(status=to_status, updated_at=utcnow())
    )
    result = await session.execute(stmt)
    return result.rowcount > 0


async def log_communication(
    session_factory: async_sessionmaker[AsyncSession],
    user_id: str,
    to_email: Optional[str],
    subject: Optional[str],
    body: Optional[str],
    infringement_id: Optional[str] = None,
    takedown_id: Optional[str] = None,
    channel: str = 'email',
    from_email: Optional[str] = None,
    reply_to_email: Optional[str] = None,
    status: str = 'sent',
    external_message_id: Optional[str] = None,
    provider_name: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Optional[str]:
    """
    Record an outbound communication in its own transaction.

    Never raises: a logging failure must not undo or abort the send it describes.

    Returns:
        The new communication id, or None if the write failed.
    """
    try:
        async with session_factory() as session:
            row = CommunicationOrm(
                user_id=user_id,
                infringement_id=infringement_id,
                takedown_id=takedown_id,
                direction='outbound',
                channel=channel,
                from_email=from_email,
                to_email=to_email,
                reply_to_email=reply_to_email,
                subject=subject,
                body_preview=(body or '')[:BODY_PREVIEW_LENGTH],
                status=status,
                external_message_id=external_message_id,
                provider_name=provider_name,
                metadata_=metadata,
                sent_at=utcnow() if status == 'sent' else None,
            )
            session.add(row)
            await session.commit()
            return row.id
    except Exception as e:
        exception("Failed to log communication", exc=e, user_id=user_id, takedown_id=takedown_id)
        return None


async def dispose_engine() -> None:
    """Close pooled connections and forget the cached engine and sessionmaker."""
    global _async_engine, _async_session_local
    if _async_engine is not None:
        await _async_engine.dispose()
        logger.info("Async database engine disposed.")
    _async_engine = None
    _async_session_local = None
