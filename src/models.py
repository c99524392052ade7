# src/models.py
"""
SQLAlchemy ORM models for the takedown pipeline's tables.

Pydantic models live in takedown_core/models.py; these classes only describe
how rows are stored. JSON columns hold the free-form blobs (evidence,
infrastructure, metadata) written by other parts of the system.
"""

import uuid
from datetime import datetime, timezone

import sqlalchemy
from sqlalchemy import JSON, Boolean, Column, Index, Integer, String, Text, TIMESTAMP, VARCHAR
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProfileOrm(Base):
    """
    SQLAlchemy ORM model representing the 'profiles' table.

    One row per user account; supplies default DMCA contact details and the
    reply-to address used when notices are emailed.
    """
    __tablename__ = 'profiles'

    id: Column[str] = Column(String(36), primary_key=True, default=new_id)
    email: Column[str] = Column(String, nullable=True)
    full_name: Column[str] = Column(String, nullable=True)
    company: Column[str] = Column(String, nullable=True)
    phone: Column[str] = Column(String, nullable=True)
    address: Column[str] = Column(Text, nullable=True)
    dmca_reply_email: Column[str] = Column(String, nullable=True)
    is_copyright_owner: Column[bool] = Column(Boolean, nullable=False, default=True)
    relationship_to_owner: Column[str] = Column(String, nullable=True)
    created_at: Column[TIMESTAMP] = Column(TIMESTAMP(timezone=True), default=utcnow, server_default=sqlalchemy.func.now())

    def __repr__(self) -> str:
        return f"<ProfileOrm(id={self.id}, email='{self.email}')>"


class InfringementOrm(Base):
    """SQLAlchemy ORM model representing the 'infringements' table."""
    __tablename__ = 'infringements'

    id: Column[str] = Column(String(36), primary_key=True, default=new_id)
    user_id: Column[str] = Column(String(36), nullable=False, index=True)
    product_id: Column[str] = Column(String(36), nullable=True, index=True)
    source_url: Column[str] = Column(Text, nullable=False)
    platform: Column[str] = Column(VARCHAR(50), nullable=True)
    infringement_type: Column[str] = Column(VARCHAR(50), nullable=True)
    evidence: Column[dict] = Column(JSON, nullable=True)
    infrastructure: Column[dict] = Column(JSON, nullable=True)
    whois_domain: Column[str] = Column(String, nullable=True)
    whois_registrant_org: Column[str] = Column(String, nullable=True)
    whois_registrar_name: Column[str] = Column(String, nullable=True)
    whois_registrar_abuse_email: Column[str] = Column(String, nullable=True)
    severity_score: Column[int] = Column(Integer, nullable=False, default=0)
    status: Column[str] = Column(VARCHAR(30), nullable=False, default='pending_verification', index=True)
    first_seen_at: Column[TIMESTAMP] = Column(TIMESTAMP(timezone=True), nullable=True)
    last_seen_at: Column[TIMESTAMP] = Column(TIMESTAMP(timezone=True), nullable=True)
    seen_count: Column[int] = Column(Integer, nullable=False, default=1)
    created_at: Column[TIMESTAMP] = Column(TIMESTAMP(timezone=True), default=utcnow, server_default=sqlalchemy.func.now())
    updated_at: Column[TIMESTAMP] = Column(TIMESTAMP(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<InfringementOrm(id={self.id}, status='{self.status}', source_url='{self.source_url}')>"


class QueueItemOrm(Base):
    """
    SQLAlchemy ORM model representing the 'dmca_send_queue' table.

    Rows move pending -> processing -> sent | pending (rescheduled) | failed.
    Only the queue processor mutates them after insertion.
    """
    __tablename__ = 'dmca_send_queue'

    id: Column[str] = Column(String(36), primary_key=True, default=new_id)
    user_id: Column[str] = Column(String(36), nullable=False, index=True)
    infringement_id: Column[str] = Column(String(36), nullable=True)
    batch_id: Column[str] = Column(String(36), nullable=True, index=True)
    recipient_email: Column[str] = Column(String, nullable=True)
    recipient_name: Column[str] = Column(String, nullable=True)
    provider_name: Column[str] = Column(String, nullable=False, default='')
    target_type: Column[str] = Column(VARCHAR(20), nullable=True)
    delivery_method: Column[str] = Column(VARCHAR(20), nullable=False, default='email')
    form_url: Column[str] = Column(Text, nullable=True)
    notice_subject: Column[str] = Column(Text, nullable=False)
    notice_body: Column[str] = Column(Text, nullable=False)
    cc_emails: Column[list] = Column(JSON, nullable=False, default=list)
    status: Column[str] = Column(VARCHAR(20), nullable=False, default='pending')
    priority: Column[int] = Column(Integer, nullable=False, default=0)
    attempt_count: Column[int] = Column(Integer, nullable=False, default=0)
    max_attempts: Column[int] = Column(Integer, nullable=False, default=3)
    scheduled_for: Column[TIMESTAMP] = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
    processing_started_at: Column[TIMESTAMP] = Column(TIMESTAMP(timezone=True), nullable=True)
    completed_at: Column[TIMESTAMP] = Column(TIMESTAMP(timezone=True), nullable=True)
    error_message: Column[str] = Column(Text, nullable=True)
    takedown_id: Column[str] = Column(String(36), nullable=True)
    message_id: Column[str] = Column(String, nullable=True)
    created_at: Column[TIMESTAMP] = Column(TIMESTAMP(timezone=True), default=utcnow, server_default=sqlalchemy.func.now())

    __table_args__ = (
        Index('idx_dmca_send_queue_claim', 'status', 'priority', 'scheduled_for'),
    )

    def __repr__(self) -> str:
        return f"<QueueItemOrm(id={self.id}, status='{self.status}', attempts={self.attempt_count}/{self.max_attempts})>"


class TakedownOrm(Base):
    """SQLAlchemy ORM model representing the 'takedowns' table: one row per notice actually sent."""
    __tablename__ = 'takedowns'

    id: Column[str] = Column(String(36), primary_key=True, default=new_id)
    infringement_id: Column[str] = Column(String(36), nullable=True, index=True)
    user_id: Column[str] = Column(String(36), nullable=False, index=True)
    type: Column[str] = Column(VARCHAR(20), nullable=False, default='dmca')
    status: Column[str] = Column(VARCHAR(20), nullable=False, default='sent')
    recipient_email: Column[str] = Column(String, nullable=True)
    cc_emails: Column[list] = Column(JSON, nullable=False, default=list)
    notice_content: Column[str] = Column(Text, nullable=False)
    infringing_url: Column[str] = Column(Text, nullable=False, default='')
    submitted_at: Column[TIMESTAMP] = Column(TIMESTAMP(timezone=True), nullable=True)
    sent_at: Column[TIMESTAMP] = Column(TIMESTAMP(timezone=True), nullable=True)
    resolved_at: Column[TIMESTAMP] = Column(TIMESTAMP(timezone=True), nullable=True)
    created_at: Column[TIMESTAMP] = Column(TIMESTAMP(timezone=True), default=utcnow, server_default=sqlalchemy.func.now())

    def __repr__(self) -> str:
        return f"<TakedownOrm(id={self.id}, status='{self.status}', recipient='{self.recipient_email}')>"


class CommunicationOrm(Base):
    """SQLAlchemy ORM model representing the 'communications' table (outbound/inbound message log)."""
    __tablename__ = 'communications'

    id: Column[str] = Column(String(36), primary_key=True, default=new_id)
    user_id: Column[str] = Column(String(36), nullable=False, index=True)
    infringement_id: Column[str] = Column(String(36), nullable=True)
    takedown_id: Column[str] = Column(String(36), nullable=True, index=True)
    direction: Column[str] = Column(VARCHAR(10), nullable=False, default='outbound')
    channel: Column[str] = Column(VARCHAR(20), nullable=False, default='email')
    from_email: Column[str] = Column(String, nullable=True)
    to_email: Column[str] = Column(String, nullable=True)
    reply_to_email: Column[str] = Column(String, nullable=True)
    subject: Column[str] = Column(Text, nullable=True)
    body_preview: Column[str] = Column(VARCHAR(500), nullable=True)
    status: Column[str] = Column(VARCHAR(20), nullable=False, default='sent')
    external_message_id: Column[str] = Column(String, nullable=True)
    provider_name: Column[str] = Column(String, nullable=True)
    metadata_: Column[dict] = Column("metadata", JSON, nullable=True)
    sent_at: Column[TIMESTAMP] = Column(TIMESTAMP(timezone=True), nullable=True)
    created_at: Column[TIMESTAMP] = Column(TIMESTAMP(timezone=True), default=utcnow, server_default=sqlalchemy.func.now())

    def __repr__(self) -> str:
        return f"<CommunicationOrm(id={self.id}, channel='{self.channel}', to='{self.to_email}')>"
