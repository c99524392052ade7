"""
Single source of truth (SSoT) for all data models in the takedown pipeline.

This module defines the core Pydantic models used across the API layer, the
notice pipeline, the send queue, and tests. These models serve as the canonical
schema definitions and should never be redeclared elsewhere in the codebase.
"""

import json
import logging
from datetime import datetime
from typing import Any, Annotated, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)


# --- Closed vocabularies ---

InfringementProfile = Literal[
    "full_reupload",
    "copied_text",
    "copied_images",
    "leaked_download",
    "unauthorized_resale",
    "partial_copy",
]

InfringementStatus = Literal[
    "pending_verification",
    "active",
    "takedown_sent",
    "removed",
    "disputed",
    "false_positive",
    "archived",
]

ProductType = Literal["course", "indicator", "software", "template", "ebook", "other"]

EnforcementTargetType = Literal["platform", "hosting", "registrar", "search_engine"]

DeliveryMethod = Literal["email", "web_form", "manual"]

NoticeStrength = Literal["strong", "standard", "weak"]

QueueStatus = Literal["pending", "processing", "sent", "failed", "skipped"]

MatchType = Literal[
    "exact_reproduction",
    "brand_usage",
    "unique_phrase",
    "content_structure",
    "pricing_copy",
    "keyword_cluster",
]

LegalSignificance = Literal["critical", "strong", "supporting"]

TimestampStatus = Literal["pending", "confirmed", "failed"]

Score = Annotated[int, Field(ge=0, le=100)]


# --- Rights holder and copyrighted work ---

class DMCAContact(BaseModel):
    """Rights-holder identity used for the notice signature block."""
    full_name: str = ""
    company: Optional[str] = None
    email: str = ""
    phone: Optional[str] = None
    address: str = ""
    is_copyright_owner: bool = True
    relationship_to_owner: Optional[str] = None


class UserProfile(BaseModel):
    """Account profile of the submitting user; the default source of DMCA contact details."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    company: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    dmca_reply_email: Optional[str] = None
    is_copyright_owner: bool = True
    relationship_to_owner: Optional[str] = None

    @property
    def sender_name(self) -> str:
        return self.full_name or "ProductGuard User"

    @property
    def reply_to(self) -> Optional[str]:
        return self.dmca_reply_email or self.email

    def to_contact(self) -> DMCAContact:
        return DMCAContact(
            full_name=self.full_name or "",
            company=self.company,
            email=self.email or "",
            phone=self.phone,
            address=self.address or "",
            is_copyright_owner=self.is_copyright_owner,
            relationship_to_owner=self.relationship_to_owner,
        )


class CopyrightInfo(BaseModel):
    registration_number: Optional[str] = None
    year: str | int | None = None
    holder_name: Optional[str] = None


class TrademarkInfo(BaseModel):
    name: Optional[str] = None
    registration_number: Optional[str] = None


class ProductFingerprint(BaseModel):
    """AI-extracted structured fingerprint of a product."""
    brand_identifiers: List[str] = Field(default_factory=list)
    unique_phrases: List[str] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)
    copyrighted_terms: List[str] = Field(default_factory=list)
    product_description: Optional[str] = None

    @property
    def has_unique_markers(self) -> bool:
        return bool(self.unique_phrases or self.brand_identifiers or self.copyrighted_terms)


class Product(BaseModel):
    """The copyrighted work being protected. Never mutated by the pipeline."""
    id: Optional[str] = None
    user_id: Optional[str] = None
    name: str = ""
    type: str = "other"
    price: Optional[float] = None
    url: Optional[str] = None
    description: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    copyright_info: Optional[CopyrightInfo] = None
    trademark_info: Optional[TrademarkInfo] = None
    ai_extracted_data: Optional[ProductFingerprint] = None
    dmca_contact: Optional[DMCAContact] = None


# --- Infringement and evidence ---

class EvidenceMatchRecord(BaseModel):
    """A structured match record stored in an infringement's evidence blob."""
    type: Optional[str] = None
    matched_text: Optional[str] = None
    original_text: Optional[str] = None
    context: Optional[str] = None
    dmca_language: Optional[str] = None
    confidence: Optional[float] = None


class InfringementEvidence(BaseModel):
    """Free-form evidence blob written by the scan engine."""
    model_config = ConfigDict(extra="allow")

    matched_excerpts: List[str] = Field(default_factory=list)
    matches: List[EvidenceMatchRecord] = Field(default_factory=list)
    image_matches: List[str] = Field(default_factory=list)
    url_chain: List[str] = Field(default_factory=list)
    page_title: Optional[str] = None
    similarity_score: Optional[float] = None
    has_price: bool = False
    is_marketplace: bool = False


class InfrastructureProfile(BaseModel):
    """Hosting and network profile of the infringing site."""
    model_config = ConfigDict(extra="allow")

    ip_address: Optional[str] = None
    hosting_provider: Optional[str] = None
    registrar: Optional[str] = None
    abuse_email: Optional[str] = None
    country: Optional[str] = None


class Infringement(BaseModel):
    """A detected unauthorized occurrence of a product at a URL."""
    id: Optional[str] = None
    user_id: Optional[str] = None
    product_id: Optional[str] = None
    source_url: str = ""
    platform: Optional[str] = None
    infringement_type: Optional[str] = None
    evidence: Optional[InfringementEvidence] = None
    infrastructure: Optional[InfrastructureProfile] = None
    whois_domain: Optional[str] = None
    whois_registrant_org: Optional[str] = None
    whois_registrar_name: Optional[str] = None
    whois_registrar_abuse_email: Optional[str] = None
    severity_score: Score = 0
    status: InfringementStatus = "active"
    first_seen_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None
    seen_count: int = 1
    created_at: Optional[datetime] = None

    @property
    def hosting_provider(self) -> Optional[str]:
        return self.infrastructure.hosting_provider if self.infrastructure else None

    @property
    def registrar(self) -> Optional[str]:
        if self.whois_registrar_name:
            return self.whois_registrar_name
        return self.infrastructure.registrar if self.infrastructure else None

    @property
    def abuse_email(self) -> Optional[str]:
        if self.whois_registrar_abuse_email:
            return self.whois_registrar_abuse_email
        return self.infrastructure.abuse_email if self.infrastructure else None


class PageCapture(BaseModel):
    page_title: Optional[str] = None
    page_text: Optional[str] = None
    page_links: List[Dict[str, str]] = Field(default_factory=list)


class EvidencePacket(BaseModel):
    """Supplementary proof attached to a notice (hash, archive, timestamp)."""
    content_hash: Optional[str] = None
    timestamp_proof: Optional[str] = None
    timestamp_status: Optional[TimestampStatus] = None
    wayback_url: Optional[str] = None
    captured_at: Optional[datetime] = None
    html_storage_path: Optional[str] = None
    page_links_count: Optional[int] = None
    page_text_length: Optional[int] = None

    @field_validator("timestamp_proof", mode="before")
    @classmethod
    def _serialize_proof(cls, value: Any) -> Any:
        # Proofs arrive either as stored JSON text or as an already-decoded blob.
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        return value

    def parsed_timestamp_proof(self) -> Optional[Dict[str, Any]]:
        """
        Decode the stored timestamp proof.

        Returns None when the proof is absent or cannot be parsed; a malformed
        proof is logged and treated as missing.
        """
        if not self.timestamp_proof:
            return None
        try:
            data = json.loads(self.timestamp_proof)
        except (TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed timestamp proof: {e}")
            return None
        if not isinstance(data, dict):
            logger.warning("Ignoring timestamp proof that is not a JSON object")
            return None
        return data

    @property
    def has_blockchain_timestamp(self) -> bool:
        if self.timestamp_status == "failed":
            return False
        return self.parsed_timestamp_proof() is not None


class AnalyzedEvidenceMatch(BaseModel):
    """A ranked, legally-typed match produced by the evidence analyzer."""
    type: MatchType = "exact_reproduction"
    original_text: str
    infringing_text: str
    context: str = ""
    legal_significance: LegalSignificance = "supporting"
    explanation: str = ""
    dmca_language: str = ""
    confidence: float = Field(ge=0.0, le=1.0)


class RawEvidenceMatch(BaseModel):
    """Evidence match exactly as the LLM returns it, before validation and coercion."""
    type: Optional[str] = None
    original_text: Optional[str] = None
    infringing_text: Optional[str] = None
    context: Optional[str] = None
    legal_significance: Optional[str] = None
    explanation: Optional[str] = None
    dmca_language: Optional[str] = None
    confidence: Optional[float] = None


class RawEvidenceAnalysis(BaseModel):
    """Response schema requested from the LLM for evidence analysis."""
    matches: List[RawEvidenceMatch] = Field(default_factory=list)
    summary: Optional[str] = None
    strength_score: Optional[float] = None
    recommended_for_dmca: Optional[bool] = None


class EvidenceAnalysisResult(BaseModel):
    matches: List[AnalyzedEvidenceMatch] = Field(default_factory=list)
    summary: str = ""
    strength_score: Score = 0
    recommended_for_dmca: bool = False
    analysis_model: Optional[str] = None
    analyzed_at: Optional[datetime] = None


class EvidenceSnapshot(EvidencePacket):
    """A captured page plus its evidence packet and optional AI analysis."""
    page_title: Optional[str] = None
    page_capture: Optional[PageCapture] = None
    evidence_matches: List[EvidenceMatchRecord] = Field(default_factory=list)
    ai_evidence_analysis: Optional[EvidenceAnalysisResult] = None


# --- Enforcement targets ---

class ProviderInfo(BaseModel):
    """A provider directory entry (or a synthesized best-guess contact)."""
    model_config = ConfigDict(frozen=True)

    name: str
    dmca_email: Optional[str] = None
    dmca_form_url: Optional[str] = None
    agent_name: str
    requirements: str = ""
    prefers_web_form: bool = False
    verified: bool = False

    @property
    def is_deliverable(self) -> bool:
        """Whether this provider can be used as a terminal delivery channel."""
        return bool(self.dmca_email or self.dmca_form_url)

    @property
    def delivery_method(self) -> DeliveryMethod:
        # Email wins even when the provider prefers its web form, so bulk runs stay unattended.
        if self.dmca_email:
            return "email"
        if self.dmca_form_url:
            return "web_form"
        return "manual"


class EnforcementTarget(BaseModel):
    """A resolved contact endpoint with its place in the escalation ladder."""
    type: EnforcementTargetType
    provider: ProviderInfo
    step: int = Field(ge=1)
    recommended: bool = False
    reason: str
    deadline_days: int = Field(ge=0)


# --- Notices ---

class ComparisonItem(BaseModel):
    """A paired original vs. infringing excerpt."""
    original: str = Field(..., min_length=1)
    infringing: str = Field(..., min_length=1)
    context: Optional[str] = None


class BuiltNotice(BaseModel):
    """Immutable output of the notice builder."""
    model_config = ConfigDict(frozen=True)

    subject: str
    body: str
    recipient_email: str = ""
    recipient_name: str
    recipient_form_url: Optional[str] = None
    legal_references: List[str]
    evidence_links: List[str]
    sworn_statement: str
    comparison_items: List[ComparisonItem]
    profile: InfringementProfile


class QualityIssue(BaseModel):
    code: str
    message: str
    fix: str


class QualityResult(BaseModel):
    passed: bool
    score: Score
    strength: NoticeStrength
    errors: List[QualityIssue] = Field(default_factory=list)
    warnings: List[QualityIssue] = Field(default_factory=list)


class QualityInput(BaseModel):
    """Flattened view of everything the quality checker looks at."""
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_address: Optional[str] = None
    contact_phone: Optional[str] = None

    product_name: Optional[str] = None
    product_description: Optional[str] = None
    product_url: Optional[str] = None
    copyright_reg_number: Optional[str] = None

    infringing_url: Optional[str] = None

    has_good_faith_statement: bool = False
    has_perjury_statement: bool = False
    has_signature: bool = False

    comparison_items: List[ComparisonItem] = Field(default_factory=list)
    has_evidence_packet: bool = False
    has_unique_markers: bool = False
    has_blockchain_timestamp: bool = False
    has_wayback_archive: bool = False


# --- Bulk generation ---

class BulkGenerationInput(BaseModel):
    infringement: Infringement
    product: Product
    contact: DMCAContact
    evidence_snapshot: Optional[EvidenceSnapshot] = None


class BulkGenerationResult(BaseModel):
    infringement_id: Optional[str] = None
    target: EnforcementTarget
    provider: ProviderInfo
    notice: BuiltNotice
    delivery_method: DeliveryMethod
    all_targets: List[EnforcementTarget]


class BulkGenerationFailure(BaseModel):
    infringement_id: Optional[str] = None
    error: str


class EmailTargetGroup(BaseModel):
    recipient_email: str
    recipient_name: str
    provider_name: str
    target_type: EnforcementTargetType
    infringement_ids: List[Optional[str]] = Field(default_factory=list)
    count: int = 0


class WebFormTargetGroup(BaseModel):
    provider_name: str
    form_url: str
    infringement_ids: List[Optional[str]] = Field(default_factory=list)
    count: int = 0


class ManualTargetGroup(BaseModel):
    provider_name: str
    infringement_ids: List[Optional[str]] = Field(default_factory=list)
    count: int = 0


class BulkSummary(BaseModel):
    email_targets: List[EmailTargetGroup] = Field(default_factory=list)
    web_form_targets: List[WebFormTargetGroup] = Field(default_factory=list)
    manual_targets: List[ManualTargetGroup] = Field(default_factory=list)
    total_email: int = 0
    total_web_form: int = 0
    total_manual: int = 0


class BulkGenerationBatch(BaseModel):
    results: List[BulkGenerationResult] = Field(default_factory=list)
    failures: List[BulkGenerationFailure] = Field(default_factory=list)
    summary: BulkSummary = Field(default_factory=BulkSummary)


# --- Send queue and delivery ---

class QueueItem(BaseModel):
    """One notice awaiting dispatch through the email channel."""
    model_config = ConfigDict(from_attributes=True)

    id: Optional[str] = None
    user_id: str
    infringement_id: Optional[str] = None
    batch_id: Optional[str] = None
    recipient_email: Optional[str] = None
    recipient_name: Optional[str] = None
    provider_name: str = ""
    target_type: Optional[EnforcementTargetType] = None
    delivery_method: DeliveryMethod = "email"
    form_url: Optional[str] = None
    notice_subject: str
    notice_body: str
    cc_emails: List[str] = Field(default_factory=list)
    status: QueueStatus = "pending"
    priority: int = 0
    attempt_count: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=3, ge=1)
    scheduled_for: Optional[datetime] = None
    processing_started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    takedown_id: Optional[str] = None
    message_id: Optional[str] = None
    created_at: Optional[datetime] = None


class Takedown(BaseModel):
    """Durable record of an actually-sent notice."""
    model_config = ConfigDict(from_attributes=True)

    id: Optional[str] = None
    infringement_id: Optional[str] = None
    user_id: str
    type: str = "dmca"
    status: str = "sent"
    recipient_email: Optional[str] = None
    cc_emails: List[str] = Field(default_factory=list)
    notice_content: str = ""
    infringing_url: str = ""
    submitted_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None


class SendResult(BaseModel):
    """Outcome of one call to the email delivery capability."""
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class QueueItemOutcome(BaseModel):
    id: str
    status: Literal["sent", "retrying", "failed"]
    message_id: Optional[str] = None
    error: Optional[str] = None


class ProcessResult(BaseModel):
    processed: int = 0
    sent: int = 0
    retried: int = 0
    failed: int = 0
    items: List[QueueItemOutcome] = Field(default_factory=list)


class BulkSubmissionItem(BaseModel):
    """One reviewed notice from a bulk generation run, ready for dispatch."""
    infringement_id: Optional[str] = None
    recipient_email: Optional[str] = None
    recipient_name: Optional[str] = None
    provider_name: str
    target_type: Optional[EnforcementTargetType] = None
    delivery_method: DeliveryMethod
    form_url: Optional[str] = None
    notice_subject: str
    notice_body: str
    cc_emails: List[str] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: "BulkGenerationResult") -> "BulkSubmissionItem":
        return cls(
            infringement_id=result.infringement_id,
            recipient_email=result.notice.recipient_email or None,
            recipient_name=result.notice.recipient_name,
            provider_name=result.provider.name,
            target_type=result.target.type,
            delivery_method=result.delivery_method,
            form_url=result.notice.recipient_form_url,
            notice_subject=result.notice.subject,
            notice_body=result.notice.body,
        )


class BulkSubmissionResult(BaseModel):
    batch_id: str
    total_submitted: int
    email_count: int
    web_form_count: int
    manual_count: int
    estimated_completion_minutes: int
    queued: List[QueueItem] = Field(default_factory=list)
    web_form_items: List[BulkSubmissionItem] = Field(default_factory=list)
    manual_items: List[BulkSubmissionItem] = Field(default_factory=list)


class InlineSendResult(BaseModel):
    """Outcome of sending one notice immediately, outside the queue."""
    success: bool
    takedown_id: Optional[str] = None
    message_id: Optional[str] = None
    error: Optional[str] = None


class BatchSummary(BaseModel):
    """Per-status counts for one bulk batch."""
    batch_id: str
    total_items: int = 0
    pending_count: int = 0
    processing_count: int = 0
    sent_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    batch_created_at: Optional[datetime] = None
    last_completed_at: Optional[datetime] = None
    next_scheduled: Optional[datetime] = None

    @classmethod
    def from_items(cls, batch_id: str, items: List[QueueItem]) -> "BatchSummary":
        counts = {status: 0 for status in ("pending", "processing", "sent", "failed", "skipped")}
        for item in items:
            counts[item.status] += 1
        created = [i.created_at for i in items if i.created_at]
        completed = [i.completed_at for i in items if i.completed_at]
        upcoming = [i.scheduled_for for i in items if i.status == "pending" and i.scheduled_for]
        return cls(
            batch_id=batch_id,
            total_items=len(items),
            pending_count=counts["pending"],
            processing_count=counts["processing"],
            sent_count=counts["sent"],
            failed_count=counts["failed"],
            skipped_count=counts["skipped"],
            batch_created_at=min(created) if created else None,
            last_completed_at=max(completed) if completed else None,
            next_scheduled=min(upcoming) if upcoming else None,
        )


class BatchStatus(BaseModel):
    batch: BatchSummary
    items: List[QueueItem] = Field(default_factory=list)


class BatchCancelResult(BaseModel):
    batch_id: str
    cancelled_count: int


# --- HTTP request/response bodies ---

class NoticeGenerationRequest(BaseModel):
    infringement: Infringement
    product: Product
    contact: Optional[DMCAContact] = None
    evidence_snapshot: Optional[EvidenceSnapshot] = None

    def resolved_contact(self) -> Optional[DMCAContact]:
        return self.contact or self.product.dmca_contact


class NoticeGenerationResponse(BaseModel):
    profile: InfringementProfile
    targets: List[EnforcementTarget]
    target: EnforcementTarget
    delivery_method: DeliveryMethod
    notice: BuiltNotice
    quality: QualityResult


class BulkGenerationRequest(BaseModel):
    items: List[BulkGenerationInput] = Field(..., min_length=1, max_length=50)


class EnqueueRequest(NoticeGenerationRequest):
    user_id: str
    cc_emails: List[str] = Field(default_factory=list)
    priority: int = 0


class EnqueueResponse(BaseModel):
    queue_item: QueueItem
    quality: QualityResult


class BulkSubmissionRequest(BaseModel):
    user_id: str
    items: List[BulkSubmissionItem]
    signature_name: str = ""
    perjury_confirmed: bool = False
    liability_confirmed: bool = False


class EvidenceAnalysisRequest(BaseModel):
    product: Product
    page_text: Optional[str] = None
    infringement_url: str
    page_title: Optional[str] = None
    platform: Optional[str] = None


class EvidenceAnalysisResponse(BaseModel):
    result: Optional[EvidenceAnalysisResult] = None
