"""
DMCA notice quality checker.

Scores a notice 0-100. Hard errors are legally required elements under
§512(c)(3) and block sending; warnings make a notice weaker but leave it
sendable. Every issue carries an actionable fix.
"""

from typing import List, Optional

from takedown_core.models import (
    BuiltNotice,
    DMCAContact,
    EvidencePacket,
    Infringement,
    Product,
    QualityInput,
    QualityIssue,
    QualityResult,
)
from takedown_core.notice import GOOD_FAITH_STATEMENT, PERJURY_STATEMENT, SIGNATURE_HEADER

ERROR_PENALTY = 15
WARNING_PENALTY = 4
MIN_COMPARISONS = 3
MIN_DESCRIPTION_LENGTH = 20

REGENERATE_FIX = "This is auto-included by the notice builder - regenerate the notice"


def _issue(code: str, message: str, fix: str) -> QualityIssue:
    return QualityIssue(code=code, message=message, fix=fix)


def _hard_errors(data: QualityInput) -> List[QualityIssue]:
    errors = []
    if not data.contact_name:
        errors.append(_issue(
            "NO_CONTACT_NAME", "Rights holder name is missing",
            "Add your full legal name in Settings → Profile",
        ))
    if not data.contact_email:
        errors.append(_issue(
            "NO_CONTACT_EMAIL", "Contact email is missing",
            "Add your email address in Settings → Profile",
        ))
    if not data.contact_address:
        errors.append(_issue(
            "NO_CONTACT_ADDRESS", "Mailing address is missing (required by §512)",
            "Add your mailing address in Settings → Profile or Product → DMCA Contact",
        ))
    if not data.product_name:
        errors.append(_issue(
            "NO_PRODUCT_NAME", "Copyrighted work title is missing", "Ensure your product has a name",
        ))
    if not data.infringing_url:
        errors.append(_issue(
            "NO_INFRINGING_URL", "No infringing URL specified", "An infringing URL must be provided",
        ))
    if not data.has_good_faith_statement:
        errors.append(_issue("NO_GOOD_FAITH", "Good faith belief statement is missing", REGENERATE_FIX))
    if not data.has_perjury_statement:
        errors.append(_issue(
            "NO_PERJURY", "Accuracy statement under penalty of perjury is missing", REGENERATE_FIX,
        ))
    if not data.has_signature:
        errors.append(_issue("NO_SIGNATURE", "Electronic signature is missing", REGENERATE_FIX))
    return errors


def _warnings(data: QualityInput) -> List[QualityIssue]:
    warnings = []
    count = len(data.comparison_items)
    if count < MIN_COMPARISONS:
        plural = "" if count == 1 else "s"
        warnings.append(_issue(
            "FEW_COMPARISONS", f"Only {count} comparison item{plural} (3+ recommended)",
            "Run a scan to detect more evidence, or add comparison details manually when editing the notice",
        ))
    if not data.has_evidence_packet:
        warnings.append(_issue(
            "NO_EVIDENCE", "No evidence packet attached",
            "Confirm the infringement to trigger automatic evidence capture (HTML, text, links, Wayback Machine)",
        ))
    if not data.copyright_reg_number:
        warnings.append(_issue(
            "NO_COPYRIGHT_REG", "No copyright registration number",
            "Add your copyright registration number in Product → IP Protection settings. "
            "Not required, but significantly strengthens the notice.",
        ))
    if not data.has_unique_markers:
        warnings.append(_issue(
            "NO_UNIQUE_MARKERS", "No unique markers identified (watermarks, distinctive phrases)",
            "Add unique identifiers to your product that make infringement easier to prove",
        ))
    if not data.contact_phone:
        warnings.append(_issue(
            "NO_PHONE", "No phone number provided",
            "Add a phone number in Settings → Profile for stronger contact credibility",
        ))
    if not data.product_url:
        warnings.append(_issue(
            "NO_PRODUCT_URL", "No original product URL provided",
            "Add the official product URL to your product settings",
        ))
    if not data.product_description or len(data.product_description) < MIN_DESCRIPTION_LENGTH:
        warnings.append(_issue(
            "WEAK_DESCRIPTION", "Product description is missing or too short",
            "Add a detailed description (20+ characters) to your product settings",
        ))
    return warnings


def check_notice_quality(data: QualityInput) -> QualityResult:
    """
    Check a notice's legal completeness and strength.

    ``passed`` is true iff there are no hard errors; warnings only lower the
    score and strength tier.
    """
    errors = _hard_errors(data)
    warnings = _warnings(data)

    score = 100 - len(errors) * ERROR_PENALTY - len(warnings) * WARNING_PENALTY
    if len(data.comparison_items) >= MIN_COMPARISONS:
        score += 5
    if data.has_evidence_packet:
        score += 5
    if data.copyright_reg_number:
        score += 3
    if data.has_blockchain_timestamp:
        score += 3
    if data.has_wayback_archive:
        score += 2
    if data.has_unique_markers:
        score += 2
    score = max(0, min(100, score))

    passed = not errors
    if passed and score >= 85 and len(warnings) <= 2:
        strength = "strong"
    elif passed and score >= 60:
        strength = "standard"
    else:
        strength = "weak"

    return QualityResult(passed=passed, score=score, strength=strength, errors=errors, warnings=warnings)


def build_quality_input(
    contact: DMCAContact,
    product: Product,
    infringement: Infringement,
    notice: BuiltNotice,
    evidence: Optional[EvidencePacket] = None,
) -> QualityInput:
    """Flatten pipeline objects into the checker's input, reading statement flags from the body."""
    body = notice.body
    fingerprint = product.ai_extracted_data
    copyright_info = product.copyright_info
    return QualityInput(
        contact_name=contact.full_name,
        contact_email=contact.email,
        contact_address=contact.address,
        contact_phone=contact.phone,
        product_name=product.name,
        product_description=product.description,
        product_url=product.url,
        copyright_reg_number=copyright_info.registration_number if copyright_info else None,
        infringing_url=infringement.source_url,
        has_good_faith_statement=GOOD_FAITH_STATEMENT in body,
        has_perjury_statement=PERJURY_STATEMENT in body,
        has_signature=bool(contact.full_name) and SIGNATURE_HEADER in body and f"/ {contact.full_name} /" in body,
        comparison_items=notice.comparison_items,
        has_evidence_packet=evidence is not None,
        has_unique_markers=bool(fingerprint and fingerprint.has_unique_markers),
        has_blockchain_timestamp=bool(evidence and evidence.has_blockchain_timestamp),
        has_wayback_archive=bool(evidence and evidence.wayback_url),
    )
