"""
Structured DMCA notice builder.

Assembles a notice from structured data using a fixed seven-section template
that follows 17 U.S.C. §512(c)(3):

    A) Notifier / rights holder
    B) Copyrighted work identification
    C) Infringing material and comparison items
    D) Supplemental evidence (only when an evidence packet is supplied)
    E) Statutory statements
    F) Requested action
    G) Electronic signature

Every section is plain string assembly, so the statutory language is always
present verbatim.
"""

from datetime import date, datetime
from typing import List, Optional

from takedown_core.models import (
    BuiltNotice,
    ComparisonItem,
    DMCAContact,
    EvidencePacket,
    Infringement,
    InfringementProfile,
    Product,
    ProviderInfo,
)
from takedown_core.profiles import get_profile_info

SECTION_SEPARATOR = "\n\n" + "─" * 42 + "\n\n"

GOOD_FAITH_STATEMENT = (
    "I have a good faith belief that the use of the copyrighted material described above is "
    "not authorized by the copyright owner, its agent, or the law."
)

PERJURY_STATEMENT = (
    "I swear, under penalty of perjury, that the information in this notification is accurate "
    "and that I am the copyright owner, or am authorized to act on behalf of the owner, of an "
    "exclusive right that is allegedly infringed."
)

SIGNATURE_HEADER = "ELECTRONIC SIGNATURE"

REF_DMCA = "17 U.S.C. §512(c)(3) - DMCA Safe Harbor Notification Requirements"
REF_EXCLUSIVE_RIGHTS = "17 U.S.C. §106 - Exclusive Rights in Copyrighted Works"
REF_LANHAM = "15 U.S.C. §1114 - Lanham Act (Trademark Protection)"

PRODUCT_TYPE_TITLES = {
    "video_course": "Video Course",
    "ebook": "E-Book",
    "pdf": "PDF Document",
    "software": "Software Application",
    "images": "Image Collection",
    "audio": "Audio Content",
    "slides": "Presentation Slides",
    "trading_indicator": "Trading Indicator",
    "indicator": "Trading Indicator",
    "template": "Digital Template",
    "digital_asset": "Digital Asset",
    "course": "Online Course",
    "other": "Digital Product",
}


def _long_date(value: date) -> str:
    return f"{value:%B} {value.day}, {value.year}"


def _long_datetime(value: datetime) -> str:
    hour = value.hour % 12 or 12
    return f"{_long_date(value)} at {hour}:{value:%M} {value:%p}"


def _format_price(price: float) -> str:
    return str(int(price)) if float(price).is_integer() else f"{price:.2f}"


def _notifier_section(contact: DMCAContact, provider: ProviderInfo) -> str:
    if contact.is_copyright_owner:
        authority = "I am the copyright owner of the work described below."
    elif contact.relationship_to_owner:
        authority = (
            "I am authorized to act on behalf of the copyright owner "
            f"as {contact.relationship_to_owner}."
        )
    else:
        authority = "I am authorized to act on behalf of the copyright owner."

    lines = [f"  Name: {contact.full_name}"]
    if contact.company:
        lines.append(f"  Company: {contact.company}")
    lines.append(f"  Email: {contact.email}")
    if contact.phone:
        lines.append(f"  Phone: {contact.phone}")
    if contact.address:
        lines.append(f"  Address: {contact.address}")

    return (
        f"Dear {provider.agent_name},\n\n"
        "I am writing to notify you of copyright infringement pursuant to the Digital Millennium "
        "Copyright Act, 17 U.S.C. §512(c)(3).\n\n"
        f"{authority}\n\n"
        "Contact Information:\n" + "\n".join(lines)
    )


def _work_section(product: Product) -> str:
    lines = [f"  Title: {product.name}"]
    if product.type:
        lines.append(f"  Type: {PRODUCT_TYPE_TITLES.get(product.type, product.type)}")
    if product.price:
        lines.append(f"  Retail Price: ${_format_price(product.price)}")
    if product.url:
        lines.append(f"  Original URL: {product.url}")
    if product.description:
        lines.append(f"  Description: {product.description[:300]}")
    copyright_info = product.copyright_info
    if copyright_info and copyright_info.registration_number:
        lines.append(
            f"  Copyright Registration: {copyright_info.registration_number} ({copyright_info.year or ''})"
        )
    if copyright_info and copyright_info.holder_name:
        lines.append(f"  Copyright Holder: {copyright_info.holder_name}")
    trademark = product.trademark_info
    if trademark and trademark.name:
        reg = f" (Reg. #{trademark.registration_number})" if trademark.registration_number else ""
        lines.append(f"  Trademark: {trademark.name}{reg}")

    return (
        "IDENTIFICATION OF COPYRIGHTED WORK\n\n"
        + "\n".join(lines)
        + "\n\nNo authorization has been granted to the infringing party to reproduce, distribute, "
        "display, sell, or create derivative works from this content."
    )


def _infringing_section(
    infringement: Infringement, profile: InfringementProfile, comparison_items: List[ComparisonItem]
) -> str:
    profile_info = get_profile_info(profile)
    section = (
        "IDENTIFICATION OF INFRINGING MATERIAL\n\n"
        f"The following material constitutes {profile_info.legal_basis}:\n\n"
        f"  Infringing URL: {infringement.source_url}"
    )
    if infringement.platform:
        section += f"\n  Platform: {infringement.platform}"
    if infringement.first_seen_at:
        section += f"\n  First Detected: {_long_date(infringement.first_seen_at)}"

    section += f"\n\n{profile_info.description}"

    if comparison_items:
        section += "\n\nComparison of Original and Infringing Material:\n"
        for i, item in enumerate(comparison_items, start=1):
            section += f"\n  {i}. Original: {item.original}"
            section += f"\n     Infringing: {item.infringing}\n"
    return section


def _timestamp_line(evidence: EvidencePacket) -> Optional[str]:
    if evidence.timestamp_status == "failed":
        return None
    if evidence.parsed_timestamp_proof() is None:
        return None
    if evidence.timestamp_status == "pending":
        return (
            "  Blockchain Timestamp: Evidence hash submitted to the Bitcoin blockchain via "
            "OpenTimestamps (confirmation pending)"
        )
    return "  Blockchain Timestamp: Evidence hash anchored to Bitcoin blockchain via OpenTimestamps"


def _evidence_section(evidence: EvidencePacket, infringement: Infringement) -> str:
    lines: List[str] = []
    if evidence.captured_at:
        lines.append(f"  Evidence Captured: {_long_datetime(evidence.captured_at)}")
    if evidence.content_hash:
        lines.append(f"  Content Fingerprint (SHA-256): {evidence.content_hash}")
    if evidence.wayback_url:
        lines.append(f"  Wayback Machine Archive: {evidence.wayback_url}")
    timestamp = _timestamp_line(evidence)
    if timestamp:
        lines.append(timestamp)
    if evidence.page_text_length:
        lines.append(f"  Captured Page Content: {round(evidence.page_text_length / 1000)}KB of text preserved")
    if evidence.page_links_count:
        lines.append(f"  Page Links Captured: {evidence.page_links_count} outbound links recorded")
    if evidence.html_storage_path:
        lines.append("  Full HTML Archive: Preserved in secure storage")

    section = "SUPPLEMENTAL EVIDENCE"
    if lines:
        section += "\n\n" + "\n".join(lines)

    infra = infringement.infrastructure
    if infra and (infra.ip_address or infra.hosting_provider):
        section += "\n\n  Server Infrastructure:"
        if infra.ip_address:
            section += f"\n    IP Address: {infra.ip_address}"
        if infra.hosting_provider:
            section += f"\n    Hosting Provider: {infra.hosting_provider}"
        if infra.country:
            section += f"\n    Server Location: {infra.country}"

    if infringement.whois_domain:
        section += "\n\n  Domain Registration:"
        section += f"\n    Domain: {infringement.whois_domain}"
        if infringement.whois_registrant_org:
            section += f"\n    Registered To: {infringement.whois_registrant_org}"
        if infringement.whois_registrar_name:
            section += f"\n    Registrar: {infringement.whois_registrar_name}"

    section += (
        "\n\nThe above evidence is supplemental and is provided to assist in identifying the "
        "infringing material."
    )
    return section


def _statements_section() -> str:
    return (
        "STATEMENTS PURSUANT TO 17 U.S.C. §512(c)(3)\n\n"
        f"{GOOD_FAITH_STATEMENT}\n\n"
        f"{PERJURY_STATEMENT}"
    )


def _requested_action_section() -> str:
    return (
        "REQUESTED ACTION\n\n"
        "Pursuant to 17 U.S.C. §512(c), I respectfully request that you:\n\n"
        "  1. Expeditiously remove or disable access to the infringing material identified above.\n"
        "  2. Notify the individual responsible for the infringing material of this takedown request.\n"
        "  3. Inform me in writing of the actions taken in response to this notice.\n"
        "  4. Take reasonable steps to identify and remove any additional copies of this material "
        "hosted on your service.\n\n"
        "Please be advised that, pursuant to 17 U.S.C. §512(f), any person who knowingly and "
        "materially misrepresents that material is infringing may be subject to liability for damages."
    )


def _signature_section(contact: DMCAContact, issued_on: date) -> str:
    signer = contact.full_name
    if contact.company:
        signer += f"\n{contact.company}"
    return (
        f"{SIGNATURE_HEADER}\n\n"
        f"/ {contact.full_name} /\n\n"
        f"{signer}\n"
        f"Date: {_long_date(issued_on)}\n\n"
        "This notice is submitted in compliance with the Digital Millennium Copyright Act (17 U.S.C. §512)."
    )


def build_notice(
    contact: DMCAContact,
    product: Product,
    infringement: Infringement,
    profile: InfringementProfile,
    provider: ProviderInfo,
    comparison_items: List[ComparisonItem],
    evidence: Optional[EvidencePacket] = None,
    issued_on: Optional[date] = None,
) -> BuiltNotice:
    """
    Build a complete DMCA notice from structured data.

    Args:
        contact: Rights-holder identity for the signature block
        product: The copyrighted work
        infringement: The infringing occurrence
        profile: Legal theory from the profile classifier
        provider: Resolved recipient; its email/form URL become the notice recipient
        comparison_items: Ordered original vs. infringing pairs
        evidence: Optional evidence packet; the evidence section is omitted without it
        issued_on: Signature date, defaults to today

    Returns:
        BuiltNotice: the assembled, immutable notice
    """
    profile_info = get_profile_info(profile)
    subject = f'DMCA Takedown Notice - Unauthorized {profile_info.label} of "{product.name}"'

    sections = [
        _notifier_section(contact, provider),
        _work_section(product),
        _infringing_section(infringement, profile, comparison_items),
    ]
    if evidence is not None:
        sections.append(_evidence_section(evidence, infringement))
    sections.extend([
        _statements_section(),
        _requested_action_section(),
        _signature_section(contact, issued_on or date.today()),
    ])

    legal_references = [REF_DMCA, REF_EXCLUSIVE_RIGHTS]
    if product.trademark_info and product.trademark_info.name:
        legal_references.append(REF_LANHAM)

    evidence_links = [infringement.source_url]
    if evidence is not None and evidence.wayback_url:
        evidence_links.append(evidence.wayback_url)

    return BuiltNotice(
        subject=subject,
        body=SECTION_SEPARATOR.join(sections),
        recipient_email=provider.dmca_email or "",
        recipient_name=provider.agent_name,
        recipient_form_url=provider.dmca_form_url,
        legal_references=legal_references,
        evidence_links=evidence_links,
        sworn_statement=PERJURY_STATEMENT,
        comparison_items=list(comparison_items),
        profile=profile,
    )
