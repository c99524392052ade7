"""
Comparison item builder.

Turns product reference data and captured page evidence into ordered
"original vs. infringing" pairs for the notice body. Items are ordered by legal
strength: distinctive phrases first, then brand identifiers, then weaker
keyword overlaps, then page-level context.
"""

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Set

from takedown_core.models import (
    AnalyzedEvidenceMatch,
    ComparisonItem,
    EvidenceMatchRecord,
    EvidenceSnapshot,
    InfringementEvidence,
    PageCapture,
    ProductFingerprint,
)

MAX_ITEMS = 10
MAX_AI_MATCHES = 7
MAX_ENRICHED_MATCHES = 6
MAX_BASIC_MATCHES = 5
MAX_EXCERPTS = 5
MAX_UNIQUE_PHRASES = 3
MAX_BRANDS = 2
MAX_TERMS = 2
MIN_EXCERPT_LENGTH = 10

# Common industry vocabulary that never distinguishes one product from another
GENERIC_TERMS = frozenset({
    "trading", "indicator", "course", "review", "chart", "strategy", "software", "tool",
    "system", "template", "download", "premium", "free", "analysis", "market", "stock",
    "forex", "crypto", "signal", "alert", "profit", "video", "tutorial", "guide", "ebook",
    "beginner", "advanced", "platform", "broker",
})

STOPWORDS = frozenset({
    "a", "an", "the", "and", "or", "of", "for", "to", "in", "on", "with", "by", "at",
    "is", "are", "your", "my", "our", "this", "that", "best", "new", "pro",
})

MATCH_TYPE_LABELS = {
    "exact_reproduction": "copyrighted content",
    "brand_usage": "brand identifier",
    "unique_phrase": "unique phrase",
    "content_structure": "content structure",
    "pricing_copy": "pricing information",
    "keyword_cluster": "keyword pattern",
    "text_match": "text",
    "brand_mention": "brand mention",
    "copyrighted_content": "copyrighted content",
    "download_link": "download link",
}

PRODUCT_TYPE_LABELS = {
    "video_course": "Video course",
    "ebook": "E-book",
    "pdf": "PDF document",
    "software": "Software application",
    "images": "Image collection",
    "audio": "Audio content",
    "slides": "Presentation slides",
    "trading_indicator": "Trading indicator",
    "indicator": "Trading indicator",
    "template": "Digital template",
    "digital_asset": "Digital asset",
    "course": "Online course",
}

SIGNIFICANCE_ORDER = {"critical": 0, "strong": 1, "supporting": 2}

_TRADEMARK_SYMBOLS = re.compile(r"[®™©]")
_WORD = re.compile(r"[a-z0-9]+")


def format_match_type(match_type: Optional[str]) -> str:
    return MATCH_TYPE_LABELS.get(match_type or "", "content")


def format_product_type(product_type: Optional[str]) -> str:
    return PRODUCT_TYPE_LABELS.get(product_type or "", "Digital product")


def normalize_text(text: str) -> str:
    return " ".join(text.lower().split())


def is_generic_text(text: Optional[str]) -> bool:
    """True when every meaningful word in ``text`` is common industry vocabulary."""
    if not text:
        return True
    words = [w for w in _WORD.findall(text.lower()) if w not in STOPWORDS]
    if not words:
        return True
    return all(w in GENERIC_TERMS or w.rstrip("s") in GENERIC_TERMS for w in words)


@dataclass
class _Collector:
    """Accumulates items, deduplicating on the normalized underlying phrase."""
    items: List[ComparisonItem]
    seen: Set[str]

    @property
    def full(self) -> bool:
        return len(self.items) >= MAX_ITEMS

    def add(self, key: str, original: str, infringing: str, context: Optional[str] = None) -> bool:
        if self.full or not original.strip() or not infringing.strip():
            return False
        phrase_key = normalize_text(key)
        original_key = normalize_text(original)
        if phrase_key in self.seen or original_key in self.seen:
            return False
        self.seen.update({phrase_key, original_key})
        self.items.append(ComparisonItem(original=original, infringing=infringing, context=context or None))
        return True


def _captured_text(
    page_capture: Optional[PageCapture], evidence_snapshot: Optional[EvidenceSnapshot]
) -> str:
    if evidence_snapshot and evidence_snapshot.page_capture and evidence_snapshot.page_capture.page_text:
        return evidence_snapshot.page_capture.page_text.lower()
    if page_capture and page_capture.page_text:
        return page_capture.page_text.lower()
    return ""


def _sorted_ai_matches(matches: Iterable[AnalyzedEvidenceMatch]) -> List[AnalyzedEvidenceMatch]:
    return sorted(matches, key=lambda m: SIGNIFICANCE_ORDER.get(m.legal_significance, 2))


def _add_ai_matches(
    collector: _Collector, matches: List[AnalyzedEvidenceMatch], product_name: str, source_url: str
) -> None:
    for match in _sorted_ai_matches(matches)[:MAX_AI_MATCHES]:
        if is_generic_text(match.original_text):
            continue
        original = (
            f'Original {format_match_type(match.type)} from "{product_name}": '
            f'"{match.original_text[:200]}"'
        )
        infringing = match.dmca_language or (
            f'Reproduced without authorization at {source_url}: "{match.infringing_text[:200]}"'
        )
        collector.add(match.original_text, original, infringing, match.context)


def _add_snapshot_matches(
    collector: _Collector, matches: List[EvidenceMatchRecord], product_name: str, source_url: str
) -> None:
    enriched = [m for m in matches if m.original_text and m.dmca_language]
    if enriched:
        for match in enriched[:MAX_ENRICHED_MATCHES]:
            if is_generic_text(match.original_text):
                continue
            original = (
                f'Original {format_match_type(match.type or "content")} from "{product_name}": '
                f'"{match.original_text[:200]}"'
            )
            collector.add(match.original_text, original, match.dmca_language, match.context)
        return
    _add_basic_matches(collector, matches, product_name, source_url)


def _add_basic_matches(
    collector: _Collector, matches: List[EvidenceMatchRecord], product_name: str, source_url: str
) -> None:
    for match in matches[:MAX_BASIC_MATCHES]:
        if not match.matched_text or len(match.matched_text) <= MIN_EXCERPT_LENGTH:
            continue
        if is_generic_text(match.matched_text):
            continue
        text = match.matched_text[:150]
        collector.add(
            text,
            f'Original {match.type or "content"} from "{product_name}": "{text}"',
            f'Reproduced at {source_url}: "{text}"',
            match.context,
        )


def _add_excerpts(collector: _Collector, excerpts: List[str], product_name: str, source_url: str) -> None:
    for excerpt in excerpts[:MAX_EXCERPTS]:
        trimmed = excerpt.strip()[:150]
        if len(trimmed) <= MIN_EXCERPT_LENGTH or is_generic_text(trimmed):
            continue
        collector.add(
            trimmed,
            f'Original text from "{product_name}": "{trimmed}"',
            f'Same text found at {source_url}: "{trimmed}"',
        )


def _add_context_items(
    collector: _Collector,
    product_name: str,
    source_url: str,
    product_url: Optional[str],
    product_type: Optional[str],
    captured_title: Optional[str],
) -> None:
    if captured_title and product_name and product_name.lower() in captured_title.lower():
        collector.add(
            f"title:{product_name}",
            f'Original product name: "{product_name}"',
            f'Product name used without authorization in page title: "{captured_title}"',
        )
    if product_url:
        collector.add(
            f"page:{product_url}",
            f"Original product page: {product_url}",
            f"Unauthorized copy found at: {source_url}",
        )
    if product_type and product_url:
        type_label = format_product_type(product_type)
        collector.add(
            f"type:{product_type}",
            f"{type_label} legitimately sold at {product_url}",
            f"{type_label} made available without authorization at {source_url}",
        )


def build_comparison_items(
    product_name: str,
    source_url: str,
    product_url: Optional[str] = None,
    product_type: Optional[str] = None,
    evidence: Optional[InfringementEvidence] = None,
    page_capture: Optional[PageCapture] = None,
    evidence_snapshot: Optional[EvidenceSnapshot] = None,
    fingerprint: Optional[ProductFingerprint] = None,
) -> List[ComparisonItem]:
    """
    Build up to ten comparison items from every available evidence source.

    When the evidence snapshot carries an AI analysis with matches, those
    matches are used as the primary source (critical before strong before
    supporting). Otherwise the builder falls back to fingerprint phrases found
    in the captured page text, stored match records, raw excerpts, brand
    identifiers, copyrighted terms and distinctive keyword clusters.

    Items are deduplicated case-insensitively on the underlying phrase and
    purely generic phrases are dropped.

    Args:
        product_name: Name of the copyrighted product
        source_url: The infringing URL
        product_url: Where the product is legitimately sold
        product_type: Product type tag, used for the context item
        evidence: Raw evidence blob from the infringement
        page_capture: Captured page title/text/links
        evidence_snapshot: Stored evidence snapshot, possibly with AI analysis
        fingerprint: AI-extracted product fingerprint

    Returns:
        List[ComparisonItem]: strongest first, at most ten
    """
    collector = _Collector(items=[], seen=set())
    captured_title = (
        (page_capture.page_title if page_capture else None)
        or (evidence_snapshot.page_title if evidence_snapshot else None)
        or (evidence.page_title if evidence else None)
    )

    ai_analysis = evidence_snapshot.ai_evidence_analysis if evidence_snapshot else None
    if ai_analysis and ai_analysis.matches:
        _add_ai_matches(collector, ai_analysis.matches, product_name, source_url)
        _add_context_items(collector, product_name, source_url, product_url, product_type, None)
        return collector.items

    captured_text = _captured_text(page_capture, evidence_snapshot)
    has_fingerprint = fingerprint is not None and bool(captured_text)

    # Distinctive phrases from the product fingerprint
    if has_fingerprint:
        for phrase in fingerprint.unique_phrases[:MAX_UNIQUE_PHRASES]:
            if phrase and phrase.lower() in captured_text and not is_generic_text(phrase):
                collector.add(
                    phrase,
                    f'Original copyrighted phrase from "{product_name}": "{phrase}"',
                    f"Identical phrase reproduced without authorization at {source_url}",
                )

    # Stored match records and raw excerpts
    snapshot_matches = evidence_snapshot.evidence_matches if evidence_snapshot else []
    if snapshot_matches:
        _add_snapshot_matches(collector, snapshot_matches, product_name, source_url)
    if evidence and evidence.matched_excerpts:
        _add_excerpts(collector, evidence.matched_excerpts, product_name, source_url)
    if evidence and evidence.matches and not snapshot_matches:
        _add_basic_matches(collector, evidence.matches, product_name, source_url)

    # Brand identifiers, copyrighted terms and keyword clusters
    if has_fingerprint:
        for brand in fingerprint.brand_identifiers[:MAX_BRANDS]:
            if brand and brand.lower() in captured_text and not is_generic_text(brand):
                collector.add(
                    brand,
                    f'Trademarked brand identifier: "{brand}"',
                    f"Brand used without authorization at {source_url}",
                )
        for term in fingerprint.copyrighted_terms[:MAX_TERMS]:
            bare = _TRADEMARK_SYMBOLS.sub("", term).strip()
            if bare and bare.lower() in captured_text and not is_generic_text(bare):
                collector.add(
                    bare,
                    f'Copyrighted term: "{term}"',
                    f"Protected term reproduced at {source_url}",
                )
        distinctive = [
            k for k in fingerprint.keywords
            if k and k.lower() in captured_text and not is_generic_text(k)
        ]
        # A single keyword hit is too weak to stand on its own
        if len(distinctive) >= 2:
            cluster = ", ".join(distinctive[:5])
            collector.add(
                f"keywords:{cluster}",
                f'Distinctive keyword combination from "{product_name}": {cluster}',
                f"Same keyword combination reproduced at {source_url}",
            )

    _add_context_items(collector, product_name, source_url, product_url, product_type, captured_title)
    return collector.items
