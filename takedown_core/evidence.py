"""
AI evidence analyzer.

Compares captured infringing-page text against the product's reference data
and returns ranked, legally-typed matches with DMCA-ready phrasing. Whatever the
model returns is validated here: weak matches are dropped, unknown labels are
coerced to safe defaults, and any failure degrades to "no result".
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

import httpx
from google.api_core.exceptions import GoogleAPIError
from google.genai import errors as genai_errors
from pydantic import ValidationError

from takedown_core import llm
from takedown_core.comparison import GENERIC_TERMS, SIGNIFICANCE_ORDER
from takedown_core.models import (
    AnalyzedEvidenceMatch,
    EvidenceAnalysisResult,
    Product,
    RawEvidenceAnalysis,
    RawEvidenceMatch,
)

logger = logging.getLogger(__name__)

MIN_PAGE_TEXT_LENGTH = 50
MAX_PAGE_TEXT_LENGTH = 8000
MAX_DESCRIPTION_LENGTH = 1000
MAX_KEYWORDS = 20
MIN_MATCH_TEXT_LENGTH = 5
MIN_CONFIDENCE = 0.5
MAX_MATCHES = 8

VALID_MATCH_TYPES = (
    "exact_reproduction", "brand_usage", "unique_phrase",
    "content_structure", "pricing_copy", "keyword_cluster",
)
VALID_SIGNIFICANCE = ("critical", "strong", "supporting")

SYSTEM_PROMPT = f"""You are a legal evidence analyst specializing in intellectual property and DMCA takedown cases. Your job is to analyze captured web page content and identify specific evidence of copyright infringement by comparing it against the original product data.

IMPORTANT RULES:
1. Only identify GENUINE matches: text that clearly came from the original product
2. Prioritize unique, distinctive content over generic industry terms
3. Each match must include the EXACT text from both the original and the infringing page
4. Context should include 50-100 characters of surrounding text from the infringing page
5. Legal significance should be based on how distinctive the matched content is
6. DMCA language should be formal, specific, and legally actionable
7. Do NOT manufacture matches. If the evidence is weak, say so honestly
8. STRICTLY exclude common generic terms that anyone could use. These are NEVER evidence of infringement: {", ".join(f'"{t}"' for t in sorted(GENERIC_TERMS))}, etc. A single generic word match is NEVER valid evidence.
9. Focus ONLY on: exact reproductions of unique text, brand names, product names, creator names, unique marketing phrases, proprietary terminology, and product descriptions copied verbatim
10. Evidence must be PRODUCT-SPECIFIC. Ask yourself: "Could this text appear on ANY page in this industry, or does it specifically reference THIS product?" Only include the latter.

LEGAL SIGNIFICANCE LEVELS:
- "critical": Exact reproduction of unique copyrighted content (verbatim text blocks, unique product names, distinctive taglines)
- "strong": Brand identifiers, trademarked terms, or substantial similar phrasing used without authorization
- "supporting": Keyword clusters, structural similarities, or partial reproductions that corroborate other evidence

RESPONSE FORMAT: Return a JSON object with these fields:
{{
  "matches": [
    {{
      "type": "exact_reproduction" | "brand_usage" | "unique_phrase" | "content_structure" | "pricing_copy" | "keyword_cluster",
      "original_text": "The exact text from the original product",
      "infringing_text": "The exact text found on the infringing page",
      "context": "...surrounding text from the infringing page for proof...",
      "legal_significance": "critical" | "strong" | "supporting",
      "explanation": "Why this constitutes infringement",
      "dmca_language": "Formal language suitable for a DMCA notice describing this specific infringement",
      "confidence": 0.0 to 1.0
    }}
  ],
  "summary": "Brief legal summary of all findings (2-3 sentences)",
  "strength_score": 0 to 100,
  "recommended_for_dmca": true/false
}}

Return ONLY valid JSON. Limit to {MAX_MATCHES} best matches maximum, ordered by legal significance."""


def build_product_context(product: Product) -> str:
    lines = [f"Product Name: {product.name}", f"Product Type: {product.type}"]
    if product.url:
        lines.append(f"Original URL: {product.url}")
    if product.description:
        lines.append(f"\nProduct Description:\n{product.description[:MAX_DESCRIPTION_LENGTH]}")

    fingerprint = product.ai_extracted_data
    if fingerprint:
        if fingerprint.product_description:
            lines.append(f"\nAI-Generated Description:\n{fingerprint.product_description}")
        if fingerprint.brand_identifiers:
            lines.append(f"\nBrand Identifiers: {', '.join(fingerprint.brand_identifiers)}")
        if fingerprint.unique_phrases:
            phrases = "\n".join(f'- "{p}"' for p in fingerprint.unique_phrases)
            lines.append(f"\nUnique Phrases (copyrighted):\n{phrases}")
        if fingerprint.copyrighted_terms:
            lines.append(f"\nCopyrighted Terms: {', '.join(fingerprint.copyrighted_terms)}")
        if fingerprint.keywords:
            lines.append(f"\nProduct Keywords: {', '.join(fingerprint.keywords[:MAX_KEYWORDS])}")

    if product.keywords:
        lines.append(f"\nUser-Provided Keywords: {', '.join(product.keywords)}")
    return "\n".join(lines)


def build_user_prompt(
    product: Product, page_text: str, page_title: Optional[str], infringement_url: str, platform: Optional[str]
) -> str:
    return f"""ORIGINAL PRODUCT DATA:
{build_product_context(product)}

CAPTURED INFRINGING PAGE CONTENT:
URL: {infringement_url}
Platform: {platform or 'unknown'}
Page Title: {page_title or 'N/A'}

--- PAGE TEXT (first {MAX_PAGE_TEXT_LENGTH} chars) ---
{page_text}
--- END PAGE TEXT ---

Analyze the captured page content and identify specific evidence of copyright infringement. Compare the infringing page against the original product data and find matches."""


def coerce_match_type(value: Optional[str]) -> str:
    return value if value in VALID_MATCH_TYPES else "exact_reproduction"


def coerce_significance(value: Optional[str]) -> str:
    return value if value in VALID_SIGNIFICANCE else "supporting"


def clean_matches(raw_matches: List[RawEvidenceMatch]) -> List[AnalyzedEvidenceMatch]:
    """
    Drop weak matches, coerce labels and keep the highest-significance ones.

    A match survives only if both text sides have at least 5 characters and
    its confidence is at least 0.5.
    """
    kept: List[AnalyzedEvidenceMatch] = []
    for raw in raw_matches:
        original = (raw.original_text or "").strip()
        infringing = (raw.infringing_text or "").strip()
        if len(original) < MIN_MATCH_TEXT_LENGTH or len(infringing) < MIN_MATCH_TEXT_LENGTH:
            continue
        if raw.confidence is None or raw.confidence < MIN_CONFIDENCE:
            continue
        kept.append(AnalyzedEvidenceMatch(
            type=coerce_match_type(raw.type),
            original_text=original,
            infringing_text=infringing,
            context=(raw.context or "").strip(),
            legal_significance=coerce_significance(raw.legal_significance),
            explanation=(raw.explanation or "").strip(),
            dmca_language=(raw.dmca_language or "").strip(),
            confidence=min(1.0, max(0.0, raw.confidence)),
        ))

    kept.sort(key=lambda m: SIGNIFICANCE_ORDER[m.legal_significance])
    return kept[:MAX_MATCHES]


def clean_analysis(raw: RawEvidenceAnalysis, model_name: str) -> EvidenceAnalysisResult:
    matches = clean_matches(raw.matches)
    strength = int(round(min(100.0, max(0.0, raw.strength_score or 0))))
    recommended = raw.recommended_for_dmca if raw.recommended_for_dmca is not None else bool(matches)
    return EvidenceAnalysisResult(
        matches=matches,
        summary=raw.summary or "Evidence analysis completed.",
        strength_score=strength,
        recommended_for_dmca=recommended,
        analysis_model=model_name,
        analyzed_at=datetime.now(timezone.utc),
    )


async def analyze_evidence(
    product: Product,
    page_text: Optional[str],
    infringement_url: str,
    page_title: Optional[str] = None,
    platform: Optional[str] = None,
    model: Optional[str] = None,
) -> Optional[EvidenceAnalysisResult]:
    """
    Analyze captured page text against a product and return ranked matches.

    Returns None when the page text is too short to analyze (under 50
    characters) and when the model call or its output fails. An analysis that
    ran but found nothing returns a result with an empty match list.

    Args:
        product: Product with its reference data and AI fingerprint
        page_text: Text captured from the infringing page
        infringement_url: The infringing URL
        page_title: Captured page title
        platform: Platform tag of the infringement
        model: Gemini model override

    Returns:
        Optional[EvidenceAnalysisResult]: cleaned analysis, or None
    """
    text = (page_text or "")[:MAX_PAGE_TEXT_LENGTH]
    if len(text.strip()) < MIN_PAGE_TEXT_LENGTH:
        logger.info(f"Page text too short for evidence analysis ({len(text.strip())} chars), skipping: {infringement_url}")
        return None

    model_name = model or llm.DEFAULT_MODEL
    user_prompt = build_user_prompt(product, text, page_title, infringement_url, platform)
    try:
        raw = await llm.generate_json(
            SYSTEM_PROMPT,
            user_prompt,
            RawEvidenceAnalysis,
            model=model_name,
            temperature=0.2,
            max_output_tokens=2000,
        )
    except (GoogleAPIError, genai_errors.APIError) as e:
        logger.error(f"Google API error during evidence analysis ({infringement_url}): {str(e)}")
        return None
    except (ValidationError, ValueError, httpx.HTTPError) as e:
        logger.error(f"Evidence analysis failed ({infringement_url}): {str(e)}")
        return None
    except Exception as e:
        logger.error(f"Unexpected error during evidence analysis ({infringement_url}): {str(e)}", exc_info=True)
        return None

    result = clean_analysis(raw, model_name)
    logger.info(
        f"Evidence analysis for {infringement_url}: {len(result.matches)} matches, "
        f"strength {result.strength_score}"
    )
    return result
