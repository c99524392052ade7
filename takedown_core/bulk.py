"""
Bulk DMCA generation.

Runs the single-infringement pipeline (profile -> targets -> comparisons ->
notice) for every item in a batch and groups the results by delivery channel
for operator review. No I/O happens here.
"""

import logging
from typing import Dict, List, Tuple

from takedown_core.comparison import build_comparison_items
from takedown_core.models import (
    BulkGenerationBatch,
    BulkGenerationFailure,
    BulkGenerationInput,
    BulkGenerationResult,
    BulkSummary,
    EmailTargetGroup,
    ManualTargetGroup,
    WebFormTargetGroup,
)
from takedown_core.notice import build_notice
from takedown_core.profiles import classify_infringement
from takedown_core.providers import pick_primary_target, resolve_all_targets

logger = logging.getLogger(__name__)


def generate_for_infringement(item: BulkGenerationInput) -> BulkGenerationResult:
    """Generate the notice for one infringement against its recommended target."""
    infringement = item.infringement
    product = item.product
    snapshot = item.evidence_snapshot

    profile = classify_infringement(
        platform=infringement.platform,
        infringement_type=infringement.infringement_type,
        evidence=infringement.evidence,
        source_url=infringement.source_url,
    )

    all_targets = resolve_all_targets(
        infringement.source_url,
        platform_hint=infringement.platform,
        hosting_provider=infringement.hosting_provider,
        registrar=infringement.registrar,
        abuse_email=infringement.abuse_email,
    )
    target = pick_primary_target(all_targets)
    provider = target.provider

    comparison_items = build_comparison_items(
        product_name=product.name,
        source_url=infringement.source_url,
        product_url=product.url,
        product_type=product.type,
        evidence=infringement.evidence,
        page_capture=snapshot.page_capture if snapshot else None,
        evidence_snapshot=snapshot,
        fingerprint=product.ai_extracted_data,
    )

    # The detection date stands in for first-seen on legacy rows
    if infringement.first_seen_at is None and infringement.created_at is not None:
        infringement = infringement.model_copy(update={"first_seen_at": infringement.created_at})

    notice = build_notice(
        contact=item.contact,
        product=product,
        infringement=infringement,
        profile=profile,
        provider=provider,
        comparison_items=comparison_items,
        evidence=snapshot,
    )

    return BulkGenerationResult(
        infringement_id=infringement.id,
        target=target,
        provider=provider,
        notice=notice,
        delivery_method=provider.delivery_method,
        all_targets=all_targets,
    )


def summarize_bulk_results(results: List[BulkGenerationResult]) -> BulkSummary:
    """Group results by recipient email, by provider + form URL, and by provider for manual delivery."""
    email_groups: Dict[str, EmailTargetGroup] = {}
    web_form_groups: Dict[Tuple[str, str], WebFormTargetGroup] = {}
    manual_groups: Dict[str, ManualTargetGroup] = {}

    for result in results:
        if result.delivery_method == "email":
            key = result.notice.recipient_email
            group = email_groups.get(key)
            if group is None:
                group = email_groups[key] = EmailTargetGroup(
                    recipient_email=result.notice.recipient_email,
                    recipient_name=result.notice.recipient_name,
                    provider_name=result.provider.name,
                    target_type=result.target.type,
                )
        elif result.delivery_method == "web_form":
            form_url = result.provider.dmca_form_url or ""
            group = web_form_groups.get((result.provider.name, form_url))
            if group is None:
                group = web_form_groups[(result.provider.name, form_url)] = WebFormTargetGroup(
                    provider_name=result.provider.name, form_url=form_url,
                )
        else:
            group = manual_groups.get(result.provider.name)
            if group is None:
                group = manual_groups[result.provider.name] = ManualTargetGroup(
                    provider_name=result.provider.name,
                )
        group.infringement_ids.append(result.infringement_id)
        group.count += 1

    return BulkSummary(
        email_targets=list(email_groups.values()),
        web_form_targets=list(web_form_groups.values()),
        manual_targets=list(manual_groups.values()),
        total_email=sum(1 for r in results if r.delivery_method == "email"),
        total_web_form=sum(1 for r in results if r.delivery_method == "web_form"),
        total_manual=sum(1 for r in results if r.delivery_method == "manual"),
    )


def generate_bulk(items: List[BulkGenerationInput]) -> BulkGenerationBatch:
    """
    Generate notices for a batch, preserving input order in ``results``.

    One malformed item is recorded under ``failures`` and does not stop the
    rest of the batch.
    """
    results: List[BulkGenerationResult] = []
    failures: List[BulkGenerationFailure] = []
    for item in items:
        try:
            results.append(generate_for_infringement(item))
        except Exception as e:
            logger.error(f"Bulk generation failed for infringement {item.infringement.id}: {str(e)}", exc_info=True)
            failures.append(BulkGenerationFailure(infringement_id=item.infringement.id, error=str(e)))

    summary = summarize_bulk_results(results)
    logger.info(
        f"Bulk generation complete: {len(results)} generated, {len(failures)} failed "
        f"({summary.total_email} email, {summary.total_web_form} web form, {summary.total_manual} manual)"
    )
    return BulkGenerationBatch(results=results, failures=failures, summary=summary)
