# -*- coding: utf-8 -*-
"""
Deduplication engine.

check_for_duplicates() compares a candidate against the catalog:
  1. exact product URL  -> duplicate, score 100
  2. same merchant only -> recent deals (bounded) of that merchant
  3. title similarity   -> duplicate when the best score >= threshold

resolve_action() applies the price policy on top of the check:
a strictly lower price replaces the matched deal, anything else is rejected.
"""
from __future__ import annotations

from datetime import timedelta
from typing import Optional

from dealhub.config import settings
from dealhub.db.repository import find_deal_by_url, find_recent_deals_by_merchant
from dealhub.dedup.similarity import title_similarity
from dealhub.schemas import CandidateDeal, DedupAction, DuplicateCheck, utcnow
from dealhub.utils.logger import get_logger

logger = get_logger(__name__)


async def check_for_duplicates(
    db,
    candidate: CandidateDeal,
    threshold:     Optional[int]   = None,
    char_weight:   Optional[float] = None,
    lookback_days: Optional[int]   = None,
    limit:         Optional[int]   = None,
) -> DuplicateCheck:
    threshold     = settings.dedup_similarity_threshold if threshold is None else threshold
    char_weight   = settings.dedup_char_weight if char_weight is None else char_weight
    lookback_days = settings.dedup_lookback_days if lookback_days is None else lookback_days
    limit         = settings.dedup_candidate_limit if limit is None else limit

    # Step 1: exact URL
    if candidate.product_url:
        existing = await find_deal_by_url(db, candidate.product_url)
        if existing:
            logger.info(
                "[Dedup] %s... -> DUPLICATE (same URL as %s)",
                candidate.title[:40], existing.id,
            )
            return DuplicateCheck(
                is_duplicate=True,
                similarity_score=100,
                matched_deal_id=existing.id,
                matched_deal_price=existing.price,
                reason="Same product URL as existing deal",
            )

    # Step 2: same-merchant pool
    since = utcnow() - timedelta(days=lookback_days)
    pool = await find_recent_deals_by_merchant(db, candidate.merchant, since, limit)
    if not pool:
        return DuplicateCheck(
            is_duplicate=False,
            similarity_score=0,
            reason="No recent deals from this merchant",
        )

    # Step 3: best title match
    best = None
    best_score = 0
    for deal in pool:
        score = title_similarity(candidate.title, deal.title, char_weight)
        if score > best_score:
            best, best_score = deal, score
        if score == 100:
            break

    is_duplicate = best is not None and best_score >= threshold
    logger.info(
        "[Dedup] %s... -> %s (%d%%)",
        candidate.title[:40], "DUPLICATE" if is_duplicate else "UNIQUE", best_score,
    )

    if is_duplicate:
        return DuplicateCheck(
            is_duplicate=True,
            similarity_score=best_score,
            matched_deal_id=best.id,
            matched_deal_price=best.price,
            reason=f'Similar to: "{best.title[:50]}" ({best_score}% match)',
        )
    return DuplicateCheck(
        is_duplicate=False,
        similarity_score=best_score,
        reason=f"Unique deal (highest similarity: {best_score}%)",
    )


def resolve_action(check: DuplicateCheck, candidate: CandidateDeal) -> DedupAction:
    if not check.is_duplicate:
        return DedupAction.CREATE
    if check.matched_deal_price is not None and candidate.price < check.matched_deal_price:
        return DedupAction.REPLACE
    return DedupAction.REJECT
