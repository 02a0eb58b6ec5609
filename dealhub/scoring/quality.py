# -*- coding: utf-8 -*-
"""
Deal quality scoring.

total = round(0.40*value_prop + 0.25*authenticity + 0.20*urgency + 0.15*social_proof)

Every sub-score is clamped to 0..100 before weighting and the total is
clamped to 0..100. score_deal() is pure; calculate_score() only reads the
deal store to gather its inputs.
"""
from __future__ import annotations

import math
import statistics
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from dealhub.config import settings
from dealhub.db.repository import (
    get_deal,
    get_merchant_deals,
    get_price_history,
    get_top_deal_pool,
)
from dealhub.errors import DealNotFound
from dealhub.schemas import RankedDeal, ScoreBreakdown, ScoreResult, utcnow
from dealhub.scoring.badges import Signals, build_reasoning, generate_badges
from dealhub.utils.logger import get_logger

logger = get_logger(__name__)

WEIGHTS = {
    "value_prop":   0.40,
    "authenticity": 0.25,
    "urgency":      0.20,
    "social_proof": 0.15,
}

HISTORY_WINDOW     = 90
TREND_WINDOW       = 10
MERCHANT_WINDOW    = 50
BARGAIN_BIN_PRICE  = 1000


def _clamp(value: float, low: float = 0, high: float = 100) -> int:
    return int(max(low, min(high, round(value))))


# ═══════════════════════════════════════════════════════════════════════════════
# VALUE PROPOSITION
# ═══════════════════════════════════════════════════════════════════════════════


def discount_score(discount: Optional[int], price: int) -> float:
    """
    Tiered discount points, non-decreasing in *discount* for a fixed price.

    The one exception is the bargain-bin penalty: above 70% off on an item
    under BARGAIN_BIN_PRICE the points are halved, so 71% scores below 70%
    there on purpose.
    """
    d = discount or 0
    if d >= 80:
        score = 40.0
    elif d >= 60:
        score = 35.0
    elif d >= 40:
        score = 28.0
    elif d >= 25:
        score = 20.0
    elif d >= 15:
        score = 12.0
    else:
        score = d / 15 * 12
    # Deep discounts on cheap items are usually inflated MRPs
    if d > 70 and price < BARGAIN_BIN_PRICE:
        score *= 0.5
    return score


def price_position_score(price: int, history: Sequence[int]) -> float:
    """Where *price* sits against the trailing observations (any order)."""
    window = list(history)[:HISTORY_WINDOW]
    if len(window) < 2:
        return 15.0
    if price <= min(window) and len(set(window)) >= 2:
        return 40.0

    median = statistics.median(window)
    drop = (median - price) / median * 100 if median else 0.0
    if drop >= 30:
        return 35.0
    if drop >= 15:
        return 28.0
    if drop > 0:
        return 20.0
    if drop == 0:
        return 15.0
    return max(3.0, round(15 + drop * 0.5))


def savings_bonus(savings: int) -> float:
    for floor, bonus in ((50000, 20), (20000, 15), (10000, 12), (5000, 8), (2000, 5), (1000, 3)):
        if savings >= floor:
            return float(bonus)
    return 0.0


def absolute_savings(price: int, original_price: Optional[int], discount: Optional[int]) -> int:
    if original_price and original_price > price:
        return original_price - price
    if discount and 0 < discount < 100:
        return round(price * discount / (100 - discount))
    return 0


def value_prop_score(
    price: int,
    original_price: Optional[int],
    discount: Optional[int],
    history: Sequence[int],
) -> int:
    return _clamp(
        discount_score(discount, price)
        + price_position_score(price, history)
        + savings_bonus(absolute_savings(price, original_price, discount))
    )


# ═══════════════════════════════════════════════════════════════════════════════
# AUTHENTICITY
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass
class MerchantStats:
    deal_count:     int = 0
    upvotes:        int = 0
    downvotes:      int = 0
    verified_count: int = 0
    expired_count:  int = 0

    @classmethod
    def from_deals(cls, deals) -> "MerchantStats":
        stats = cls()
        for d in deals:
            stats.deal_count     += 1
            stats.upvotes        += d.upvotes or 0
            stats.downvotes      += d.downvotes or 0
            stats.verified_count += 1 if d.verified else 0
            stats.expired_count  += 1 if d.is_expired else 0
        return stats


def merchant_trust_score(stats: MerchantStats) -> float:
    """0..40 from the merchant's recent track record."""
    if not stats.deal_count:
        return 20.0
    votes = stats.upvotes + stats.downvotes
    upvote_ratio  = stats.upvotes / votes if votes else 0.5
    verified_frac = stats.verified_count / stats.deal_count
    expiry_rate   = stats.expired_count / stats.deal_count
    return 40 * (0.5 * upvote_ratio + 0.3 * verified_frac + 0.2 * (1 - expiry_rate))


def verification_score(deal) -> float:
    if deal.verified:
        return 30.0
    if deal.verification_attempts:
        return 20.0 if deal.url_accessible else 5.0
    return 10.0


def completeness_score(deal) -> float:
    score = 0.0
    if deal.url:
        score += 5
    if deal.image_url:
        score += 5
    if deal.description and len(deal.description) >= 50:
        score += 5
    return score


def red_flag_penalty(deal) -> float:
    penalty = 0.0
    if deal.auto_flagged:
        penalty += 10
    if not deal.url:
        penalty += 5
    if (deal.discount_percentage or 0) > 85:
        penalty += 5
    return penalty


def authenticity_score(deal, stats: MerchantStats) -> int:
    return _clamp(
        merchant_trust_score(stats)
        + verification_score(deal)
        + completeness_score(deal)
        - red_flag_penalty(deal)
    )


# ═══════════════════════════════════════════════════════════════════════════════
# URGENCY
# ═══════════════════════════════════════════════════════════════════════════════


def freshness_score(age_hours: float) -> float:
    for limit, score in ((2, 40), (6, 35), (12, 30), (24, 25), (48, 20), (72, 15), (168, 10)):
        if age_hours <= limit:
            return float(score)
    days = age_hours / 24
    return max(0.0, 10 - (days - 7))


def price_trend_pct(prices: Sequence[int]) -> float:
    """Least-squares change across the window, as % of the mean price.

    *prices* are chronological (oldest first).
    """
    n = len(prices)
    mean_x = (n - 1) / 2
    mean_y = sum(prices) / n
    var_x = sum((i - mean_x) ** 2 for i in range(n))
    if not var_x or not mean_y:
        return 0.0
    slope = sum((i - mean_x) * (p - mean_y) for i, p in enumerate(prices)) / var_x
    return slope * (n - 1) / mean_y * 100


def trend_score(history_newest_first: Sequence[int]) -> float:
    window = list(history_newest_first)[:TREND_WINDOW]
    if len(window) < 3:
        return 15.0
    change = price_trend_pct(window[::-1])
    if change <= -20:
        return 30.0
    if change <= -10:
        return 25.0
    if change <= -2:
        return 20.0
    if change < 2:
        return 15.0
    if change <= 10:
        return 8.0
    return 3.0


def hours_to_expiry(deal, now: datetime) -> Optional[float]:
    if not deal.expires_at:
        return None
    return (deal.expires_at - now).total_seconds() / 3600


def expiry_score(deal, now: datetime) -> float:
    if deal.is_expired:
        return 0.0
    left = hours_to_expiry(deal, now)
    if left is None:
        return 15.0
    if left <= 0:
        return 0.0
    for limit, score in ((6, 30), (24, 25), (72, 20), (168, 15)):
        if left <= limit:
            return float(score)
    return 10.0


def urgency_score(deal, history_newest_first: Sequence[int], now: datetime) -> int:
    age_hours = max(0.0, (now - deal.created_at).total_seconds() / 3600)
    return _clamp(
        freshness_score(age_hours)
        + trend_score(history_newest_first)
        + expiry_score(deal, now)
    )


# ═══════════════════════════════════════════════════════════════════════════════
# SOCIAL PROOF
# ═══════════════════════════════════════════════════════════════════════════════


def vote_score(upvotes: int, downvotes: int) -> float:
    total = upvotes + downvotes
    if not total:
        return 25.0
    base = upvotes / total * 50
    if total >= 100:
        base *= 1.2
    elif total >= 50:
        base *= 1.1
    elif total < 10:
        base *= 0.8
    return min(50.0, base)


def comment_score(comments: int) -> float:
    return float(min(30, 5 * comments))


def view_score(views: int) -> float:
    return float(min(20, round(math.log10(views + 1) * 5)))


def social_proof_score(deal) -> int:
    return _clamp(
        vote_score(deal.upvotes or 0, deal.downvotes or 0)
        + comment_score(deal.comment_count or 0)
        + view_score(deal.view_count or 0)
    )


# ═══════════════════════════════════════════════════════════════════════════════
# COMPOSITE
# ═══════════════════════════════════════════════════════════════════════════════


def score_deal(
    deal,
    history_newest_first: Sequence[int],
    stats: MerchantStats,
    now: Optional[datetime] = None,
) -> ScoreResult:
    now = now or utcnow()
    breakdown = ScoreBreakdown(
        value_prop=value_prop_score(
            deal.price, deal.original_price, deal.discount_percentage, history_newest_first,
        ),
        authenticity=authenticity_score(deal, stats),
        urgency=urgency_score(deal, history_newest_first, now),
        social_proof=social_proof_score(deal),
    )
    total = _clamp(sum(getattr(breakdown, k) * w for k, w in WEIGHTS.items()))

    window = list(history_newest_first)[:HISTORY_WINDOW]
    signals = Signals(
        discount=deal.discount_percentage or 0,
        at_historical_low=(
            len(window) >= 2 and len(set(window)) >= 2 and deal.price <= min(window)
        ),
        verified=bool(deal.verified),
        merchant_trust=merchant_trust_score(stats),
        age_hours=max(0.0, (now - deal.created_at).total_seconds() / 3600),
        hours_to_expiry=hours_to_expiry(deal, now),
    )
    return ScoreResult(
        total_score=total,
        breakdown=breakdown,
        badges=generate_badges(total, breakdown, signals),
        reasoning=build_reasoning(total, breakdown, signals),
    )


async def calculate_score(db, deal_id: str, now: Optional[datetime] = None) -> ScoreResult:
    deal = await get_deal(db, deal_id)
    if not deal:
        raise DealNotFound(deal_id)
    history = await get_price_history(db, deal_id, limit=HISTORY_WINDOW)
    merchant_deals = await get_merchant_deals(db, deal.merchant, limit=MERCHANT_WINDOW)
    return score_deal(
        deal,
        [h.price for h in history],
        MerchantStats.from_deals(merchant_deals),
        now=now,
    )


async def calculate_batch_scores(db, deal_ids: List[str]) -> Dict[str, int]:
    """Total score per deal id; a deal that fails to score gets the neutral fallback."""
    scores: Dict[str, int] = {}
    for deal_id in deal_ids:
        try:
            scores[deal_id] = (await calculate_score(db, deal_id)).total_score
        except Exception as e:
            logger.warning("[Scoring] deal %s failed, using %d: %s",
                           deal_id, settings.score_fallback, e, exc_info=True)
            scores[deal_id] = settings.score_fallback
    return scores


async def get_top_quality_deals(db, limit: int = 20) -> List[RankedDeal]:
    pool = await get_top_deal_pool(
        db, settings.top_deals_min_discount, settings.top_deals_pool_size,
    )
    ranked: List[RankedDeal] = []
    for deal in pool:
        try:
            score = await calculate_score(db, deal.id)
        except Exception as e:
            logger.warning("[Scoring] deal %s failed, using %d: %s",
                           deal.id, settings.score_fallback, e, exc_info=True)
            score = ScoreResult(
                total_score=settings.score_fallback,
                reasoning="Score unavailable, neutral default applied.",
            )
        ranked.append(RankedDeal(
            deal_id=deal.id,
            title=deal.title,
            merchant=deal.merchant,
            price=deal.price,
            discount_percentage=deal.discount_percentage,
            score=score,
        ))

    ranked.sort(key=lambda r: r.score.total_score, reverse=True)
    logger.info("[Scoring] Ranked %d deals, returning top %d", len(ranked), limit)
    return ranked[:limit]
