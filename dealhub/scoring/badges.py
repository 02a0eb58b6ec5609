# -*- coding: utf-8 -*-
"""
Badge labels and reasoning text for a scored deal.

Advisory UI content. Every badge is keyed off a threshold on one score or
signal, so a higher score never loses a badge.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from dealhub.schemas import ScoreBreakdown

MAX_BADGES = 5

_TIERS = [
    (85, "Exceptional Deal"),
    (70, "Hot Deal"),
    (55, "Good Deal"),
]


@dataclass
class Signals:
    discount:          int             = 0
    at_historical_low: bool            = False
    verified:          bool            = False
    merchant_trust:    float           = 0.0
    age_hours:         float           = 0.0
    hours_to_expiry:   Optional[float] = None


def tier_label(total: int) -> Optional[str]:
    for floor, label in _TIERS:
        if total >= floor:
            return label
    return None


def generate_badges(total: int, breakdown: ScoreBreakdown, signals: Signals) -> List[str]:
    badges: List[str] = []

    tier = tier_label(total)
    if tier:
        badges.append(tier)

    # Value
    if signals.discount >= 60:
        badges.append("Massive Discount")
    if signals.at_historical_low:
        badges.append("Historical Low")

    # Trust
    if signals.verified:
        badges.append("Verified")
    if signals.merchant_trust >= 32:
        badges.append("Trusted Merchant")

    # Urgency
    if signals.age_hours <= 6:
        badges.append("Just Posted")
    if signals.hours_to_expiry is not None and 0 < signals.hours_to_expiry <= 24:
        badges.append("Ending Soon")

    # Social
    if breakdown.social_proof >= 70:
        badges.append("Community Favorite")

    return badges[:MAX_BADGES]


_LABELS = {
    "value_prop":   "value",
    "authenticity": "authenticity",
    "urgency":      "urgency",
    "social_proof": "community response",
}


def build_reasoning(total: int, breakdown: ScoreBreakdown, signals: Signals) -> str:
    parts = sorted(
        breakdown.model_dump().items(), key=lambda kv: kv[1], reverse=True,
    )
    strongest, weakest = parts[0], parts[-1]
    head = tier_label(total) or "Average deal"

    text = (
        f"{head} at {total}/100. "
        f"Strongest on {_LABELS[strongest[0]]} ({strongest[1]}/100), "
        f"weakest on {_LABELS[weakest[0]]} ({weakest[1]}/100)."
    )
    if signals.at_historical_low:
        text += " Lowest price seen for this deal."
    elif signals.discount:
        text += f" {signals.discount}% off the listed price."
    return text
