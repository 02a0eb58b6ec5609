# -*- coding: utf-8 -*-
"""
Title similarity for deal deduplication.

Two measures over the same pair of titles:
  * character level: Levenshtein ratio on the normalised title
  * word level:      Jaccard overlap of the feature words

blended into one 0-100 integer. Pairs that swap a model number or a
colour are capped below the duplicate threshold.
"""
from __future__ import annotations

import re
from typing import List, Set

from rapidfuzz.distance import Levenshtein

_EMOJI_RE = re.compile(
    "["
    "\U0001F300-\U0001F5FF"
    "\U0001F600-\U0001F64F"
    "\U0001F680-\U0001F6FF"
    "\U0001F900-\U0001F9FF"
    "☀-⛿"
    "✀-➿"
    "]+"
)
_NON_WORD_RE = re.compile(r"[^\w\s]|_")

# Listing noise appended to titles by merchants, not part of the product name
_PROMO_PHRASES = [
    "deal of the day",
    "lightning deal",
    "limited time deal",
    "great indian festival",
    "big billion days",
    "best seller",
    "bestseller",
    "hot deal",
    "new launch",
]

STOP_WORDS: Set[str] = {
    "deal", "price", "buy", "here", "flat", "off", "save", "now",
    "get", "offer", "sale", "discount", "limited", "time", "only",
    "use", "code", "coupon", "order", "value", "min", "max",
}


def normalize_title(text: str) -> str:
    """Lower-case, drop emoji, punctuation and promo phrases, squash spaces."""
    if not text:
        return ""
    low = _EMOJI_RE.sub(" ", text.lower())
    low = _NON_WORD_RE.sub(" ", low)
    low = " ".join(low.split())
    for phrase in _PROMO_PHRASES:
        low = low.replace(phrase, " ")
    return " ".join(low.split())


def extract_features(text: str) -> List[str]:
    return [
        w for w in normalize_title(text).split()
        if len(w) > 2 and w not in STOP_WORDS
    ]


def levenshtein_ratio(a: str, b: str) -> float:
    """1 - distance / longer length, 0.0 when either side is empty."""
    if not a or not b:
        return 0.0
    return Levenshtein.normalized_similarity(a, b)


def jaccard(a: List[str], b: List[str]) -> float:
    sa, sb = set(a), set(b)
    union = sa | sb
    if not union:
        return 0.0
    return len(sa & sb) / len(union)


# Colour words merchants put in titles, with spelling variants folded
_COLOUR_ALIASES = {"grey": "gray"}
COLOUR_WORDS: Set[str] = {
    "black", "white", "silver", "gray", "blue", "red", "green", "yellow",
    "pink", "purple", "gold", "rose", "orange", "brown", "beige", "navy",
    "teal", "midnight", "graphite", "titanium", "starlight", "cream",
}

# Highest score a pair with conflicting model or colour tokens can reach
VARIANT_CEILING = 60

_DIGITS_RE = re.compile(r"\D")


def _model_signatures(norm: str) -> Set[str]:
    # "1000xm5" -> "10005", "256gb" and "256" both -> "256"
    return {_DIGITS_RE.sub("", w) for w in norm.split() if any(c.isdigit() for c in w)}


def _colours(norm: str) -> Set[str]:
    words = {_COLOUR_ALIASES.get(w, w) for w in norm.split()}
    return words & COLOUR_WORDS


def _swapped(a: Set[str], b: Set[str]) -> bool:
    """True when each side carries a token the other lacks (a swap, not an addition)."""
    return bool(a - b) and bool(b - a)


def is_variant_pair(a: str, b: str) -> bool:
    """Titles naming different models or colourways of otherwise similar products."""
    na, nb = normalize_title(a), normalize_title(b)
    return (
        _swapped(_model_signatures(na), _model_signatures(nb))
        or _swapped(_colours(na), _colours(nb))
    )


def title_similarity(a: str, b: str, char_weight: float = 0.5) -> int:
    """
    Blend of character and word similarity, 0-100.

    A pair that swaps a model number or a colour is capped at VARIANT_CEILING,
    so "WH-1000XM4" against "WH-1000XM5" never reads as the same listing.
    """
    na, nb = normalize_title(a), normalize_title(b)
    if not na or not nb:
        return 0
    if na == nb:
        return 100
    char_score = levenshtein_ratio(na, nb)
    word_score = jaccard(extract_features(a), extract_features(b))
    score = char_weight * char_score + (1.0 - char_weight) * word_score
    score = max(0, min(100, round(score * 100)))
    if is_variant_pair(a, b):
        score = min(score, VARIANT_CEILING)
    return score
