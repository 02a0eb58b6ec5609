# -*- coding: utf-8 -*-
"""
Shared field parsers used by every merchant scraper.

Plain functions, no state. Prices are whole rupees (int).
"""
from __future__ import annotations

import re
from typing import Optional
from urllib.parse import urljoin

_CURRENCY_RE = re.compile(r"(₹|rs\.?|inr)", re.IGNORECASE)
_NUMBER_RE   = re.compile(r"\d+(?:\.\d+)?")
_PERCENT_RE  = re.compile(r"(\d{1,3})\s*%")


def parse_price(text: Optional[str]) -> Optional[int]:
    """'₹1,29,999.00' -> 129999. Returns None unless a positive number is found."""
    if not text:
        return None
    cleaned = _CURRENCY_RE.sub("", text).replace(",", "")
    cleaned = "".join(cleaned.split())
    m = _NUMBER_RE.search(cleaned)
    if not m:
        return None
    try:
        value = round(float(m.group(0)))
    except ValueError:
        return None
    return value if value > 0 else None


def parse_discount(text: Optional[str]) -> Optional[int]:
    """'(45% off)' -> 45. Values outside 0..100 are ignored."""
    if not text:
        return None
    m = _PERCENT_RE.search(text)
    if not m:
        return None
    value = int(m.group(1))
    return value if 0 <= value <= 100 else None


def compute_discount(price: Optional[int], original_price: Optional[int]) -> Optional[int]:
    if not price or not original_price or original_price <= price:
        return None
    return round((original_price - price) / original_price * 100)


def reconcile_discount(
    price: int,
    original_price: Optional[int],
    scraped: Optional[int] = None,
) -> Optional[int]:
    """Discount to store alongside *price*.

    When both prices are known the computed value wins, so the stored
    percentage always matches the stored prices. Otherwise the on-page
    figure is kept.
    """
    if original_price:
        if original_price > price:
            return compute_discount(price, original_price)
        return 0
    return scraped


def clean_title(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    title = " ".join(raw.split())
    return title or None


def absolute_url(base_url: str, href: Optional[str]) -> Optional[str]:
    if not href:
        return None
    href = href.strip()
    if href.startswith("javascript:") or href == "#":
        return None
    return urljoin(base_url, href)
