# -*- coding: utf-8 -*-
"""
Flipkart scraper. The pid query parameter is the product id; it is
best-effort and its absence does not drop a card.
"""
from __future__ import annotations

import re
from typing import Optional
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from dealhub.scraping.base import MerchantScraper

_PID_RE = re.compile(r"pid=([^&]+)")


class FlipkartScraper(MerchantScraper):

    def extract_product_id(self, url: str) -> Optional[str]:
        m = _PID_RE.search(url or "")
        return m.group(1) if m else None

    def canonical_url(self, url: str, product_id: Optional[str]) -> str:
        # Tracking params (lid, marketplace, store, srno...) vary per listing
        parts = urlparse(url)
        query = urlencode({"pid": product_id}) if product_id else ""
        return urlunparse((parts.scheme, parts.netloc, parts.path, "", query, ""))
