# -*- coding: utf-8 -*-
"""
Amazon India scraper.

Deal cards are only kept when an ASIN can be read from the product link;
product URLs are canonicalised to https://www.amazon.in/dp/<ASIN>.
"""
from __future__ import annotations

import re
from typing import Optional

from dealhub.scraping.base import MerchantScraper

_ASIN_RE = re.compile(r"/dp/([A-Z0-9]{10})|/gp/product/([A-Z0-9]{10})")


class AmazonScraper(MerchantScraper):

    def extract_product_id(self, url: str) -> Optional[str]:
        m = _ASIN_RE.search(url or "")
        if not m:
            return None
        return m.group(1) or m.group(2)

    def canonical_url(self, url: str, product_id: Optional[str]) -> str:
        if product_id:
            return f"{self.config.base_url.rstrip('/')}/dp/{product_id}"
        return url.split("/ref=")[0]
