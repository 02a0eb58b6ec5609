# -*- coding: utf-8 -*-
"""
Croma scraper. Product pages live at /<slug>/p/<numeric code>.
"""
from __future__ import annotations

import re
from typing import Optional

from dealhub.scraping.base import MerchantScraper

_CODE_RE = re.compile(r"/p/(\d+)")


class CromaScraper(MerchantScraper):

    def extract_product_id(self, url: str) -> Optional[str]:
        m = _CODE_RE.search(url or "")
        return m.group(1) if m else None

    def canonical_url(self, url: str, product_id: Optional[str]) -> str:
        return url.split("?")[0].split("#")[0]
