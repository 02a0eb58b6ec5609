# -*- coding: utf-8 -*-
"""
Shared contract for merchant scrapers.

A scraper fetches rendered HTML through a BrowserSession and parses it
with BeautifulSoup using the selectors from the merchant's YAML config.
Merchant modules only supply product-id extraction and URL
canonicalisation; price/discount helpers come from scraping.parsing.
"""
from __future__ import annotations
import asyncio
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Set

from bs4 import BeautifulSoup
from pydantic import ValidationError

from dealhub.config import settings
from dealhub.errors import NavigationError
from dealhub.merchants.registry import MerchantConfig, SelectorConfig
from dealhub.schemas import CandidateDeal
from dealhub.scraping.browser import BrowserSession
from dealhub.scraping.parsing import (
    absolute_url,
    clean_title,
    parse_discount,
    parse_price,
    reconcile_discount,
)
from dealhub.utils.logger import get_logger

_DESCRIPTION_LIMIT = 500


def _pick(node, cfg: SelectorConfig):
    for sel in (cfg.primary, cfg.fallback):
        if sel:
            found = node.select_one(sel)
            if found:
                return found
    return None


def _pick_all(node, cfg: SelectorConfig) -> list:
    for sel in (cfg.primary, cfg.fallback):
        if sel:
            found = node.select(sel)
            if found:
                return found
    return []


def _text(el) -> str:
    return el.get_text(" ", strip=True) if el else ""


def _image_src(el) -> Optional[str]:
    if el is None:
        return None
    src = el.get("src")
    if not src or src.startswith("data:image"):
        src = el.get("data-src") or el.get("data-old-hires") or el.get("data-lazy-src")
    return src or None


class MerchantScraper(ABC):

    def __init__(
        self,
        config: MerchantConfig,
        session_factory: Callable[[], BrowserSession] = BrowserSession,
    ):
        self.config           = config
        self._session_factory = session_factory
        self.logger           = get_logger("scraper." + config.slug)

    @property
    def merchant_name(self) -> str:
        return self.config.name

    # ------------------------------------------------------------------ #
    #  Merchant-specific hooks                                           #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def extract_product_id(self, url: str) -> Optional[str]:
        ...

    def canonical_url(self, url: str, product_id: Optional[str]) -> str:
        return url.split("#")[0]

    # ------------------------------------------------------------------ #
    #  Public entry points                                               #
    # ------------------------------------------------------------------ #

    async def scrape_daily_deals(self) -> List[CandidateDeal]:
        """Visit every listing page in turn and collect candidate deals.

        A page that fails to load is logged and skipped; if every page
        fails, the last NavigationError is raised so the job retries.
        """
        candidates: List[CandidateDeal] = []
        seen: Set[str] = set()
        failures = 0
        last_error: Optional[NavigationError] = None
        paths = self.config.listing_paths

        session = self._session_factory()
        try:
            for idx, path in enumerate(paths):
                url = absolute_url(self.config.base_url, path)
                self.logger.info("[%s] Scraping: %s", self.merchant_name, url)
                try:
                    html = await session.fetch_html(
                        url,
                        ready_selector=self.config.ready_selector,
                        scroll=self.config.needs_scroll,
                    )
                except NavigationError as e:
                    failures += 1
                    last_error = e
                    self.logger.warning(
                        "[%s] Listing page failed: %s", self.merchant_name, e,
                    )
                else:
                    for deal in self.parse_listing(html):
                        if deal.product_url in seen:
                            continue
                        seen.add(deal.product_url)
                        candidates.append(deal)

                if idx < len(paths) - 1:
                    await asyncio.sleep(settings.listing_page_delay_seconds)

            if paths and failures == len(paths):
                raise last_error
        finally:
            await session.close()

        self.logger.info(
            "[%s] Scraped %d candidate deals from %d page(s)",
            self.merchant_name, len(candidates), len(paths) - failures,
        )
        return candidates

    async def scrape_product_by_url(self, url: str) -> Optional[CandidateDeal]:
        """Scrape one product page. None when the page is not a product page."""
        session = self._session_factory()
        try:
            html = await session.fetch_html(url, ready_selector=self.config.product.title.primary)
        finally:
            await session.close()

        deal = self.parse_product(html, url)
        if deal is None:
            self.logger.warning("[%s] No product data at %s", self.merchant_name, url)
        return deal

    # ------------------------------------------------------------------ #
    #  Parsing                                                           #
    # ------------------------------------------------------------------ #

    def parse_listing(self, html: str) -> List[CandidateDeal]:
        soup  = BeautifulSoup(html, "lxml")
        cards = soup.select(self.config.listing.card) if self.config.listing.card else []
        if not cards:
            self.logger.warning("[%s] No product cards found on page", self.merchant_name)
            return []

        deals: List[CandidateDeal] = []
        for card in cards:
            deal = self.parse_card(card)
            if deal:
                deals.append(deal)
        self.logger.info(
            "[%s] %d cards, %d usable", self.merchant_name, len(cards), len(deals),
        )
        return deals

    def parse_card(self, card) -> Optional[CandidateDeal]:
        s = self.config.listing

        title_el = _pick(card, s.title)
        title = clean_title(_text(title_el) or (title_el.get("title") if title_el else None))
        if not title:
            return None

        price = parse_price(_text(_pick(card, s.price)))
        if not price:
            return None

        link_el = _pick(card, s.link)
        href = absolute_url(self.config.base_url, link_el.get("href") if link_el else None)
        if not href:
            return None

        product_id = self.extract_product_id(href)
        if self.config.requires_product_id and not product_id:
            return None

        original_price = parse_price(_text(_pick(card, s.original_price)))
        if original_price and original_price <= price:
            original_price = None

        return self._build(
            title=title,
            price=price,
            original_price=original_price,
            scraped_discount=parse_discount(_text(_pick(card, s.discount))),
            product_url=self.canonical_url(href, product_id),
            image_url=_image_src(_pick(card, s.image)),
            product_id=product_id,
        )

    def parse_product(self, html: str, url: str) -> Optional[CandidateDeal]:
        s    = self.config.product
        soup = BeautifulSoup(html, "lxml")

        title = clean_title(_text(_pick(soup, s.title)))
        if not title:
            return None
        price = parse_price(_text(_pick(soup, s.price)))
        if not price:
            return None

        original_price = parse_price(_text(_pick(soup, s.original_price)))
        if original_price and original_price <= price:
            original_price = None

        bullets = [_text(el) for el in _pick_all(soup, s.description)]
        description = ", ".join(b for b in bullets if b)[:_DESCRIPTION_LIMIT] or None

        product_id = self.extract_product_id(url)
        return self._build(
            title=title,
            price=price,
            original_price=original_price,
            scraped_discount=parse_discount(_text(_pick(soup, s.discount))),
            product_url=self.canonical_url(url, product_id),
            image_url=_image_src(_pick(soup, s.image)),
            product_id=product_id,
            description=description,
        )

    def _build(
        self,
        title: str,
        price: int,
        original_price: Optional[int],
        scraped_discount: Optional[int],
        product_url: str,
        image_url: Optional[str],
        product_id: Optional[str],
        description: Optional[str] = None,
    ) -> Optional[CandidateDeal]:
        try:
            return CandidateDeal(
                title=title[:255],
                price=price,
                original_price=original_price,
                discount_percentage=reconcile_discount(price, original_price, scraped_discount),
                product_url=product_url,
                image_url=absolute_url(self.config.base_url, image_url),
                merchant=self.merchant_name,
                description=description,
                external_product_id=product_id,
            )
        except ValidationError as e:
            self.logger.debug("[%s] Dropped card '%s': %s", self.merchant_name, title[:40], e)
            return None
