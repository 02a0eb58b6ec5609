# -*- coding: utf-8 -*-
"""
Ingestion orchestrator: job handlers that connect scrapers, the dedup
engine and the deal store.

  scrape-merchant       one merchant's listing pages -> dedup -> persist
  scrape-all-merchants  fan out one scrape-merchant job per active merchant
  scrape-product-url    one product page (merchant inferred from host)
  track-deal-price      re-scrape one deal's product page
  track-all-prices      track-deal-price over every live deal
  expire-deals          mark stale deals expired
  verify-deal           re-check one deal and store its verification verdict
  verify-all-deals      verify-deal over live deals, least recently checked first

The automation user is resolved once in start() and reused as the author
of every scraped deal.
"""
from __future__ import annotations

import asyncio
import importlib
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import IntegrityError

from dealhub.config import settings
from dealhub.db.models import async_session
from dealhub.db.repository import (
    append_price_history,
    expire_deals,
    get_deal,
    get_merchant_by_slug,
    get_or_create_system_user,
    insert_deal,
    list_active_merchants,
    list_trackable_deals,
    list_verifiable_deals,
    record_verification,
    update_deal_price,
    update_merchant_sync,
)
from dealhub.dedup.engine import check_for_duplicates, resolve_action
from dealhub.errors import (
    DealHubError,
    DealNotFound,
    MerchantNotFound,
    NavigationError,
    PageGone,
    ProductNotFound,
    ScraperNotImplemented,
    UnsupportedMerchantURL,
)
from dealhub.merchants.registry import MerchantConfig, MerchantRegistry, merchant_registry
from dealhub.schemas import (
    CandidateDeal,
    DedupAction,
    DuplicateCheck,
    FanOutResult,
    IngestionResult,
    JobType,
    PriceTrackResult,
    ProductUrlResult,
    ScrapeJob,
    VerificationResult,
    VerificationStatus,
)
from dealhub.scraping.base import MerchantScraper
from dealhub.scraping.browser import BrowserSession
from dealhub.utils.locks import KeyedLock
from dealhub.utils.logger import get_logger

logger = get_logger(__name__)

DOWNVOTE_FLAG_RATIO = 0.6
DOWNVOTE_MIN_VOTES  = 10


def _class_name(slug: str) -> str:
    """amazon -> AmazonScraper | reliance_digital -> RelianceDigitalScraper"""
    return "".join(p.capitalize() for p in slug.split("_")) + "Scraper"


def load_scraper(
    config: MerchantConfig,
    session_factory: Callable[[], BrowserSession] = BrowserSession,
) -> MerchantScraper:
    module_path = config.scraper_module or f"dealhub.scraping.{config.slug}"
    class_name  = _class_name(config.slug)
    try:
        mod   = importlib.import_module(module_path)
        klass = getattr(mod, class_name)
    except (ImportError, AttributeError) as e:
        logger.error("[%s] cannot load %s.%s: %s", config.slug, module_path, class_name, e)
        raise ScraperNotImplemented(config.name) from e
    return klass(config, session_factory=session_factory)


def _downvote_flag(upvotes: int, downvotes: int) -> Optional[str]:
    """Flag reason when the community has clearly voted a deal down."""
    total = (upvotes or 0) + (downvotes or 0)
    if total < DOWNVOTE_MIN_VOTES:
        return None
    ratio = downvotes / total
    if ratio > DOWNVOTE_FLAG_RATIO:
        return f"High downvote ratio: {round(ratio * 100)}%"
    return None


@dataclass
class IngestOutcome:
    action:  DedupAction
    check:   DuplicateCheck
    deal_id: Optional[str] = None


class IngestionOrchestrator:

    def __init__(
        self,
        session_factory=async_session,
        registry: MerchantRegistry = merchant_registry,
        queue=None,
        scraper_factory: Callable[[MerchantConfig], MerchantScraper] = load_scraper,
        system_user_id: Optional[str] = None,
    ):
        self._sessions        = session_factory
        self.registry         = registry
        self.queue            = queue
        self._scraper_factory = scraper_factory
        self.system_user_id   = system_user_id
        self._locks           = KeyedLock()

    # ── Startup ───────────────────────────────────────────────────────────────

    async def start(self) -> str:
        """Resolve (or create) the automation user that authors scraped deals."""
        if not self.system_user_id:
            async with self._sessions() as db:
                user = await get_or_create_system_user(
                    db, settings.system_username, settings.system_email,
                )
                self.system_user_id = user.id
            logger.info("[Ingestion] system user %s resolved", settings.system_username)
        return self.system_user_id

    def register_handlers(self, queue) -> None:
        self.queue = queue
        queue.register(JobType.SCRAPE_MERCHANT,      self._handle_scrape_merchant)
        queue.register(JobType.SCRAPE_ALL_MERCHANTS, self._handle_scrape_all)
        queue.register(JobType.SCRAPE_PRODUCT_URL,   self._handle_product_url)
        queue.register(JobType.TRACK_DEAL_PRICE,     self._handle_track_deal)
        queue.register(JobType.TRACK_ALL_PRICES,     self._handle_track_all)
        queue.register(JobType.EXPIRE_DEALS,         self._handle_expire)
        queue.register(JobType.VERIFY_DEAL,          self._handle_verify_deal)
        queue.register(JobType.VERIFY_ALL_DEALS,     self._handle_verify_all)

    async def _handle_scrape_merchant(self, job: ScrapeJob) -> Dict[str, Any]:
        return (await self.scrape_merchant(job.payload["merchant"])).model_dump()

    async def _handle_scrape_all(self, job: ScrapeJob) -> Dict[str, Any]:
        return (await self.scrape_all_merchants()).model_dump()

    async def _handle_product_url(self, job: ScrapeJob) -> Dict[str, Any]:
        result = await self.scrape_product_url(job.payload["url"], job.payload.get("user_id"))
        return result.model_dump(mode="json")

    async def _handle_track_deal(self, job: ScrapeJob) -> Dict[str, Any]:
        return (await self.track_deal_price(job.payload["deal_id"])).model_dump()

    async def _handle_track_all(self, job: ScrapeJob) -> Dict[str, Any]:
        return await self.track_all_prices()

    async def _handle_expire(self, job: ScrapeJob) -> Dict[str, Any]:
        return await self.expire_stale_deals()

    async def _handle_verify_deal(self, job: ScrapeJob) -> Dict[str, Any]:
        return (await self.verify_deal(job.payload["deal_id"])).model_dump(mode="json")

    async def _handle_verify_all(self, job: ScrapeJob) -> Dict[str, Any]:
        return await self.verify_all_deals()

    # ── Dedup + persist one candidate ─────────────────────────────────────────

    async def ingest_candidate(self, candidate: CandidateDeal, user_id: str) -> IngestOutcome:
        """Decide create / replace / reject and apply it.

        Candidates for the same (merchant, product URL) are decided one at a
        time in this process; a unique-URL violation from another process
        rolls back and re-evaluates once against the committed row.
        """
        key = (candidate.merchant.lower(), candidate.product_url or candidate.title.lower())
        async with self._locks.hold(key):
            for attempt in (1, 2):
                async with self._sessions() as db:
                    check  = await check_for_duplicates(db, candidate)
                    action = resolve_action(check, candidate)
                    try:
                        if action is DedupAction.CREATE:
                            deal = await insert_deal(db, candidate, user_id)
                            return IngestOutcome(action, check, deal.id)

                        if action is DedupAction.REPLACE:
                            deal = await get_deal(db, check.matched_deal_id)
                            if deal is None:
                                raise DealNotFound(check.matched_deal_id)
                            await update_deal_price(
                                db, deal,
                                candidate.price,
                                candidate.original_price,
                                candidate.discount_percentage,
                            )
                            return IngestOutcome(action, check, deal.id)

                        return IngestOutcome(action, check, check.matched_deal_id)
                    except IntegrityError:
                        await db.rollback()
                        if attempt == 2:
                            raise
                        logger.info(
                            "[Ingestion] concurrent insert for %s, re-checking",
                            candidate.product_url,
                        )

    # ── scrape-merchant ───────────────────────────────────────────────────────

    async def scrape_merchant(self, slug: str) -> IngestionResult:
        started = time.monotonic()
        slug = slug.lower()

        async with self._sessions() as db:
            merchant = await get_merchant_by_slug(db, slug)
            if not merchant:
                raise MerchantNotFound(slug)
            if not merchant.is_active or not merchant.scraping_enabled:
                logger.warning(
                    "[Ingestion] Merchant %s is not active or scraping is disabled", slug,
                )
                return IngestionResult(
                    merchant=merchant.name,
                    skipped_reason="Merchant inactive or scraping disabled",
                )
            merchant_name = merchant.name

        config = self.registry.get(slug)
        if config is None:
            raise ScraperNotImplemented(merchant_name)
        scraper = self._scraper_factory(config)
        user_id = await self.start()

        logger.info("[Ingestion] Starting scraping for: %s", merchant_name)
        candidates = await scraper.scrape_daily_deals()

        result = IngestionResult(merchant=merchant_name, scraped=len(candidates))
        for candidate in candidates:
            try:
                outcome = await self.ingest_candidate(candidate, user_id)
            except Exception as e:
                result.errors += 1
                logger.error(
                    "[Ingestion] Error processing deal: %s: %s",
                    candidate.title[:60], e, exc_info=True,
                )
                continue
            if outcome.action is DedupAction.CREATE:
                result.created += 1
            elif outcome.action is DedupAction.REPLACE:
                result.updated += 1
            else:
                result.skipped += 1

        async with self._sessions() as db:
            merchant = await get_merchant_by_slug(db, slug)
            await update_merchant_sync(db, merchant, result.created)

        result.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "[Ingestion] %s done: created=%d updated=%d skipped=%d errors=%d (%.2fs)",
            merchant_name, result.created, result.updated, result.skipped,
            result.errors, result.duration_ms / 1000,
        )
        return result

    # ── scrape-all-merchants ──────────────────────────────────────────────────

    async def scrape_all_merchants(self) -> FanOutResult:
        if self.queue is None:
            raise DealHubError("scrape-all-merchants needs a job queue")

        async with self._sessions() as db:
            merchants = [(m.slug, m.name) for m in await list_active_merchants(db)]

        result = FanOutResult(total_merchants=len(merchants))
        for slug, name in merchants:
            try:
                job = await self.queue.enqueue(JobType.SCRAPE_MERCHANT, {"merchant": slug})
            except Exception as e:
                logger.error("[Ingestion] Error queuing %s: %s", name, e, exc_info=True)
                result.errors += 1
                result.results.append({"merchant": name, "status": "error", "error": str(e)})
                continue
            result.queued_jobs += 1
            result.results.append({"merchant": name, "job_id": job.id, "status": "queued"})

        logger.info(
            "[Ingestion] Queued %d merchant scraping job(s), %d error(s)",
            result.queued_jobs, result.errors,
        )
        return result

    # ── scrape-product-url ────────────────────────────────────────────────────

    async def scrape_product_url(self, url: str, user_id: Optional[str] = None) -> ProductUrlResult:
        config = self.registry.for_url(url)
        if config is None:
            raise UnsupportedMerchantURL(url)

        logger.info("[Ingestion] Scraping product URL: %s", url)
        scraper   = self._scraper_factory(config)
        candidate = await scraper.scrape_product_by_url(url)
        if candidate is None:
            raise ProductNotFound(url)

        outcome = await self.ingest_candidate(candidate, user_id or await self.start())
        logger.info(
            "[Ingestion] %s from %s -> %s (deal %s)",
            config.name, url, outcome.action.value, outcome.deal_id,
        )
        return ProductUrlResult(
            action=outcome.action,
            deal_id=outcome.deal_id,
            merchant=config.name,
            similarity_score=outcome.check.similarity_score,
            reason=outcome.check.reason,
            deal=candidate,
        )

    # ── Price tracking ────────────────────────────────────────────────────────

    async def track_deal_price(self, deal_id: str) -> PriceTrackResult:
        async with self._sessions() as db:
            deal = await get_deal(db, deal_id)
            if deal is None:
                raise DealNotFound(deal_id)
            url, merchant, old_price = deal.url, deal.merchant, deal.price

        if not url:
            return PriceTrackResult(deal_id=deal_id, old_price=old_price,
                                    skipped_reason="Deal has no product URL")
        config = self.registry.for_url(url)
        if config is None:
            return PriceTrackResult(deal_id=deal_id, old_price=old_price,
                                    skipped_reason="No scraper for this merchant")

        candidate = await self._scraper_factory(config).scrape_product_by_url(url)
        if candidate is None:
            return PriceTrackResult(deal_id=deal_id, old_price=old_price,
                                    skipped_reason="Product page not found")

        async with self._locks.hold((merchant.lower(), url)):
            async with self._sessions() as db:
                deal = await get_deal(db, deal_id)
                changed = candidate.price != deal.price
                if changed:
                    await update_deal_price(
                        db, deal,
                        candidate.price,
                        candidate.original_price,
                        candidate.discount_percentage,
                    )
                else:
                    await append_price_history(db, deal)

        return PriceTrackResult(
            deal_id=deal_id,
            old_price=old_price,
            new_price=candidate.price,
            changed=changed,
        )

    async def track_all_prices(self) -> Dict[str, int]:
        async with self._sessions() as db:
            deal_ids = [d.id for d in await list_trackable_deals(db, settings.price_tracking_limit)]

        summary = {"total": len(deal_ids), "updated": 0, "unchanged": 0, "skipped": 0, "errors": 0}
        for idx, deal_id in enumerate(deal_ids):
            try:
                res = await self.track_deal_price(deal_id)
            except Exception as e:
                summary["errors"] += 1
                logger.error("[PriceTracker] deal %s failed: %s", deal_id, e, exc_info=True)
            else:
                if res.skipped_reason:
                    summary["skipped"] += 1
                elif res.changed:
                    summary["updated"] += 1
                else:
                    summary["unchanged"] += 1
            if idx < len(deal_ids) - 1:
                await asyncio.sleep(settings.price_tracking_delay_seconds)

        logger.info("[PriceTracker] %s", summary)
        return summary

    # ── Verification ──────────────────────────────────────────────────────────

    async def verify_deal(self, deal_id: str) -> VerificationResult:
        """Re-check one deal's product page and store the verdict.

        Flag reasons are checked in order and the last one found is kept:
        community downvotes, an unreachable page, a price mismatch beyond
        verification_flag_pct.
        A 404/410 page expires the deal (status failed).
        """
        async with self._sessions() as db:
            deal = await get_deal(db, deal_id)
            if deal is None:
                raise DealNotFound(deal_id)
            url, merchant, price = deal.url, deal.merchant, deal.price
            downvote_reason = _downvote_flag(deal.upvotes, deal.downvotes)

        config = self.registry.for_url(url) if url else None
        if url and config is None:
            return VerificationResult(deal_id=deal_id, skipped_reason="No scraper for this merchant")

        result = VerificationResult(deal_id=deal_id, flag_reason=downvote_reason)
        if not url:
            result.url_accessible = False
            result.flag_reason = "No product URL"
        else:
            try:
                candidate = await self._scraper_factory(config).scrape_product_by_url(url)
            except PageGone as e:
                result.url_accessible = False
                result.expired = True
                result.flag_reason = f"Product page gone (HTTP {e.status})"
            except NavigationError as e:
                result.url_accessible = False
                result.flag_reason = f"URL not accessible after {e.attempts} attempt(s)"
            else:
                result.url_accessible = True
                if candidate is not None:
                    result.scraped_price = candidate.price
                    diff_pct = abs(candidate.price - price) / price * 100 if price else 0.0
                    result.price_match = diff_pct <= settings.verification_match_pct
                    if diff_pct > settings.verification_flag_pct:
                        result.flag_reason = f"Price mismatch: expected ₹{price}, found ₹{candidate.price}"

        result.flagged = bool(result.flag_reason) and not result.expired

        if result.expired:
            result.status = VerificationStatus.FAILED
        elif result.flagged:
            result.status = VerificationStatus.FLAGGED
        else:
            result.status = VerificationStatus.VERIFIED

        async with self._locks.hold((merchant.lower(), url or deal_id)):
            async with self._sessions() as db:
                deal = await get_deal(db, deal_id)
                await record_verification(
                    db, deal,
                    status=result.status,
                    url_accessible=result.url_accessible,
                    price_match=result.price_match,
                    flag_reason=result.flag_reason,
                    expire=result.expired,
                )
        return result

    async def verify_all_deals(self) -> Dict[str, int]:
        async with self._sessions() as db:
            deal_ids = [d.id for d in await list_verifiable_deals(db, settings.verification_limit)]

        summary = {"total": len(deal_ids), "verified": 0, "flagged": 0, "failed": 0,
                   "skipped": 0, "errors": 0}
        for idx, deal_id in enumerate(deal_ids):
            try:
                res = await self.verify_deal(deal_id)
            except Exception as e:
                summary["errors"] += 1
                logger.error("[Verifier] deal %s failed: %s", deal_id, e, exc_info=True)
            else:
                if res.skipped_reason:
                    summary["skipped"] += 1
                else:
                    summary[res.status.value] += 1
            if idx < len(deal_ids) - 1:
                await asyncio.sleep(settings.verification_delay_seconds)

        logger.info("[Verifier] %s", summary)
        return summary

    # ── Expiry ────────────────────────────────────────────────────────────────

    async def expire_stale_deals(self) -> Dict[str, int]:
        async with self._sessions() as db:
            count = await expire_deals(db, settings.deal_expiry_days)
        return {"expired": count}
