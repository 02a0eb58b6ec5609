# -*- coding: utf-8 -*-
"""
Default recurring schedule.

Jobs:
  1. scrape-<slug>-recurring   per enabled merchant, cron from its YAML config
  2. track-all-prices          every hour
  3. expire-deals              daily at 2:00 AM IST
  4. verify-all-deals          every 6 hours

Keys are stable, so calling setup_recurring_jobs() again only replaces
the triggers.
"""
from __future__ import annotations

from typing import List

from dealhub.jobs.queue import JobQueue
from dealhub.merchants.registry import MerchantRegistry
from dealhub.schemas import JobType
from dealhub.utils.logger import get_logger

logger = get_logger(__name__)

TRACK_PRICES_KEY  = "track-all-prices-recurring"
TRACK_PRICES_CRON = "0 * * * *"
EXPIRE_DEALS_KEY  = "expire-deals-recurring"
EXPIRE_DEALS_CRON = "0 2 * * *"
VERIFY_DEALS_KEY  = "verify-all-deals-recurring"
VERIFY_DEALS_CRON = "0 */6 * * *"


def merchant_job_key(slug: str) -> str:
    return f"scrape-{slug}-recurring"


def setup_recurring_jobs(queue: JobQueue, registry: MerchantRegistry) -> List[str]:
    keys: List[str] = []
    for cfg in registry.all_enabled():
        if not cfg.cron:
            continue
        key = merchant_job_key(cfg.slug)
        queue.register_recurring(key, cfg.cron, JobType.SCRAPE_MERCHANT, {"merchant": cfg.slug})
        keys.append(key)

    queue.register_recurring(TRACK_PRICES_KEY, TRACK_PRICES_CRON, JobType.TRACK_ALL_PRICES)
    queue.register_recurring(EXPIRE_DEALS_KEY, EXPIRE_DEALS_CRON, JobType.EXPIRE_DEALS)
    queue.register_recurring(VERIFY_DEALS_KEY, VERIFY_DEALS_CRON, JobType.VERIFY_ALL_DEALS)
    keys += [TRACK_PRICES_KEY, EXPIRE_DEALS_KEY, VERIFY_DEALS_KEY]

    logger.info("Recurring jobs set up: %s", ", ".join(keys))
    return keys


def clear_recurring_jobs(queue: JobQueue) -> int:
    return queue.clear_recurring()
