# -*- coding: utf-8 -*-
"""
Deal store read/write operations.

All functions are async and take an AsyncSession as the first argument.
Writes commit before returning.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from sqlalchemy import func, or_, select, update

from dealhub.db.models import Deal, Merchant, PriceHistory, User
from dealhub.schemas import CandidateDeal, PriceSource, VerificationStatus, utcnow
from dealhub.scraping.parsing import reconcile_discount
from dealhub.utils.logger import get_logger

logger = get_logger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# DEAL LOOKUPS
# ═══════════════════════════════════════════════════════════════════════════════


async def get_deal(db, deal_id: str) -> Optional[Deal]:
    return await db.get(Deal, deal_id)


async def find_deal_by_url(db, url: str) -> Optional[Deal]:
    if not url:
        return None
    result = await db.execute(select(Deal).where(Deal.url == url))
    return result.scalars().first()


async def find_recent_deals_by_merchant(
    db,
    merchant: str,
    since: datetime,
    limit: int,
) -> List[Deal]:
    """Deals for *merchant* (case-insensitive) created at or after *since*, newest first."""
    stmt = (
        select(Deal)
        .where(
            func.lower(Deal.merchant) == merchant.lower(),
            Deal.created_at >= since,
        )
        .order_by(Deal.created_at.desc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_merchant_deals(db, merchant: str, limit: int = 50) -> List[Deal]:
    """Most recent deals of a merchant regardless of age. Used for trust scoring."""
    stmt = (
        select(Deal)
        .where(func.lower(Deal.merchant) == merchant.lower())
        .order_by(Deal.created_at.desc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_price_history(db, deal_id: str, limit: int = 90) -> List[PriceHistory]:
    """Newest-first price history for a deal."""
    stmt = (
        select(PriceHistory)
        .where(PriceHistory.deal_id == deal_id)
        .order_by(PriceHistory.scraped_at.desc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_top_deal_pool(db, min_discount: int, limit: int) -> List[Deal]:
    stmt = (
        select(Deal)
        .where(
            Deal.is_expired == False,  # noqa: E712
            Deal.discount_percentage >= min_discount,
        )
        .order_by(Deal.created_at.desc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def list_trackable_deals(db, limit: int) -> List[Deal]:
    """Non-expired deals that carry a product URL, newest first."""
    stmt = (
        select(Deal)
        .where(
            Deal.is_expired == False,  # noqa: E712
            Deal.url.is_not(None),
        )
        .order_by(Deal.created_at.desc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def list_verifiable_deals(db, limit: int) -> List[Deal]:
    """Non-expired deals, never-verified first, then least recently verified."""
    stmt = (
        select(Deal)
        .where(Deal.is_expired == False)  # noqa: E712
        .order_by(Deal.last_verified_at.is_(None).desc(), Deal.last_verified_at.asc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


# ═══════════════════════════════════════════════════════════════════════════════
# DEAL WRITES
# ═══════════════════════════════════════════════════════════════════════════════


async def insert_deal(
    db,
    candidate: CandidateDeal,
    user_id: str,
    source: PriceSource = PriceSource.SCRAPER,
) -> Deal:
    """Insert an accepted candidate as a verified deal plus its first price point.

    Raises sqlalchemy IntegrityError when another writer already stored the
    same product URL; the session is left for the caller to roll back.
    """
    now = utcnow()
    deal = Deal(
        title=candidate.title[:255],
        description=candidate.description,
        price=candidate.price,
        original_price=candidate.original_price,
        discount_percentage=reconcile_discount(
            candidate.price, candidate.original_price, candidate.discount_percentage,
        ),
        merchant=candidate.merchant,
        url=candidate.product_url,
        image_url=candidate.image_url,
        external_product_id=candidate.external_product_id,
        user_id=user_id,
        verification_status=VerificationStatus.VERIFIED.value,
        verified=True,
        verified_at=now,
        last_verified_at=now,
        verification_attempts=1,
        url_accessible=True,
        created_at=now,
        updated_at=now,
    )
    db.add(deal)
    await db.flush()

    db.add(PriceHistory(
        deal_id=deal.id,
        price=deal.price,
        original_price=deal.original_price,
        merchant=deal.merchant,
        scraped_at=now,
        source=source.value,
    ))
    await db.commit()

    logger.info(
        "Created deal %s: %s (₹%d on %s)",
        deal.id, deal.title[:40], deal.price, deal.merchant,
    )
    return deal


async def update_deal_price(
    db,
    deal: Deal,
    price: int,
    original_price: Optional[int] = None,
    discount_percentage: Optional[int] = None,
    source: PriceSource = PriceSource.SCRAPER,
) -> Deal:
    """Move *deal* to a new price and append the matching history row.

    A missing *original_price* keeps the stored one; the discount is
    recomputed against whichever original price ends up stored.
    """
    now = utcnow()
    old_price = deal.price
    if original_price:
        deal.original_price = original_price
    deal.price = price
    deal.discount_percentage = reconcile_discount(
        price, deal.original_price, discount_percentage,
    )
    deal.last_verified_at = now
    deal.updated_at = now

    db.add(PriceHistory(
        deal_id=deal.id,
        price=price,
        original_price=deal.original_price,
        merchant=deal.merchant,
        scraped_at=now,
        source=source.value,
    ))
    await db.commit()

    logger.info(
        "Updated deal %s: ₹%d -> ₹%d (%s)",
        deal.id, old_price, price, deal.merchant,
    )
    return deal


async def append_price_history(
    db,
    deal: Deal,
    source: PriceSource = PriceSource.SCRAPER,
) -> PriceHistory:
    """Record the deal's current price as a new observation."""
    entry = PriceHistory(
        deal_id=deal.id,
        price=deal.price,
        original_price=deal.original_price,
        merchant=deal.merchant,
        scraped_at=utcnow(),
        source=source.value,
    )
    db.add(entry)
    await db.commit()
    return entry


async def record_verification(
    db,
    deal: Deal,
    status: VerificationStatus,
    url_accessible: bool,
    price_match: Optional[bool] = None,
    flag_reason: Optional[str] = None,
    expire: bool = False,
) -> Deal:
    """Store the outcome of one verification pass over *deal*."""
    now = utcnow()
    passed = status is VerificationStatus.VERIFIED
    deal.verification_status   = status.value
    deal.verified              = passed
    deal.last_verified_at      = now
    deal.verification_attempts = (deal.verification_attempts or 0) + 1
    deal.url_accessible        = url_accessible
    deal.price_match           = price_match
    deal.auto_flagged          = status is VerificationStatus.FLAGGED
    deal.flag_reason           = flag_reason
    deal.updated_at            = now
    if passed:
        deal.verified_at = now
    if expire:
        deal.is_expired = True
    await db.commit()

    logger.info("Verified deal %s: %s (%s)", deal.id, status.value, flag_reason or "ok")
    return deal


async def expire_deals(db, max_age_days: int, now: Optional[datetime] = None) -> int:
    """Mark deals expired when older than *max_age_days* or past expires_at."""
    now = now or utcnow()
    cutoff = now - timedelta(days=max_age_days)
    stmt = (
        update(Deal)
        .where(
            Deal.is_expired == False,  # noqa: E712
            or_(
                Deal.created_at < cutoff,
                Deal.expires_at < now,
            ),
        )
        .values(is_expired=True, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    await db.commit()
    count = result.rowcount or 0
    logger.info("Expired %d deal(s) older than %d days", count, max_age_days)
    return count


# ═══════════════════════════════════════════════════════════════════════════════
# MERCHANTS & USERS
# ═══════════════════════════════════════════════════════════════════════════════


async def get_merchant_by_slug(db, slug: str) -> Optional[Merchant]:
    result = await db.execute(select(Merchant).where(Merchant.slug == slug))
    return result.scalars().first()


async def list_active_merchants(db) -> List[Merchant]:
    stmt = (
        select(Merchant)
        .where(
            Merchant.is_active == True,         # noqa: E712
            Merchant.scraping_enabled == True,  # noqa: E712
        )
        .order_by(Merchant.slug)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def update_merchant_sync(db, merchant: Merchant, created: int) -> None:
    now = utcnow()
    merchant.last_sync_at = now
    merchant.deals_scraped_count = (merchant.deals_scraped_count or 0) + created
    merchant.updated_at = now
    await db.commit()


async def seed_merchants(db, configs: Iterable) -> int:
    """Insert a merchants row for every registry entry that has none yet."""
    added = 0
    for cfg in configs:
        if await get_merchant_by_slug(db, cfg.slug):
            continue
        db.add(Merchant(
            name=cfg.name,
            slug=cfg.slug,
            base_url=cfg.base_url,
            is_active=True,
            scraping_enabled=cfg.enabled,
            scraping_interval_hours=cfg.interval_hours,
        ))
        added += 1
    await db.commit()
    logger.info("Seeded %d merchant(s)", added)
    return added


async def get_or_create_system_user(db, username: str, email: str) -> User:
    result = await db.execute(select(User).where(User.username == username))
    user = result.scalars().first()
    if user:
        return user

    user = User(username=username, email=email, reputation=1000)
    db.add(user)
    await db.commit()
    logger.info("Created system user %s", username)
    return user
