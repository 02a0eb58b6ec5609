# -*- coding: utf-8 -*-
import asyncio
import os

# Keep the module-level engine off disk before dealhub is imported
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

from datetime import timedelta
from types import SimpleNamespace
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from dealhub.db.models import Deal, Merchant, PriceHistory, build_session_factory, init_db
from dealhub.db.repository import get_or_create_system_user, seed_merchants
from dealhub.errors import NavigationError
from dealhub.merchants.registry import merchant_registry
from dealhub.schemas import CandidateDeal, utcnow

_real_sleep = asyncio.sleep


# ── Database ──────────────────────────────────────────────────────────────────


@pytest.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def seeded(session_factory):
    async with session_factory() as session:
        await seed_merchants(session, merchant_registry.all())
    return session_factory


# ── No real waiting ───────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def sleeps(monkeypatch):
    """Record every asyncio.sleep delay and return at once (still yielding)."""
    calls = []

    async def _fake_sleep(delay, result=None):
        calls.append(delay)
        await _real_sleep(0)
        return result

    monkeypatch.setattr(asyncio, "sleep", _fake_sleep)
    return calls


# ── Builders ──────────────────────────────────────────────────────────────────


@pytest.fixture
def make_candidate():
    def _make(**kw) -> CandidateDeal:
        fields = dict(
            title="Sony WH-1000XM5 Wireless Noise Cancelling Headphones",
            price=25000,
            original_price=34990,
            discount_percentage=29,
            product_url=f"https://www.amazon.in/dp/{uuid4().hex[:10].upper()}",
            image_url="https://m.media-amazon.com/images/I/sony.jpg",
            merchant="Amazon India",
        )
        fields.update(kw)
        return CandidateDeal(**fields)
    return _make


@pytest.fixture
def make_deal(session_factory):
    """Persist a deal directly. *history* is oldest-first; defaults to [price]."""
    async def _make(history=None, age=None, **kw) -> Deal:
        async with session_factory() as session:
            user = await get_or_create_system_user(session, "ai-bot", "ai-bot@test.local")
            now = utcnow()
            created = now - age if age else now
            fields = dict(
                title="Sony WH-1000XM5 Wireless Noise Cancelling Headphones",
                price=25000,
                original_price=34990,
                discount_percentage=29,
                merchant="Amazon India",
                url=f"https://www.amazon.in/dp/{uuid4().hex[:10].upper()}",
                image_url="https://m.media-amazon.com/images/I/sony.jpg",
                user_id=user.id,
                verified=True,
                verification_attempts=1,
                url_accessible=True,
                created_at=created,
                updated_at=created,
            )
            fields.update(kw)
            deal = Deal(**fields)
            session.add(deal)
            await session.flush()

            points = history or [deal.price]
            for i, price in enumerate(points):
                session.add(PriceHistory(
                    deal_id=deal.id,
                    price=price,
                    merchant=deal.merchant,
                    scraped_at=created + timedelta(minutes=i - len(points)),
                ))
            await session.commit()
            return deal
    return _make


async def count_rows(session_factory, model, *where) -> int:
    async with session_factory() as session:
        stmt = select(func.count()).select_from(model)
        if where:
            stmt = stmt.where(*where)
        return (await session.execute(stmt)).scalar_one()


async def load_deal(session_factory, deal_id) -> Deal:
    async with session_factory() as session:
        return await session.get(Deal, deal_id)


async def load_merchant(session_factory, slug) -> Merchant:
    async with session_factory() as session:
        result = await session.execute(select(Merchant).where(Merchant.slug == slug))
        return result.scalars().first()


async def newest_history(session_factory, deal_id):
    async with session_factory() as session:
        stmt = (
            select(PriceHistory)
            .where(PriceHistory.deal_id == deal_id)
            .order_by(PriceHistory.scraped_at.desc())
        )
        return list((await session.execute(stmt)).scalars().all())


# ── Fake browser / scraper collaborators ──────────────────────────────────────


class FakeSession:
    """Stands in for BrowserSession: serves canned HTML by URL."""

    def __init__(self, pages=None, fail=(), default="<html><body></body></html>"):
        self.pages   = pages or {}
        self.fail    = set(fail)
        self.default = default
        self.fetched = []
        self.closed  = 0

    async def fetch_html(self, url, ready_selector=None, scroll=False):
        self.fetched.append(url)
        if url in self.fail:
            raise NavigationError(url, 3, TimeoutError("Timeout 30000ms exceeded"))
        return self.pages.get(url, self.default)

    async def close(self):
        self.closed += 1


class FakeScraper:
    """Stands in for a MerchantScraper inside the orchestrator."""

    def __init__(self, deals=None, product=None, error=None):
        self.deals   = list(deals or [])
        self.product = product
        self.error   = error
        self.listing_runs = 0
        self.product_urls = []

    async def scrape_daily_deals(self):
        self.listing_runs += 1
        return list(self.deals)

    async def scrape_product_by_url(self, url):
        self.product_urls.append(url)
        if self.error:
            raise self.error
        return self.product


class FakeScheduler:
    """Records APScheduler add_job calls instead of running them."""

    def __init__(self):
        self.jobs    = {}
        self.running = False

    def add_job(self, func, trigger=None, args=None, kwargs=None, id=None,
                replace_existing=False, **options):
        if id in self.jobs and not replace_existing:
            raise ValueError(f"Job {id} already exists")
        job = SimpleNamespace(
            id=id, func=func, trigger=trigger,
            args=list(args or []), kwargs=dict(kwargs or {}), options=options,
        )
        self.jobs[id] = job
        return job

    def get_jobs(self):
        return list(self.jobs.values())

    def get_job(self, job_id):
        return self.jobs.get(job_id)

    def remove_job(self, job_id):
        del self.jobs[job_id]

    def start(self):
        self.running = True

    def shutdown(self, wait=True):
        self.running = False
