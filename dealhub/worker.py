# -*- coding: utf-8 -*-
"""
Worker process wiring.

Startup order:
  1. create tables
  2. upsert merchant rows from the YAML registry
  3. resolve the automation user
  4. register job handlers + default recurring schedule
  5. start the scheduler
"""
from __future__ import annotations

import asyncio
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from dealhub.db.models import async_session, engine, init_db
from dealhub.db.repository import seed_merchants
from dealhub.jobs.ingestion import IngestionOrchestrator
from dealhub.jobs.queue import JobQueue
from dealhub.jobs.scheduler import setup_recurring_jobs
from dealhub.merchants.registry import MerchantRegistry, merchant_registry
from dealhub.utils.logger import get_logger, quiet_library_loggers

logger = get_logger(__name__)


async def prepare_store(
    session_factory=async_session,
    registry: MerchantRegistry = merchant_registry,
    bind: Optional[AsyncEngine] = None,
) -> int:
    """Create tables and seed merchants. Returns the number of merchant configs seen."""
    await init_db(bind)
    configs = registry.all()
    async with session_factory() as db:
        await seed_merchants(db, configs)
    logger.info("Seeded %d merchant(s): %s", len(configs), ", ".join(c.slug for c in configs))
    return len(configs)


class Worker:

    def __init__(
        self,
        queue: Optional[JobQueue] = None,
        registry: MerchantRegistry = merchant_registry,
        session_factory=async_session,
        bind: Optional[AsyncEngine] = None,
    ):
        self.queue        = queue or JobQueue()
        self.registry     = registry
        self._sessions    = session_factory
        self._bind        = bind
        self.orchestrator = IngestionOrchestrator(
            session_factory=session_factory,
            registry=registry,
            queue=self.queue,
        )
        self.recurring: List[str] = []

    async def start(self):
        quiet_library_loggers()
        await prepare_store(self._sessions, self.registry, self._bind)
        await self.orchestrator.start()
        self.orchestrator.register_handlers(self.queue)
        self.recurring = setup_recurring_jobs(self.queue, self.registry)
        self.queue.start()
        logger.info("Worker ready: %d recurring job(s)", len(self.recurring))

    async def stop(self):
        self.queue.shutdown()
        await (self._bind or engine).dispose()
        logger.info("Worker stopped")


async def run_worker():
    worker = Worker()
    await worker.start()
    try:
        await asyncio.Event().wait()
    finally:
        await worker.stop()
