# -*- coding: utf-8 -*-
"""
In-process job queue on APScheduler.

  * enqueue()            - one-off job, run as soon as a worker slot frees
  * retries              - failed attempt n is re-run after delay * 2**(n-1)
  * NonRetryableError    - fails the job on the spot
  * register_recurring() - cron trigger under a stable id; re-registering
                           the same key replaces the trigger
  * retention            - newest N completed / failed jobs kept in memory

Uses AsyncIOScheduler so handlers run on the worker's event loop.
"""
from __future__ import annotations

import asyncio
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from dealhub.config import settings
from dealhub.errors import NonRetryableError
from dealhub.schemas import BackoffPolicy, JobState, JobType, ScrapeJob, utcnow
from dealhub.utils.logger import get_logger

logger = get_logger(__name__)

JobHandler = Callable[[ScrapeJob], Awaitable[Any]]

_ATTEMPT_PREFIX = "attempt:"


class JobQueue:

    def __init__(
        self,
        scheduler=None,
        concurrency:     Optional[int]   = None,
        keep_completed:  Optional[int]   = None,
        keep_failed:     Optional[int]   = None,
        max_attempts:    Optional[int]   = None,
        backoff_seconds: Optional[float] = None,
    ):
        self.scheduler = scheduler or AsyncIOScheduler(timezone=settings.scheduler_timezone)
        self._concurrency    = concurrency or settings.job_concurrency
        self._max_attempts   = max_attempts or settings.job_max_attempts
        self._backoff_delay  = (
            settings.job_backoff_seconds if backoff_seconds is None else backoff_seconds
        )
        self._handlers: Dict[JobType, JobHandler] = {}
        self._pending:  Dict[str, ScrapeJob]      = {}
        self.completed: Deque[ScrapeJob] = deque(maxlen=keep_completed or settings.job_keep_completed)
        self.failed:    Deque[ScrapeJob] = deque(maxlen=keep_failed or settings.job_keep_failed)
        self._semaphore: Optional[asyncio.Semaphore] = None

    def _get_semaphore(self) -> asyncio.Semaphore:
        # Created lazily so it binds to the running loop
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self._concurrency)
        return self._semaphore

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def start(self):
        self.scheduler.start()
        logger.info("[JobQueue] started (concurrency=%d)", self._concurrency)

    def shutdown(self):
        try:
            self.scheduler.shutdown(wait=False)
            logger.info("[JobQueue] stopped")
        except Exception as e:
            logger.warning("[JobQueue] shutdown error: %s", e)

    # ── Handlers ──────────────────────────────────────────────────────────────

    def register(self, job_type: JobType, handler: JobHandler):
        self._handlers[JobType(job_type)] = handler

    # ── One-off jobs ──────────────────────────────────────────────────────────

    async def enqueue(
        self,
        job_type: JobType,
        payload: Optional[Dict[str, Any]] = None,
        max_attempts: Optional[int] = None,
        backoff: Optional[BackoffPolicy] = None,
        recurring_key: Optional[str] = None,
    ) -> ScrapeJob:
        job = ScrapeJob(
            type=JobType(job_type),
            payload=payload or {},
            max_attempts=max_attempts or self._max_attempts,
            backoff=backoff or BackoffPolicy(type="exponential", delay=self._backoff_delay),
            recurring_key=recurring_key,
        )
        self._pending[job.id] = job
        self._schedule_attempt(job, 0)
        logger.info(
            "[JobQueue] enqueued %s job %s payload=%s", job.type.value, job.id, job.payload,
        )
        return job

    def _schedule_attempt(self, job: ScrapeJob, delay: float):
        run_date = datetime.now(timezone.utc) + timedelta(seconds=delay)
        self.scheduler.add_job(
            self.process,
            trigger="date",
            run_date=run_date,
            args=[job.id],
            id=f"{_ATTEMPT_PREFIX}{job.id}:{job.attempts + 1}",
            replace_existing=True,
            misfire_grace_time=None,
        )

    async def process(self, job_id: str) -> None:
        """Run one attempt of a pending job."""
        job = self._pending.get(job_id)
        if job is None:
            logger.warning("[JobQueue] job %s is no longer pending", job_id)
            return

        handler = self._handlers.get(job.type)
        if handler is None:
            job.attempts += 1
            self._finish_failed(job, f"No handler registered for {job.type.value}")
            return

        async with self._get_semaphore():
            job.state = JobState.ACTIVE
            job.attempts += 1
            logger.info(
                "[JobQueue] %s job %s attempt %d/%d",
                job.type.value, job.id, job.attempts, job.max_attempts,
            )
            try:
                result = await handler(job)
            except NonRetryableError as e:
                logger.error(
                    "[JobQueue] %s job %s failed (not retryable): %s",
                    job.type.value, job.id, e,
                )
                self._finish_failed(job, str(e))
            except Exception as e:
                if job.attempts >= job.max_attempts:
                    logger.error(
                        "[JobQueue] %s job %s failed after %d attempts: %s",
                        job.type.value, job.id, job.attempts, e, exc_info=True,
                    )
                    self._finish_failed(job, str(e))
                else:
                    delay = job.backoff.delay_for(job.attempts)
                    job.state = JobState.DELAYED
                    job.error = str(e)
                    logger.warning(
                        "[JobQueue] %s job %s attempt %d failed, retrying in %.1fs: %s",
                        job.type.value, job.id, job.attempts, delay, e,
                    )
                    self._schedule_attempt(job, delay)
            else:
                job.state       = JobState.COMPLETED
                job.result      = result
                job.error       = None
                job.finished_at = utcnow()
                self._pending.pop(job.id, None)
                self.completed.append(job)
                logger.info("[JobQueue] %s job %s completed", job.type.value, job.id)

    def _finish_failed(self, job: ScrapeJob, error: str):
        job.state       = JobState.FAILED
        job.error       = error
        job.finished_at = utcnow()
        self._pending.pop(job.id, None)
        self.failed.append(job)

    def get_job(self, job_id: str) -> Optional[ScrapeJob]:
        if job_id in self._pending:
            return self._pending[job_id]
        for job in list(self.completed) + list(self.failed):
            if job.id == job_id:
                return job
        return None

    def counts(self) -> Dict[str, int]:
        return {
            "pending":   len(self._pending),
            "completed": len(self.completed),
            "failed":    len(self.failed),
        }

    # ── Recurring jobs ────────────────────────────────────────────────────────

    def register_recurring(
        self,
        key: str,
        cron: str,
        job_type: JobType,
        payload: Optional[Dict[str, Any]] = None,
    ):
        trigger = CronTrigger.from_crontab(cron, timezone=settings.scheduler_timezone)
        self.scheduler.add_job(
            self.enqueue,
            trigger=trigger,
            kwargs={
                "job_type":      JobType(job_type),
                "payload":       payload or {},
                "recurring_key": key,
            },
            id=key,
            replace_existing=True,
            max_instances=1,
            misfire_grace_time=3600,
        )
        logger.info("[JobQueue] recurring %s registered (%s)", key, cron)

    def list_recurring(self) -> List[str]:
        return sorted(
            job.id for job in self.scheduler.get_jobs()
            if not job.id.startswith(_ATTEMPT_PREFIX)
        )

    def remove_recurring(self, key: str) -> bool:
        if self.scheduler.get_job(key) is None:
            return False
        self.scheduler.remove_job(key)
        logger.info("[JobQueue] recurring %s removed", key)
        return True

    def clear_recurring(self) -> int:
        keys = self.list_recurring()
        for key in keys:
            self.scheduler.remove_job(key)
        logger.info("[JobQueue] cleared %d recurring job(s)", len(keys))
        return len(keys)
