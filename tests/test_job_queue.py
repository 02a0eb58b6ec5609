# -*- coding: utf-8 -*-
import asyncio

import pytest
from apscheduler.triggers.cron import CronTrigger

from conftest import FakeScheduler
from dealhub.errors import MerchantNotFound
from dealhub.jobs.queue import JobQueue
from dealhub.jobs.scheduler import (
    EXPIRE_DEALS_KEY,
    TRACK_PRICES_KEY,
    VERIFY_DEALS_KEY,
    clear_recurring_jobs,
    merchant_job_key,
    setup_recurring_jobs,
)
from dealhub.merchants.registry import merchant_registry
from dealhub.schemas import JobState, JobType


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def queue(scheduler, monkeypatch):
    q = JobQueue(scheduler=scheduler, concurrency=2, max_attempts=3, backoff_seconds=2.0,
                 keep_completed=2, keep_failed=5)
    q.delays = []
    original = q._schedule_attempt

    def _record(job, delay):
        q.delays.append(delay)
        original(job, delay)

    monkeypatch.setattr(q, "_schedule_attempt", _record)
    return q


def _attempt_ids(scheduler):
    return sorted(j.id for j in scheduler.get_jobs() if j.id.startswith("attempt:"))


async def test_enqueue_schedules_an_immediate_attempt(queue, scheduler):
    job = await queue.enqueue(JobType.SCRAPE_MERCHANT, {"merchant": "amazon"})

    assert job.state is JobState.WAITING
    assert job.max_attempts == 3
    assert queue.delays == [0]
    assert _attempt_ids(scheduler) == [f"attempt:{job.id}:1"]
    assert scheduler.get_job(f"attempt:{job.id}:1").args == [job.id]


async def test_successful_job_is_completed(queue):
    async def handler(job):
        return {"created": 3}

    queue.register(JobType.SCRAPE_MERCHANT, handler)
    job = await queue.enqueue(JobType.SCRAPE_MERCHANT, {"merchant": "amazon"})
    await queue.process(job.id)

    assert job.state is JobState.COMPLETED
    assert job.attempts == 1
    assert job.result == {"created": 3}
    assert queue.get_job(job.id) is job
    assert queue.counts() == {"pending": 0, "completed": 1, "failed": 0}


async def test_transient_failure_retries_with_exponential_backoff(queue):
    async def handler(job):
        raise RuntimeError("Timeout 30000ms exceeded")

    queue.register(JobType.SCRAPE_MERCHANT, handler)
    job = await queue.enqueue(JobType.SCRAPE_MERCHANT, {"merchant": "amazon"})

    await queue.process(job.id)
    assert job.state is JobState.DELAYED
    await queue.process(job.id)
    await queue.process(job.id)

    assert job.state is JobState.FAILED
    assert job.attempts == 3
    assert queue.delays == [0, 2.0, 4.0]
    assert "Timeout" in job.error
    assert list(queue.failed) == [job]


async def test_job_recovers_on_a_later_attempt(queue):
    calls = []

    async def handler(job):
        calls.append(job.attempts)
        if len(calls) < 2:
            raise RuntimeError("flaky")
        return "ok"

    queue.register(JobType.EXPIRE_DEALS, handler)
    job = await queue.enqueue(JobType.EXPIRE_DEALS)
    await queue.process(job.id)
    await queue.process(job.id)

    assert job.state is JobState.COMPLETED
    assert job.attempts == 2
    assert job.error is None


async def test_non_retryable_error_fails_on_first_attempt(queue):
    async def handler(job):
        raise MerchantNotFound("snapdeal")

    queue.register(JobType.SCRAPE_MERCHANT, handler)
    job = await queue.enqueue(JobType.SCRAPE_MERCHANT, {"merchant": "snapdeal"})
    await queue.process(job.id)

    assert job.state is JobState.FAILED
    assert job.attempts == 1
    assert queue.delays == [0]
    assert "snapdeal" in job.error


async def test_job_without_handler_fails(queue):
    job = await queue.enqueue(JobType.TRACK_ALL_PRICES)
    await queue.process(job.id)

    assert job.state is JobState.FAILED
    assert "No handler" in job.error


async def test_unknown_job_id_is_ignored(queue):
    await queue.process("nope")
    assert queue.counts()["pending"] == 0


async def test_finished_jobs_are_pruned_to_the_newest(queue):
    async def handler(job):
        return job.payload["n"]

    queue.register(JobType.EXPIRE_DEALS, handler)
    jobs = [await queue.enqueue(JobType.EXPIRE_DEALS, {"n": n}) for n in range(4)]
    for job in jobs:
        await queue.process(job.id)

    assert [j.result for j in queue.completed] == [2, 3]
    assert queue.get_job(jobs[0].id) is None


async def test_concurrency_is_bounded(queue):
    running, peak = 0, 0

    async def handler(job):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        for _ in range(3):
            await asyncio.sleep(0)
        running -= 1

    queue.register(JobType.TRACK_DEAL_PRICE, handler)
    jobs = [await queue.enqueue(JobType.TRACK_DEAL_PRICE, {"deal_id": str(n)}) for n in range(5)]
    await asyncio.gather(*(queue.process(j.id) for j in jobs))

    assert peak == 2
    assert all(j.state is JobState.COMPLETED for j in jobs)


# ── Recurring ────────────────────────────────────────────────────────────────


async def test_recurring_registration_is_idempotent(queue, scheduler):
    queue.register_recurring("scrape-amazon-recurring", "0 */6 * * *",
                             JobType.SCRAPE_MERCHANT, {"merchant": "amazon"})
    queue.register_recurring("scrape-amazon-recurring", "0 3,9,15,21 * * *",
                             JobType.SCRAPE_MERCHANT, {"merchant": "amazon"})

    assert queue.list_recurring() == ["scrape-amazon-recurring"]
    job = scheduler.get_job("scrape-amazon-recurring")
    assert isinstance(job.trigger, CronTrigger)
    assert "3,9,15,21" in str(job.trigger)


async def test_recurring_trigger_enqueues_with_its_key(queue, scheduler):
    queue.register_recurring("expire-deals-recurring", "0 2 * * *", JobType.EXPIRE_DEALS)
    entry = scheduler.get_job("expire-deals-recurring")

    job = await entry.func(**entry.kwargs)

    assert job.type is JobType.EXPIRE_DEALS
    assert job.recurring_key == "expire-deals-recurring"


async def test_remove_and_clear_recurring(queue):
    queue.register_recurring("a", "0 * * * *", JobType.TRACK_ALL_PRICES)
    queue.register_recurring("b", "0 2 * * *", JobType.EXPIRE_DEALS)
    await queue.enqueue(JobType.EXPIRE_DEALS)

    assert queue.remove_recurring("a") is True
    assert queue.remove_recurring("a") is False
    assert queue.clear_recurring() == 1
    assert queue.list_recurring() == []
    # pending one-off attempts are not recurring jobs
    assert queue.counts()["pending"] == 1


async def test_default_schedule(queue):
    keys = setup_recurring_jobs(queue, merchant_registry)
    again = setup_recurring_jobs(queue, merchant_registry)

    assert keys == again
    assert sorted(keys) == queue.list_recurring()
    for slug in ("amazon", "flipkart", "croma"):
        assert merchant_job_key(slug) in keys
    assert TRACK_PRICES_KEY in keys
    assert EXPIRE_DEALS_KEY in keys
    assert VERIFY_DEALS_KEY in keys

    assert clear_recurring_jobs(queue) == len(keys)
    assert queue.list_recurring() == []


def test_start_and_shutdown_wrap_the_scheduler(queue, scheduler):
    queue.start()
    assert scheduler.running
    queue.shutdown()
    assert not scheduler.running
