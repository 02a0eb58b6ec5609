# -*- coding: utf-8 -*-
from conftest import FakeScheduler, count_rows
from dealhub.db.models import Merchant, User
from dealhub.jobs.queue import JobQueue
from dealhub.schemas import JobType
from dealhub.worker import Worker, prepare_store


async def test_prepare_store_seeds_merchants_once(engine, session_factory):
    await prepare_store(session_factory, bind=engine)
    await prepare_store(session_factory, bind=engine)

    assert await count_rows(session_factory, Merchant) == 3


async def test_worker_start_wires_everything(engine, session_factory):
    scheduler = FakeScheduler()
    worker = Worker(queue=JobQueue(scheduler=scheduler), session_factory=session_factory, bind=engine)

    await worker.start()

    assert scheduler.running
    assert await count_rows(session_factory, User) == 1
    assert worker.orchestrator.system_user_id
    assert set(worker.queue._handlers) == set(JobType)
    assert "scrape-amazon-recurring" in worker.recurring
    assert worker.queue.list_recurring() == sorted(worker.recurring)

    await worker.stop()
    assert not scheduler.running
