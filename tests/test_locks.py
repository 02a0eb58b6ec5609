# -*- coding: utf-8 -*-
import asyncio

from dealhub.utils.locks import KeyedLock


async def test_same_key_is_serialised():
    locks = KeyedLock()
    order = []

    async def work(name):
        async with locks.hold(("amazon india", "https://www.amazon.in/dp/B09XS7JWHH")):
            order.append(f"{name}-in")
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            order.append(f"{name}-out")

    await asyncio.gather(work("a"), work("b"))

    assert order == ["a-in", "a-out", "b-in", "b-out"]
    assert len(locks) == 0


async def test_different_keys_interleave():
    locks = KeyedLock()
    order = []

    async def work(key):
        async with locks.hold(key):
            order.append(f"{key}-in")
            await asyncio.sleep(0)
            order.append(f"{key}-out")

    await asyncio.gather(work("x"), work("y"))

    assert order[:2] == ["x-in", "y-in"]
    assert len(locks) == 0


async def test_lock_is_released_on_error():
    locks = KeyedLock()
    try:
        async with locks.hold("k"):
            raise ValueError("boom")
    except ValueError:
        pass

    async with locks.hold("k"):
        assert len(locks) == 1
    assert len(locks) == 0
