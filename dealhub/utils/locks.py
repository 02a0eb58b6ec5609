# -*- coding: utf-8 -*-
"""
Per-key asyncio locks.

Used by the ingestion pipeline so that two candidates for the same
(merchant, product URL) inside one worker process are decided one after
the other. Cross-process races are caught by the unique index on
deals.url.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable


class KeyedLock:

    def __init__(self):
        self._locks:   Dict[Hashable, asyncio.Lock] = {}
        self._waiters: Dict[Hashable, int]          = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
