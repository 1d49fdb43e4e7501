"""
flowengine/store.py
───────────────────
Keyed storage + per-key async locks shared by the executor and the
connection manager.

`KeyValueStore` is the seam: the in-memory implementation below is the
process-wide default, but anything with async get/set/delete (Redis, a
table, ...) can replace it without touching executor or connection logic.
"""

from __future__ import annotations
import asyncio
import copy
from contextlib import asynccontextmanager
from typing import AsyncIterator, Generic, Hashable, Protocol, TypeVar

V = TypeVar("V")


class KeyValueStore(Protocol[V]):
    async def get(self, key: Hashable) -> V | None: ...
    async def set(self, key: Hashable, value: V) -> None: ...
    async def delete(self, key: Hashable) -> None: ...


class InMemoryStore(Generic[V]):
    """
    Dict-backed store.

    With `copy_values=True` values are deep-copied on the way in and out,
    so callers must `set()` after mutating, exactly as with an external
    store. Session handles (live objects) are stored with copy_values=False.
    """

    def __init__(self, copy_values: bool = True):
        self._data: dict[Hashable, V] = {}
        self._copy = copy_values

    async def get(self, key: Hashable) -> V | None:
        value = self._data.get(key)
        if value is None or not self._copy:
            return value
        return copy.deepcopy(value)

    async def set(self, key: Hashable, value: V) -> None:
        self._data[key] = copy.deepcopy(value) if self._copy else value

    async def delete(self, key: Hashable) -> None:
        self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)

    def keys(self) -> list[Hashable]:
        return list(self._data)


class KeyedLock:
    """
    One asyncio.Lock per key, dropped again once nobody holds or waits on it.

        async with locks.hold((tenant_id, jid)):
            ...
    """

    def __init__(self):
        self._locks:   dict[Hashable, asyncio.Lock] = {}
        self._waiters: dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)
