"""Keyed in-process async mutexes for per-user and per-UID serialization."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Tuple


class KeyedLock:
    """Registry of asyncio locks created on demand and dropped when idle.

    Entries are reference counted so a key's lock lives exactly as long as
    some task holds or waits for it.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, Tuple[asyncio.Lock, int]] = {}

    def _retain(self, key: str) -> asyncio.Lock:
        lock, refs = self._entries.get(key, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._entries[key] = (lock, refs + 1)
        return lock

    def _release(self, key: str) -> None:
        lock, refs = self._entries[key]
        if refs <= 1:
            del self._entries[key]
        else:
            self._entries[key] = (lock, refs - 1)

    def is_locked(self, key: str) -> bool:
        entry = self._entries.get(key)
        return bool(entry and entry[0].locked())

    def __len__(self) -> int:
        return len(self._entries)

    @asynccontextmanager
    async def hold(self, *keys: str) -> AsyncIterator[None]:
        """Acquire every key in sorted order; release all on exit."""
        ordered = sorted({key for key in keys if key})
        acquired: List[str] = []
        retained: List[str] = []
        try:
            for key in ordered:
                lock = self._retain(key)
                retained.append(key)
                await lock.acquire()
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._entries[key][0].release()
            for key in reversed(retained):
                self._release(key)


def user_key(user_id: str) -> str:
    return f"user:{user_id}"


def uid_key(uid_id: str) -> str:
    return f"uid:{uid_id}"


def uid_value_key(uid_value: str) -> str:
    return f"value:{uid_value.strip().lower()}"


lifecycle_locks = KeyedLock()
