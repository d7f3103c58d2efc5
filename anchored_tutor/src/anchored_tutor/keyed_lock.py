"""
Keyed Async Locks

One asyncio.Lock per key (session or assessment id). An entry lives only
while some task holds or waits for it, so the map stays bounded by the
number of in-flight operations.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List


class KeyedLock:
    """Serializes work per key while letting different keys run in parallel."""

    def __init__(self):
        # key -> [lock, number of holders and waiters]
        self._entries: Dict[str, List] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._entries[key]
