# api/services/draft_locks.py
# ================================
# Per-ingestion draft mutation locks
# ================================
# At most one draft mutation per ingestion id may be in flight, otherwise
# two assignments on different lines of the same bill race on the draft
# document and the last write wins. Scope is this process only.

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Dict, List


class KeyedLocks:
    def __init__(self):
        self._locks: Dict[Any, List] = {}  # key -> [lock, holders+waiters]

    @asynccontextmanager
    async def hold(self, key: Any):
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)
