"""Per-digest asyncio locks shared by replication and publishing."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class DigestLocks:
    """
    Serializes work on the same record digest within one process.

    Entries are dropped once no task holds or awaits them.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, digest: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(digest, asyncio.Lock())
        self._users[digest] = self._users.get(digest, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[digest] -= 1
            if self._users[digest] == 0:
                del self._users[digest]
                del self._locks[digest]

    def __len__(self) -> int:
        return len(self._locks)


DEFAULT_LOCKS = DigestLocks()
