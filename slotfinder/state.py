"""Shared service state.

One ``SharedState`` is built at startup and handed to both the HTTP app and
the cleanup worker. The adaptor is only reachable through ``session()``.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from slotfinder.adaptors.base import Adaptor


class SharedState:
    def __init__(self, adaptor: Adaptor) -> None:
        self._adaptor = adaptor
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[Adaptor]:
        """Hold exclusive access to the adaptor for one logical operation."""
        async with self._lock:
            yield self._adaptor

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    async def close(self) -> None:
        async with self._lock:
            await self._adaptor.close()
