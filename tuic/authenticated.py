"""Authentication state of a connection that tasks can wait on."""

from __future__ import annotations

import asyncio
import threading
import uuid as _uuid
from typing import List, Optional, Tuple

__all__ = ["Authenticated"]


def _resolve(future: "asyncio.Future[None]") -> None:
    if not future.done():
        future.set_result(None)


class Authenticated:
    """Holds the authenticated user's UUID and wakes tasks waiting for it.

    Safe to set from any thread; waiters on any event loop are woken.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._uuid: Optional[_uuid.UUID] = None
        self._waiters: List[Tuple[asyncio.AbstractEventLoop, "asyncio.Future[None]"]] = []

    def set(self, uuid: _uuid.UUID) -> None:
        """Record the authenticated UUID and wake every waiter."""
        with self._lock:
            self._uuid = uuid
            waiters, self._waiters = self._waiters, []
        for loop, future in waiters:
            try:
                loop.call_soon_threadsafe(_resolve, future)
            except RuntimeError:
                pass

    def get(self) -> Optional[_uuid.UUID]:
        """Return the authenticated UUID, or ``None`` if not yet authenticated."""
        with self._lock:
            return self._uuid

    async def wait(self) -> None:
        """Return once the connection has been authenticated."""
        loop = asyncio.get_running_loop()
        future: "asyncio.Future[None]" = loop.create_future()
        entry = (loop, future)
        with self._lock:
            if self._uuid is not None:
                return
            self._waiters.append(entry)
        try:
            await future
        finally:
            with self._lock:
                if entry in self._waiters:
                    self._waiters.remove(entry)

    def __await__(self):
        return self.wait().__await__()

    def __str__(self) -> str:
        uuid = self.get()
        return "unauthenticated" if uuid is None else str(uuid)