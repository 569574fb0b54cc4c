"""
Serializes compound player operations.

A compound operation issues several mpv commands whose intermediate states
must not interleave with another compound operation. Waiters are admitted in
arrival order.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Optional


class OperationLock:
    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self._lock = asyncio.Lock()
        self._waiting = 0
        self.current_operation: Optional[str] = None

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    @property
    def waiting(self) -> int:
        return self._waiting

    @asynccontextmanager
    async def hold(self, name: str):
        """Hold the lock for the duration of the block"""
        if self._lock.locked():
            self.logger.debug(f"Operation {name} waiting for {self.current_operation}")

        self._waiting += 1
        try:
            await self._lock.acquire()
        finally:
            self._waiting -= 1

        self.current_operation = name
        try:
            yield
        finally:
            self.current_operation = None
            self._lock.release()

    async def with_lock(self, name: str, fn: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Run fn(*args, **kwargs) while holding the lock.

        Args:
            name: Operation name, for diagnostics
            fn: Coroutine function to run

        Returns:
            Whatever fn returns; exceptions propagate after the lock is released
        """
        async with self.hold(name):
            return await fn(*args, **kwargs)
