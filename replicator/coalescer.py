"""Coalescing of concurrent requests for identical work into one execution."""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Hashable

from common.logging_config import get_logger

logger = get_logger(__name__)


class Coalescer:
    """
    Registry of in-flight operations keyed by a resource identifier.

    The first caller for a key owns the work; callers arriving while it is
    outstanding await the owner's outcome instead of starting a duplicate.
    """

    def __init__(self):
        self._in_flight: Dict[Hashable, asyncio.Future] = {}

    def in_flight(self, key: Hashable) -> bool:
        return key in self._in_flight

    def __len__(self) -> int:
        return len(self._in_flight)

    async def coalesce(self, key: Hashable, work_fn: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run work_fn once per key at a time and share its outcome.

        Args:
            key: Resource identifier of the operation
            work_fn: Zero-argument callable returning an awaitable

        Returns:
            The owner's result, identical for every caller

        Raises:
            Whatever work_fn raised, identically for every caller
        """
        existing = self._in_flight.get(key)
        if existing is not None:
            logger.debug(f"Joining in-flight operation {key}")
            return await asyncio.shield(existing)

        broadcast = asyncio.get_running_loop().create_future()
        self._in_flight[key] = broadcast
        try:
            result = await work_fn()
        except Exception as e:
            broadcast.set_exception(e)
            # marks the exception retrieved when nobody joined
            broadcast.exception()
            raise
        else:
            broadcast.set_result(result)
            return result
        finally:
            if not broadcast.done():
                broadcast.cancel()
            if self._in_flight.get(key) is broadcast:
                del self._in_flight[key]
