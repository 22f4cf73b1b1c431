"""Stops a producer's recording when the router reports it closed."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from streamvault.services.media.base import PRODUCER_CLOSE, TRANSPORT_CLOSE, BaseProducer

logger = logging.getLogger(__name__)


class CleanupCoordinator:
    """Turns producer close events into a single ``stop_session`` call.

    Args:
        stop_session: Coroutine function stopping the session of a producer ID.
    """

    def __init__(self, stop_session: Callable[[str], Awaitable[None]]) -> None:
        self._stop_session = stop_session
        self._tasks: set[asyncio.Task] = set()

    def watch(self, producer: BaseProducer) -> None:
        """Subscribe to ``transportclose`` and ``producerclose`` of ``producer``."""
        fired = False

        def on_close() -> None:
            nonlocal fired
            if fired:
                return
            fired = True
            logger.info("Producer %s closed, stopping its recording", producer.id)
            task = asyncio.create_task(self._stop(producer.id))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        producer.on(TRANSPORT_CLOSE, on_close)
        producer.on(PRODUCER_CLOSE, on_close)

    async def _stop(self, producer_id: str) -> None:
        try:
            await self._stop_session(producer_id)
        except Exception:
            logger.exception("Failed to stop recording for producer %s", producer_id)

    async def drain(self) -> None:
        """Wait for stop calls that are still in flight."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
