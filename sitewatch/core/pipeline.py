"""
Single-consumer result pipeline.

Every ProbeResult goes through one queue and one consumer, which applies
the downstream effects in a fixed order: check counter, metrics, log
store, live status.
"""

import asyncio
from typing import Optional

from loguru import logger

from .metrics import PingMetrics
from .models import LogEntry, ProbeResult
from .state import MonitorState

_STOP = object()


class ResultPipeline:
    """Drains probe results and turns them into status, logs and metrics."""

    def __init__(self, state: MonitorState, store, metrics: PingMetrics):
        self.state = state
        self.store = store
        self.metrics = metrics
        self.queue: asyncio.Queue = asyncio.Queue()
        self._consumer: Optional[asyncio.Task] = None

    def submit(self, result: ProbeResult):
        """Enqueue a result. Safe to call from any coroutine on the loop."""
        self.queue.put_nowait(result)

    def start(self):
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(self._consume(), name="result-pipeline")
            logger.info("Result pipeline started")

    async def stop(self, timeout: float = 5.0):
        """Drain what is already queued, then stop the consumer."""
        if self._consumer is None:
            return
        self.queue.put_nowait(_STOP)
        try:
            await asyncio.wait_for(self._consumer, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Result pipeline did not drain within {timeout}s, {self.queue.qsize()} left")
            self._consumer.cancel()
        self._consumer = None
        logger.info("Result pipeline stopped")

    async def _consume(self):
        while True:
            item = await self.queue.get()
            try:
                if item is _STOP:
                    return
                await self.handle(item)
            except Exception as e:
                logger.error(f"Failed to process result: {e!r}")
            finally:
                self.queue.task_done()

    async def handle(self, result: ProbeResult):
        logger.debug(
            f"Processing result {result.site_id}/{result.line.value} success={result.success}"
        )
        self.state.increment_checks()
        self.metrics.observe_result(result)

        entry = LogEntry.from_result(result, self.state.site_name(result.site_id))
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self.store.append, entry)
        except Exception as e:
            logger.error(
                f"Failed to store ping log for {result.site_id}/{result.line.value} ({result.ip}): {e}"
            )

        status = self.state.apply(result)
        if status is None:
            logger.warning(f"Result for unknown site {result.site_id!r} not applied to live status")
            return
        self.metrics.set_both_online(result.site_id, status.both_online)
