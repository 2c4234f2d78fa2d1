"""
Per-site probe scheduler.

One task per enabled site fires a probe round immediately and then once
per interval until the stop event is set. Rounds run as their own tasks
so a slow probe never delays the next tick.
"""

import asyncio
from typing import Callable, Dict, Optional, Set

from loguru import logger

from .checker import ProbeExecutor
from .models import LineType, ProbeResult, Site


class SiteScheduler:
    """Drives ProbeExecutor rounds for all enabled sites."""

    def __init__(
        self,
        sites,
        executor: ProbeExecutor,
        sink: Callable[[ProbeResult], None],
        default_interval: float = 30.0,
    ):
        self.sites = tuple(sites)
        self.executor = executor
        self.sink = sink
        self.default_interval = default_interval
        self._stop_event: Optional[asyncio.Event] = None
        self._loops: Dict[str, asyncio.Task] = {}
        self._rounds: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._loops.values())

    def interval_for(self, site: Site) -> float:
        return float(site.interval) if site.interval and site.interval > 0 else self.default_interval

    def start(self):
        self._stop_event = asyncio.Event()
        enabled = 0
        for site in self.sites:
            if not site.enabled:
                logger.debug(f"Site {site.id} ({site.name}) disabled, skipping")
                continue
            logger.info(f"Starting probe loop for {site.id} ({site.name}) every {self.interval_for(site):g}s")
            self._loops[site.id] = asyncio.create_task(self._site_loop(site), name=f"probe-{site.id}")
            enabled += 1
        logger.info(f"All probe loops started: {enabled} enabled of {len(self.sites)} sites")

    async def stop(self, grace: float = 2.0):
        """Signal every loop, wait for them, then settle in-flight rounds."""
        if self._stop_event is None:
            return
        self._stop_event.set()
        if self._loops:
            await asyncio.gather(*self._loops.values(), return_exceptions=True)
        self._loops.clear()

        pending = set(self._rounds)
        if pending:
            done, still_running = await asyncio.wait(pending, timeout=grace)
            for task in still_running:
                task.cancel()
            if still_running:
                logger.warning(f"Cancelled {len(still_running)} probe rounds still running at shutdown")
                await asyncio.gather(*still_running, return_exceptions=True)
        logger.info("Probe loops stopped")

    async def _site_loop(self, site: Site):
        interval = self.interval_for(site)
        self._spawn_round(site)
        while True:
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                self._spawn_round(site)
            else:
                logger.info(f"Stopping probe loop for {site.id}")
                return

    def _spawn_round(self, site: Site):
        task = asyncio.create_task(self.probe_round(site), name=f"round-{site.id}")
        self._rounds.add(task)
        task.add_done_callback(self._rounds.discard)

    async def probe_round(self, site: Site):
        """Probe the primary line and, for dual-line sites, the secondary concurrently."""
        probes = [self.executor.run(site, LineType.PRIMARY)]
        if site.is_dual_line:
            probes.append(self.executor.run(site, LineType.SECONDARY))

        for outcome in await asyncio.gather(*probes, return_exceptions=True):
            if isinstance(outcome, ProbeResult):
                self.sink(outcome)
            elif isinstance(outcome, asyncio.CancelledError):
                raise outcome
            else:
                logger.error(f"Unexpected probe outcome for {site.id}: {outcome!r}")
