"""
Site Monitor - wires probing, isolation, the result pipeline and statistics.

Flow:
  SiteScheduler -> ProbeExecutor (guarded by CircuitBreakerRegistry)
  -> ResultPipeline -> LogStore + MonitorState + PingMetrics

Statistics are computed on demand from the store and a status snapshot.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Union

from loguru import logger
from prometheus_client import CollectorRegistry

from .charts import generate_chart_data, generate_chart_data_for_range
from .checker import ProbeExecutor, ProbeFn, icmp_probe
from .circuit_breaker import BreakerStats, CircuitBreakerRegistry
from .metrics import PingMetrics
from .models import (
    ChartData,
    ChartSeries,
    LineType,
    LiveStatus,
    LogEntry,
    OverviewData,
    RecentEvent,
    SiteStatistics,
    TestResult,
)
from .pipeline import ResultPipeline
from .scheduler import SiteScheduler
from .settings import Settings
from .state import MonitorState
from .statistics import calculate_overview, calculate_site_statistics, get_recent_events
from ..storage.errors import StorageError


class SiteMonitor:
    """Owns every component of one monitoring run."""

    def __init__(
        self,
        settings: Settings,
        store,
        probe_fn: ProbeFn = icmp_probe,
        registry: Optional[CollectorRegistry] = None,
    ):
        self.settings = settings
        self.store = store
        self.state = MonitorState(settings.sites)
        self.metrics = PingMetrics(registry)
        for site in self.state.sites:
            self.metrics.register_site(site)

        max_failures, reset_timeout = settings.breaker_policy
        self.breakers = CircuitBreakerRegistry(
            max_failures=max_failures,
            reset_timeout=reset_timeout,
            metrics=self.metrics,
        )
        self.executor = ProbeExecutor(
            self.breakers,
            probe_fn=probe_fn,
            packet_count=settings.packet_count,
            packet_size=settings.packet_size,
            timeout=settings.probe_timeout,
        )
        self.pipeline = ResultPipeline(self.state, store, self.metrics)
        self.scheduler = SiteScheduler(
            self.state.sites,
            self.executor,
            self.pipeline.submit,
            default_interval=settings.default_interval,
        )

    # ──────────────────────────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────────────────────────

    async def start(self):
        logger.info(f"Starting monitor for {len(self.state.enabled_sites)} of {len(self.state.sites)} sites")
        self.pipeline.start()
        self.scheduler.start()

    async def stop(self):
        """Stop producers first so queued results are still drained."""
        await self.scheduler.stop()
        await self.pipeline.stop()
        logger.info(f"Monitor stopped after {self.state.total_checks} checks ({len(self.breakers)} breakers)")

    async def run_until(self, stop_event: asyncio.Event):
        await self.start()
        try:
            await stop_event.wait()
        finally:
            await self.stop()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    # ──────────────────────────────────────────────────────────────────
    # On-demand probing
    # ──────────────────────────────────────────────────────────────────

    async def test_site(self, site_id: str) -> TestResult:
        """Probe all lines of a site now, outside the schedule and the breakers."""
        site = self.state.find_site(site_id)
        if site is None:
            raise KeyError(site_id)

        lines = site.lines
        outcomes = await asyncio.gather(
            *(self.executor.probe_now(site.address_for(line)) for line in lines)
        )
        by_line = dict(zip(lines, outcomes))
        ok_primary, latency_primary, error_primary = by_line[LineType.PRIMARY]
        ok_secondary, latency_secondary, error_secondary = by_line.get(
            LineType.SECONDARY, (True, None, "")
        )
        logger.info(f"Manual test of {site_id}: primary={ok_primary} secondary={ok_secondary}")
        return TestResult(
            success=ok_primary and ok_secondary,
            timestamp=datetime.now(timezone.utc),
            latency_primary=latency_primary,
            latency_secondary=latency_secondary,
            error_primary=error_primary,
            error_secondary=error_secondary,
        )

    # ──────────────────────────────────────────────────────────────────
    # Read API
    # ──────────────────────────────────────────────────────────────────

    def get_filtered_logs(
        self,
        site_id: Optional[str] = None,
        success: Optional[bool] = None,
        limit: int = 0,
    ) -> List[LogEntry]:
        try:
            logs = self.store.query(site_id, success, limit)
        except StorageError as e:
            logger.error(f"Failed to query logs (site={site_id}, success={success}): {e}")
            raise
        logger.debug(f"Retrieved {len(logs)} logs (site={site_id}, success={success}, limit={limit})")
        return logs

    def get_all_logs(self) -> List[LogEntry]:
        try:
            return self.store.all_entries()
        except StorageError as e:
            logger.error(f"Failed to read logs from storage: {e}")
            raise

    def _history(self) -> List[LogEntry]:
        try:
            return self.store.all_entries()
        except Exception as e:
            logger.error(f"Failed to read logs from storage: {e}")
            return []

    def get_status(self, site_id: str) -> Optional[LiveStatus]:
        return self.state.get_status(site_id)

    def get_statuses(self) -> Dict[str, LiveStatus]:
        return self.state.snapshot()

    def calculate_site_statistics(self, site_id: str, now: Optional[datetime] = None) -> SiteStatistics:
        return calculate_site_statistics(
            self._history(),
            site_id,
            status=self.state.get_status(site_id),
            now=now,
            site=self.state.find_site(site_id),
        )

    def generate_chart_data(self, site_id: str, now: Optional[datetime] = None) -> ChartData:
        return generate_chart_data(self._history(), site_id, now=now)

    def generate_chart_data_for_range(
        self,
        site_id: str,
        chart_type: str,
        time_range: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Union[ChartSeries, Dict[str, ChartSeries]]:
        return generate_chart_data_for_range(self._history(), site_id, chart_type, time_range, now=now)

    def get_recent_events(self, site_id: str, limit: int = 10) -> List[RecentEvent]:
        return get_recent_events(self._history(), site_id, limit)

    def get_overview(self) -> OverviewData:
        return calculate_overview(
            self.state.enabled_sites,
            self.state.snapshot(),
            self._history(),
            self.state.total_checks,
            timedelta(seconds=self.state.uptime_seconds),
        )

    def breaker_stats(self) -> Dict[str, BreakerStats]:
        return self.breakers.stats()
