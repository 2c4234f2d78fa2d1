"""
End-to-end tests of the monitor facade with a fake probe capability.
"""

import asyncio

import pytest
from loguru import logger

from sitewatch.core.models import BreakerState, LineType
from sitewatch.core.site_monitor import SiteMonitor
from sitewatch.storage import MemoryLogStore, StorageError

from conftest import FakeProbe, echo, probe_failure


class UnreadableStore(MemoryLogStore):
    def all_entries(self):
        raise StorageError("database is locked")

    def query(self, site_id=None, success=None, limit=0):
        raise StorageError("database is locked")


@pytest.fixture
def probe():
    # secondary line of hq is down
    return FakeProbe({"10.0.1.1": probe_failure(), "10.0.2.1": echo(avg=35.0)})


async def _run_once(monitor: SiteMonitor, expected_checks: int = 3):
    await monitor.start()
    for _ in range(100):
        if monitor.state.total_checks >= expected_checks:
            break
        await asyncio.sleep(0.01)
    await monitor.stop()


class TestSiteMonitor:

    @pytest.mark.asyncio
    async def test_first_round_populates_everything(self, memory_settings, probe):
        store = MemoryLogStore()
        monitor = SiteMonitor(memory_settings, store, probe_fn=probe)
        await _run_once(monitor)

        hq = monitor.get_status("hq")
        assert hq.primary_online
        assert not hq.secondary_online
        assert not hq.both_online
        assert hq.secondary_error == "ping failed: unreachable"
        assert monitor.get_status("branch").both_online
        assert monitor.get_status("old").last_check is None
        assert "10.0.3.1" not in probe.calls

        assert len(monitor.get_all_logs()) >= 3
        failures = monitor.get_filtered_logs(success=False)
        assert failures and all(e.line is LineType.SECONDARY for e in failures)
        assert len(monitor.get_filtered_logs(site_id="branch", limit=1)) == 1

        overview = monitor.get_overview()
        assert overview.total_sites == 2
        assert overview.online_sites == 2
        assert overview.degraded_sites == 1
        assert overview.offline_sites == 0
        assert overview.total_checks >= 3

    @pytest.mark.asyncio
    async def test_statistics_and_charts(self, memory_settings, probe):
        monitor = SiteMonitor(memory_settings, MemoryLogStore(), probe_fn=probe)
        await _run_once(monitor)

        stats = monitor.calculate_site_statistics("branch")
        assert stats.mean_latency_primary == 35.0
        assert stats.uptime_24h == 100.0
        assert stats.current_latency_primary == 35.0
        assert set(stats.sla) == {"primary", "combined"}

        hq_stats = monitor.calculate_site_statistics("hq")
        assert hq_stats.secondary_uptime_24h == 0.0
        assert hq_stats.last_incident.endswith("ago")

        charts = monitor.generate_chart_data("branch")
        assert len(charts.latency.labels) == 24
        assert charts.latency.primary[-1] == 35.0

        series = monitor.generate_chart_data_for_range("hq", "uptime", "24h")
        assert series.secondary[-1] == 0.0
        assert series.primary[-1] == 100.0

    @pytest.mark.asyncio
    async def test_breaker_state_is_exposed(self, memory_settings, probe):
        monitor = SiteMonitor(memory_settings, MemoryLogStore(), probe_fn=probe)
        await _run_once(monitor)

        stats = monitor.breaker_stats()
        assert stats["hq-secondary"].failures == 1
        assert stats["hq-secondary"].state is BreakerState.CLOSED
        assert stats["hq-primary"].failures == 0

    @pytest.mark.asyncio
    async def test_manual_test_bypasses_schedule(self, memory_settings, probe):
        monitor = SiteMonitor(memory_settings, MemoryLogStore(), probe_fn=probe)

        hq = await monitor.test_site("hq")
        assert not hq.success
        assert hq.latency_primary == 20.0
        assert hq.latency_secondary is None
        assert hq.error_secondary == "ping failed: unreachable"

        branch = await monitor.test_site("branch")
        assert branch.success
        assert branch.latency_primary == 35.0
        assert branch.error_secondary == ""

        # nothing is recorded for manual probes
        assert monitor.state.total_checks == 0
        assert monitor.get_all_logs() == []

    @pytest.mark.asyncio
    async def test_manual_test_unknown_site(self, memory_settings, probe):
        monitor = SiteMonitor(memory_settings, MemoryLogStore(), probe_fn=probe)
        with pytest.raises(KeyError):
            await monitor.test_site("nowhere")

    @pytest.mark.asyncio
    async def test_context_manager_and_run_until(self, memory_settings, probe):
        async with SiteMonitor(memory_settings, MemoryLogStore(), probe_fn=probe) as monitor:
            assert monitor.scheduler.running
        assert not monitor.scheduler.running

        stop_event = asyncio.Event()
        monitor = SiteMonitor(memory_settings, MemoryLogStore(), probe_fn=probe)
        runner = asyncio.create_task(monitor.run_until(stop_event))
        await asyncio.sleep(0.05)
        stop_event.set()
        await asyncio.wait_for(runner, timeout=2)
        assert monitor.state.total_checks >= 3

    def test_reads_degrade_when_store_fails(self, memory_settings, probe):
        monitor = SiteMonitor(memory_settings, UnreadableStore(), probe_fn=probe)

        stats = monitor.calculate_site_statistics("hq")
        assert stats.total_checks == 0
        assert monitor.get_recent_events("hq") == []
        assert monitor.get_overview().uptime_percentage == 0.0
        charts = monitor.generate_chart_data("hq")
        assert charts.latency.primary == [0.0] * 24
        assert charts.uptime.labels == []

    def test_monitors_do_not_share_metrics(self, memory_settings, probe):
        first = SiteMonitor(memory_settings, MemoryLogStore(), probe_fn=probe)
        second = SiteMonitor(memory_settings, MemoryLogStore(), probe_fn=probe)
        assert first.metrics.registry is not second.metrics.registry
        assert first.metrics.registry.get_sample_value(
            "site_info", {"site_id": "hq", "name": "Headquarters", "location": "Berlin"}
        ) == 1

    def test_log_reads_report_storage_errors(self, memory_settings, probe):
        monitor = SiteMonitor(memory_settings, UnreadableStore(), probe_fn=probe)
        messages = []
        handler_id = logger.add(messages.append, level="ERROR", format="{message}")
        try:
            with pytest.raises(StorageError):
                monitor.get_filtered_logs(site_id="hq")
            with pytest.raises(StorageError):
                monitor.get_all_logs()
        finally:
            logger.remove(handler_id)

        assert len(messages) == 2
        assert all("database is locked" in m for m in messages)
