"""
Tests for the probe executor and the icmplib-backed probe capability.
"""

from types import SimpleNamespace

import pytest
from icmplib import ICMPLibError

from sitewatch.core import checker
from sitewatch.core.checker import ProbeError, ProbeExecutor, icmp_probe
from sitewatch.core.circuit_breaker import CircuitBreakerRegistry
from sitewatch.core.models import BreakerState, LineType

from conftest import FakeProbe, echo, probe_failure


@pytest.fixture
def registry(fake_clock):
    return CircuitBreakerRegistry(max_failures=3, reset_timeout=60, clock=fake_clock)


class TestProbeExecutor:

    @pytest.mark.asyncio
    async def test_success_is_normalized(self, dual_site, registry):
        probe = FakeProbe({dual_site.primary_ip: echo(avg=23.5, jitter=0.8)})
        executor = ProbeExecutor(registry, probe_fn=probe, packet_count=3, timeout=2)

        result = await executor.run(dual_site, LineType.PRIMARY)

        assert result.success
        assert result.site_id == "hq"
        assert result.ip == "10.0.0.1"
        assert result.line is LineType.PRIMARY
        assert result.latency == 23.5
        assert result.min_latency == 21.5
        assert result.max_latency == 25.5
        assert result.jitter == 0.8
        assert result.packets_sent == 3
        assert result.packets_recv == 3
        assert result.packet_loss == 0.0
        assert result.error == ""
        assert not result.blocked
        assert result.timestamp.tzinfo is not None

    @pytest.mark.asyncio
    async def test_secondary_line_uses_secondary_address(self, dual_site, registry, fake_probe):
        executor = ProbeExecutor(registry, probe_fn=fake_probe)
        result = await executor.run(dual_site, LineType.SECONDARY)

        assert fake_probe.calls == ["10.0.1.1"]
        assert result.ip == "10.0.1.1"
        assert result.line is LineType.SECONDARY

    @pytest.mark.asyncio
    async def test_no_replies_is_failure_with_counters(self, single_site, registry):
        probe = FakeProbe({single_site.primary_ip: echo(received=0)})
        executor = ProbeExecutor(registry, probe_fn=probe)

        result = await executor.run(single_site, LineType.PRIMARY)

        assert not result.success
        assert result.latency is None
        assert result.error == "no packets received"
        assert result.packets_sent == 3
        assert result.packets_recv == 0
        assert result.packet_loss == 100.0
        assert registry.get("branch", LineType.PRIMARY).failures == 1

    @pytest.mark.asyncio
    async def test_probe_error_is_reported(self, single_site, registry):
        probe = FakeProbe({single_site.primary_ip: probe_failure("ping failed: host unreachable")})
        executor = ProbeExecutor(registry, probe_fn=probe)

        result = await executor.run(single_site, LineType.PRIMARY)

        assert not result.success
        assert result.error == "ping failed: host unreachable"
        assert result.packet_loss is None
        assert not result.blocked

    @pytest.mark.asyncio
    async def test_unexpected_error_never_escapes(self, single_site, registry):
        probe = FakeProbe({single_site.primary_ip: RuntimeError("socket exploded")})
        executor = ProbeExecutor(registry, probe_fn=probe)

        result = await executor.run(single_site, LineType.PRIMARY)

        assert not result.success
        assert "socket exploded" in result.error
        assert registry.get("branch", LineType.PRIMARY).failures == 1

    @pytest.mark.asyncio
    async def test_probe_now_bypasses_open_breaker(self, single_site, registry):
        probe = FakeProbe({single_site.primary_ip: [probe_failure()] * 3 + [echo(avg=12.0)]})
        executor = ProbeExecutor(registry, probe_fn=probe)
        for _ in range(3):
            await executor.run(single_site, LineType.PRIMARY)
        assert registry.get("branch", LineType.PRIMARY).state is BreakerState.OPEN

        ok, latency, error = await executor.probe_now(single_site.primary_ip)

        assert (ok, latency, error) == (True, 12.0, "")
        assert registry.get("branch", LineType.PRIMARY).state is BreakerState.OPEN

    @pytest.mark.asyncio
    async def test_probe_now_failure(self, registry):
        executor = ProbeExecutor(registry, probe_fn=FakeProbe(default=echo(received=0)))
        assert await executor.probe_now("192.0.2.9") == (False, None, "no packets received")

    def test_non_positive_packet_count_falls_back(self, registry):
        assert ProbeExecutor(registry, packet_count=0).packet_count == 3


class TestIcmpProbe:

    @pytest.mark.asyncio
    async def test_maps_host_fields(self, monkeypatch):
        captured = {}

        async def fake_ping(address, **kwargs):
            captured.update(kwargs, address=address)
            return SimpleNamespace(
                packets_sent=4,
                packets_received=3,
                avg_rtt=20.0,
                min_rtt=10.0,
                max_rtt=30.0,
                rtts=[10.0, 20.0, 30.0],
                packet_loss=0.25,
            )

        monkeypatch.setattr(checker, "async_ping", fake_ping)
        stats = await icmp_probe("192.0.2.1", count=4, size=0, timeout=2)

        assert captured["address"] == "192.0.2.1"
        assert captured["count"] == 4
        assert captured["privileged"] is False
        assert "payload_size" not in captured
        assert (stats.sent, stats.received, stats.duplicates) == (4, 3, 0)
        assert (stats.avg_rtt, stats.min_rtt, stats.max_rtt) == (20.0, 10.0, 30.0)
        assert stats.stddev_rtt == pytest.approx(8.164965, rel=1e-5)
        assert stats.packet_loss == 25.0

    @pytest.mark.asyncio
    async def test_payload_size_passed_when_set(self, monkeypatch):
        captured = {}

        async def fake_ping(address, **kwargs):
            captured.update(kwargs)
            return SimpleNamespace(packets_sent=1, packets_received=1, avg_rtt=1.0,
                                   min_rtt=1.0, max_rtt=1.0, rtts=[1.0], packet_loss=0.0)

        monkeypatch.setattr(checker, "async_ping", fake_ping)
        stats = await icmp_probe("192.0.2.1", count=1, size=64, timeout=1)

        assert captured["payload_size"] == 64
        assert stats.stddev_rtt == 0.0

    @pytest.mark.asyncio
    async def test_library_errors_become_probe_errors(self, monkeypatch):
        async def fake_ping(address, **kwargs):
            raise ICMPLibError("name lookup failed")

        monkeypatch.setattr(checker, "async_ping", fake_ping)
        with pytest.raises(ProbeError) as exc_info:
            await icmp_probe("nowhere.invalid", count=1, size=0, timeout=1)
        assert exc_info.value.reason.startswith("ping failed:")

    @pytest.mark.asyncio
    async def test_os_errors_become_probe_errors(self, monkeypatch):
        async def fake_ping(address, **kwargs):
            raise PermissionError("operation not permitted")

        monkeypatch.setattr(checker, "async_ping", fake_ping)
        with pytest.raises(ProbeError):
            await icmp_probe("192.0.2.1", count=1, size=0, timeout=1)
