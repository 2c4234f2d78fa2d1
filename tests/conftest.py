"""Shared fixtures: sites, fake probe capability, fake clock, entry factory."""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Union

import pytest

from sitewatch.core.checker import EchoStats, ProbeError
from sitewatch.core.models import LineType, LogEntry, Site
from sitewatch.core.settings import Settings


NOW = datetime(2024, 6, 30, 12, 0, tzinfo=timezone.utc)


def echo(avg: float = 20.0, sent: int = 3, received: int = 3, jitter: float = 1.5) -> EchoStats:
    """EchoStats for a successful round."""
    loss = (sent - received) / sent * 100 if sent else 0.0
    return EchoStats(
        sent=sent,
        received=received,
        avg_rtt=avg,
        min_rtt=avg - 2 if received else 0.0,
        max_rtt=avg + 2 if received else 0.0,
        stddev_rtt=jitter if received else 0.0,
        packet_loss=loss,
    )


Outcome = Union[EchoStats, Exception]


class FakeProbe:
    """Probe capability with scripted outcomes per address (last one repeats)."""

    def __init__(self, results: Dict[str, Union[Outcome, List[Outcome]]] = None, default: Outcome = None):
        self.results = {addr: (list(v) if isinstance(v, list) else [v]) for addr, v in (results or {}).items()}
        self.default = default if default is not None else echo()
        self.calls: List[str] = []

    async def __call__(self, address: str, count: int, size: int, timeout: float) -> EchoStats:
        self.calls.append(address)
        script = self.results.get(address)
        if script:
            outcome = script.pop(0) if len(script) > 1 else script[0]
        else:
            outcome = self.default
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def count(self, address: str) -> int:
        return self.calls.count(address)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def make_entry(
    site_id: str = "s1",
    line: LineType = LineType.PRIMARY,
    success: bool = True,
    latency: float = 20.0,
    timestamp: datetime = NOW,
    **extra,
) -> LogEntry:
    return LogEntry(
        timestamp=timestamp,
        site_id=site_id,
        site_name=extra.pop("site_name", site_id.upper()),
        line=line,
        ip=extra.pop("ip", "192.0.2.1"),
        success=success,
        latency=latency if success else None,
        **extra,
    )


@pytest.fixture
def dual_site() -> Site:
    return Site(id="hq", name="Headquarters", location="Berlin",
                primary_ip="10.0.0.1", secondary_ip="10.0.1.1", interval=30)


@pytest.fixture
def single_site() -> Site:
    return Site(id="branch", name="Branch", location="Hamburg", primary_ip="10.0.2.1")


@pytest.fixture
def disabled_site() -> Site:
    return Site(id="old", name="Closed office", primary_ip="10.0.3.1", enabled=False)


@pytest.fixture
def fake_probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_settings(dual_site, single_site, disabled_site) -> Settings:
    return Settings(
        {
            'ping': {'default_interval': 0.05, 'timeout': 1},
            'storage': {'type': 'memory', 'max_memory_logs': 500},
        },
        sites=[dual_site, single_site, disabled_site],
    )


def hours_ago(hours: float) -> datetime:
    return NOW - timedelta(hours=hours)


def probe_failure(reason: str = "ping failed: unreachable") -> ProbeError:
    return ProbeError(reason)
