"""
Echo probe executor for a single site line.
Wraps the ICMP capability and normalizes its outcome into a ProbeResult.
"""

import statistics
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Tuple

from icmplib import ICMPLibError, async_ping
from loguru import logger

from .circuit_breaker import CircuitBreakerRegistry, CircuitOpenError
from .models import LineType, ProbeResult, Site


class ProbeError(Exception):
    """Probe could not reach the address."""

    def __init__(self, reason: str, stats: Optional["EchoStats"] = None):
        super().__init__(reason)
        self.reason = reason
        self.stats = stats


@dataclass(frozen=True)
class EchoStats:
    """Summary of one round of echo requests (times in ms)."""
    sent: int
    received: int
    duplicates: int = 0
    avg_rtt: float = 0.0
    min_rtt: float = 0.0
    max_rtt: float = 0.0
    stddev_rtt: float = 0.0
    packet_loss: float = 0.0  # percent


ProbeFn = Callable[[str, int, int, float], Awaitable[EchoStats]]


async def icmp_probe(address: str, count: int, size: int, timeout: float) -> EchoStats:
    """Send `count` echo requests with icmplib (unprivileged sockets)."""
    kwargs = {"count": count, "interval": 0.2, "timeout": timeout, "privileged": False}
    if size > 0:
        kwargs["payload_size"] = size

    try:
        host = await async_ping(address, **kwargs)
    except (ICMPLibError, OSError) as e:
        raise ProbeError(f"ping failed: {e}") from e

    rtts = list(host.rtts)
    return EchoStats(
        sent=host.packets_sent,
        received=host.packets_received,
        duplicates=0,  # not reported by icmplib
        avg_rtt=host.avg_rtt,
        min_rtt=host.min_rtt,
        max_rtt=host.max_rtt,
        stddev_rtt=statistics.pstdev(rtts) if len(rtts) > 1 else 0.0,
        packet_loss=host.packet_loss * 100,
    )


class ProbeExecutor:
    """Runs echo probes for site lines, guarded by per-line circuit breakers."""

    def __init__(
        self,
        breakers: CircuitBreakerRegistry,
        probe_fn: ProbeFn = icmp_probe,
        packet_count: int = 3,
        packet_size: int = 0,
        timeout: float = 5.0,
    ):
        self.breakers = breakers
        self.probe_fn = probe_fn
        self.packet_count = packet_count if packet_count > 0 else 3
        self.packet_size = packet_size
        self.timeout = timeout

    async def run(self, site: Site, line: LineType) -> ProbeResult:
        """Scheduled probe of one line. Never raises."""
        address = site.address_for(line)
        result = ProbeResult(
            site_id=site.id,
            ip=address,
            line=line,
            timestamp=datetime.now(timezone.utc),
        )
        breaker = self.breakers.get(site.id, line)

        try:
            stats = await breaker.execute(lambda: self._probe(address))
        except CircuitOpenError as e:
            result.error = f"circuit breaker open: {e.name} is {e.state.label}"
            result.blocked = True
            logger.warning(f"Probe of {site.id}/{line.value} blocked: {e} (failures={breaker.failures})")
            return result
        except ProbeError as e:
            if e.stats is not None:
                self._apply_counters(result, e.stats)
            result.error = e.reason
            logger.debug(f"Probe of {site.id}/{line.value} ({address}) failed: {e.reason}")
            return result
        except Exception as e:
            result.error = f"ping failed: {e}"
            logger.error(f"Unexpected probe error for {site.id}/{line.value}: {e!r}")
            return result

        self._apply_counters(result, stats)
        result.success = True
        result.latency = stats.avg_rtt
        result.min_latency = stats.min_rtt
        result.max_latency = stats.max_rtt
        result.jitter = stats.stddev_rtt
        logger.debug(
            f"Probe of {site.id}/{line.value} ({address}): "
            f"avg={stats.avg_rtt:.2f}ms min={stats.min_rtt:.2f}ms max={stats.max_rtt:.2f}ms "
            f"jitter={stats.stddev_rtt:.2f}ms loss={stats.packet_loss:.1f}%"
        )
        return result

    async def probe_now(self, address: str) -> Tuple[bool, Optional[float], str]:
        """On-demand probe outside the schedule. Bypasses circuit breakers."""
        try:
            stats = await self._probe(address)
        except ProbeError as e:
            return False, None, e.reason
        except Exception as e:
            return False, None, f"ping failed: {e}"
        return True, stats.avg_rtt, ""

    async def _probe(self, address: str) -> EchoStats:
        stats = await self.probe_fn(address, self.packet_count, self.packet_size, self.timeout)
        if stats.received <= 0:
            raise ProbeError("no packets received", stats)
        return stats

    @staticmethod
    def _apply_counters(result: ProbeResult, stats: EchoStats):
        result.packets_sent = stats.sent
        result.packets_recv = stats.received
        result.packets_duplicates = stats.duplicates
        if stats.sent > 0:
            result.packet_loss = stats.packet_loss
