"""
Prometheus collectors for probe results and circuit breakers.
Each PingMetrics owns its registry so several monitors can coexist.
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

from .models import BreakerState, LineType, ProbeResult, Site


LATENCY_BUCKETS = (0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10)
JITTER_BUCKETS = (0.0001, 0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1)


class PingMetrics:
    """Counters, gauges and histograms labelled by site and line."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else CollectorRegistry()
        labels = ["site_id", "line_type"]

        self.checks_total = Counter(
            "ping_checks_total",
            "Total number of ping checks performed",
            ["site_id", "line_type", "success"],
            registry=self.registry,
        )
        self.latency = Histogram(
            "ping_latency_seconds",
            "Histogram of ping latencies in seconds",
            labels,
            buckets=LATENCY_BUCKETS,
            registry=self.registry,
        )
        self.site_status = Gauge(
            "site_status",
            "Current status of site lines (1=online, 0=offline)",
            labels,
            registry=self.registry,
        )
        self.both_online = Gauge(
            "site_both_lines_online",
            "Combined status for site (1=all configured lines online)",
            ["site_id"],
            registry=self.registry,
        )
        self.site_info = Gauge(
            "site_info",
            "Site information with labels",
            ["site_id", "name", "location"],
            registry=self.registry,
        )
        self.packet_loss = Gauge(
            "ping_packet_loss_percentage",
            "Packet loss percentage for site lines",
            labels,
            registry=self.registry,
        )
        self.jitter = Histogram(
            "ping_jitter_seconds",
            "Histogram of ping jitter (standard deviation) in seconds",
            labels,
            buckets=JITTER_BUCKETS,
            registry=self.registry,
        )
        self.packets_sent = Counter(
            "ping_packets_sent_total",
            "Total number of ping packets sent",
            labels,
            registry=self.registry,
        )
        self.packets_received = Counter(
            "ping_packets_received_total",
            "Total number of ping packets received",
            labels,
            registry=self.registry,
        )
        self.packets_duplicates = Counter(
            "ping_packets_duplicates_total",
            "Total number of duplicate ping packets received",
            labels,
            registry=self.registry,
        )
        self.breaker_state = Gauge(
            "circuit_breaker_state",
            "Circuit breaker state (0=closed, 1=half-open, 2=open)",
            labels,
            registry=self.registry,
        )
        self.breaker_trips = Counter(
            "circuit_breaker_trips_total",
            "Circuit breaker state transitions",
            ["site_id", "line_type", "state"],
            registry=self.registry,
        )

    def register_site(self, site: Site):
        self.site_info.labels(site.id, site.name, site.location).set(1)

    def observe_result(self, result: ProbeResult):
        site_id, line = result.site_id, result.line.value

        self.checks_total.labels(site_id, line, str(result.success).lower()).inc()
        self.packets_sent.labels(site_id, line).inc(result.packets_sent)
        self.packets_received.labels(site_id, line).inc(result.packets_recv)
        self.packets_duplicates.labels(site_id, line).inc(result.packets_duplicates)

        if result.packet_loss is not None:
            self.packet_loss.labels(site_id, line).set(result.packet_loss)

        if result.success:
            if result.latency is not None:
                self.latency.labels(site_id, line).observe(result.latency / 1000.0)
            if result.jitter is not None:
                self.jitter.labels(site_id, line).observe(result.jitter / 1000.0)
            self.site_status.labels(site_id, line).set(1)
        else:
            self.site_status.labels(site_id, line).set(0)

    def set_both_online(self, site_id: str, online: bool):
        self.both_online.labels(site_id).set(1 if online else 0)

    def record_breaker_transition(self, site_id: str, line: LineType, state: BreakerState):
        self.breaker_state.labels(site_id, line.value).set(state.value)
        self.breaker_trips.labels(site_id, line.value, state.label).inc()
