"""
Shared data models for the monitoring engine.
Configuration records are frozen; live status is mutated only by the pipeline.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional


class LineType(Enum):
    """Connectivity path of a site."""
    PRIMARY = "primary"
    SECONDARY = "secondary"

    @property
    def title(self) -> str:
        return self.value.capitalize()


class BreakerState(Enum):
    """Circuit breaker mode. Values match the exported gauge."""
    CLOSED = 0
    HALF_OPEN = 1
    OPEN = 2

    @property
    def label(self) -> str:
        return {
            BreakerState.CLOSED: "closed",
            BreakerState.HALF_OPEN: "half-open",
            BreakerState.OPEN: "open",
        }[self]


DEFAULT_SLA_UPTIME = 99.9


@dataclass(frozen=True)
class SLA:
    """Service level targets for one line (0 means unset)."""
    uptime: float = 0.0
    max_latency: Optional[float] = None
    restoration: int = 0  # minutes


@dataclass(frozen=True)
class SLAConfig:
    primary: SLA = field(default_factory=SLA)
    secondary: SLA = field(default_factory=SLA)
    combined: SLA = field(default_factory=SLA)


@dataclass(frozen=True)
class Site:
    """Monitoring target definition."""
    id: str
    name: str
    primary_ip: str
    location: str = ""
    secondary_ip: str = ""
    primary_provider: str = ""
    secondary_provider: str = ""
    interval: int = 0  # seconds, 0 = global default
    enabled: bool = True
    sla: SLAConfig = field(default_factory=SLAConfig)

    @property
    def is_dual_line(self) -> bool:
        return bool(self.secondary_ip)

    @property
    def lines(self) -> List[LineType]:
        if self.is_dual_line:
            return [LineType.PRIMARY, LineType.SECONDARY]
        return [LineType.PRIMARY]

    def address_for(self, line: LineType) -> str:
        return self.primary_ip if line is LineType.PRIMARY else self.secondary_ip

    @property
    def primary_sla_uptime(self) -> float:
        return self.sla.primary.uptime if self.sla.primary.uptime > 0 else DEFAULT_SLA_UPTIME

    @property
    def secondary_sla_uptime(self) -> float:
        return self.sla.secondary.uptime if self.sla.secondary.uptime > 0 else DEFAULT_SLA_UPTIME

    @property
    def combined_sla_uptime(self) -> float:
        if self.is_dual_line and self.sla.combined.uptime > 0:
            return self.sla.combined.uptime
        return self.primary_sla_uptime

    @property
    def primary_max_latency(self) -> Optional[float]:
        return self.sla.primary.max_latency

    @property
    def secondary_max_latency(self) -> Optional[float]:
        return self.sla.secondary.max_latency


@dataclass
class ProbeResult:
    """Outcome of one probe round against one address."""
    site_id: str
    ip: str
    line: LineType
    timestamp: datetime
    success: bool = False
    latency: Optional[float] = None  # ms, average RTT
    min_latency: Optional[float] = None
    max_latency: Optional[float] = None
    jitter: Optional[float] = None  # ms, standard deviation of RTTs
    packets_sent: int = 0
    packets_recv: int = 0
    packets_duplicates: int = 0
    packet_loss: Optional[float] = None  # percent
    error: str = ""
    blocked: bool = False  # refused by the circuit breaker


@dataclass(frozen=True)
class LogEntry:
    """Durable record of a probe result."""
    timestamp: datetime
    site_id: str
    site_name: str
    line: LineType
    ip: str
    success: bool
    latency: Optional[float] = None
    error: str = ""
    packets_sent: int = 0
    packets_recv: int = 0
    packets_duplicates: int = 0
    packet_loss: Optional[float] = None
    min_latency: Optional[float] = None
    max_latency: Optional[float] = None
    jitter: Optional[float] = None
    blocked: bool = False
    id: int = 0

    @classmethod
    def from_result(cls, result: ProbeResult, site_name: str) -> "LogEntry":
        return cls(
            timestamp=result.timestamp,
            site_id=result.site_id,
            site_name=site_name,
            line=result.line,
            ip=result.ip,
            success=result.success,
            latency=result.latency,
            error=result.error,
            packets_sent=result.packets_sent,
            packets_recv=result.packets_recv,
            packets_duplicates=result.packets_duplicates,
            packet_loss=result.packet_loss,
            min_latency=result.min_latency,
            max_latency=result.max_latency,
            jitter=result.jitter,
            blocked=result.blocked,
        )


@dataclass
class LiveStatus:
    """Current state of a site as seen by the last results."""
    site_id: str
    primary_online: bool = False
    secondary_online: bool = False
    both_online: bool = False
    primary_latency: Optional[float] = None
    secondary_latency: Optional[float] = None
    primary_error: str = ""
    secondary_error: str = ""
    last_check: Optional[datetime] = None

    def is_online(self, line: LineType) -> bool:
        return self.primary_online if line is LineType.PRIMARY else self.secondary_online


@dataclass(frozen=True)
class OverviewData:
    total_sites: int
    online_sites: int
    offline_sites: int
    degraded_sites: int
    uptime_percentage: float
    total_checks: int
    uptime: str


@dataclass(frozen=True)
class SLAReport:
    """Observed performance of one line against its SLA targets."""
    target_uptime: float
    observed_uptime: float
    uptime_met: bool
    max_latency: Optional[float]
    observed_latency: float
    latency_met: Optional[bool]
    restoration_target: Optional[int] = None  # minutes
    observed_restoration: Optional[float] = None  # minutes, longest closed outage
    restoration_met: Optional[bool] = None


@dataclass
class SiteStatistics:
    current_latency_primary: Optional[float] = None
    current_latency_secondary: Optional[float] = None
    mean_latency_primary: float = 0.0
    mean_latency_secondary: float = 0.0

    min_latency_primary: float = 0.0
    min_latency_secondary: float = 0.0
    max_latency_primary: float = 0.0
    max_latency_secondary: float = 0.0
    jitter_primary: float = 0.0
    jitter_secondary: float = 0.0

    packets_received_primary: int = 0
    packets_received_secondary: int = 0
    total_packets_primary: int = 0
    total_packets_secondary: int = 0
    packet_loss_primary: float = 0.0
    packet_loss_secondary: float = 0.0
    duplicate_packets_primary: int = 0
    duplicate_packets_secondary: int = 0

    uptime_24h: float = 0.0
    uptime_7d: float = 0.0
    uptime_12m: float = 0.0

    primary_uptime_24h: float = 0.0
    secondary_uptime_24h: float = 0.0
    primary_uptime_7d: float = 0.0
    secondary_uptime_7d: float = 0.0
    primary_uptime_12m: float = 0.0
    secondary_uptime_12m: float = 0.0

    avg_latency: float = 0.0
    min_latency: float = 0.0
    max_latency: float = 0.0
    success_rate: float = 0.0
    total_checks: int = 0

    last_incident: str = "None"
    last_incident_duration: str = "N/A"

    sla: Dict[str, SLAReport] = field(default_factory=dict)


@dataclass
class ChartSeries:
    """One chart: shared labels and one value per label per series."""
    labels: List[str] = field(default_factory=list)
    primary: List[float] = field(default_factory=list)
    secondary: List[float] = field(default_factory=list)
    combined: List[float] = field(default_factory=list)


@dataclass
class ChartData:
    """Dashboard chart bundle for one site."""
    latency: ChartSeries = field(default_factory=ChartSeries)
    uptime: ChartSeries = field(default_factory=ChartSeries)
    sla: ChartSeries = field(default_factory=ChartSeries)
    distribution: ChartSeries = field(default_factory=ChartSeries)
    yearly: ChartSeries = field(default_factory=ChartSeries)
    packet_loss: ChartSeries = field(default_factory=ChartSeries)
    jitter: ChartSeries = field(default_factory=ChartSeries)
    latency_min: ChartSeries = field(default_factory=ChartSeries)
    latency_max: ChartSeries = field(default_factory=ChartSeries)


@dataclass(frozen=True)
class RecentEvent:
    timestamp: datetime
    site_id: str
    line: LineType
    status: str  # 'failed' or 'restored'
    message: str
    is_outage: bool


@dataclass(frozen=True)
class TestResult:
    """Outcome of an on-demand probe of a site."""
    __test__ = False  # not a pytest class

    success: bool
    timestamp: datetime
    latency_primary: Optional[float] = None
    latency_secondary: Optional[float] = None
    error_primary: str = ""
    error_secondary: str = ""
