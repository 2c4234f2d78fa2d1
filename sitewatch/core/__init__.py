from .site_monitor import SiteMonitor
from .settings import Settings, ConfigError
from .state import MonitorState
from .checker import ProbeExecutor, ProbeError, EchoStats
from .circuit_breaker import CircuitBreaker, CircuitBreakerRegistry, CircuitOpenError
from .pipeline import ResultPipeline
from .scheduler import SiteScheduler
from .metrics import PingMetrics
from .charts import InvalidChartRequest
from .statistics import InvalidLogEntry
from .models import (
    BreakerState,
    LineType,
    LiveStatus,
    LogEntry,
    ProbeResult,
    Site,
    SLA,
    SLAConfig,
)

__all__ = [
    'SiteMonitor',
    'Settings',
    'ConfigError',
    'MonitorState',
    'ProbeExecutor',
    'ProbeError',
    'EchoStats',
    'CircuitBreaker',
    'CircuitBreakerRegistry',
    'CircuitOpenError',
    'ResultPipeline',
    'SiteScheduler',
    'PingMetrics',
    'InvalidChartRequest',
    'InvalidLogEntry',
    'BreakerState',
    'LineType',
    'LiveStatus',
    'LogEntry',
    'ProbeResult',
    'Site',
    'SLA',
    'SLAConfig',
]
