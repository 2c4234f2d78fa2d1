"""
Time-bucketed chart series over the probe history.

Empty buckets: metric charts (latency, packet_loss, jitter, latency_minmax)
report 0 for every bucket so all ranges have a fixed number of points;
availability charts (uptime, sla, yearly) drop buckets without any entry,
since 0 % there would read as an outage.
"""

from bisect import bisect_right
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple, Union

from .models import ChartData, ChartSeries, LineType, LogEntry
from .statistics import (
    LATENCY_BUCKET_LABELS,
    LATENCY_PRECISION,
    LineStats,
    TimeframeStats,
    shift_months,
    utc_now,
    valid_entries,
)


class InvalidChartRequest(ValueError):
    """Unknown chart type or unsupported range for that type."""


# range -> (bucket unit, number of buckets, window length)
RANGES: Dict[str, Tuple[str, int, timedelta]] = {
    "1h": ("minute", 60, timedelta(hours=1)),
    "6h": ("5min", 72, timedelta(hours=6)),
    "24h": ("hour", 24, timedelta(hours=24)),
    "7d": ("day", 7, timedelta(days=7)),
    "30d": ("day", 30, timedelta(days=30)),
    "12m": ("month", 12, timedelta(days=365)),
}

_LABEL_FORMATS = {
    "minute": "%H:%M",
    "5min": "%H:%M",
    "hour": "%H:%M",
    "day": "%b %d",
    "month": "%b %Y",
}

_METRIC_RANGES = ("1h", "6h", "24h", "7d", "30d")

CHART_RANGES: Dict[str, Tuple[str, ...]] = {
    "latency": _METRIC_RANGES,
    "packet_loss": _METRIC_RANGES,
    "jitter": _METRIC_RANGES,
    "latency_minmax": _METRIC_RANGES,
    "distribution": _METRIC_RANGES,
    "uptime": ("24h", "7d", "30d", "12m"),
    "sla": ("12m",),
    "yearly": ("12m",),
}

DEFAULT_RANGES = {
    "latency": "24h",
    "packet_loss": "24h",
    "jitter": "24h",
    "latency_minmax": "24h",
    "distribution": "24h",
    "uptime": "7d",
    "sla": "12m",
    "yearly": "12m",
}


def _truncate(moment: datetime, unit: str) -> datetime:
    if unit == "minute":
        return moment.replace(second=0, microsecond=0)
    if unit == "5min":
        return moment.replace(minute=moment.minute - moment.minute % 5, second=0, microsecond=0)
    if unit == "hour":
        return moment.replace(minute=0, second=0, microsecond=0)
    if unit == "day":
        return moment.replace(hour=0, minute=0, second=0, microsecond=0)
    if unit == "month":
        return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    raise InvalidChartRequest(f"unknown bucket unit: {unit}")


def _step(moment: datetime, unit: str, n: int) -> datetime:
    if unit == "month":
        return shift_months(moment, n)
    size = {
        "minute": timedelta(minutes=1),
        "5min": timedelta(minutes=5),
        "hour": timedelta(hours=1),
        "day": timedelta(days=1),
    }[unit]
    return moment + size * n


def bucket_bounds(now: datetime, unit: str, count: int) -> Tuple[List[datetime], datetime]:
    """Ascending bucket start times ending with the bucket containing `now`, plus the end bound."""
    current = _truncate(now, unit)
    starts = [_step(current, unit, -i) for i in range(count - 1, -1, -1)]
    return starts, _step(current, unit, 1)


def bucketize(
    entries: List[LogEntry],
    now: datetime,
    unit: str,
    count: int,
) -> Tuple[List[datetime], List[TimeframeStats]]:
    """Fold entries into one TimeframeStats per bucket."""
    starts, end = bucket_bounds(now, unit, count)
    buckets = [TimeframeStats() for _ in starts]
    for entry in entries:
        if entry.timestamp >= end:
            continue
        index = bisect_right(starts, entry.timestamp) - 1
        if index >= 0:
            buckets[index].add(entry)
    return starts, buckets


def _metric_series(
    entries: List[LogEntry],
    now: datetime,
    time_range: str,
    metric: Callable[[LineStats], float],
) -> ChartSeries:
    unit, count, _ = RANGES[time_range]
    starts, buckets = bucketize(entries, now, unit, count)
    fmt = _LABEL_FORMATS[unit]
    series = ChartSeries()
    for start, bucket in zip(starts, buckets):
        series.labels.append(start.strftime(fmt))
        series.primary.append(metric(bucket.line(LineType.PRIMARY)))
        series.secondary.append(metric(bucket.line(LineType.SECONDARY)))
    return series


def _availability_series(
    entries: List[LogEntry],
    now: datetime,
    time_range: str,
    label_format: Optional[str] = None,
    with_combined: bool = True,
) -> ChartSeries:
    unit, count, _ = RANGES[time_range]
    starts, buckets = bucketize(entries, now, unit, count)
    fmt = label_format or _LABEL_FORMATS[unit]
    series = ChartSeries()
    for start, bucket in zip(starts, buckets):
        if bucket.total_checks == 0:
            continue
        series.labels.append(start.strftime(fmt))
        if with_combined:
            series.combined.append(bucket.uptime())
        series.primary.append(bucket.uptime(LineType.PRIMARY))
        series.secondary.append(bucket.uptime(LineType.SECONDARY))
    return series


def _bucket_min(stats: LineStats) -> float:
    return round(min(stats.min_latencies), LATENCY_PRECISION) if stats.min_latencies else 0.0


def _bucket_max(stats: LineStats) -> float:
    return round(max(stats.max_latencies), LATENCY_PRECISION) if stats.max_latencies else 0.0


def latency_chart(entries, now, time_range="24h") -> ChartSeries:
    return _metric_series(entries, now, time_range, LineStats.mean_latency)


def packet_loss_chart(entries, now, time_range="24h") -> ChartSeries:
    return _metric_series(entries, now, time_range, LineStats.mean_packet_loss)


def jitter_chart(entries, now, time_range="24h") -> ChartSeries:
    return _metric_series(entries, now, time_range, LineStats.mean_jitter)


def latency_minmax_chart(entries, now, time_range="24h") -> Tuple[ChartSeries, ChartSeries]:
    return (
        _metric_series(entries, now, time_range, _bucket_min),
        _metric_series(entries, now, time_range, _bucket_max),
    )


def uptime_chart(entries, now, time_range="7d") -> ChartSeries:
    return _availability_series(entries, now, time_range)


def sla_chart(entries, now) -> ChartSeries:
    return _availability_series(entries, now, "12m", with_combined=False)


def yearly_chart(entries, now) -> ChartSeries:
    return _availability_series(entries, now, "12m", label_format="%b")


def distribution_chart(entries, now, time_range="24h") -> ChartSeries:
    """Counts of successful latencies per fixed range since the start of the window."""
    since = now - RANGES[time_range][2]
    stats = TimeframeStats()
    for entry in entries:
        if entry.timestamp >= since and entry.success and entry.latency is not None:
            stats.add(entry)
    return ChartSeries(
        labels=list(LATENCY_BUCKET_LABELS),
        combined=stats.overall.latency_distribution(),
        primary=stats.line(LineType.PRIMARY).latency_distribution(),
        secondary=stats.line(LineType.SECONDARY).latency_distribution(),
    )


def generate_chart_data(entries: List[LogEntry], site_id: str, now: Optional[datetime] = None) -> ChartData:
    """Dashboard bundle: 24h metrics, 7d uptime, 12 month SLA and yearly charts."""
    now = now or utc_now()
    site_entries = valid_entries(entries, site_id)
    latency_min, latency_max = latency_minmax_chart(site_entries, now)
    return ChartData(
        latency=latency_chart(site_entries, now),
        uptime=uptime_chart(site_entries, now),
        sla=sla_chart(site_entries, now),
        distribution=distribution_chart(site_entries, now),
        yearly=yearly_chart(site_entries, now),
        packet_loss=packet_loss_chart(site_entries, now),
        jitter=jitter_chart(site_entries, now),
        latency_min=latency_min,
        latency_max=latency_max,
    )


def generate_chart_data_for_range(
    entries: List[LogEntry],
    site_id: str,
    chart_type: str,
    time_range: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Union[ChartSeries, Dict[str, ChartSeries]]:
    """One chart for a requested range. latency_minmax returns {'min': ..., 'max': ...}."""
    if chart_type not in CHART_RANGES:
        raise InvalidChartRequest(f"invalid chart type: {chart_type!r}")
    time_range = time_range or DEFAULT_RANGES[chart_type]
    if time_range not in CHART_RANGES[chart_type]:
        raise InvalidChartRequest(f"invalid range {time_range!r} for chart type {chart_type!r}")

    now = now or utc_now()
    site_entries = valid_entries(entries, site_id)

    if chart_type == "latency":
        return latency_chart(site_entries, now, time_range)
    if chart_type == "packet_loss":
        return packet_loss_chart(site_entries, now, time_range)
    if chart_type == "jitter":
        return jitter_chart(site_entries, now, time_range)
    if chart_type == "latency_minmax":
        minimum, maximum = latency_minmax_chart(site_entries, now, time_range)
        return {"min": minimum, "max": maximum}
    if chart_type == "distribution":
        return distribution_chart(site_entries, now, time_range)
    if chart_type == "uptime":
        return uptime_chart(site_entries, now, time_range)
    if chart_type == "sla":
        return sla_chart(site_entries, now)
    return yearly_chart(site_entries, now)
