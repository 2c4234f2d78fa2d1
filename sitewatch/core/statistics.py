"""
Statistics Engine
Timeframe aggregates, incidents and overview over the stored probe history.

Every function here is pure: it works on a list of log entries (and
optionally a live status snapshot) passed in by the caller.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from loguru import logger

from .models import (
    LineType,
    LiveStatus,
    LogEntry,
    OverviewData,
    RecentEvent,
    Site,
    SiteStatistics,
    SLAReport,
)

LATENCY_PRECISION = 2
UPTIME_PRECISION = 2

# Upper bounds (ms) of the response time distribution buckets; the last bucket is open.
LATENCY_BUCKETS = (10, 50, 100, 200, 500)
LATENCY_BUCKET_LABELS = ("0-10ms", "10-50ms", "50-100ms", "100-200ms", "200-500ms", "500ms+")

TIMEFRAMES = ("all", "24h", "7d", "12m")


class InvalidLogEntry(ValueError):
    """Entry that must not contribute to aggregates."""


def _round(value: float, places: int) -> float:
    return round(value, places)


def _mean(values: List[float], places: int) -> float:
    if not values:
        return 0.0
    return _round(sum(values) / len(values), places)


def shift_months(moment: datetime, months: int) -> datetime:
    """Move a datetime by whole calendar months, clamping the day."""
    index = moment.year * 12 + (moment.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    day = min(moment.day, _days_in_month(year, month))
    return moment.replace(year=year, month=month, day=day)


def _days_in_month(year: int, month: int) -> int:
    if month == 12:
        return 31
    return (datetime(year, month + 1, 1) - datetime(year, month, 1)).days


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def validate_entry(entry: LogEntry):
    """Raise InvalidLogEntry for entries that cannot be aggregated."""
    if not entry.site_id:
        raise InvalidLogEntry("empty site ID")
    if entry.latency is not None and entry.latency < 0:
        raise InvalidLogEntry(f"negative latency: {entry.latency} for site {entry.site_id}")
    if entry.success and entry.latency is None:
        logger.warning(f"Successful ping without latency data (site={entry.site_id}, id={entry.id})")


def valid_entries(entries: Iterable[LogEntry], site_id: Optional[str] = None) -> List[LogEntry]:
    """Entries of one site (or all sites) that pass validation."""
    kept = []
    for entry in entries:
        if site_id is not None and entry.site_id != site_id:
            continue
        try:
            validate_entry(entry)
        except InvalidLogEntry as e:
            logger.warning(f"Invalid log data, skipping entry {entry.id}: {e}")
            continue
        kept.append(entry)
    return kept


class LineStats:
    """Running aggregate for one line (or for all lines together)."""

    def __init__(self):
        self.total = 0
        self.success = 0
        self.latencies: List[float] = []
        self.latency_sum = 0.0
        self.min_latency = math.inf
        self.max_latency = 0.0
        self.jitter_values: List[float] = []
        self.min_latencies: List[float] = []
        self.max_latencies: List[float] = []
        self.packets_sent = 0
        self.packets_recv = 0
        self.packets_duplicates = 0
        self.packet_loss_values: List[float] = []

    def add(self, entry: LogEntry):
        self.total += 1
        self.packets_sent += entry.packets_sent
        self.packets_recv += entry.packets_recv
        self.packets_duplicates += entry.packets_duplicates
        if entry.packet_loss is not None:
            self.packet_loss_values.append(entry.packet_loss)

        if not entry.success:
            return
        self.success += 1
        if entry.latency is not None:
            self.latencies.append(entry.latency)
            self.latency_sum += entry.latency
            self.min_latency = min(self.min_latency, entry.latency)
            self.max_latency = max(self.max_latency, entry.latency)
        if entry.jitter is not None:
            self.jitter_values.append(entry.jitter)
        if entry.min_latency is not None:
            self.min_latencies.append(entry.min_latency)
        if entry.max_latency is not None:
            self.max_latencies.append(entry.max_latency)

    def uptime(self) -> float:
        if self.total == 0:
            return 0.0
        return _round(self.success / self.total * 100, UPTIME_PRECISION)

    def mean_latency(self) -> float:
        if not self.latencies:
            return 0.0
        return _round(self.latency_sum / len(self.latencies), LATENCY_PRECISION)

    def lowest_avg_latency(self) -> float:
        return _round(self.min_latency, LATENCY_PRECISION) if self.latencies else 0.0

    def highest_avg_latency(self) -> float:
        return _round(self.max_latency, LATENCY_PRECISION) if self.latencies else 0.0

    def lowest_latency(self) -> float:
        """Smallest single RTT seen (from per-probe minimums)."""
        return _round(min(self.min_latencies), LATENCY_PRECISION) if self.min_latencies else 0.0

    def highest_latency(self) -> float:
        return _round(max(self.max_latencies), LATENCY_PRECISION) if self.max_latencies else 0.0

    def mean_jitter(self) -> float:
        return _mean(self.jitter_values, LATENCY_PRECISION)

    def mean_packet_loss(self) -> float:
        return _mean(self.packet_loss_values, UPTIME_PRECISION)

    def latency_distribution(self) -> List[float]:
        distribution = [0.0] * (len(LATENCY_BUCKETS) + 1)
        for latency in self.latencies:
            for index, bound in enumerate(LATENCY_BUCKETS):
                if latency <= bound:
                    distribution[index] += 1
                    break
            else:
                distribution[-1] += 1
        return distribution


class TimeframeStats:
    """Aggregate over one window: overall and per line."""

    def __init__(self):
        self.overall = LineStats()
        self.lines: Dict[LineType, LineStats] = {line: LineStats() for line in LineType}

    def add(self, entry: LogEntry):
        self.overall.add(entry)
        self.lines[entry.line].add(entry)

    def line(self, line: Optional[LineType] = None) -> LineStats:
        return self.overall if line is None else self.lines[line]

    @property
    def total_checks(self) -> int:
        return self.overall.total

    def uptime(self, line: Optional[LineType] = None) -> float:
        return self.line(line).uptime()

    def mean_latency(self, line: Optional[LineType] = None) -> float:
        return self.line(line).mean_latency()


def timeframe_cutoffs(now: datetime) -> Dict[str, Optional[datetime]]:
    return {
        "all": None,
        "24h": now - timedelta(hours=24),
        "7d": now - timedelta(days=7),
        "12m": shift_months(now, -12),
    }


def aggregate_timeframes(entries: Iterable[LogEntry], site_id: str, now: datetime) -> Dict[str, TimeframeStats]:
    """Fold the site's valid entries into all-time, 24h, 7d and 12m aggregates."""
    return _aggregate(valid_entries(entries, site_id), now)


def _aggregate(site_entries: List[LogEntry], now: datetime) -> Dict[str, TimeframeStats]:
    cutoffs = timeframe_cutoffs(now)
    stats = {name: TimeframeStats() for name in TIMEFRAMES}
    for entry in site_entries:
        for name, cutoff in cutoffs.items():
            if cutoff is None or entry.timestamp > cutoff:
                stats[name].add(entry)
    return stats


def format_duration(delta: timedelta) -> str:
    """Human readable duration: 45s, 12m, 3h 5m, 2d 4h."""
    seconds = int(delta.total_seconds())
    if seconds < 60:
        return f"{seconds}s"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m"
    hours = minutes // 60
    if hours < 24:
        rest = minutes % 60
        return f"{hours}h" if rest == 0 else f"{hours}h {rest}m"
    days = hours // 24
    rest = hours % 24
    return f"{days}d" if rest == 0 else f"{days}d {rest}h"


def format_ago(delta: timedelta) -> str:
    if delta < timedelta(hours=1):
        return f"{int(delta.total_seconds() // 60)}m ago"
    if delta < timedelta(hours=24):
        return f"{int(delta.total_seconds() // 3600)}h ago"
    return f"{int(delta.total_seconds() // 86400)}d ago"


# --------------------------------------------------------------------------- #
# Events and incidents
# --------------------------------------------------------------------------- #

def detect_events(entries: Iterable[LogEntry], site_id: str) -> List[RecentEvent]:
    """Up/down transitions per line, oldest first. The first observation is never an event."""
    return _transitions(valid_entries(entries, site_id))


def _transitions(site_entries: List[LogEntry]) -> List[RecentEvent]:
    events = []
    last_success: Dict[LineType, bool] = {}
    ordered = sorted(site_entries, key=lambda e: (e.timestamp, e.id))

    for entry in ordered:
        previous = last_success.get(entry.line)
        if previous is not None and previous != entry.success:
            if entry.success:
                status, verb = "restored", "restored"
            else:
                status, verb = "failed", "lost"
            events.append(RecentEvent(
                timestamp=entry.timestamp,
                site_id=entry.site_id,
                line=entry.line,
                status=status,
                message=f"{entry.line.title} connection {verb}",
                is_outage=not entry.success,
            ))
        last_success[entry.line] = entry.success
    return events


def get_recent_events(entries: Iterable[LogEntry], site_id: str, limit: int = 10) -> List[RecentEvent]:
    """Newest-first transition events for a site."""
    events = detect_events(entries, site_id)
    events.reverse()
    if limit > 0:
        events = events[:limit]
    return events


@dataclass(frozen=True)
class Incident:
    line: LineType
    started: datetime
    ended: Optional[datetime] = None

    @property
    def ongoing(self) -> bool:
        return self.ended is None

    def duration(self, now: datetime) -> timedelta:
        return (self.ended or now) - self.started


def incident_durations(events: Iterable[RecentEvent]) -> List[Incident]:
    """Pair each failure event with the next restoration on the same line."""
    incidents = []
    open_since: Dict[LineType, datetime] = {}
    for event in sorted(events, key=lambda e: e.timestamp):
        if event.is_outage:
            open_since.setdefault(event.line, event.timestamp)
        elif event.line in open_since:
            incidents.append(Incident(event.line, open_since.pop(event.line), event.timestamp))
    for line, started in open_since.items():
        incidents.append(Incident(line, started))
    incidents.sort(key=lambda i: i.started)
    return incidents


# --------------------------------------------------------------------------- #
# Site statistics
# --------------------------------------------------------------------------- #

def _longest_restoration(incidents: Iterable[Incident]) -> Optional[float]:
    """Minutes of the longest closed incident, None when nothing was restored."""
    closed = [i.ended - i.started for i in incidents if not i.ongoing]
    if not closed:
        return None
    return _round(max(closed).total_seconds() / 60, UPTIME_PRECISION)


def _overlapping(first: List[Incident], second: List[Incident]) -> List[Incident]:
    """Periods where both lines were down at once."""
    both = []
    for a in first:
        for b in second:
            started = max(a.started, b.started)
            ends = [i.ended for i in (a, b) if i.ended is not None]
            ended = min(ends) if ends else None
            if ended is None or started < ended:
                both.append(Incident(a.line, started, ended))
    return both


def _sla_reports(site: Site, stats12m: TimeframeStats, incidents: List[Incident]) -> Dict[str, SLAReport]:
    def report(target: float, max_latency: Optional[float], restoration: int,
               line: Optional[LineType], outages: List[Incident]) -> SLAReport:
        observed = stats12m.uptime(line)
        latency = stats12m.mean_latency(line)
        longest = _longest_restoration(outages)
        if restoration <= 0:
            restoration_met = None
        else:
            restoration_met = longest is None or longest <= restoration
        return SLAReport(
            target_uptime=target,
            observed_uptime=observed,
            uptime_met=observed >= target,
            max_latency=max_latency,
            observed_latency=latency,
            latency_met=None if max_latency is None else latency <= max_latency,
            restoration_target=restoration if restoration > 0 else None,
            observed_restoration=longest,
            restoration_met=restoration_met,
        )

    primary = [i for i in incidents if i.line is LineType.PRIMARY]
    secondary = [i for i in incidents if i.line is LineType.SECONDARY]
    sla = site.sla

    reports = {"primary": report(site.primary_sla_uptime, site.primary_max_latency,
                                 sla.primary.restoration, LineType.PRIMARY, primary)}
    if site.is_dual_line:
        reports["secondary"] = report(site.secondary_sla_uptime, site.secondary_max_latency,
                                      sla.secondary.restoration, LineType.SECONDARY, secondary)
        reports["combined"] = report(site.combined_sla_uptime, sla.combined.max_latency,
                                     sla.combined.restoration, None, _overlapping(primary, secondary))
    else:
        reports["combined"] = report(site.combined_sla_uptime, sla.combined.max_latency,
                                     sla.primary.restoration, None, primary)
    return reports


def calculate_site_statistics(
    entries: List[LogEntry],
    site_id: str,
    status: Optional[LiveStatus] = None,
    now: Optional[datetime] = None,
    site: Optional[Site] = None,
) -> SiteStatistics:
    """Aggregate statistics for one site; empty history gives zero values."""
    now = now or utc_now()
    site_entries = valid_entries(entries, site_id)
    stats = _aggregate(site_entries, now)
    all_time, day, week, year = stats["all"], stats["24h"], stats["7d"], stats["12m"]
    primary = all_time.line(LineType.PRIMARY)
    secondary = all_time.line(LineType.SECONDARY)

    result = SiteStatistics(
        mean_latency_primary=primary.mean_latency(),
        mean_latency_secondary=secondary.mean_latency(),
        min_latency_primary=primary.lowest_latency(),
        min_latency_secondary=secondary.lowest_latency(),
        max_latency_primary=primary.highest_latency(),
        max_latency_secondary=secondary.highest_latency(),
        jitter_primary=primary.mean_jitter(),
        jitter_secondary=secondary.mean_jitter(),
        packets_received_primary=primary.packets_recv,
        packets_received_secondary=secondary.packets_recv,
        total_packets_primary=primary.packets_sent,
        total_packets_secondary=secondary.packets_sent,
        packet_loss_primary=primary.mean_packet_loss(),
        packet_loss_secondary=secondary.mean_packet_loss(),
        duplicate_packets_primary=primary.packets_duplicates,
        duplicate_packets_secondary=secondary.packets_duplicates,
        uptime_24h=day.uptime(),
        uptime_7d=week.uptime(),
        uptime_12m=year.uptime(),
        primary_uptime_24h=day.uptime(LineType.PRIMARY),
        secondary_uptime_24h=day.uptime(LineType.SECONDARY),
        primary_uptime_7d=week.uptime(LineType.PRIMARY),
        secondary_uptime_7d=week.uptime(LineType.SECONDARY),
        primary_uptime_12m=year.uptime(LineType.PRIMARY),
        secondary_uptime_12m=year.uptime(LineType.SECONDARY),
        avg_latency=all_time.mean_latency(),
        min_latency=all_time.overall.lowest_avg_latency(),
        max_latency=all_time.overall.highest_avg_latency(),
        success_rate=all_time.uptime(),
        total_checks=all_time.total_checks,
    )

    if status is not None:
        result.current_latency_primary = status.primary_latency
        result.current_latency_secondary = status.secondary_latency

    incidents = incident_durations(_transitions(site_entries))
    failures = [e.timestamp for e in site_entries if not e.success]
    if failures:
        result.last_incident = format_ago(now - max(failures))
        if incidents:
            latest = incidents[-1]
            duration = format_duration(latest.duration(now))
            result.last_incident_duration = f"{duration} (ongoing)" if latest.ongoing else duration

    if site is not None:
        cutoff = timeframe_cutoffs(now)["12m"]
        result.sla = _sla_reports(site, year, [i for i in incidents if i.started > cutoff])
    return result


# --------------------------------------------------------------------------- #
# Overview
# --------------------------------------------------------------------------- #

def calculate_overview(
    sites: Iterable[Site],
    statuses: Dict[str, LiveStatus],
    entries: List[LogEntry],
    total_checks: int,
    uptime: timedelta,
) -> OverviewData:
    """System-wide counts. A dual-line site with one line up is online and degraded."""
    sites = [site for site in sites if site.enabled]
    online = offline = degraded = 0
    for site in sites:
        status = statuses.get(site.id)
        if status is None or status.last_check is None:
            offline += 1
            continue
        up = sum(1 for line in site.lines if status.is_online(line))
        if up == 0:
            offline += 1
        else:
            online += 1
            if up < len(site.lines):
                degraded += 1

    successful = sum(1 for entry in entries if entry.success)
    uptime_pct = _round(successful / len(entries) * 100, UPTIME_PRECISION) if entries else 0.0

    return OverviewData(
        total_sites=len(sites),
        online_sites=online,
        offline_sites=offline,
        degraded_sites=degraded,
        uptime_percentage=uptime_pct,
        total_checks=total_checks,
        uptime=format_duration(uptime),
    )
