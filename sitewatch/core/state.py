"""
Process state shared by the scheduler, the pipeline and readers.
"""

import dataclasses
import threading
import time
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional, Tuple

from .models import LineType, LiveStatus, ProbeResult, Site


class MonitorState:
    """Site list (read-only) plus the lock-guarded live status map."""

    def __init__(self, sites: Iterable[Site]):
        self.sites: Tuple[Site, ...] = tuple(sites)
        self._by_id: Dict[str, Site] = {site.id: site for site in self.sites}
        self._lock = threading.Lock()
        self._statuses: Dict[str, LiveStatus] = {
            site.id: LiveStatus(site_id=site.id) for site in self.sites
        }
        self._total_checks = 0
        self.started_at = datetime.now(timezone.utc)
        self._started_monotonic = time.monotonic()

    @property
    def enabled_sites(self) -> Tuple[Site, ...]:
        return tuple(site for site in self.sites if site.enabled)

    def find_site(self, site_id: str) -> Optional[Site]:
        return self._by_id.get(site_id)

    def site_name(self, site_id: str) -> str:
        site = self._by_id.get(site_id)
        return site.name if site else ""

    @property
    def total_checks(self) -> int:
        with self._lock:
            return self._total_checks

    def increment_checks(self) -> int:
        with self._lock:
            self._total_checks += 1
            return self._total_checks

    @property
    def uptime_seconds(self) -> float:
        return time.monotonic() - self._started_monotonic

    def apply(self, result: ProbeResult) -> Optional[LiveStatus]:
        """Fold a result into the site's status. Returns a copy, or None for unknown sites."""
        site = self._by_id.get(result.site_id)
        with self._lock:
            status = self._statuses.get(result.site_id)
            if status is None or site is None:
                return None

            latency = result.latency if result.success else None
            error = "" if result.success else result.error
            if result.line is LineType.PRIMARY:
                status.primary_online = result.success
                status.primary_latency = latency
                status.primary_error = error
            else:
                status.secondary_online = result.success
                status.secondary_latency = latency
                status.secondary_error = error

            if site.is_dual_line:
                status.both_online = status.primary_online and status.secondary_online
            else:
                status.both_online = status.primary_online
            status.last_check = result.timestamp
            return dataclasses.replace(status)

    def get_status(self, site_id: str) -> Optional[LiveStatus]:
        with self._lock:
            status = self._statuses.get(site_id)
            return dataclasses.replace(status) if status else None

    def snapshot(self) -> Dict[str, LiveStatus]:
        with self._lock:
            return {site_id: dataclasses.replace(s) for site_id, s in self._statuses.items()}
