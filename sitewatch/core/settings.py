"""
Settings Manager
YAML-based monitor configuration and site list with defaults
"""

import copy
import math
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .models import SLA, SLAConfig, Site


class ConfigError(Exception):
    """Invalid or unreadable configuration."""


_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1, "m": 60, "h": 3600, None: 1}


def parse_duration(value: Any) -> float:
    """Seconds from a number or a string like '30s', '5m', '1h', '500ms'."""
    if isinstance(value, bool):
        raise ConfigError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    match = _DURATION_RE.match(str(value))
    if not match:
        raise ConfigError(f"invalid duration: {value!r}")
    number, unit = match.groups()
    return float(number) * _DURATION_UNITS[unit]


class Settings:
    """Monitor settings."""

    DEFAULTS = {
        'ping': {
            'default_interval': 30,
            'timeout': 5,
            'packet_count': 3,
            'packet_size': 0,
        },
        'circuit_breaker': {
            'max_failures': 3,
            'reset_timeout': 60,
        },
        'storage': {
            'type': 'sqlite',  # sqlite, memory
            'sqlite_path': 'data/ping_monitor.db',
            'max_memory_logs': 1000,
        },
        'logging': {
            'level': 'INFO',
            'dir': 'data/logs',
        },
    }

    def __init__(self, data: Optional[Dict[str, Any]] = None, sites: Optional[List[Site]] = None):
        """Initialize settings from already parsed data."""
        self.data = copy.deepcopy(self.DEFAULTS)
        if data:
            _merge(self.data, data)
        self.sites: List[Site] = list(sites or [])

    @classmethod
    def load(cls, config_path: Path = None, sites_path: Path = None) -> "Settings":
        """Load config.yaml and sites.yaml; missing files fall back to defaults."""
        if config_path is None:
            config_path = Path("config.yaml")
        if sites_path is None:
            sites_path = Path("sites.yaml")

        data = _read_yaml(config_path)
        sites_doc = _read_yaml(sites_path)
        sites = parse_sites(sites_doc.get('sites') or [])
        return cls(data, sites)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a setting by dotted key, e.g. 'ping.timeout'."""
        node: Any = self.data
        for part in key.split('.'):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    @property
    def default_interval(self) -> float:
        interval = parse_duration(self.get('ping.default_interval'))
        if interval <= 0:
            raise ConfigError(f"ping.default_interval must be positive: {interval}")
        return interval

    @property
    def probe_timeout(self) -> float:
        return parse_duration(self.get('ping.timeout'))

    @property
    def packet_count(self) -> int:
        return int(self.get('ping.packet_count'))

    @property
    def packet_size(self) -> int:
        return int(self.get('ping.packet_size'))

    @property
    def breaker_policy(self) -> Tuple[int, float]:
        return (
            int(self.get('circuit_breaker.max_failures')),
            parse_duration(self.get('circuit_breaker.reset_timeout')),
        )


def _merge(base: Dict[str, Any], override: Dict[str, Any]):
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value


def _read_yaml(path: Path) -> Dict[str, Any]:
    path = Path(path)
    if not path.exists():
        return {}
    try:
        with open(path, 'r', encoding='utf-8') as f:
            loaded = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"reading {path}: {e}") from e
    if not isinstance(loaded, dict):
        raise ConfigError(f"{path}: top level must be a mapping")
    return loaded


def _parse_sla(raw: Optional[Dict[str, Any]]) -> SLA:
    if not raw:
        return SLA()
    max_latency = raw.get('max_latency')
    return SLA(
        uptime=float(raw.get('uptime', 0) or 0),
        max_latency=float(max_latency) if max_latency is not None else None,
        restoration=int(raw.get('restoration', 0) or 0),
    )


def parse_sites(raw_sites: List[Dict[str, Any]]) -> List[Site]:
    """Build Site records from the `sites` list of sites.yaml."""
    sites = []
    seen = set()
    for raw in raw_sites:
        if not isinstance(raw, dict):
            raise ConfigError(f"site definition must be a mapping: {raw!r}")
        site_id = str(raw.get('id') or '').strip()
        primary_ip = str(raw.get('primary_ip') or '').strip()
        if not site_id or not primary_ip:
            raise ConfigError(f"site requires 'id' and 'primary_ip': {raw!r}")
        if site_id in seen:
            raise ConfigError(f"duplicate site id: {site_id}")
        seen.add(site_id)

        interval = parse_duration(raw.get('interval') or 0)
        if interval < 0:
            raise ConfigError(f"negative interval for site {site_id}: {interval}")

        sla = raw.get('sla') or {}
        sites.append(Site(
            id=site_id,
            name=str(raw.get('name') or site_id),
            location=str(raw.get('location') or ''),
            primary_ip=primary_ip,
            secondary_ip=str(raw.get('secondary_ip') or '').strip(),
            primary_provider=str(raw.get('primary_provider') or ''),
            secondary_provider=str(raw.get('secondary_provider') or ''),
            interval=math.ceil(interval),  # whole seconds, sub-second rounds up
            enabled=bool(raw.get('enabled', True)),
            sla=SLAConfig(
                primary=_parse_sla(sla.get('primary')),
                secondary=_parse_sla(sla.get('secondary')),
                combined=_parse_sla(sla.get('combined')),
            ),
        ))
    return sites
