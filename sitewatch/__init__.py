"""SiteWatch - dual-line site reachability and latency monitoring."""

__version__ = "3.0.0"
