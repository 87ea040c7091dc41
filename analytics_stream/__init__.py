"""Realtime analytics stream: live dashboards from baseline snapshots and socket streams."""

__version__ = "1.0.0"
