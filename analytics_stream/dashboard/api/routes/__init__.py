"""API route modules."""

from . import dashboards

__all__ = ["dashboards"]
