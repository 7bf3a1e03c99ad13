"""Route modules exposed by the API package."""

from . import cleanup, metrics, ping, state

__all__ = ["cleanup", "metrics", "ping", "state"]
