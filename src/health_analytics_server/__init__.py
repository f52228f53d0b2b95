"""Health analytics and real-time monitoring server."""

__version__ = "1.0.0"
