"""
Deal alert service package.

This package contains modules for crawling a deal listing, keeping a bounded
product catalog and alert log, tracking per-viewer sessions and pushing
alerts to connected clients over WebSocket.  See README.md for details.
"""

__all__ = [
    "config",
    "db",
    "models",
    "catalog",
    "classifier",
    "alerts",
    "sessions",
    "outbox",
    "engine",
    "crawler",
    "protocol",
    "server",
    "main",
    "utils",
]
