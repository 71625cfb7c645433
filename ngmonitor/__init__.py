"""Monitoring server with shared configuration, SQLite document storage upkeep and an HTTP API."""

__version__ = "0.1.0"
__all__ = [
    "config",
    "config_service",
    "docdb",
    "http_service",
    "limiter",
    "misc",
    "pdvariable",
    "persist",
    "printer",
    "retry",
    "server",
]