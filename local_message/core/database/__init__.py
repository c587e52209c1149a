"""
Database access for the outbox engine.
"""

from .adapter import (
    Connection,
    DatabaseAdapter,
    DatabaseBackend,
    DatabaseConfig,
)

__all__ = [
    "Connection",
    "DatabaseAdapter",
    "DatabaseBackend",
    "DatabaseConfig",
]
