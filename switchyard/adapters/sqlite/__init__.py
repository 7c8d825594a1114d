"""
SQLite Adapter - Durable cache store and decision audit log.
"""

from .repository import SQLiteRepository
from .stores import SQLiteAuditLog, SQLiteCacheStore

__all__ = [
    "SQLiteRepository",
    "SQLiteCacheStore",
    "SQLiteAuditLog",
]
