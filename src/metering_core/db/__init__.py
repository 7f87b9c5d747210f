"""
Database connection management for metering_core.

Provides:
- DatabaseManager: Async PostgreSQL connection manager (Cloud SQL + direct)
- db: Application-level instance
- get_session: FastAPI dependency injection helper
- store_operation: timeout + error translation for store calls
"""

from metering_core.db.connection import DatabaseManager, db, get_session
from metering_core.db.operations import store_operation

__all__ = [
    "DatabaseManager",
    "db",
    "get_session",
    "store_operation",
]
