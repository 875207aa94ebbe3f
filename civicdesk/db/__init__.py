"""
Database Layer for Civic Desk

Provides:
- Repository interfaces for reports and identities
- In-memory stores for development and tests
- PostgreSQL stores (civicdesk.db.postgres) and configuration
"""

from .store import (
    ReportStore,
    IdentityStore,
    InMemoryReportStore,
    InMemoryIdentityStore,
    StoreError,
    DuplicateRecordError,
    RecordNotFoundError,
)
from .config import DatabaseConfig, StoreDriver, get_database_url, get_store_driver

__all__ = [
    "ReportStore",
    "IdentityStore",
    "InMemoryReportStore",
    "InMemoryIdentityStore",
    "StoreError",
    "DuplicateRecordError",
    "RecordNotFoundError",
    "DatabaseConfig",
    "StoreDriver",
    "get_database_url",
    "get_store_driver",
]
