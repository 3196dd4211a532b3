"""
Shared route dependencies, overridable in tests.
"""

from ..core.database import Database, get_database
from ..sync.service import SyncService, get_sync_service


def database() -> Database:
    return get_database()


def sync_service() -> SyncService:
    return get_sync_service()
