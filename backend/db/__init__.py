"""
Database Layer
Key/value persistence for alerts, alert logs and settings.
"""

from .memory import ConfigStore, InMemoryStore
from .sqlite import SQLiteStorage, get_storage

__all__ = ["ConfigStore", "InMemoryStore", "SQLiteStorage", "get_storage"]
