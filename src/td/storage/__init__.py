"""Storage backends for td."""

from td.storage.interface import Storage
from td.storage.sqlite_store import SQLiteStorage, open_storage

__all__ = ["SQLiteStorage", "Storage", "open_storage"]
