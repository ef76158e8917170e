"""Storage module."""

from .storage import IStorage, Storage, from_db_timestamp, to_db_timestamp

__all__ = ["IStorage", "Storage", "from_db_timestamp", "to_db_timestamp"]
