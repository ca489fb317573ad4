"""Adapters implementing port interfaces."""

from data_manager.adapters.sqlite_store import SQLiteStoreEngine

__all__ = ["SQLiteStoreEngine"]
