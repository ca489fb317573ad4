"""Port interfaces for the data manager."""

from data_manager.ports.store import StoreEngineProtocol

__all__ = ["StoreEngineProtocol"]
