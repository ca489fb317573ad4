"""Service layer for data-manager.

Services:
    StoreLifecycleCoordinator: Check, migrate and open a store as one
        asynchronous sequence.
"""

from data_manager.services.lifecycle import LoadedStore, StoreLifecycleCoordinator

__all__ = [
    "LoadedStore",
    "StoreLifecycleCoordinator",
]
