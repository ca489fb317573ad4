"""Data Manager - versioned schema migration for persistent stores."""

__version__ = "0.1.0"

# Re-export core components for convenience
from data_manager.config import Settings, get_settings
from data_manager.core import (
    AggregateFunction,
    DataContext,
    # Errors
    DataManagerError,
    EntityNamable,
    FileLockError,
    ManagedObject,
    MigrationError,
    MigrationInProgressError,
    MigrationManager,
    MigrationResult,
    MigrationSource,
    MigrationStep,
    MigrationStepError,
    PackagingDefectError,
    ResourceBundle,
    SchemaDescription,
    SchemaModelRegistry,
    StaticMigrationSource,
    StorageError,
    StoreLoadError,
    StoreMetadata,
    StoreReplaceError,
    ValidationError,
)
from data_manager.manager import DataManager
from data_manager.services import LoadedStore, StoreLifecycleCoordinator

__all__ = [
    # Version info
    "__version__",
    # Configuration
    "Settings",
    "get_settings",
    # Facade
    "DataManager",
    "LoadedStore",
    "StoreLifecycleCoordinator",
    # Errors
    "DataManagerError",
    "ValidationError",
    "StorageError",
    "StoreLoadError",
    "FileLockError",
    "MigrationError",
    "PackagingDefectError",
    "MigrationStepError",
    "StoreReplaceError",
    "MigrationInProgressError",
    # Migration
    "MigrationManager",
    "MigrationResult",
    "MigrationSource",
    "MigrationStep",
    "StaticMigrationSource",
    "SchemaDescription",
    "SchemaModelRegistry",
    "StoreMetadata",
    "ResourceBundle",
    # Data context
    "AggregateFunction",
    "DataContext",
    "EntityNamable",
    "ManagedObject",
]
