"""Core components for the data manager."""

from data_manager.core.context import (
    AggregateFunction,
    DataContext,
    EntityNamable,
    ManagedObject,
    entity_name,
)
from data_manager.core.errors import (
    ConfigurationError,
    DataManagerError,
    FileLockError,
    MigrationError,
    MigrationInProgressError,
    MigrationStepError,
    PackagingDefectError,
    StorageError,
    StoreIncompatibleError,
    StoreLoadError,
    StoreReplaceError,
    ValidationError,
)
from data_manager.core.mapping import MappingModel
from data_manager.core.migrations import (
    MigrationManager,
    MigrationResult,
    MigrationSource,
    MigrationState,
    MigrationStep,
    StaticMigrationSource,
)
from data_manager.core.models import StoreMetadata
from data_manager.core.registry import SchemaModelRegistry
from data_manager.core.resources import ResourceBundle
from data_manager.core.schema import (
    AttributeDescription,
    EntityDescription,
    SchemaDescription,
    compile_schema,
)
from data_manager.core.utils import utc_now

__all__ = [
    # Errors
    "DataManagerError",
    "ValidationError",
    "ConfigurationError",
    "StorageError",
    "StoreLoadError",
    "StoreIncompatibleError",
    "FileLockError",
    "MigrationError",
    "PackagingDefectError",
    "MigrationStepError",
    "StoreReplaceError",
    "MigrationInProgressError",
    # Schemas and mappings
    "AttributeDescription",
    "EntityDescription",
    "SchemaDescription",
    "StoreMetadata",
    "MappingModel",
    "compile_schema",
    "ResourceBundle",
    "SchemaModelRegistry",
    # Migration
    "MigrationManager",
    "MigrationResult",
    "MigrationSource",
    "MigrationState",
    "MigrationStep",
    "StaticMigrationSource",
    # Data context
    "AggregateFunction",
    "DataContext",
    "EntityNamable",
    "ManagedObject",
    "entity_name",
    # Utils
    "utc_now",
]
