"""Service factory for dependency injection and initialization.

Creates and wires the registry, store engine, migration manager and
lifecycle coordinator from Settings, so DataManager and the CLI build the
same object graph.

Usage:
    from data_manager.factory import ServiceFactory

    factory = ServiceFactory(settings)
    services = factory.create_all(StaticMigrationSource(steps))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from data_manager.adapters.sqlite_store import SQLiteStoreEngine
from data_manager.config import Settings
from data_manager.core.migrations import MigrationManager, MigrationSource
from data_manager.core.registry import SchemaModelRegistry
from data_manager.core.resources import ResourceBundle
from data_manager.ports.store import StoreEngineProtocol
from data_manager.services.lifecycle import StoreLifecycleCoordinator

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Container for all initialized services.

    Attributes:
        settings: Settings the services were built from.
        bundle: Bundled schema and mapping resources.
        registry: Schema model registry.
        engine: Store engine.
        migrations: Migration manager.
        coordinator: Lifecycle coordinator for the configured store.
    """

    settings: Settings
    bundle: ResourceBundle
    registry: SchemaModelRegistry
    engine: StoreEngineProtocol
    migrations: MigrationManager
    coordinator: StoreLifecycleCoordinator


class ServiceFactory:
    """Factory for creating and wiring all services.

    Example:
        factory = ServiceFactory(settings, engine=FakeEngine())
        services = factory.create_all(source)
    """

    def __init__(
        self,
        settings: Settings,
        bundle: ResourceBundle | None = None,
        engine: StoreEngineProtocol | None = None,
    ) -> None:
        """Initialize the factory.

        Args:
            settings: Application settings.
            bundle: Optional resource bundle override.
            engine: Optional store engine override for testing.
        """
        self._settings = settings
        self._injected_bundle = bundle
        self._injected_engine = engine

    def create_bundle(self) -> ResourceBundle:
        if self._injected_bundle is not None:
            return self._injected_bundle
        return ResourceBundle(self._settings.resource_path)

    def create_engine(self) -> StoreEngineProtocol:
        if self._injected_engine is not None:
            return self._injected_engine
        return SQLiteStoreEngine()

    def create_registry(self, bundle: ResourceBundle) -> SchemaModelRegistry:
        return SchemaModelRegistry(bundle, self._settings.container_name)

    def create_migration_manager(
        self,
        registry: SchemaModelRegistry,
        engine: StoreEngineProtocol,
        migration_source: MigrationSource | None,
    ) -> MigrationManager:
        """Create the migration manager.

        Args:
            registry: Schema model registry.
            engine: Store engine.
            migration_source: Host-supplied migration plan.

        Returns:
            Configured MigrationManager instance.
        """
        return MigrationManager(
            registry=registry,
            engine=engine,
            migration_source=migration_source,
            scratch_dir=self._settings.scratch_path,
            filelock_enabled=self._settings.filelock_enabled,
            filelock_timeout=self._settings.filelock_timeout,
            filelock_poll_interval=self._settings.filelock_poll_interval,
        )

    def create_coordinator(self, manager: MigrationManager) -> StoreLifecycleCoordinator:
        return StoreLifecycleCoordinator(manager, self._settings.store_path)

    def create_all(self, migration_source: MigrationSource | None = None) -> ServiceContainer:
        """Create and wire all services.

        Args:
            migration_source: Host-supplied migration plan.

        Returns:
            ServiceContainer with every service initialized.
        """
        bundle = self.create_bundle()
        engine = self.create_engine()
        registry = self.create_registry(bundle)
        migrations = self.create_migration_manager(registry, engine, migration_source)
        coordinator = self.create_coordinator(migrations)
        logger.debug(
            f"Services created for container '{registry.container_name}' "
            f"at {self._settings.store_path.name}"
        )
        return ServiceContainer(
            settings=self._settings,
            bundle=bundle,
            registry=registry,
            engine=engine,
            migrations=migrations,
            coordinator=coordinator,
        )
