"""Host-facing facade."""

from __future__ import annotations

import logging
from typing import Any

from data_manager.config import Settings, get_settings
from data_manager.core.context import DataContext
from data_manager.core.errors import DataManagerError, StoreLoadError
from data_manager.core.migrations import MigrationManager, MigrationResult, MigrationSource
from data_manager.core.registry import SchemaModelRegistry
from data_manager.core.resources import ResourceBundle
from data_manager.factory import ServiceFactory
from data_manager.ports.store import StoreEngineProtocol
from data_manager.services.lifecycle import (
    LoadCallback,
    LoadedStore,
    MigrationCallback,
    StoreLifecycleCoordinator,
    invoke_callback,
)

logger = logging.getLogger(__name__)


class DataManager:
    """Owns the services for one persistent store.

    Example:
        class Plan:
            def migration_steps(self):
                return [MigrationStep(1, 2), MigrationStep(2, 3)]

        manager = DataManager(Plan())
        await manager.load_persistent_store()
        manager.context.insert(NoteMO(title="hello"))
        manager.context.save()
        manager.close()
    """

    def __init__(
        self,
        migration_source: MigrationSource | None = None,
        settings: Settings | None = None,
        bundle: ResourceBundle | None = None,
        engine: StoreEngineProtocol | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            migration_source: Host-supplied migration plan.
            settings: Settings override. Defaults to get_settings().
            bundle: Resource bundle override.
            engine: Store engine override.
        """
        factory = ServiceFactory(settings or get_settings(), bundle=bundle, engine=engine)
        self._services = factory.create_all(migration_source)
        self._loaded: LoadedStore | None = None

    @property
    def settings(self) -> Settings:
        return self._services.settings

    @property
    def registry(self) -> SchemaModelRegistry:
        return self._services.registry

    @property
    def migrations(self) -> MigrationManager:
        return self._services.migrations

    @property
    def coordinator(self) -> StoreLifecycleCoordinator:
        return self._services.coordinator

    @property
    def is_loaded(self) -> bool:
        return self._loaded is not None

    @property
    def context(self) -> DataContext:
        """Data context of the loaded store.

        Raises:
            StoreLoadError: If load_persistent_store() has not succeeded.
        """
        if self._loaded is None:
            raise StoreLoadError(self.coordinator.store_path, "store has not been loaded")
        return self._loaded.context

    async def migrate_store_if_needed(
        self, on_complete: MigrationCallback | None = None
    ) -> MigrationResult | None:
        return await self.coordinator.migrate_store_if_needed(on_complete)

    async def load_persistent_store(
        self, on_complete: LoadCallback | None = None
    ) -> LoadedStore | None:
        """Migrate the store if needed and open it.

        Loading twice returns the already-loaded store.
        """
        if self._loaded is None:
            try:
                self._loaded = await self.coordinator.load_persistent_store()
            except DataManagerError as e:
                if on_complete is None:
                    raise
                await invoke_callback(on_complete, None, e)
                return None

        if on_complete is not None:
            await invoke_callback(on_complete, self._loaded, None)
        return self._loaded

    def close(self) -> None:
        if self._loaded is not None:
            self._loaded.context.close()
            self._loaded = None
        self.coordinator.close()

    def __enter__(self) -> DataManager:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()
