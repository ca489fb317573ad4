"""Unit tests for ServiceFactory.

Tests verify that the factory wires settings into every service.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from data_manager.adapters.sqlite_store import SQLiteStoreEngine
from data_manager.config import Settings
from data_manager.core.migrations import MigrationStep, StaticMigrationSource
from data_manager.core.resources import ResourceBundle
from data_manager.factory import ServiceContainer, ServiceFactory

# ===========================================================================
# TestCreateAll
# ===========================================================================


@pytest.mark.unit
class TestCreateAll:
    """Verify the object graph built by create_all()."""

    def test_services_share_registry_and_engine(self, test_settings: Settings) -> None:
        source = StaticMigrationSource([MigrationStep(1, 2)])

        services = ServiceFactory(test_settings).create_all(source)
        try:
            assert isinstance(services, ServiceContainer)
            assert isinstance(services.engine, SQLiteStoreEngine)
            assert services.migrations.registry is services.registry
            assert services.migrations.engine is services.engine
            assert services.migrations.migration_source is source
            assert services.registry.container_name == "Notes"
            assert services.bundle.root == test_settings.resource_path
        finally:
            services.coordinator.close()

    def test_settings_reach_migration_manager(self, test_settings: Settings) -> None:
        services = ServiceFactory(test_settings).create_all()
        try:
            manager = services.migrations
            assert manager.scratch_dir == test_settings.scratch_path
            assert manager._filelock_timeout == test_settings.filelock_timeout
            assert manager.migration_steps() == []
            assert services.coordinator.store_path == test_settings.store_path
        finally:
            services.coordinator.close()

    def test_injected_bundle_and_engine_are_used(
        self, test_settings: Settings, tmp_path: Path
    ) -> None:
        bundle = ResourceBundle(tmp_path / "elsewhere")
        engine = MagicMock()

        services = ServiceFactory(test_settings, bundle=bundle, engine=engine).create_all()
        try:
            assert services.bundle is bundle
            assert services.engine is engine
            assert services.migrations.engine is engine
        finally:
            services.coordinator.close()

    def test_coordinator_targets_configured_store(self, test_settings: Settings) -> None:
        factory = ServiceFactory(test_settings)

        with patch("data_manager.factory.StoreLifecycleCoordinator") as coordinator_cls:
            services = factory.create_all()

        coordinator_cls.assert_called_once_with(services.migrations, test_settings.store_path)
