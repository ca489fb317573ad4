"""Pytest fixtures for data manager tests."""

from __future__ import annotations

from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest

from data_manager.adapters.sqlite_store import SQLiteStoreEngine
from data_manager.config import Settings, override_settings, reset_settings
from data_manager.core.migrations import MigrationManager, MigrationStep, StaticMigrationSource
from data_manager.core.registry import SchemaModelRegistry
from data_manager.core.resources import ResourceBundle
from data_manager.core.storage import quote_identifier
from tests.helpers import CONTAINER, write_resources

# ---------------------------------------------------------------------------
# Resource fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def resource_dir(tmp_path: Path) -> Path:
    """Directory holding the Notes schemas v1-v4 and their mappings."""
    return write_resources(tmp_path / "resources")


@pytest.fixture
def bundle(resource_dir: Path) -> ResourceBundle:
    return ResourceBundle(resource_dir)


@pytest.fixture
def registry(bundle: ResourceBundle) -> SchemaModelRegistry:
    return SchemaModelRegistry(bundle, CONTAINER)


@pytest.fixture
def engine() -> SQLiteStoreEngine:
    return SQLiteStoreEngine()


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / f"{CONTAINER}.sqlite"


@pytest.fixture
def scratch_dir(tmp_path: Path) -> Path:
    path = tmp_path / "scratch"
    path.mkdir()
    return path


@pytest.fixture
def make_store(
    registry: SchemaModelRegistry, engine: SQLiteStoreEngine
) -> Callable[..., Path]:
    """Factory creating a store at a schema version with the given rows.

    Usage:
        make_store(path, 1, Note=[{"title": "a", "body": "b"}])
    """

    def _make(path: Path, version: int, **rows: list[dict[str, Any]]) -> Path:
        schema = registry.load_schema(version)
        conn = engine.open_store(schema, path)
        try:
            with conn:
                for entity, entity_rows in rows.items():
                    for row in entity_rows:
                        columns = ", ".join(quote_identifier(c) for c in row)
                        placeholders = ", ".join("?" for _ in row)
                        conn.execute(
                            f"INSERT INTO {quote_identifier(entity)} ({columns}) "
                            f"VALUES ({placeholders})",
                            list(row.values()),
                        )
        finally:
            conn.close()
        return path

    return _make


@pytest.fixture
def v1_notes() -> list[dict[str, Any]]:
    return [
        {"title": "groceries", "body": "eggs and milk", "created": 1_700_000_000_000_000},
        {"title": "ideas", "body": None, "created": None},
        {"title": "travel", "body": "pack light", "created": 1_700_000_100_000_000},
    ]


# ---------------------------------------------------------------------------
# Migration fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def two_step_source() -> StaticMigrationSource:
    return StaticMigrationSource([MigrationStep(1, 2), MigrationStep(2, 3)])


@pytest.fixture
def migration_manager(
    registry: SchemaModelRegistry,
    engine: SQLiteStoreEngine,
    two_step_source: StaticMigrationSource,
    scratch_dir: Path,
) -> MigrationManager:
    """Manager with plan [1->2, 2->3] writing scratch stores to scratch_dir."""
    return MigrationManager(
        registry=registry,
        engine=engine,
        migration_source=two_step_source,
        scratch_dir=scratch_dir,
        filelock_timeout=1.0,
        filelock_poll_interval=0.01,
    )


# ---------------------------------------------------------------------------
# Settings fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def test_settings(
    tmp_path: Path, resource_dir: Path, store_path: Path, scratch_dir: Path
) -> Generator[Settings, None, None]:
    """Settings pointing at the temporary bundle and store."""
    settings = Settings(
        container_name=CONTAINER,
        resource_path=resource_dir,
        store_path=store_path,
        scratch_path=scratch_dir,
        log_level="DEBUG",
        filelock_timeout=1.0,
    )
    override_settings(settings)
    yield settings
    reset_settings()
