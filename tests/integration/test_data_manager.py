"""Integration tests for the DataManager facade."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from data_manager import DataManager, ManagedObject, MigrationStep, StoreLoadError
from data_manager.config import Settings


class NoteMO(ManagedObject):
    title: str
    pinned: bool | None = None


class Plan:
    """Host-side migration source."""

    def migration_steps(self) -> list[MigrationStep]:
        return [MigrationStep(1, 2), MigrationStep(2, 3)]


@pytest.mark.integration
class TestDataManager:
    """Tests for the host-facing facade."""

    def test_context_requires_loaded_store(self, test_settings: Settings) -> None:
        with DataManager(Plan(), settings=test_settings) as manager:
            assert not manager.is_loaded
            with pytest.raises(StoreLoadError, match="has not been loaded"):
                _ = manager.context

    def test_uses_global_settings_by_default(self, test_settings: Settings) -> None:
        with DataManager(Plan()) as manager:
            assert manager.settings is test_settings

    @pytest.mark.asyncio
    async def test_load_migrates_and_exposes_context(
        self,
        test_settings: Settings,
        make_store: Callable[..., Path],
        store_path: Path,
        v1_notes: list[dict[str, Any]],
    ) -> None:
        make_store(store_path, 1, Note=v1_notes)
        manager = DataManager(Plan(), settings=test_settings)
        try:
            loaded = await manager.load_persistent_store()

            assert loaded is not None
            assert manager.is_loaded
            assert manager.context.count(NoteMO) == 3
            manager.context.insert(NoteMO(title="after migration"))
            manager.context.save()
            assert manager.context.fetch_first(NoteMO, order_by=["-pk"]) == NoteMO(
                pk=4, title="after migration", pinned=False
            )
        finally:
            manager.close()
        assert not manager.is_loaded

    @pytest.mark.asyncio
    async def test_second_load_returns_same_store(
        self, test_settings: Settings, store_path: Path
    ) -> None:
        manager = DataManager(Plan(), settings=test_settings)
        try:
            first = await manager.load_persistent_store()
            calls: list[tuple[Any, ...]] = []

            second = await manager.load_persistent_store(lambda *args: calls.append(args))

            assert second is first
            assert calls == [(first, None)]
        finally:
            manager.close()

    @pytest.mark.asyncio
    async def test_load_failure_goes_to_callback(
        self,
        test_settings: Settings,
        make_store: Callable[..., Path],
        store_path: Path,
    ) -> None:
        make_store(store_path, 4)
        calls: list[tuple[Any, ...]] = []

        with DataManager(Plan(), settings=test_settings) as manager:
            result = await manager.load_persistent_store(lambda *args: calls.append(args))

            assert result is None
            assert not manager.is_loaded
        assert len(calls) == 1
        assert calls[0][0] is None
        assert isinstance(calls[0][1], StoreLoadError)

    @pytest.mark.asyncio
    async def test_migrate_store_if_needed(
        self,
        test_settings: Settings,
        make_store: Callable[..., Path],
        store_path: Path,
    ) -> None:
        make_store(store_path, 2, Note=[{"title": "t", "text": "x", "pinned": 0}])
        errors: list[Any] = []

        with DataManager(Plan(), settings=test_settings) as manager:
            result = await manager.migrate_store_if_needed(errors.append)

            assert errors == [None]
            assert result is not None
            assert result.steps_executed == [MigrationStep(2, 3)]
            assert result.steps_skipped == [MigrationStep(1, 2)]
            assert manager.migrations.requires_migration(store_path) is False
