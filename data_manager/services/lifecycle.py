"""Store lifecycle coordination.

Orchestrates "check -> migrate if needed -> open" for one store. The check
runs on the caller's event loop; the migration itself is blocking file work
and runs on a dedicated worker thread, after which control (and the
completion callback) returns to the caller's loop.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Any

from data_manager.core.context import DataContext
from data_manager.core.errors import DataManagerError, StorageError, StoreLoadError
from data_manager.core.migrations import MigrationManager, MigrationResult
from data_manager.core.schema import SchemaDescription

logger = logging.getLogger(__name__)

MigrationCallback = Callable[[DataManagerError | None], Awaitable[Any] | Any]
LoadCallback = Callable[["LoadedStore | None", DataManagerError | None], Awaitable[Any] | Any]


@dataclass
class LoadedStore:
    """An open, up-to-date store.

    Attributes:
        path: Store location.
        schema: Schema the store was opened with.
        context: Data context over the store's connection.
        migration: Result of the migration run, or None if none was needed.
    """

    path: Path
    schema: SchemaDescription
    context: DataContext
    migration: MigrationResult | None = None


async def invoke_callback(callback: Callable[..., Any], *args: Any) -> None:
    """Call a completion callback, awaiting it if it is a coroutine function."""
    outcome = callback(*args)
    if inspect.isawaitable(outcome):
        await outcome


class StoreLifecycleCoordinator:
    """Runs migrations off the event loop and opens the store afterwards.

    Example:
        coordinator = StoreLifecycleCoordinator(manager, Path("data/Notes.sqlite"))
        loaded = await coordinator.load_persistent_store()
        notes = loaded.context.fetch(NoteMO)

    Callbacks receive the error (or None) exactly once, on the caller's loop.
    Without a callback, errors are raised instead.
    """

    def __init__(
        self,
        manager: MigrationManager,
        store_path: Path,
        current_version: int | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            manager: Migration manager for the store.
            store_path: Store location.
            current_version: Schema version stores are opened with. Defaults
                to the last destination of the plan, or 1 for an empty plan.
        """
        self._manager = manager
        self._store_path = Path(store_path)
        self._current_version = current_version
        # Single worker; _run_lock serialises runs
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="store-migration")
        self._run_lock = asyncio.Lock()

    @property
    def store_path(self) -> Path:
        return self._store_path

    @property
    def current_version(self) -> int:
        if self._current_version is not None:
            return self._current_version
        steps = self._manager.migration_steps()
        return steps[-1].destination_version if steps else 1

    async def _run_in_executor(self, func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, partial(func, *args))

    async def _migrate(self) -> MigrationResult | None:
        async with self._run_lock:
            if not self._manager.requires_migration(self._store_path):
                logger.debug(f"Store {self._store_path.name} is current")
                return None
            logger.info(f"Store {self._store_path.name} requires migration")
            result: MigrationResult = await self._run_in_executor(
                self._manager.migrate_store, self._store_path
            )
            return result

    async def migrate_store_if_needed(
        self, on_complete: MigrationCallback | None = None
    ) -> MigrationResult | None:
        """Migrate the store if it is behind the latest schema.

        Args:
            on_complete: Called with None on success or with the error.

        Returns:
            The migration result, or None if nothing ran or the run failed.

        Raises:
            DataManagerError: On failure when no callback is given.
        """
        try:
            result = await self._migrate()
        except DataManagerError as e:
            logger.error(f"Migration of {self._store_path.name} failed: {e}")
            if on_complete is None:
                raise
            await invoke_callback(on_complete, e)
            return None

        if on_complete is not None:
            await invoke_callback(on_complete, None)
        return result

    def _open(self, schema: SchemaDescription) -> DataContext:
        try:
            connection = self._manager.engine.open_store(schema, self._store_path)
        except StorageError as e:
            raise StoreLoadError(self._store_path, str(e)) from e
        return DataContext(connection, schema)

    async def _load(self) -> LoadedStore:
        migration = await self._migrate()
        schema = self._manager.registry.load_schema(self.current_version)
        context: DataContext = await self._run_in_executor(self._open, schema)
        logger.info(f"Loaded store {self._store_path.name} at schema v{self.current_version}")
        return LoadedStore(
            path=self._store_path, schema=schema, context=context, migration=migration
        )

    async def load_persistent_store(
        self, on_complete: LoadCallback | None = None
    ) -> LoadedStore | None:
        """Migrate if needed, then open the store with the current schema.

        Args:
            on_complete: Called with (loaded_store, None) or (None, error).

        Returns:
            The loaded store, or None if loading failed and a callback was
            given.

        Raises:
            StoreLoadError: If the store cannot be opened after migration.
            DataManagerError: Any migration failure, when no callback is given.
        """
        try:
            loaded = await self._load()
        except DataManagerError as e:
            logger.error(f"Loading store {self._store_path.name} failed: {e}")
            if on_complete is None:
                raise
            await invoke_callback(on_complete, None, e)
            return None

        if on_complete is not None:
            await invoke_callback(on_complete, loaded, None)
        return loaded

    def close(self) -> None:
        self._executor.shutdown(wait=True)
