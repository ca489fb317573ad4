"""Protocol interface for the persistent store engine.

The migration manager never touches store files directly; everything goes
through this contract. The SQLiteStoreEngine is the primary implementation.
Using typing.Protocol enables structural subtyping, so tests can wrap or
replace the engine freely.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Protocol

from data_manager.core.mapping import MappingModel
from data_manager.core.models import StoreMetadata
from data_manager.core.schema import SchemaDescription


class StoreEngineProtocol(Protocol):
    """Operations the migration manager consumes from the store engine."""

    def read_store_metadata(self, path: Path) -> StoreMetadata | None:
        """Read a store's schema-identifying header without fully opening it.

        Returns:
            The metadata, or None if the store is absent or unreadable.
        """
        ...

    def is_compatible(self, schema: SchemaDescription, metadata: StoreMetadata) -> bool:
        """Structural compatibility of a schema with a store's metadata."""
        ...

    def checkpoint_store(self, schema: SchemaDescription, path: Path) -> None:
        """Open the store with ``schema`` and close it, flushing any write-ahead log.

        Afterwards the store is a single self-contained file.

        Raises:
            StorageError: If the store cannot be opened or flushed.
        """
        ...

    def migrate_store(
        self,
        source_schema: SchemaDescription,
        destination_schema: SchemaDescription,
        mapping: MappingModel,
        source_path: Path,
        destination_path: Path,
    ) -> None:
        """Write a new store at ``destination_path`` from the one at ``source_path``.

        The source store is only read.

        Raises:
            Exception: Any engine or data error; the caller owns cleanup.
        """
        ...

    def replace_store(self, target_path: Path, source_path: Path) -> None:
        """Atomically replace the store at ``target_path`` with a copy of ``source_path``.

        On failure the target is untouched. The source is never modified.

        Raises:
            StorageError: If the replace fails.
        """
        ...

    def destroy_store(self, path: Path) -> None:
        """Remove a store file and its side files. Missing files are ignored."""
        ...

    def open_store(self, schema: SchemaDescription, path: Path) -> sqlite3.Connection:
        """Open (creating if absent) a store for regular use.

        Raises:
            StoreIncompatibleError: If an existing store does not match ``schema``.
            StorageError: If the store cannot be opened.
        """
        ...
