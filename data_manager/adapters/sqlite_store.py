"""SQLite implementation of the store engine.

Layout of a store file:
    - one table per entity: ``_pk INTEGER PRIMARY KEY`` plus one column per
      attribute (non-optional attributes are NOT NULL)
    - ``_metadata(key, value)``: the StoreMetadata, one JSON value per key

Entity rows travel between stores as pyarrow Tables. Temporal and boolean
attributes are stored as integers and cast back to their Arrow type on read.
"""

from __future__ import annotations

import logging
import os
import shutil
import sqlite3
import uuid
from pathlib import Path

import pyarrow as pa

from data_manager.core.errors import StorageError, StoreIncompatibleError
from data_manager.core.mapping import MappingModel
from data_manager.core.models import StoreMetadata
from data_manager.core.schema import (
    PRIMARY_KEY_COLUMN,
    EntityDescription,
    SchemaDescription,
)
from data_manager.core.storage import column_affinity, physical_type, quote_identifier

logger = logging.getLogger(__name__)

METADATA_TABLE = "_metadata"

# Files SQLite keeps next to the main database file
SIDE_FILE_SUFFIXES = ("-wal", "-shm", "-journal")


def side_files(path: Path) -> list[Path]:
    return [path.with_name(path.name + suffix) for suffix in SIDE_FILE_SUFFIXES]


class SQLiteStoreEngine:
    """Store engine over single-file SQLite databases.

    Example:
        engine = SQLiteStoreEngine()
        metadata = engine.read_store_metadata(Path("Notes.sqlite"))
        conn = engine.open_store(schema, Path("Notes.sqlite"))
    """

    def __init__(self, busy_timeout: float = 5.0, batch_size: int = 1000) -> None:
        """Initialize the engine.

        Args:
            busy_timeout: Seconds to wait on a locked database.
            batch_size: Rows written per executemany() call during migration.
        """
        self._busy_timeout = busy_timeout
        self._batch_size = batch_size

    def _connect(
        self, path: Path, read_only: bool = False, check_same_thread: bool = True
    ) -> sqlite3.Connection:
        if read_only:
            uri = f"{path.resolve().as_uri()}?mode=ro"
            return sqlite3.connect(uri, uri=True, timeout=self._busy_timeout)
        return sqlite3.connect(
            str(path), timeout=self._busy_timeout, check_same_thread=check_same_thread
        )

    # -------------------------------------------------------------------------
    # Metadata
    # -------------------------------------------------------------------------

    def read_store_metadata(self, path: Path) -> StoreMetadata | None:
        """Read the metadata table through a read-only connection."""
        if not path.is_file():
            return None
        try:
            conn = self._connect(path, read_only=True)
            try:
                rows = conn.execute(f"SELECT key, value FROM {METADATA_TABLE}").fetchall()
            finally:
                conn.close()
            return StoreMetadata.from_rows(rows)
        except (sqlite3.Error, ValueError) as e:
            logger.debug(f"Store metadata unreadable for {path.name}: {e}")
            return None

    def is_compatible(self, schema: SchemaDescription, metadata: StoreMetadata) -> bool:
        return schema.is_compatible_with(metadata)

    def _write_metadata(self, conn: sqlite3.Connection, metadata: StoreMetadata) -> None:
        conn.execute(f"DELETE FROM {METADATA_TABLE}")
        conn.executemany(
            f"INSERT INTO {METADATA_TABLE} (key, value) VALUES (?, ?)", metadata.to_rows()
        )

    def _create_tables(self, conn: sqlite3.Connection, schema: SchemaDescription) -> None:
        conn.execute(
            f"CREATE TABLE {METADATA_TABLE} (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
        )
        for entity in schema:
            columns = [f"{quote_identifier(PRIMARY_KEY_COLUMN)} INTEGER PRIMARY KEY"]
            for attr in entity.attributes:
                constraint = "" if attr.optional else " NOT NULL"
                columns.append(
                    f"{quote_identifier(attr.name)} {column_affinity(attr.arrow_type)}{constraint}"
                )
            conn.execute(f"CREATE TABLE {quote_identifier(entity.name)} ({', '.join(columns)})")

    # -------------------------------------------------------------------------
    # Opening and checkpointing
    # -------------------------------------------------------------------------

    def open_store(self, schema: SchemaDescription, path: Path) -> sqlite3.Connection:
        """Open the store in WAL mode, creating it when absent.

        The returned connection may be used from any thread; callers
        serialize access themselves.
        """
        metadata = self.read_store_metadata(path)
        if metadata is not None and not schema.is_compatible_with(metadata):
            raise StoreIncompatibleError(path, schema.version_identifier or 0)

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            conn = self._connect(path, check_same_thread=False)
        except (OSError, sqlite3.Error) as e:
            raise StorageError(f"Failed to open store {path.name}: {e}") from e

        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            if metadata is None:
                with conn:
                    self._create_tables(conn, schema)
                    self._write_metadata(conn, schema.make_metadata())
                logger.info(
                    f"Created store {path.name} with schema v{schema.version_identifier}"
                )
        except sqlite3.Error as e:
            conn.close()
            raise StorageError(f"Failed to initialize store {path.name}: {e}") from e
        return conn

    def checkpoint_store(self, schema: SchemaDescription, path: Path) -> None:
        """Fold the write-ahead log into the main file and leave WAL mode."""
        metadata = self.read_store_metadata(path)
        if metadata is None or not schema.is_compatible_with(metadata):
            raise StoreIncompatibleError(path, schema.version_identifier or 0)

        try:
            conn = self._connect(path)
            try:
                conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
                mode = conn.execute("PRAGMA journal_mode=DELETE").fetchone()[0]
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to checkpoint store {path.name}: {e}") from e

        if str(mode).lower() != "delete":
            raise StorageError(
                f"Failed to checkpoint store {path.name}: journal mode stayed '{mode}'"
            )
        logger.debug(f"Checkpointed {path.name}")

    # -------------------------------------------------------------------------
    # Migration
    # -------------------------------------------------------------------------

    def _read_entity(self, conn: sqlite3.Connection, entity: EntityDescription) -> pa.Table:
        names = [PRIMARY_KEY_COLUMN, *entity.attribute_names]
        select = ", ".join(quote_identifier(n) for n in names)
        rows = conn.execute(
            f"SELECT {select} FROM {quote_identifier(entity.name)} "
            f"ORDER BY {quote_identifier(PRIMARY_KEY_COLUMN)}"
        ).fetchall()

        arrays = [pa.array([row[0] for row in rows], type=pa.int64())]
        for index, attr in enumerate(entity.attributes, start=1):
            values = [row[index] for row in rows]
            arrays.append(
                pa.array(values, type=physical_type(attr.arrow_type)).cast(attr.arrow_type)
            )
        return pa.Table.from_arrays(arrays, names=names)

    def _insert_rows(
        self, conn: sqlite3.Connection, entity: EntityDescription, table: pa.Table
    ) -> int:
        if table.num_rows == 0 or table.num_columns == 0:
            return 0

        names = table.column_names
        targets = []
        for name in names:
            attr = entity.attribute(name)
            targets.append(pa.int64() if attr is None else physical_type(attr.arrow_type))

        placeholders = ", ".join("?" for _ in names)
        sql = (
            f"INSERT INTO {quote_identifier(entity.name)} "
            f"({', '.join(quote_identifier(n) for n in names)}) VALUES ({placeholders})"
        )
        written = 0
        for batch in table.to_batches(max_chunksize=self._batch_size):
            columns = [
                batch.column(i).cast(targets[i]).to_pylist() for i in range(batch.num_columns)
            ]
            conn.executemany(sql, zip(*columns))
            written += batch.num_rows
        return written

    def migrate_store(
        self,
        source_schema: SchemaDescription,
        destination_schema: SchemaDescription,
        mapping: MappingModel,
        source_path: Path,
        destination_path: Path,
    ) -> None:
        """Build a fresh store at ``destination_path`` from ``source_path``.

        The destination is written in a single transaction with a rollback
        journal, so a finished destination is one self-contained file.
        """
        if destination_path.exists():
            raise StorageError(f"Migration destination {destination_path.name} already exists")

        source_metadata = self.read_store_metadata(source_path)
        if source_metadata is None:
            raise StorageError(f"Migration source {source_path.name} is not a readable store")

        source_conn = self._connect(source_path, read_only=True)
        try:
            destination_path.parent.mkdir(parents=True, exist_ok=True)
            destination_conn = self._connect(destination_path)
            try:
                destination_conn.execute("PRAGMA journal_mode=DELETE")
                with destination_conn:
                    self._create_tables(destination_conn, destination_schema)
                    for entity in destination_schema:
                        source_name = mapping.source_entity_name(entity.name, source_schema)
                        source_entity = (
                            source_schema.entity(source_name) if source_name else None
                        )
                        rows = (
                            self._read_entity(source_conn, source_entity)
                            if source_entity is not None
                            else None
                        )
                        migrated = mapping.transform(entity, source_entity, rows)
                        count = self._insert_rows(destination_conn, entity, migrated)
                        logger.debug(
                            f"Migrated {count} {entity.name} row(s) from "
                            f"{source_name or '<new entity>'}"
                        )
                    # Store identity survives migration; the schema hashes change
                    metadata = destination_schema.make_metadata().model_copy(
                        update={
                            "store_uuid": source_metadata.store_uuid,
                            "created_at": source_metadata.created_at,
                        }
                    )
                    self._write_metadata(destination_conn, metadata)
            finally:
                destination_conn.close()
        finally:
            source_conn.close()

    # -------------------------------------------------------------------------
    # Replace and destroy
    # -------------------------------------------------------------------------

    def replace_store(self, target_path: Path, source_path: Path) -> None:
        """Swap a copy of ``source_path`` into ``target_path`` with one rename.

        The copy is staged beside the target so the final os.replace() never
        crosses a filesystem boundary. The target's side files are removed
        first; after a checkpoint there are none to lose.
        """
        if target_path.resolve() == source_path.resolve():
            return
        if not source_path.is_file():
            raise StorageError(f"Replacement store {source_path.name} does not exist")

        staging = target_path.with_name(f".{target_path.name}.{uuid.uuid4().hex}.staging")
        try:
            target_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source_path, staging)
            with open(staging, "rb+") as fh:
                os.fsync(fh.fileno())
            for side_file in side_files(target_path):
                side_file.unlink(missing_ok=True)
            os.replace(staging, target_path)
        except OSError as e:
            staging.unlink(missing_ok=True)
            raise StorageError(f"Failed to replace store {target_path.name}: {e}") from e

        self._fsync_directory(target_path.parent)
        logger.debug(f"Replaced {target_path.name} with {source_path.name}")

    @staticmethod
    def _fsync_directory(directory: Path) -> None:
        if os.name != "posix":
            return
        try:
            fd = os.open(str(directory), os.O_RDONLY)
            try:
                os.fsync(fd)
            finally:
                os.close(fd)
        except OSError as e:
            logger.debug(f"Directory fsync skipped for {directory}: {e}")

    def destroy_store(self, path: Path) -> None:
        try:
            for file in (path, *side_files(path)):
                file.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to destroy store {path.name}: {e}") from e
