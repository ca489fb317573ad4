"""Unit tests for the error hierarchy."""

from __future__ import annotations

from pathlib import Path

import pytest

from data_manager.core.errors import (
    DataManagerError,
    FileLockError,
    MigrationError,
    MigrationStepError,
    PackagingDefectError,
    StorageError,
    StoreIncompatibleError,
    StoreLoadError,
    StoreReplaceError,
    sanitize_path_for_error,
)
from data_manager.core.migrations import MigrationStep


@pytest.mark.unit
class TestErrorMessages:
    """Error messages name files, never full paths."""

    def test_sanitize_path(self) -> None:
        assert sanitize_path_for_error("/home/someone/data/Notes.sqlite") == "Notes.sqlite"
        assert sanitize_path_for_error(Path("/var/lib/Notes.sqlite")) == "Notes.sqlite"

    def test_step_error(self) -> None:
        error = MigrationStepError(MigrationStep(2, 3), "constraint failed")

        assert str(error) == "Failed attempting to migrate from v2 to v3: constraint failed"
        assert error.step == MigrationStep(2, 3)

    def test_replace_error_keeps_full_scratch_path(self) -> None:
        error = StoreReplaceError("/data/Notes.sqlite", "/tmp/abc.scratch.sqlite", "EXDEV")

        assert "/data" not in str(error)
        assert "abc.scratch.sqlite" in str(error)
        assert error.scratch_path == Path("/tmp/abc.scratch.sqlite")

    def test_load_error(self) -> None:
        error = StoreLoadError("/data/Notes.sqlite", "incompatible")

        assert str(error) == "Failed to load persistent store Notes.sqlite: incompatible"

    def test_lock_error_default_message(self) -> None:
        error = FileLockError("/data/Notes.sqlite.migration.lock", 2.0)

        assert error.message == (
            "Failed to acquire file lock at Notes.sqlite.migration.lock after 2.0s"
        )


@pytest.mark.unit
class TestHierarchy:
    """Tests for exception inheritance."""

    @pytest.mark.parametrize(
        "error",
        [
            PackagingDefectError("Notes 2.json", "missing"),
            MigrationStepError(MigrationStep(1, 2), "failed"),
            StoreReplaceError("a", "b", "failed"),
        ],
    )
    def test_migration_errors(self, error: DataManagerError) -> None:
        assert isinstance(error, MigrationError)

    def test_storage_errors(self) -> None:
        assert isinstance(StoreLoadError("a", "b"), StorageError)
        assert isinstance(StoreIncompatibleError("a", 2), StorageError)

    def test_everything_is_data_manager_error(self) -> None:
        assert issubclass(FileLockError, DataManagerError)
        assert issubclass(MigrationError, DataManagerError)
        assert issubclass(StorageError, DataManagerError)
