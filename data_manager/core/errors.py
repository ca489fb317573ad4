"""Custom exceptions for the data manager."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from data_manager.core.migrations import MigrationStep


def sanitize_path_for_error(path: str | Path) -> str:
    """Extract only the filename from a path for safe error messages.

    Args:
        path: Full path or filename.

    Returns:
        Just the filename portion.
    """
    if isinstance(path, Path):
        return path.name
    return Path(path).name


class DataManagerError(Exception):
    """Base exception for all data manager errors."""

    pass


class ValidationError(DataManagerError):
    """Raised when input validation fails."""

    pass


class ConfigurationError(DataManagerError):
    """Raised when configuration is invalid."""

    pass


class StorageError(DataManagerError):
    """Raised when store operations fail."""

    pass


class StoreLoadError(StorageError):
    """Raised when the persistent store cannot be opened after migration."""

    def __init__(self, store_path: str | Path, reason: str) -> None:
        self.store_path = Path(store_path)
        self.reason = reason
        super().__init__(
            f"Failed to load persistent store {sanitize_path_for_error(store_path)}: {reason}"
        )


class StoreIncompatibleError(StorageError):
    """Raised when a store is opened with a schema it does not match."""

    def __init__(self, store_path: str | Path, version: int) -> None:
        self.store_path = Path(store_path)
        self.version = version
        super().__init__(
            f"Store {sanitize_path_for_error(store_path)} is not compatible "
            f"with schema version {version}"
        )


# =============================================================================
# Cross-Process Locking Error
# =============================================================================


class FileLockError(DataManagerError):
    """Raised when cross-process file lock cannot be acquired."""

    def __init__(
        self,
        lock_path: str,
        timeout: float,
        message: str | None = None,
    ) -> None:
        self.lock_path = lock_path
        self.timeout = timeout
        safe_name = sanitize_path_for_error(lock_path)
        self.message = message or f"Failed to acquire file lock at {safe_name} after {timeout}s"
        super().__init__(self.message)


# =============================================================================
# Migration Errors
# =============================================================================


class MigrationError(DataManagerError):
    """Raised when a store migration fails."""

    pass


class PackagingDefectError(MigrationError):
    """Raised when a bundled schema or mapping is missing or unreadable.

    The shipped resources are internally inconsistent; retrying cannot help.
    """

    def __init__(self, resource: str, reason: str) -> None:
        self.resource = resource
        self.reason = reason
        super().__init__(f"Packaging defect in '{resource}': {reason}")


class MigrationStepError(MigrationError):
    """Raised when the engine fails to migrate a single step.

    The original store is untouched: every write of the failed step went to
    a scratch store, which has been destroyed.
    """

    def __init__(self, step: MigrationStep, reason: str) -> None:
        self.step = step
        self.reason = reason
        super().__init__(
            f"Failed attempting to migrate from v{step.source_version} "
            f"to v{step.destination_version}: {reason}"
        )


class StoreReplaceError(MigrationError):
    """Raised when the final atomic replace fails.

    The target store is untouched and the migrated scratch store is kept at
    ``scratch_path`` so that a retry or manual recovery remains possible.
    """

    def __init__(self, store_path: str | Path, scratch_path: str | Path, reason: str) -> None:
        self.store_path = Path(store_path)
        self.scratch_path = Path(scratch_path)
        self.reason = reason
        super().__init__(
            f"Failed to replace store {sanitize_path_for_error(store_path)} "
            f"with migrated copy {sanitize_path_for_error(scratch_path)}: {reason}"
        )


class MigrationInProgressError(MigrationError):
    """Raised when a migration run is started while another is executing."""

    pass
