"""Store migration manager.

Steps a persisted store through the host's ordered migration plan. Every
intermediate result is written to a uniquely named scratch store; the real
store is touched exactly once, by the final atomic replace.

State transitions for one run:
    IDLE -> CHECKING_REQUIREMENT
    CHECKING_REQUIREMENT -> NOT_REQUIRED (no store, or already current)
    CHECKING_REQUIREMENT -> EXECUTING
    EXECUTING -> COMPLETED | FAILED
"""

from __future__ import annotations

import logging
import tempfile
import threading
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Protocol, runtime_checkable

from data_manager.core.errors import (
    DataManagerError,
    MigrationError,
    MigrationInProgressError,
    MigrationStepError,
    StorageError,
    StoreReplaceError,
    ValidationError,
    sanitize_path_for_error,
)
from data_manager.core.locking import ProcessLockManager, lock_path_for
from data_manager.core.models import StoreMetadata
from data_manager.core.registry import SchemaModelRegistry
from data_manager.core.tracing import TimingContext, migration_context
from data_manager.ports.store import StoreEngineProtocol

logger = logging.getLogger(__name__)

SCRATCH_SUFFIX = ".scratch.sqlite"


@dataclass(frozen=True)
class MigrationStep:
    """One hop of the migration plan, from one schema version to a later one."""

    source_version: int
    destination_version: int

    def __post_init__(self) -> None:
        if self.source_version < 1 or self.destination_version < 1:
            raise ValidationError(
                f"Schema versions start at 1, got {self.source_version}"
                f" -> {self.destination_version}"
            )
        if self.destination_version <= self.source_version:
            raise ValidationError(
                f"Migration step must move forward, got v{self.source_version}"
                f" -> v{self.destination_version}"
            )

    def __str__(self) -> str:
        return f"v{self.source_version}->v{self.destination_version}"


@runtime_checkable
class MigrationSource(Protocol):
    """Supplies the ordered migration plan."""

    def migration_steps(self) -> list[MigrationStep]:
        """Steps in execution order; the last destination is the current version."""
        ...


class StaticMigrationSource:
    """MigrationSource over a fixed list of steps."""

    def __init__(self, steps: Sequence[MigrationStep]) -> None:
        self._steps = list(steps)

    def migration_steps(self) -> list[MigrationStep]:
        return list(self._steps)


class MigrationState(Enum):
    """States of a migration run."""

    IDLE = "idle"
    CHECKING_REQUIREMENT = "checking_requirement"
    NOT_REQUIRED = "not_required"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS: dict[MigrationState, frozenset[MigrationState]] = {
    MigrationState.IDLE: frozenset({MigrationState.CHECKING_REQUIREMENT}),
    MigrationState.CHECKING_REQUIREMENT: frozenset(
        {MigrationState.NOT_REQUIRED, MigrationState.EXECUTING, MigrationState.FAILED}
    ),
    MigrationState.NOT_REQUIRED: frozenset({MigrationState.CHECKING_REQUIREMENT}),
    MigrationState.EXECUTING: frozenset({MigrationState.COMPLETED, MigrationState.FAILED}),
    MigrationState.COMPLETED: frozenset({MigrationState.CHECKING_REQUIREMENT}),
    MigrationState.FAILED: frozenset({MigrationState.CHECKING_REQUIREMENT}),
}


@dataclass
class MigrationResult:
    """Outcome of migrate_store().

    Attributes:
        store_path: The migrated store.
        state: NOT_REQUIRED or COMPLETED.
        steps_executed: Steps that produced a scratch store, in order.
        steps_skipped: Steps that did not apply to this store.
        checkpointed: Whether the write-ahead log was folded in first.
        final_version: Schema version the store matches afterwards, if known.
        timings: Milliseconds per phase ("checkpoint", "v1->v2", "replace").
        run_id: Identifier used in log lines for this run.
    """

    store_path: Path
    state: MigrationState
    steps_executed: list[MigrationStep] = field(default_factory=list)
    steps_skipped: list[MigrationStep] = field(default_factory=list)
    checkpointed: bool = False
    final_version: int | None = None
    timings: dict[str, float] = field(default_factory=dict)
    run_id: str | None = None

    @property
    def migrated(self) -> bool:
        return bool(self.steps_executed)


class MigrationManager:
    """Runs the migration plan against a store.

    Example:
        manager = MigrationManager(registry, SQLiteStoreEngine(), source)
        if manager.requires_migration(store_path):
            result = manager.migrate_store(store_path)

    Thread Safety:
        One run at a time per manager. Starting a run while another is
        checking or executing raises MigrationInProgressError. Runs from other
        processes are excluded with a lock file beside the store.
    """

    def __init__(
        self,
        registry: SchemaModelRegistry,
        engine: StoreEngineProtocol,
        migration_source: MigrationSource | None = None,
        scratch_dir: Path | None = None,
        filelock_enabled: bool = True,
        filelock_timeout: float = 30.0,
        filelock_poll_interval: float = 0.1,
    ) -> None:
        """Initialize the manager.

        Args:
            registry: Resolves schema versions and mappings.
            engine: Store engine performing all file-level work.
            migration_source: Supplies the plan. Without one the plan is empty.
            scratch_dir: Where scratch stores are created. Defaults to the
                system temporary directory.
            filelock_enabled: Guard runs with a cross-process lock file.
            filelock_timeout: Seconds to wait for the lock file.
            filelock_poll_interval: Seconds between lock attempts.
        """
        self.registry = registry
        self.engine = engine
        self.migration_source = migration_source
        self.scratch_dir = scratch_dir or Path(tempfile.gettempdir())
        self._filelock_enabled = filelock_enabled
        self._filelock_timeout = filelock_timeout
        self._filelock_poll_interval = filelock_poll_interval

        self._state = MigrationState.IDLE
        self._state_lock = threading.Lock()
        self._process_locks: dict[Path, ProcessLockManager] = {}

    @property
    def state(self) -> MigrationState:
        with self._state_lock:
            return self._state

    def _transition(self, new_state: MigrationState) -> None:
        with self._state_lock:
            self._move(new_state)

    def _move(self, new_state: MigrationState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            raise MigrationInProgressError(
                f"Cannot move migration from {self._state.value} to {new_state.value}"
            )
        logger.debug(f"Migration state {self._state.value} -> {new_state.value}")
        self._state = new_state

    def _begin_run(self) -> None:
        with self._state_lock:
            if self._state in (MigrationState.CHECKING_REQUIREMENT, MigrationState.EXECUTING):
                raise MigrationInProgressError(
                    f"A migration run is already {self._state.value.replace('_', ' ')}"
                )
            self._move(MigrationState.CHECKING_REQUIREMENT)

    def migration_steps(self) -> list[MigrationStep]:
        if self.migration_source is None:
            return []
        return list(self.migration_source.migration_steps())

    def _process_lock(self, store_path: Path) -> ProcessLockManager:
        key = store_path.resolve()
        lock = self._process_locks.get(key)
        if lock is None:
            lock = ProcessLockManager(
                lock_path_for(store_path),
                timeout=self._filelock_timeout,
                poll_interval=self._filelock_poll_interval,
                enabled=self._filelock_enabled,
            )
            self._process_locks[key] = lock
        return lock

    # -------------------------------------------------------------------------
    # Requirement check
    # -------------------------------------------------------------------------

    def _is_current(self, metadata: StoreMetadata, steps: list[MigrationStep]) -> bool:
        latest = self.registry.load_schema(steps[-1].destination_version)
        return self.engine.is_compatible(latest, metadata)

    def requires_migration(self, store_path: Path) -> bool:
        """Whether the store at ``store_path`` is behind the latest schema.

        An unreadable or missing store needs no migration; it will be created
        fresh when opened.
        """
        steps = self.migration_steps()
        metadata = self.engine.read_store_metadata(store_path)
        if metadata is None or not steps:
            return False
        return not self._is_current(metadata, steps)

    # -------------------------------------------------------------------------
    # Migration
    # -------------------------------------------------------------------------

    def _new_scratch_path(self) -> Path:
        try:
            self.scratch_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(
                f"Cannot create scratch directory {sanitize_path_for_error(self.scratch_dir)}: "
                f"{e.strerror or e}"
            ) from e
        return self.scratch_dir / f"{uuid.uuid4().hex}{SCRATCH_SUFFIX}"

    def _discard_scratch(self, path: Path) -> None:
        try:
            self.engine.destroy_store(path)
        except DataManagerError as e:
            logger.warning(f"Could not remove scratch store {path.name}: {e}")

    def _checkpoint(
        self,
        store_path: Path,
        metadata: StoreMetadata,
        steps: list[MigrationStep],
        timing: TimingContext,
    ) -> bool:
        schema = self.registry.find_compatible_schema(
            metadata, [step.source_version for step in steps]
        )
        if schema is None:
            logger.debug("No plan schema matches the store, checkpoint skipped")
            return False
        with timing.measure("checkpoint"):
            self.engine.checkpoint_store(schema, store_path)
        return True

    def migrate_store(self, store_path: Path) -> MigrationResult:
        """Migrate the store at ``store_path`` to the latest schema version.

        Runs every applicable step of the plan in order, each writing a new
        scratch store, then swaps the last scratch store into place.

        Args:
            store_path: The store to migrate.

        Returns:
            What ran and how long it took.

        Raises:
            MigrationInProgressError: If this manager is already running.
            FileLockError: If another process holds the store's lock.
            PackagingDefectError: If a schema or mapping is missing.
            MigrationStepError: If a step failed. The store is untouched.
            StoreReplaceError: If the final swap failed. The store is
                untouched and the migrated scratch store is kept.
            StorageError: If a scratch store cannot be created.
            MigrationError: On any other unexpected failure.
        """
        store_path = Path(store_path)
        self._begin_run()
        try:
            with migration_context(store_path) as ctx, self._process_lock(store_path):
                result = self._run(store_path, ctx.run_id)
        except DataManagerError:
            self._transition(MigrationState.FAILED)
            raise
        except Exception as e:
            self._transition(MigrationState.FAILED)
            raise MigrationError(
                f"Migration of {store_path.name} failed unexpectedly: {e}"
            ) from e
        self._transition(result.state)
        return result

    def _run(self, store_path: Path, run_id: str) -> MigrationResult:
        steps = self.migration_steps()
        metadata = self.engine.read_store_metadata(store_path)
        result = MigrationResult(
            store_path=store_path, state=MigrationState.NOT_REQUIRED, run_id=run_id
        )
        if metadata is None or not steps:
            logger.info("Nothing to migrate")
            return result
        if self._is_current(metadata, steps):
            result.final_version = steps[-1].destination_version
            logger.info(f"Store already matches schema v{result.final_version}")
            return result

        self._transition(MigrationState.EXECUTING)
        result.state = MigrationState.COMPLETED
        timing = TimingContext()
        result.checkpointed = self._checkpoint(store_path, metadata, steps, timing)

        current_path = store_path
        current_metadata = metadata
        try:
            for step in steps:
                source_schema = self.registry.load_schema(step.source_version)
                destination_schema = self.registry.load_schema(step.destination_version)
                mapping = self.registry.find_mapping(source_schema, destination_schema)

                if not self.engine.is_compatible(source_schema, current_metadata):
                    logger.debug(f"Skipping {step}: store does not match v{step.source_version}")
                    result.steps_skipped.append(step)
                    continue

                destination_path = self._new_scratch_path()
                logger.info(f"Migrating {step} into scratch store {destination_path.name}")
                try:
                    with timing.measure(str(step)):
                        self.engine.migrate_store(
                            source_schema,
                            destination_schema,
                            mapping,
                            current_path,
                            destination_path,
                        )
                except Exception as e:
                    self._discard_scratch(destination_path)
                    raise MigrationStepError(step, str(e)) from e

                if current_path != store_path:
                    self._discard_scratch(current_path)
                current_path = destination_path

                migrated_metadata = self.engine.read_store_metadata(current_path)
                if migrated_metadata is None:
                    raise MigrationStepError(step, "migrated store has no readable metadata")
                current_metadata = migrated_metadata
                result.steps_executed.append(step)

            if current_path != store_path:
                try:
                    with timing.measure("replace"):
                        self.engine.replace_store(store_path, current_path)
                except Exception as e:
                    raise StoreReplaceError(store_path, current_path, str(e)) from e
                self._discard_scratch(current_path)
        except StoreReplaceError as e:
            logger.error(f"{e}; migrated store kept at {e.scratch_path}")
            raise
        except Exception:
            if current_path != store_path:
                self._discard_scratch(current_path)
            raise

        if not result.steps_executed:
            logger.warning(
                "No migration step applies to this store; it matches no known schema version"
            )
        else:
            result.final_version = current_metadata.version_identifier
        result.timings = timing.summary()
        logger.info(
            f"Migration finished: {len(result.steps_executed)} executed, "
            f"{len(result.steps_skipped)} skipped in {timing.total_ms():.1f}ms"
        )
        return result

    # -------------------------------------------------------------------------
    # Preflight
    # -------------------------------------------------------------------------

    def preflight(self) -> list[str]:
        """Load every schema and mapping the plan references.

        Returns:
            Warnings about the shape of the plan (gaps, empty plan).

        Raises:
            PackagingDefectError: On the first missing or invalid resource.
        """
        steps = self.migration_steps()
        if not steps:
            return ["Migration plan is empty"]

        warnings = []
        for index, step in enumerate(steps):
            source_schema = self.registry.load_schema(step.source_version)
            destination_schema = self.registry.load_schema(step.destination_version)
            self.registry.find_mapping(source_schema, destination_schema)
            if index > 0 and steps[index - 1].destination_version != step.source_version:
                warnings.append(
                    f"Step {step} does not continue from {steps[index - 1]}"
                )
        logger.info(f"Preflight checked {len(steps)} step(s), {len(warnings)} warning(s)")
        return warnings
