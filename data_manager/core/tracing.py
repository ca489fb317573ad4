"""Migration run tracing and timing utilities.

Tracks which migration run the current thread is executing so that log lines
emitted deep inside the store engine can be attributed to a run and a store.
Uses contextvars, so the context is local to the worker executing the run.

Usage:
    from data_manager.core.tracing import TimingContext, migration_context

    with migration_context(store_path) as ctx:
        timing = TimingContext()
        with timing.measure("v1->v2"):
            ...
        print(f"Run {ctx.run_id} took {timing.total_ms():.2f}ms")
"""

from __future__ import annotations

import contextvars
import time
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from contextvars import Token

from data_manager.core.utils import utc_now


@dataclass
class MigrationRunContext:
    """Context information for one migration run.

    Attributes:
        run_id: Unique identifier for the run (first 12 chars of a UUID).
        store_name: File name of the store being migrated.
        started_at: When the run started.
    """

    run_id: str
    store_name: str
    started_at: datetime

    @classmethod
    def create(cls, store_path: str | Path) -> MigrationRunContext:
        """Create a new run context with an auto-generated ID."""
        return cls(
            run_id=uuid.uuid4().hex[:12],
            store_name=Path(store_path).name,
            started_at=utc_now(),
        )

    def elapsed_ms(self) -> float:
        """Elapsed time since the run started, in milliseconds."""
        return (utc_now() - self.started_at).total_seconds() * 1000


_context: contextvars.ContextVar[MigrationRunContext | None] = contextvars.ContextVar(
    "migration_run_context", default=None
)


def get_current_context() -> MigrationRunContext | None:
    """Get the current migration run context, or None outside a run."""
    return _context.get()


def set_context(ctx: MigrationRunContext) -> Token[MigrationRunContext | None]:
    """Set the current run context and return the reset token."""
    return _context.set(ctx)


def clear_context(token: Token[MigrationRunContext | None]) -> None:
    """Reset the context to its previous value."""
    _context.reset(token)


@contextmanager
def migration_context(store_path: str | Path) -> Generator[MigrationRunContext, None, None]:
    """Context manager that marks the enclosed block as one migration run.

    Args:
        store_path: Path of the store being migrated.

    Yields:
        The created MigrationRunContext.
    """
    ctx = MigrationRunContext.create(store_path)
    token = set_context(ctx)
    try:
        yield ctx
    finally:
        clear_context(token)


@dataclass
class TimingContext:
    """Measures the duration of named operations within a run.

    Attributes:
        timings: Operation name to duration in milliseconds.
        start: Start time of the context (perf_counter value).
    """

    timings: dict[str, float] = field(default_factory=dict)
    start: float = field(default_factory=time.perf_counter)

    @contextmanager
    def measure(self, name: str) -> Generator[None, None, None]:
        """Measure the duration of a named operation."""
        t0 = time.perf_counter()
        try:
            yield
        finally:
            self.timings[name] = (time.perf_counter() - t0) * 1000

    def total_ms(self) -> float:
        """Total elapsed time since context creation, in milliseconds."""
        return (time.perf_counter() - self.start) * 1000

    def summary(self) -> dict[str, float]:
        """All named timings plus 'total_ms' and unaccounted 'other_ms'."""
        total = self.total_ms()
        measured = sum(self.timings.values())
        return {
            **self.timings,
            "total_ms": total,
            "other_ms": max(0.0, total - measured),
        }


def format_context_prefix() -> str:
    """Format the current run context as a log prefix.

    Returns:
        A string like "[run=abc123][store=Notes.sqlite]" or "" outside a run.
    """
    ctx = get_current_context()
    if ctx is None:
        return ""
    return f"[run={ctx.run_id}][store={ctx.store_name}]"
