"""Command line tools for inspecting and migrating a store."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, NoReturn

if TYPE_CHECKING:
    from data_manager.manager import DataManager

logger = logging.getLogger(__name__)


def parse_plan(text: str) -> list[tuple[int, int]]:
    """Parse a plan such as "1-2,2-3" into version pairs."""
    pairs = []
    for chunk in text.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        source, sep, destination = chunk.partition("-")
        if not sep:
            raise argparse.ArgumentTypeError(f"Invalid step '{chunk}', expected SOURCE-DEST")
        try:
            pairs.append((int(source), int(destination)))
        except ValueError as e:
            raise argparse.ArgumentTypeError(f"Invalid step '{chunk}': {e}") from e
    if not pairs:
        raise argparse.ArgumentTypeError("Migration plan is empty")
    return pairs


def _build_manager(args: argparse.Namespace) -> DataManager:
    """Create a DataManager for the store and plan named on the command line."""
    from data_manager.config import get_settings
    from data_manager.core.logging import configure_logging
    from data_manager.core.migrations import MigrationStep, StaticMigrationSource
    from data_manager.manager import DataManager

    settings = get_settings()
    updates = {}
    if getattr(args, "store", None):
        updates["store_path"] = Path(args.store)
    if getattr(args, "resources", None):
        updates["resource_path"] = Path(args.resources)
    if getattr(args, "container", None):
        updates["container_name"] = args.container
    if updates:
        settings = settings.model_copy(update=updates)

    level = "DEBUG" if getattr(args, "verbose", False) else settings.log_level
    configure_logging(level=level, json_format=settings.log_json)

    manager = DataManager(settings=settings)
    pairs = args.plan or manager.registry.mapping_versions()
    manager.migrations.migration_source = StaticMigrationSource(
        [MigrationStep(s, d) for s, d in pairs]
    )
    return manager


def run_status(args: argparse.Namespace) -> int:
    """Show the store's schema version and whether it needs migration.

    Args:
        args: Parsed command line arguments.

    Returns:
        Exit code (0 for success, 1 for error).
    """
    from data_manager.core.errors import DataManagerError

    try:
        manager = _build_manager(args)
    except DataManagerError as e:
        print(f"Error: {e}")
        return 1

    with manager:
        settings = manager.settings
        migrations = manager.migrations
        steps = migrations.migration_steps()

        print("Data Manager Status")
        print(f"Container: {settings.container_name}")
        print(f"Store path: {settings.store_path}")
        print(f"Migration plan: {', '.join(str(s) for s in steps) or '(empty)'}")

        try:
            metadata = migrations.engine.read_store_metadata(settings.store_path)
            if metadata is None:
                print("\nStore not found or unreadable; it will be created on first load.")
                return 0

            versions = sorted(
                {s.source_version for s in steps} | {s.destination_version for s in steps}
            )
            schema = migrations.registry.find_compatible_schema(metadata, versions)
            current = f"v{schema.version_identifier}" if schema else "unknown"
            print(f"Store schema version: {current}")
            print(f"Store created: {metadata.created_at}")

            if migrations.requires_migration(settings.store_path):
                print("\nMigration required.")
            else:
                print("\nStore is up to date.")
            return 0
        except DataManagerError as e:
            logger.error(f"Status failed: {e}", exc_info=args.verbose)
            print(f"\nError: {e}")
            return 1


def run_migrate(args: argparse.Namespace) -> int:
    """Migrate the configured store to the latest schema version.

    Args:
        args: Parsed command line arguments.

    Returns:
        Exit code (0 for success, 1 for error).
    """
    from data_manager.core.errors import DataManagerError, StoreReplaceError

    try:
        manager = _build_manager(args)
    except DataManagerError as e:
        print(f"Error: {e}")
        return 1

    with manager:
        settings = manager.settings
        migrations = manager.migrations
        print("Data Manager Migration Tool")
        print(f"Store path: {settings.store_path}")

        try:
            warnings = migrations.preflight()
            for warning in warnings:
                print(f"Warning: {warning}")

            if not migrations.requires_migration(settings.store_path):
                print("\nNo migration required. Store is up to date.")
                return 0

            steps = migrations.migration_steps()
            print(f"\nPlan ({len(steps)} step(s)):")
            for step in steps:
                print(f"  - {step}")

            if args.dry_run:
                print("\n[DRY RUN] Would migrate the store with the plan above.")
                print("Run without --dry-run to apply.")
                return 0

            print("\nMigrating...")
            result = asyncio.run(manager.migrate_store_if_needed())
        except StoreReplaceError as e:
            print(f"\nError: {e}")
            print(f"The migrated store was kept at {e.scratch_path} for recovery.")
            return 1
        except DataManagerError as e:
            logger.error(f"Migration failed: {e}", exc_info=args.verbose)
            print(f"\nError: {e}")
            print("The original store was left unchanged.")
            return 1

        if result is None or not result.steps_executed:
            print("\nNo migration step applied to this store.")
            return 0

        print(f"\nApplied {len(result.steps_executed)} step(s):")
        for step in result.steps_executed:
            print(f"  - {step} ({result.timings.get(str(step), 0.0):.1f}ms)")
        print(f"\nCurrent version: v{result.final_version}")
        return 0


def run_validate(args: argparse.Namespace) -> int:
    """Check that every schema and mapping of the plan is bundled and valid."""
    from data_manager.core.errors import DataManagerError

    try:
        manager = _build_manager(args)
    except DataManagerError as e:
        print(f"Error: {e}")
        return 1

    with manager:
        try:
            warnings = manager.migrations.preflight()
        except DataManagerError as e:
            print(f"Invalid: {e}")
            return 1

    for warning in warnings:
        print(f"Warning: {warning}")
    print("All schemas and mappings are valid.")
    return 0


def run_compile_schema(args: argparse.Namespace) -> int:
    """Compile JSON schema documents into the Arrow IPC form."""
    from data_manager.core.errors import PackagingDefectError
    from data_manager.core.schema import compile_schema

    output = Path(args.output) if args.output else None
    if output is not None and len(args.sources) > 1:
        print("Error: --output can only be used with a single source")
        return 1

    for source in args.sources:
        try:
            target = compile_schema(Path(source), output)
        except PackagingDefectError as e:
            print(f"Error: {e}")
            return 1
        print(f"Compiled {source} -> {target}")
    return 0


def run_version() -> None:
    """Print version information."""
    from data_manager import __version__

    print(f"data-manager {__version__}")


def _add_store_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--store", help="Store path (overrides DATA_MANAGER_STORE_PATH)")
    parser.add_argument(
        "--resources", help="Resource directory (overrides DATA_MANAGER_RESOURCE_PATH)"
    )
    parser.add_argument(
        "--container", help="Container name (overrides DATA_MANAGER_CONTAINER_NAME)"
    )
    parser.add_argument(
        "--plan",
        type=parse_plan,
        default=None,
        help="Migration plan such as 1-2,2-3 (default: every bundled mapping)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="data-manager",
        description="Schema migration tools for persistent stores",
    )
    parser.add_argument(
        "--version",
        "-V",
        action="store_true",
        help="Show version and exit",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        description="Available commands",
    )

    status_parser = subparsers.add_parser("status", help="Show store schema version")
    _add_store_arguments(status_parser)

    migrate_parser = subparsers.add_parser("migrate", help="Migrate the store if needed")
    _add_store_arguments(migrate_parser)
    migrate_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Preview the migration without applying it",
    )

    validate_parser = subparsers.add_parser(
        "validate", help="Check bundled schemas and mappings"
    )
    _add_store_arguments(validate_parser)

    compile_parser = subparsers.add_parser(
        "compile-schema", help="Compile JSON schemas into Arrow IPC files"
    )
    compile_parser.add_argument("sources", nargs="+", help="JSON schema documents")
    compile_parser.add_argument("-o", "--output", help="Output path (single source only)")

    subparsers.add_parser("version", help="Show version information")
    return parser


def main(argv: list[str] | None = None) -> NoReturn:
    """Main entry point with subcommand support."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version or args.command == "version":
        run_version()
        sys.exit(0)

    if args.command == "status":
        sys.exit(run_status(args))
    elif args.command == "migrate":
        sys.exit(run_migrate(args))
    elif args.command == "validate":
        sys.exit(run_validate(args))
    elif args.command == "compile-schema":
        sys.exit(run_compile_schema(args))

    parser.print_help()
    sys.exit(0)


if __name__ == "__main__":
    main()
