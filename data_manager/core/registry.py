"""Schema model registry.

Resolves schema version numbers to bundled schema descriptions and caches
them for the lifetime of the process. The key space is the set of versions
the application ships, so nothing is ever evicted.

Resource layout for a container named ``Notes``::

    Notes.schemas/Notes.arrow      version 1 (compiled, preferred)
    Notes.schemas/Notes.json       version 1 (document)
    Notes.schemas/Notes 2.json     version 2
    Notes.mappings/*.json          mappings between versions
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable

from data_manager.core.errors import PackagingDefectError, ValidationError
from data_manager.core.mapping import MappingCatalog, MappingModel
from data_manager.core.models import StoreMetadata
from data_manager.core.resources import ResourceBundle
from data_manager.core.schema import SchemaDescription, load_schema_file

logger = logging.getLogger(__name__)

# Compiled form first, mirroring optimized-then-plain model lookup
SCHEMA_EXTENSIONS = ("arrow", "json")


class SchemaModelRegistry:
    """Loads and caches schema descriptions by version.

    Example:
        registry = SchemaModelRegistry(ResourceBundle(Path("resources")), "Notes")
        v2 = registry.load_schema(2)
        current = registry.find_compatible_schema(metadata, [1, 2])
    """

    def __init__(self, bundle: ResourceBundle, container_name: str) -> None:
        if not container_name:
            raise ValidationError("Container name must not be empty")
        self._bundle = bundle
        self._container_name = container_name
        self._schemas: dict[int, SchemaDescription] = {}
        self._lock = threading.Lock()
        self._mappings = MappingCatalog(bundle, self.mapping_directory)

    @property
    def container_name(self) -> str:
        return self._container_name

    @property
    def schema_directory(self) -> str:
        return f"{self._container_name}.schemas"

    @property
    def mapping_directory(self) -> str:
        return f"{self._container_name}.mappings"

    def resource_name(self, version: int) -> str:
        """Resource name for a schema version ("Notes", "Notes 2", ...)."""
        if version == 1:
            return self._container_name
        return f"{self._container_name} {version}"

    def load_schema(self, version: int) -> SchemaDescription:
        """Load the schema description for a version.

        Args:
            version: Schema version, 1 being the baseline.

        Returns:
            The cached SchemaDescription.

        Raises:
            PackagingDefectError: If the resource is missing, unreadable, or
                declares a different version.
        """
        if version < 1:
            raise ValidationError(f"Schema versions start at 1, got {version}")

        with self._lock:
            cached = self._schemas.get(version)
            if cached is not None:
                return cached

            name = self.resource_name(version)
            path = None
            for extension in SCHEMA_EXTENSIONS:
                path = self._bundle.find_resource(name, extension, self.schema_directory)
                if path is not None:
                    break
            if path is None:
                raise PackagingDefectError(
                    f"{self.schema_directory}/{name}", "unable to find model in bundle"
                )

            schema = load_schema_file(path)
            if schema.version_identifier is None:
                schema = SchemaDescription(
                    list(schema), version_identifier=version, source=schema.source
                )
            elif schema.version_identifier != version:
                raise PackagingDefectError(
                    path.name,
                    f"declares version {schema.version_identifier}, expected {version}",
                )

            self._schemas[version] = schema
            logger.debug(f"Loaded schema v{version} from {path.name}")
            return schema

    def find_compatible_schema(
        self,
        metadata: StoreMetadata,
        candidate_versions: Iterable[int],
    ) -> SchemaDescription | None:
        """First candidate schema structurally compatible with a store.

        Args:
            metadata: The store's metadata.
            candidate_versions: Versions to try, in order.

        Returns:
            The matching schema, or None if the store predates all of them.
        """
        for version in candidate_versions:
            schema = self.load_schema(version)
            if schema.is_compatible_with(metadata):
                return schema
        return None

    def find_mapping(
        self, source: SchemaDescription, destination: SchemaDescription
    ) -> MappingModel:
        """Mapping between two loaded schemas.

        Raises:
            PackagingDefectError: If no bundled mapping covers the pair, or
                the mapping refers to unknown entities or attributes.
        """
        mapping = self._mappings.find_mapping(source, destination)
        if mapping is None:
            raise PackagingDefectError(
                self.mapping_directory,
                f"mapping model not found for v{source.version_identifier} "
                f"-> v{destination.version_identifier}",
            )
        mapping.validate_against(source, destination)
        return mapping

    def mapping_versions(self) -> list[tuple[int, int]]:
        """(source, destination) version pairs of every bundled mapping, sorted."""
        return sorted(
            (mapping.source_version, mapping.destination_version)
            for mapping in self._mappings.mappings()
        )
