"""Declarative mappings between two schema versions.

A mapping tells the store engine how to turn rows shaped by a source schema
into rows shaped by a destination schema. Mappings ship as JSON resources::

    {
      "source_version": 1,
      "destination_version": 2,
      "entities": [
        {
          "name": "Note",
          "source": "Note",
          "attributes": {
            "body": {"source": "text"},
            "title": {"source": "title", "function": "utf8_trim_whitespace"},
            "pinned": {"value": false}
          }
        },
        {"name": "Tag", "source": null}
      ]
    }

Resolution rules:
    - A destination entity without a rule copies the same-named source
      entity, or starts empty if there is none.
    - An attribute without a rule copies the same-named source attribute,
      else takes the destination default, else null.
    - ``function`` names a pyarrow.compute function applied to the source
      column before it is cast to the destination type.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any

import pyarrow as pa
import pyarrow.compute as pc
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, model_validator

from data_manager.core.errors import PackagingDefectError
from data_manager.core.resources import ResourceBundle
from data_manager.core.schema import (
    PRIMARY_KEY_COLUMN,
    AttributeDescription,
    EntityDescription,
    SchemaDescription,
)

logger = logging.getLogger(__name__)


class AttributeRule(BaseModel):
    """How one destination attribute is populated."""

    source: str | None = None
    value: Any = None
    function: str | None = None

    @model_validator(mode="after")
    def _check_exclusive(self) -> AttributeRule:
        if self.source is not None and "value" in self.model_fields_set:
            raise ValueError("An attribute rule takes either 'source' or 'value', not both")
        if self.function is not None and self.source is None:
            raise ValueError("'function' requires a 'source' attribute")
        return self


class EntityRule(BaseModel):
    """How one destination entity is populated."""

    name: str
    source: str | None = None
    attributes: dict[str, AttributeRule] = Field(default_factory=dict)

    @property
    def source_entity(self) -> str | None:
        # An omitted "source" key means "same name"; an explicit null means none
        if "source" not in self.model_fields_set:
            return self.name
        return self.source


class MappingDocument(BaseModel):
    """A JSON mapping document."""

    source_version: int = Field(ge=1)
    destination_version: int = Field(ge=1)
    entities: list[EntityRule] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_direction(self) -> MappingDocument:
        if self.destination_version <= self.source_version:
            raise ValueError("destination_version must be greater than source_version")
        names = [rule.name for rule in self.entities]
        if len(names) != len(set(names)):
            raise ValueError("Duplicate entity rules")
        return self


class MappingModel:
    """A loaded mapping between two schema versions."""

    def __init__(self, document: MappingDocument, source: str | None = None) -> None:
        self._document = document
        self._rules = {rule.name: rule for rule in document.entities}
        self.source = source

    def __repr__(self) -> str:
        return f"MappingModel(v{self.source_version} -> v{self.destination_version})"

    @property
    def source_version(self) -> int:
        return self._document.source_version

    @property
    def destination_version(self) -> int:
        return self._document.destination_version

    @classmethod
    def from_document(cls, data: dict[str, Any], source: str | None = None) -> MappingModel:
        return cls(MappingDocument.model_validate(data), source=source)

    def matches(self, source: SchemaDescription, destination: SchemaDescription) -> bool:
        """Whether this mapping transforms ``source``-shaped data into ``destination``."""
        return (
            source.version_identifier == self.source_version
            and destination.version_identifier == self.destination_version
        )

    # -------------------------------------------------------------------------
    # Rule resolution
    # -------------------------------------------------------------------------

    def source_entity_name(
        self, destination_entity: str, source_schema: SchemaDescription
    ) -> str | None:
        """Name of the source entity feeding a destination entity, if any."""
        rule = self._rules.get(destination_entity)
        if rule is not None:
            return rule.source_entity
        return destination_entity if destination_entity in source_schema else None

    def _attribute_rule(
        self,
        destination_entity: str,
        attribute: AttributeDescription,
        source_entity: EntityDescription | None,
    ) -> AttributeRule | None:
        rule = self._rules.get(destination_entity)
        if rule is not None and attribute.name in rule.attributes:
            return rule.attributes[attribute.name]
        if source_entity is not None and source_entity.attribute(attribute.name) is not None:
            return AttributeRule(source=attribute.name)
        return None

    def validate_against(self, source: SchemaDescription, destination: SchemaDescription) -> None:
        """Check every rule refers to entities and attributes that exist.

        Raises:
            PackagingDefectError: On the first dangling reference.
        """
        resource = self.source or repr(self)
        for rule in self._document.entities:
            destination_entity = destination.entity(rule.name)
            if destination_entity is None:
                raise PackagingDefectError(resource, f"unknown destination entity '{rule.name}'")
            source_entity = None
            if rule.source_entity is not None:
                source_entity = source.entity(rule.source_entity)
                if source_entity is None:
                    raise PackagingDefectError(
                        resource, f"unknown source entity '{rule.source_entity}'"
                    )
            for attr_name, attr_rule in rule.attributes.items():
                if destination_entity.attribute(attr_name) is None:
                    raise PackagingDefectError(
                        resource, f"unknown destination attribute '{rule.name}.{attr_name}'"
                    )
                if attr_rule.source is not None:
                    if source_entity is None or source_entity.attribute(attr_rule.source) is None:
                        raise PackagingDefectError(
                            resource, f"unknown source attribute '{attr_rule.source}'"
                        )
                if attr_rule.function is not None:
                    try:
                        pc.get_function(attr_rule.function)
                    except (KeyError, pa.ArrowException) as e:
                        raise PackagingDefectError(
                            resource, f"unknown compute function '{attr_rule.function}'"
                        ) from e

    # -------------------------------------------------------------------------
    # Transformation
    # -------------------------------------------------------------------------

    def transform(
        self,
        destination_entity: EntityDescription,
        source_entity: EntityDescription | None,
        source_rows: pa.Table | None,
    ) -> pa.Table:
        """Produce destination rows for one entity.

        Args:
            destination_entity: Entity being populated.
            source_entity: Entity feeding it, or None for a new entity.
            source_rows: Rows of the source entity (may carry the primary
                key column), or None for a new entity.

        Returns:
            Table with the destination entity's schema, preceded by the
            primary key column when the source rows carried one.

        Raises:
            ValueError: If a non-optional attribute would receive nulls.
            pyarrow.ArrowException: If a value cannot be converted.
        """
        if source_rows is None or source_entity is None:
            return destination_entity.arrow_schema.empty_table()

        num_rows = source_rows.num_rows
        names: list[str] = []
        columns: list[Any] = []

        if PRIMARY_KEY_COLUMN in source_rows.column_names:
            names.append(PRIMARY_KEY_COLUMN)
            columns.append(source_rows.column(PRIMARY_KEY_COLUMN))

        for attribute in destination_entity.attributes:
            rule = self._attribute_rule(destination_entity.name, attribute, source_entity)
            column = self._resolve_column(attribute, rule, source_rows, num_rows)
            column = column.cast(attribute.arrow_type)
            if not attribute.optional and column.null_count > 0:
                raise ValueError(
                    f"{column.null_count} row(s) of {destination_entity.name} have no value "
                    f"for non-optional attribute '{attribute.name}'"
                )
            names.append(attribute.name)
            columns.append(column)

        columns = [pa.chunked_array([c]) if isinstance(c, pa.Array) else c for c in columns]

        return pa.Table.from_arrays(columns, names=names)

    @staticmethod
    def _resolve_column(
        attribute: AttributeDescription,
        rule: AttributeRule | None,
        source_rows: pa.Table,
        num_rows: int,
    ) -> pa.Array | pa.ChunkedArray:
        if rule is not None and rule.source is not None:
            column = source_rows.column(rule.source)
            if rule.function is not None:
                column = pc.call_function(rule.function, [column])
            return column
        if rule is not None and "value" in rule.model_fields_set:
            value = rule.value
        else:
            value = attribute.default
        if value is None:
            return pa.nulls(num_rows, type=attribute.arrow_type)
        return pa.array([value] * num_rows)


class MappingCatalog:
    """All mappings bundled for a container, loaded on first use."""

    def __init__(self, bundle: ResourceBundle, subdirectory: str) -> None:
        self._bundle = bundle
        self._subdirectory = subdirectory
        self._mappings: list[MappingModel] | None = None
        self._lock = threading.Lock()

    def _load_all(self) -> list[MappingModel]:
        with self._lock:
            if self._mappings is None:
                mappings = []
                for path in self._bundle.list_resources("json", self._subdirectory):
                    mappings.append(load_mapping_file(path))
                logger.debug(f"Loaded {len(mappings)} mapping(s) from {self._subdirectory}")
                self._mappings = mappings
            return self._mappings

    def mappings(self) -> list[MappingModel]:
        return list(self._load_all())

    def find_mapping(
        self, source: SchemaDescription, destination: SchemaDescription
    ) -> MappingModel | None:
        """Find the mapping for a (source, destination) schema pair."""
        for mapping in self._load_all():
            if mapping.matches(source, destination):
                return mapping
        return None


def load_mapping_file(path: Path) -> MappingModel:
    """Load a mapping resource.

    Raises:
        PackagingDefectError: If the file cannot be read or parsed.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return MappingModel.from_document(data, source=path.name)
    except (OSError, ValueError, PydanticValidationError) as e:
        raise PackagingDefectError(path.name, f"unable to load mapping: {e}") from e
