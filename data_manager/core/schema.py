"""Versioned schema descriptions.

A schema description is the structural definition of every entity a store
holds: entity names, attribute names, attribute types and nullability. Each
entity carries a version hash; a store is compatible with a schema when the
hashes recorded in its metadata equal the schema's hashes exactly.

Two on-disk forms are accepted:

- ``.json``: a human-edited document::

    {
      "version_identifier": 2,
      "entities": {
        "Note": {
          "attributes": {
            "title": {"type": "string", "optional": false},
            "created": {"type": "timestamp[us]"}
          }
        }
      }
    }

- ``.arrow``: the compiled form, an Arrow IPC schema message in which every
  entity is a struct field. Produced by compile_schema().

Attribute types are pyarrow type aliases.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from functools import cached_property
from pathlib import Path
from typing import Any

import pyarrow as pa
from pydantic import (
    BaseModel,
    Field,
    ValidationError as PydanticValidationError,
    field_validator,
    model_validator,
)

from data_manager.core.errors import PackagingDefectError
from data_manager.core.models import StoreMetadata

logger = logging.getLogger(__name__)

# Arrow metadata keys used by the compiled form
VERSION_IDENTIFIER_KEY = b"data_manager.version_identifier"
HASH_MODIFIER_KEY = b"data_manager.hash_modifier"
DEFAULT_KEY = b"data_manager.default"

_NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")

# Reserved row identifier column; user names cannot start with an underscore
PRIMARY_KEY_COLUMN = "_pk"


def is_supported_type(arrow_type: pa.DataType) -> bool:
    """Whether the store engine can persist values of this Arrow type."""
    return (
        pa.types.is_integer(arrow_type)
        or pa.types.is_floating(arrow_type)
        or pa.types.is_boolean(arrow_type)
        or pa.types.is_string(arrow_type)
        or pa.types.is_large_string(arrow_type)
        or pa.types.is_binary(arrow_type)
        or pa.types.is_timestamp(arrow_type)
        or pa.types.is_date(arrow_type)
    )


def _check_name(value: str, kind: str) -> str:
    if not _NAME_PATTERN.match(value):
        raise ValueError(f"Invalid {kind} name '{value}'")
    return value


def check_default(arrow_type: pa.DataType, default: Any) -> None:
    """Raise ValueError unless ``default`` is a valid value of ``arrow_type``."""
    if default is None:
        return
    try:
        pa.array([default], type=arrow_type)
    except (pa.ArrowInvalid, pa.ArrowTypeError) as e:
        raise ValueError(f"Default {default!r} is not a valid {arrow_type} value: {e}") from e


# =============================================================================
# Document form (JSON)
# =============================================================================


class AttributeDocument(BaseModel):
    """One attribute in a JSON schema document."""

    type: str
    optional: bool = True
    default: Any = None

    @field_validator("type")
    @classmethod
    def _validate_type(cls, value: str) -> str:
        try:
            arrow_type = pa.type_for_alias(value)
        except (KeyError, ValueError) as e:
            raise ValueError(f"Unknown attribute type '{value}'") from e
        if not is_supported_type(arrow_type):
            raise ValueError(f"Unsupported attribute type '{value}'")
        return value

    @model_validator(mode="after")
    def _validate_default(self) -> AttributeDocument:
        check_default(pa.type_for_alias(self.type), self.default)
        return self


class EntityDocument(BaseModel):
    """One entity in a JSON schema document."""

    attributes: dict[str, AttributeDocument] = Field(default_factory=dict)
    hash_modifier: str | None = None

    @field_validator("attributes")
    @classmethod
    def _validate_attribute_names(
        cls, value: dict[str, AttributeDocument]
    ) -> dict[str, AttributeDocument]:
        for name in value:
            _check_name(name, "attribute")
        return value


class SchemaDocument(BaseModel):
    """A JSON schema document."""

    version_identifier: int | None = Field(default=None, ge=1)
    entities: dict[str, EntityDocument]

    @field_validator("entities")
    @classmethod
    def _validate_entity_names(cls, value: dict[str, EntityDocument]) -> dict[str, EntityDocument]:
        if not value:
            raise ValueError("A schema must declare at least one entity")
        for name in value:
            _check_name(name, "entity")
        return value


# =============================================================================
# Loaded descriptions
# =============================================================================


@dataclass(frozen=True)
class AttributeDescription:
    """A typed attribute of an entity."""

    name: str
    arrow_type: pa.DataType
    optional: bool = True
    default: Any = None

    def to_field(self) -> pa.Field:
        metadata = {}
        if self.default is not None:
            metadata[DEFAULT_KEY] = json.dumps(self.default).encode()
        return pa.field(
            self.name, self.arrow_type, nullable=self.optional, metadata=metadata or None
        )

    @classmethod
    def from_field(cls, arrow_field: pa.Field) -> AttributeDescription:
        metadata = arrow_field.metadata or {}
        default = json.loads(metadata[DEFAULT_KEY]) if DEFAULT_KEY in metadata else None
        check_default(arrow_field.type, default)
        return cls(
            name=arrow_field.name,
            arrow_type=arrow_field.type,
            optional=arrow_field.nullable,
            default=default,
        )


@dataclass(frozen=True)
class EntityDescription:
    """A named entity and its attributes, in declaration order."""

    name: str
    attributes: tuple[AttributeDescription, ...] = field(default_factory=tuple)
    hash_modifier: str | None = None

    @property
    def attribute_names(self) -> list[str]:
        return [a.name for a in self.attributes]

    def attribute(self, name: str) -> AttributeDescription | None:
        for attr in self.attributes:
            if attr.name == name:
                return attr
        return None

    @cached_property
    def arrow_schema(self) -> pa.Schema:
        """The entity's rows as an Arrow schema (one field per attribute)."""
        return pa.schema([a.to_field() for a in self.attributes])

    @cached_property
    def version_hash(self) -> str:
        """SHA-256 over the structural parts of the entity.

        Defaults and attribute order do not participate: they do not change
        how existing rows are stored.
        """
        payload = {
            "name": self.name,
            "attributes": sorted(
                [a.name, str(a.arrow_type), a.optional] for a in self.attributes
            ),
            "hash_modifier": self.hash_modifier,
        }
        encoded = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode()
        return hashlib.sha256(encoded).hexdigest()


class SchemaDescription:
    """An immutable, loaded schema for one schema version.

    Example:
        schema = SchemaDescription.from_document(json.loads(text))
        if schema.is_compatible_with(metadata):
            ...
    """

    def __init__(
        self,
        entities: Sequence[EntityDescription],
        version_identifier: int | None = None,
        source: str | None = None,
    ) -> None:
        self._entities = {e.name: e for e in entities}
        if len(self._entities) != len(entities):
            raise ValueError("Duplicate entity names in schema")
        self.version_identifier = version_identifier
        self.source = source

    def __repr__(self) -> str:
        return (
            f"SchemaDescription(version_identifier={self.version_identifier!r}, "
            f"entities={list(self._entities)!r})"
        )

    def __iter__(self) -> Iterator[EntityDescription]:
        return iter(self._entities.values())

    def __contains__(self, name: object) -> bool:
        return name in self._entities

    @property
    def entity_names(self) -> list[str]:
        return list(self._entities)

    def entity(self, name: str) -> EntityDescription | None:
        return self._entities.get(name)

    @property
    def entity_hashes(self) -> dict[str, str]:
        return {name: entity.version_hash for name, entity in self._entities.items()}

    def is_compatible_with(self, metadata: StoreMetadata) -> bool:
        """Structural compatibility with a store's metadata."""
        return metadata.entity_hashes == self.entity_hashes

    def make_metadata(self) -> StoreMetadata:
        """Fresh metadata for a store written with this schema."""
        return StoreMetadata(
            version_identifier=self.version_identifier,
            entity_hashes=self.entity_hashes,
        )

    # -------------------------------------------------------------------------
    # Conversions
    # -------------------------------------------------------------------------

    @classmethod
    def from_document(cls, data: dict[str, Any], source: str | None = None) -> SchemaDescription:
        """Build a schema from a parsed JSON document.

        Raises:
            pydantic.ValidationError: If the document is malformed.
        """
        doc = SchemaDocument.model_validate(data)
        entities = [
            EntityDescription(
                name=entity_name,
                attributes=tuple(
                    AttributeDescription(
                        name=attr_name,
                        arrow_type=pa.type_for_alias(attr.type),
                        optional=attr.optional,
                        default=attr.default,
                    )
                    for attr_name, attr in entity.attributes.items()
                ),
                hash_modifier=entity.hash_modifier,
            )
            for entity_name, entity in doc.entities.items()
        ]
        return cls(entities, version_identifier=doc.version_identifier, source=source)

    def to_arrow_schema(self) -> pa.Schema:
        """The compiled form: one struct field per entity."""
        fields = []
        for entity in self._entities.values():
            metadata = None
            if entity.hash_modifier is not None:
                metadata = {HASH_MODIFIER_KEY: entity.hash_modifier.encode()}
            fields.append(
                pa.field(
                    entity.name,
                    pa.struct([a.to_field() for a in entity.attributes]),
                    metadata=metadata,
                )
            )
        schema_metadata = None
        if self.version_identifier is not None:
            schema_metadata = {VERSION_IDENTIFIER_KEY: str(self.version_identifier).encode()}
        return pa.schema(fields, metadata=schema_metadata)

    @classmethod
    def from_arrow_schema(cls, schema: pa.Schema, source: str | None = None) -> SchemaDescription:
        """Inverse of to_arrow_schema().

        Raises:
            ValueError: If the schema is not in the compiled form.
        """
        entities = []
        for entity_field in schema:
            if not pa.types.is_struct(entity_field.type):
                raise ValueError(f"Entity field '{entity_field.name}' is not a struct")
            _check_name(entity_field.name, "entity")
            attributes = []
            for attr_field in entity_field.type:
                _check_name(attr_field.name, "attribute")
                if not is_supported_type(attr_field.type):
                    raise ValueError(f"Unsupported attribute type '{attr_field.type}'")
                attributes.append(AttributeDescription.from_field(attr_field))
            modifier = (entity_field.metadata or {}).get(HASH_MODIFIER_KEY)
            entities.append(
                EntityDescription(
                    name=entity_field.name,
                    attributes=tuple(attributes),
                    hash_modifier=modifier.decode() if modifier is not None else None,
                )
            )
        if not entities:
            raise ValueError("A schema must declare at least one entity")
        raw_version = (schema.metadata or {}).get(VERSION_IDENTIFIER_KEY)
        version = int(raw_version.decode()) if raw_version is not None else None
        return cls(entities, version_identifier=version, source=source)


def load_schema_file(path: Path) -> SchemaDescription:
    """Load a schema description from a .json or .arrow resource.

    Raises:
        PackagingDefectError: If the file cannot be read or parsed.
    """
    try:
        if path.suffix == ".arrow":
            with pa.memory_map(str(path)) as source:
                arrow_schema = pa.ipc.read_schema(source)
            return SchemaDescription.from_arrow_schema(arrow_schema, source=str(path))
        data = json.loads(path.read_text(encoding="utf-8"))
        return SchemaDescription.from_document(data, source=str(path))
    except (OSError, ValueError, PydanticValidationError, pa.ArrowException) as e:
        raise PackagingDefectError(path.name, f"unable to load schema: {e}") from e


def compile_schema(json_path: Path, out_path: Path | None = None) -> Path:
    """Compile a JSON schema document into the Arrow IPC form.

    Args:
        json_path: Source document.
        out_path: Destination; defaults to json_path with an .arrow suffix.

    Returns:
        Path of the written file.

    Raises:
        PackagingDefectError: If the document is invalid.
    """
    schema = load_schema_file(json_path)
    target = out_path or json_path.with_suffix(".arrow")
    target.write_bytes(schema.to_arrow_schema().serialize().to_pybytes())
    logger.info(f"Compiled schema {json_path.name} -> {target.name}")
    return target
