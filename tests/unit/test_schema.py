"""Unit tests for schema descriptions, metadata and compatibility."""

from __future__ import annotations

import json
from pathlib import Path

import pyarrow as pa
import pytest
from pydantic import ValidationError as PydanticValidationError

from data_manager.core.errors import PackagingDefectError
from data_manager.core.models import StoreMetadata
from data_manager.core.schema import (
    DEFAULT_KEY,
    SchemaDescription,
    compile_schema,
    load_schema_file,
)
from tests.helpers import SCHEMAS


def _schema(version: int) -> SchemaDescription:
    return SchemaDescription.from_document(SCHEMAS[version])


# =============================================================================
# Document parsing
# =============================================================================


@pytest.mark.unit
class TestSchemaDocument:
    """Tests for building schemas from JSON documents."""

    def test_entities_and_attributes_in_order(self) -> None:
        schema = _schema(2)

        assert schema.entity_names == ["Note", "Tag"]
        assert schema.version_identifier == 2
        note = schema.entity("Note")
        assert note is not None
        assert note.attribute_names == ["title", "text", "created", "pinned"]

    def test_attribute_types_and_defaults(self) -> None:
        note = _schema(2).entity("Note")
        assert note is not None

        title = note.attribute("title")
        pinned = note.attribute("pinned")
        created = note.attribute("created")
        assert title is not None and title.optional is False
        assert pinned is not None and pinned.arrow_type == pa.bool_()
        assert pinned.default is False
        assert created is not None and created.arrow_type == pa.timestamp("us")

    def test_membership_and_lookup(self) -> None:
        schema = _schema(1)

        assert "Note" in schema
        assert "Tag" not in schema
        assert schema.entity("Tag") is None

    def test_unknown_type_rejected(self) -> None:
        doc = {"entities": {"Note": {"attributes": {"title": {"type": "varchar"}}}}}

        with pytest.raises(PydanticValidationError):
            SchemaDescription.from_document(doc)

    def test_unsupported_type_rejected(self) -> None:
        doc = {"entities": {"Note": {"attributes": {"blob": {"type": "decimal128(10, 2)"}}}}}

        with pytest.raises(PydanticValidationError):
            SchemaDescription.from_document(doc)

    @pytest.mark.parametrize("name", ["_pk", "1note", "has space", ""])
    def test_invalid_names_rejected(self, name: str) -> None:
        doc = {"entities": {"Note": {"attributes": {name: {"type": "string"}}}}}

        with pytest.raises(PydanticValidationError):
            SchemaDescription.from_document(doc)

    def test_empty_schema_rejected(self) -> None:
        with pytest.raises(PydanticValidationError):
            SchemaDescription.from_document({"entities": {}})

    @pytest.mark.parametrize(
        ("type_alias", "default"),
        [("int64", "not-a-number"), ("bool", [True]), ("double", [1.0]), ("string", 3)],
    )
    def test_mistyped_default_rejected(self, type_alias: str, default: object) -> None:
        attribute = {"type": type_alias, "default": default}
        doc = {"entities": {"Note": {"attributes": {"value": attribute}}}}

        with pytest.raises(PydanticValidationError, match="not a valid"):
            SchemaDescription.from_document(doc)

    def test_mistyped_default_file_is_packaging_defect(self, tmp_path: Path) -> None:
        attribute = {"type": "int64", "default": "not-a-number"}
        source = tmp_path / "Notes.json"
        source.write_text(json.dumps({"entities": {"Note": {"attributes": {"count": attribute}}}}))

        with pytest.raises(PackagingDefectError, match="not a valid"):
            load_schema_file(source)


# =============================================================================
# Version hashes and compatibility
# =============================================================================


@pytest.mark.unit
class TestCompatibility:
    """Tests for structural compatibility through entity version hashes."""

    def test_schema_compatible_with_own_metadata(self) -> None:
        schema = _schema(3)

        assert schema.is_compatible_with(schema.make_metadata())

    def test_versions_differ_structurally(self) -> None:
        v1, v2, v3 = _schema(1), _schema(2), _schema(3)

        assert not v2.is_compatible_with(v1.make_metadata())
        assert not v3.is_compatible_with(v2.make_metadata())

    def test_identical_structure_is_compatible_across_versions(self) -> None:
        """Compatibility ignores the recorded version number."""
        as_v7 = SchemaDescription.from_document({**SCHEMAS[3], "version_identifier": 7})

        assert as_v7.is_compatible_with(_schema(3).make_metadata())

    def test_defaults_and_order_do_not_change_hash(self) -> None:
        base = {"title": {"type": "string"}, "count": {"type": "int64"}}
        reordered = {"count": {"type": "int64", "default": 3}, "title": {"type": "string"}}
        a = SchemaDescription.from_document({"entities": {"Note": {"attributes": base}}})
        b = SchemaDescription.from_document({"entities": {"Note": {"attributes": reordered}}})

        assert a.entity_hashes == b.entity_hashes

    def test_nullability_changes_hash(self) -> None:
        a = SchemaDescription.from_document(
            {"entities": {"Note": {"attributes": {"title": {"type": "string"}}}}}
        )
        b = SchemaDescription.from_document(
            {"entities": {"Note": {"attributes": {"title": {"type": "string", "optional": False}}}}}
        )

        assert a.entity_hashes != b.entity_hashes

    def test_hash_modifier_forces_new_hash(self) -> None:
        doc = json.loads(json.dumps(SCHEMAS[1]))
        doc["entities"]["Note"]["hash_modifier"] = "reindexed"

        assert not SchemaDescription.from_document(doc).is_compatible_with(
            _schema(1).make_metadata()
        )

    def test_extra_entity_in_store_is_incompatible(self) -> None:
        metadata = StoreMetadata(entity_hashes={**_schema(1).entity_hashes, "Tag": "abc"})

        assert not _schema(1).is_compatible_with(metadata)


# =============================================================================
# Metadata
# =============================================================================


@pytest.mark.unit
class TestStoreMetadata:
    """Tests for metadata encoding."""

    def test_rows_decode_to_equal_metadata(self) -> None:
        metadata = _schema(2).make_metadata()

        decoded = StoreMetadata.from_rows(metadata.to_rows())

        assert decoded == metadata
        assert decoded.version_identifier == 2

    def test_unknown_keys_are_kept(self) -> None:
        rows = [*StoreMetadata().to_rows(), ("host_tag", json.dumps("alpha"))]

        decoded = StoreMetadata.from_rows(rows)

        assert decoded.model_extra == {"host_tag": "alpha"}

    def test_invalid_json_rejected(self) -> None:
        with pytest.raises(ValueError):
            StoreMetadata.from_rows({"entity_hashes": "{not json"})


# =============================================================================
# Compiled form
# =============================================================================


@pytest.mark.unit
class TestCompiledSchema:
    """Tests for the Arrow IPC compiled form."""

    def test_arrow_form_preserves_structure(self) -> None:
        schema = _schema(3)

        restored = SchemaDescription.from_arrow_schema(schema.to_arrow_schema())

        assert restored.version_identifier == 3
        assert restored.entity_hashes == schema.entity_hashes
        tag = restored.entity("Tag")
        assert tag is not None
        color = tag.attribute("color")
        assert color is not None and color.default == "gray"

    def test_compile_schema_writes_arrow_file(self, tmp_path: Path) -> None:
        source = tmp_path / "Notes 2.json"
        source.write_text(json.dumps(SCHEMAS[2]))

        target = compile_schema(source)

        assert target == tmp_path / "Notes 2.arrow"
        loaded = load_schema_file(target)
        assert loaded.entity_hashes == _schema(2).entity_hashes

    def test_non_struct_field_rejected(self) -> None:
        with pytest.raises(ValueError, match="not a struct"):
            SchemaDescription.from_arrow_schema(pa.schema([pa.field("Note", pa.string())]))

    def test_mistyped_default_in_compiled_form_rejected(self) -> None:
        count = pa.field("count", pa.int64(), metadata={DEFAULT_KEY: b'"not-a-number"'})
        compiled = pa.schema([pa.field("Note", pa.struct([count]))])

        with pytest.raises(ValueError, match="not a valid int64 value"):
            SchemaDescription.from_arrow_schema(compiled)

    def test_load_invalid_file_is_packaging_defect(self, tmp_path: Path) -> None:
        broken = tmp_path / "Notes.json"
        broken.write_text("{")

        with pytest.raises(PackagingDefectError) as exc_info:
            load_schema_file(broken)

        assert exc_info.value.resource == "Notes.json"

    def test_load_missing_file_is_packaging_defect(self, tmp_path: Path) -> None:
        with pytest.raises(PackagingDefectError):
            load_schema_file(tmp_path / "absent.arrow")
