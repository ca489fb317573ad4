"""Shared test data for data manager tests.

The resource bundle holds four versions of a "Notes" container:

    v1  Note(title, body, created)
    v2  Note(title, text, created, pinned)           + Tag(name)
    v3  Note(title, text, created, pinned, word_count) + Tag(name, color)
    v4  Note(... , archived)                          + Tag(name, color)

with mappings 1->2, 2->3 and 3->4.
"""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any

from data_manager.core.storage import quote_identifier

CONTAINER = "Notes"

NOTE_V1 = {
    "title": {"type": "string", "optional": False},
    "body": {"type": "string"},
    "created": {"type": "timestamp[us]"},
}
NOTE_V2 = {
    "title": {"type": "string", "optional": False},
    "text": {"type": "string"},
    "created": {"type": "timestamp[us]"},
    "pinned": {"type": "bool", "optional": False, "default": False},
}
NOTE_V3 = {**NOTE_V2, "word_count": {"type": "int64"}}
NOTE_V4 = {**NOTE_V3, "archived": {"type": "bool", "default": False}}
TAG_V2 = {"name": {"type": "string", "optional": False}}
TAG_V3 = {**TAG_V2, "color": {"type": "string", "optional": False, "default": "gray"}}

SCHEMAS: dict[int, dict[str, Any]] = {
    1: {"version_identifier": 1, "entities": {"Note": {"attributes": NOTE_V1}}},
    2: {
        "version_identifier": 2,
        "entities": {"Note": {"attributes": NOTE_V2}, "Tag": {"attributes": TAG_V2}},
    },
    3: {
        "version_identifier": 3,
        "entities": {"Note": {"attributes": NOTE_V3}, "Tag": {"attributes": TAG_V3}},
    },
    4: {
        "version_identifier": 4,
        "entities": {"Note": {"attributes": NOTE_V4}, "Tag": {"attributes": TAG_V3}},
    },
}

MAPPINGS: dict[str, dict[str, Any]] = {
    "v1-v2.json": {
        "source_version": 1,
        "destination_version": 2,
        "entities": [
            {
                "name": "Note",
                "attributes": {
                    "text": {"source": "body"},
                    "pinned": {"value": False},
                },
            },
            {"name": "Tag", "source": None},
        ],
    },
    "v2-v3.json": {
        "source_version": 2,
        "destination_version": 3,
        "entities": [
            {
                "name": "Note",
                "attributes": {"word_count": {"source": "text", "function": "utf8_length"}},
            },
        ],
    },
    "v3-v4.json": {"source_version": 3, "destination_version": 4},
}


def write_resources(root: Path, versions: tuple[int, ...] = (1, 2, 3, 4)) -> Path:
    """Write the Notes schemas and mappings under ``root``."""
    schema_dir = root / f"{CONTAINER}.schemas"
    mapping_dir = root / f"{CONTAINER}.mappings"
    schema_dir.mkdir(parents=True, exist_ok=True)
    mapping_dir.mkdir(parents=True, exist_ok=True)
    for version in versions:
        name = CONTAINER if version == 1 else f"{CONTAINER} {version}"
        (schema_dir / f"{name}.json").write_text(json.dumps(SCHEMAS[version]))
    for file_name, mapping in MAPPINGS.items():
        if mapping["source_version"] in versions and mapping["destination_version"] in versions:
            (mapping_dir / file_name).write_text(json.dumps(mapping))
    return root


def read_rows(path: Path, entity: str) -> list[dict[str, Any]]:
    """All rows of an entity table as dicts, in primary key order."""
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    try:
        rows = conn.execute(f"SELECT * FROM {quote_identifier(entity)} ORDER BY _pk").fetchall()
        return [dict(row) for row in rows]
    finally:
        conn.close()


