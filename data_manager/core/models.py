"""Data models for the data manager."""

from __future__ import annotations

import json
import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from data_manager.core.utils import utc_now

STORE_TYPE_SQLITE = "SQLite"


class StoreMetadata(BaseModel):
    """Schema-identifying header of a persisted store.

    Read without fully opening the store. The entity version hashes decide
    which schema the store matches; everything else is informational.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    store_type: str = Field(default=STORE_TYPE_SQLITE)
    store_uuid: str = Field(default_factory=lambda: str(uuid.uuid4()))
    version_identifier: int | None = Field(
        default=None, description="Schema version the store was written with, if known"
    )
    entity_hashes: dict[str, str] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)

    def to_rows(self) -> list[tuple[str, str]]:
        """Encode as (key, JSON value) rows for the metadata table."""
        data = self.model_dump(mode="json")
        return [(key, json.dumps(value, sort_keys=True)) for key, value in sorted(data.items())]

    @classmethod
    def from_rows(cls, rows: list[tuple[str, str]] | dict[str, str]) -> StoreMetadata:
        """Decode rows written by to_rows().

        Raises:
            ValueError: If a value is not valid JSON or fails validation.
        """
        items = rows.items() if isinstance(rows, dict) else rows
        data: dict[str, Any] = {key: json.loads(value) for key, value in items}
        return cls.model_validate(data)
