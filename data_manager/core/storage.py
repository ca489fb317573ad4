"""Row storage representation shared by the store engine and data contexts.

SQLite has no temporal or boolean column types, so those attributes are
stored as integers (timestamps in their own unit since the epoch, date32 as
days, booleans as 0/1) and cast back to their Arrow type on read.
"""

from __future__ import annotations

import pyarrow as pa


def quote_identifier(name: str) -> str:
    """Quote an SQL identifier."""
    return '"' + name.replace('"', '""') + '"'


def column_affinity(arrow_type: pa.DataType) -> str:
    """SQLite column affinity for an attribute type."""
    if pa.types.is_floating(arrow_type):
        return "REAL"
    if pa.types.is_string(arrow_type) or pa.types.is_large_string(arrow_type):
        return "TEXT"
    if pa.types.is_binary(arrow_type):
        return "BLOB"
    return "INTEGER"


def physical_type(arrow_type: pa.DataType) -> pa.DataType:
    """Arrow type of the values SQLite actually holds for an attribute."""
    if pa.types.is_boolean(arrow_type):
        return pa.int64()
    if pa.types.is_date32(arrow_type):
        return pa.int32()
    if pa.types.is_timestamp(arrow_type) or pa.types.is_date64(arrow_type):
        return pa.int64()
    return arrow_type
