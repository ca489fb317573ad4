"""Data context: object helpers over an open store.

Host models subclass ManagedObject, a pydantic model whose fields are the
entity's attributes. Changes are written immediately inside an open SQLite
transaction; save() commits them and rollback() discards them, so the pending
transaction is the context's set of unsaved changes.

Entity names:
    class NoteMO(ManagedObject):           # entity "Note"
        title: str

    class Tag(ManagedObject):               # entity "Label"
        entity_name: ClassVar[str] = "Label"
        name: str
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from typing import Any, ClassVar, Protocol, TypeVar, runtime_checkable

import pyarrow as pa
from pydantic import BaseModel, ConfigDict

from data_manager.core.errors import StorageError, ValidationError
from data_manager.core.schema import (
    PRIMARY_KEY_COLUMN,
    AttributeDescription,
    EntityDescription,
    SchemaDescription,
)
from data_manager.core.storage import physical_type, quote_identifier

logger = logging.getLogger(__name__)

M = TypeVar("M", bound="ManagedObject")
T = TypeVar("T")

MODEL_SUFFIX = "MO"


class AggregateFunction(str, Enum):
    """SQL aggregate functions accepted by DataContext.aggregate()."""

    MIN = "min"
    MAX = "max"
    SUM = "sum"
    AVG = "avg"
    COUNT = "count"


@runtime_checkable
class EntityNamable(Protocol):
    """Models that name their entity explicitly."""

    entity_name: ClassVar[str]


class ManagedObject(BaseModel):
    """Base class for objects stored in an entity table.

    Attributes:
        pk: Row identifier, assigned on insert.
    """

    model_config = ConfigDict(validate_assignment=True)

    pk: int | None = None


def entity_name(model: type[ManagedObject]) -> str:
    """Entity name for a model class.

    Uses ``entity_name`` when the model provides one, otherwise the class
    name without a trailing "MO".
    """
    if isinstance(model, EntityNamable) and isinstance(model.entity_name, str):
        return model.entity_name
    name = model.__name__
    if name.endswith(MODEL_SUFFIX) and len(name) > len(MODEL_SUFFIX):
        return name[: -len(MODEL_SUFFIX)]
    return name


class DataContext:
    """Insert, fetch, count and delete managed objects.

    Example:
        context = DataContext(conn, schema)
        note = context.insert(NoteMO(title="hello"))
        context.save()
        recent = context.fetch(NoteMO, where="created > ?", params=(cutoff,), limit=10)

    Thread Safety:
        Every operation holds a reentrant lock, so the context may be shared
        between threads. perform() runs blocks on the context's own worker.
    """

    def __init__(self, connection: sqlite3.Connection, schema: SchemaDescription) -> None:
        self._conn = connection
        self._schema = schema
        self._lock = threading.RLock()
        self._executor: ThreadPoolExecutor | None = None

    @property
    def schema(self) -> SchemaDescription:
        return self._schema

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def _entity(self, model: type[ManagedObject]) -> EntityDescription:
        name = entity_name(model)
        entity = self._schema.entity(name)
        if entity is None:
            raise ValidationError(f"Entity '{name}' is not part of the loaded schema")
        return entity

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        try:
            return self._conn.execute(sql, tuple(params))
        except sqlite3.Error as e:
            raise StorageError(f"Store operation failed: {e}") from e

    # -------------------------------------------------------------------------
    # Conversion
    # -------------------------------------------------------------------------

    @staticmethod
    def _to_storage(entity: EntityDescription, values: dict[str, Any]) -> dict[str, Any]:
        stored = {}
        for name, value in values.items():
            attr = entity.attribute(name)
            if attr is None:
                # Unset field the loaded schema does not have
                if value is None:
                    continue
                raise ValidationError(f"Entity '{entity.name}' has no attribute '{name}'")
            if value is None:
                stored[name] = None
                continue
            try:
                array = pa.array([value], type=attr.arrow_type)
            except (pa.ArrowInvalid, pa.ArrowTypeError) as e:
                raise ValidationError(
                    f"Value for {entity.name}.{name} is not {attr.arrow_type}: {e}"
                ) from e
            stored[name] = array.cast(physical_type(attr.arrow_type)).to_pylist()[0]
        return stored

    @staticmethod
    def _from_storage(attr: AttributeDescription, values: list[Any]) -> list[Any]:
        array = pa.array(values, type=physical_type(attr.arrow_type))
        return array.cast(attr.arrow_type).to_pylist()

    def _from_rows(
        self,
        model: type[M],
        attributes: list[AttributeDescription],
        rows: list[tuple[Any, ...]],
    ) -> list[M]:
        columns: dict[str, list[Any]] = {PRIMARY_KEY_COLUMN: [row[0] for row in rows]}
        for index, attr in enumerate(attributes, start=1):
            columns[attr.name] = self._from_storage(attr, [row[index] for row in rows])

        objects = []
        for position in range(len(rows)):
            data = {attr.name: columns[attr.name][position] for attr in attributes}
            data["pk"] = columns[PRIMARY_KEY_COLUMN][position]
            objects.append(model.model_validate(data))
        return objects

    def _model_attributes(
        self, model: type[ManagedObject], entity: EntityDescription
    ) -> list[AttributeDescription]:
        """Entity attributes the model declares, in model field order."""
        attributes = []
        for name in model.model_fields:
            attr = entity.attribute(name) if name != "pk" else None
            if attr is not None:
                attributes.append(attr)
        return attributes

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def insert(self, obj: M) -> M:
        """Insert a new object and assign its ``pk``.

        Attributes the model leaves unset take the schema default.
        """
        if obj.pk is not None:
            raise ValidationError(f"Object already stored with pk {obj.pk}")
        entity = self._entity(type(obj))
        values = obj.model_dump(exclude={"pk"})
        for attr in entity.attributes:
            if values.get(attr.name) is None and attr.default is not None:
                values[attr.name] = attr.default
        stored = self._to_storage(entity, values)

        with self._lock:
            if stored:
                columns = ", ".join(quote_identifier(n) for n in stored)
                placeholders = ", ".join("?" for _ in stored)
                sql = (
                    f"INSERT INTO {quote_identifier(entity.name)} ({columns}) "
                    f"VALUES ({placeholders})"
                )
            else:
                sql = f"INSERT INTO {quote_identifier(entity.name)} DEFAULT VALUES"
            cursor = self._execute(sql, list(stored.values()))
            obj.pk = cursor.lastrowid
        return obj

    def update(self, obj: ManagedObject) -> None:
        """Write every attribute of a stored object."""
        if obj.pk is None:
            raise ValidationError("Cannot update an object that was never inserted")
        entity = self._entity(type(obj))
        stored = self._to_storage(entity, obj.model_dump(exclude={"pk"}))
        if not stored:
            return

        assignments = ", ".join(f"{quote_identifier(n)} = ?" for n in stored)
        with self._lock:
            cursor = self._execute(
                f"UPDATE {quote_identifier(entity.name)} SET {assignments} "
                f"WHERE {quote_identifier(PRIMARY_KEY_COLUMN)} = ?",
                [*stored.values(), obj.pk],
            )
        if cursor.rowcount == 0:
            raise StorageError(f"{entity.name} with pk {obj.pk} no longer exists")

    def delete(self, obj: ManagedObject) -> None:
        if obj.pk is None:
            return
        entity = self._entity(type(obj))
        with self._lock:
            self._execute(
                f"DELETE FROM {quote_identifier(entity.name)} "
                f"WHERE {quote_identifier(PRIMARY_KEY_COLUMN)} = ?",
                [obj.pk],
            )
        obj.pk = None

    def delete_where(
        self,
        model: type[ManagedObject],
        where: str | None = None,
        params: Sequence[Any] = (),
    ) -> int:
        """Delete every object of ``model`` matching ``where``.

        Returns:
            Number of rows deleted.
        """
        entity = self._entity(model)
        sql = f"DELETE FROM {quote_identifier(entity.name)}"
        if where:
            sql += f" WHERE {where}"
        with self._lock:
            return self._execute(sql, params).rowcount

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def fetch(
        self,
        model: type[M],
        where: str | None = None,
        params: Sequence[Any] = (),
        order_by: Sequence[str] | None = None,
        limit: int = 0,
        offset: int = 0,
    ) -> list[M]:
        """Fetch objects of ``model``.

        Args:
            model: ManagedObject subclass to fetch.
            where: SQL condition with ``?`` placeholders.
            params: Values for the placeholders.
            order_by: Attribute names, prefixed with "-" for descending.
            limit: Maximum objects to return, 0 for no limit.
            offset: Objects to skip.

        Returns:
            Matching objects.
        """
        entity = self._entity(model)
        attributes = self._model_attributes(model, entity)
        names = [PRIMARY_KEY_COLUMN, *(attr.name for attr in attributes)]
        select = ", ".join(quote_identifier(n) for n in names)
        sql = f"SELECT {select} FROM {quote_identifier(entity.name)}"
        if where:
            sql += f" WHERE {where}"
        if order_by:
            sql += " ORDER BY " + ", ".join(self._order_term(entity, term) for term in order_by)
        if limit > 0 or offset > 0:
            sql += f" LIMIT {limit if limit > 0 else -1} OFFSET {max(offset, 0)}"

        with self._lock:
            rows = self._execute(sql, params).fetchall()
        return self._from_rows(model, attributes, rows)

    @staticmethod
    def _order_term(entity: EntityDescription, term: str) -> str:
        descending = term.startswith("-")
        name = term.lstrip("-")
        if name != "pk" and entity.attribute(name) is None:
            raise ValidationError(f"Cannot order {entity.name} by unknown attribute '{name}'")
        column = PRIMARY_KEY_COLUMN if name == "pk" else name
        return f"{quote_identifier(column)} {'DESC' if descending else 'ASC'}"

    def fetch_first(
        self,
        model: type[M],
        where: str | None = None,
        params: Sequence[Any] = (),
        order_by: Sequence[str] | None = None,
    ) -> M | None:
        found = self.fetch(model, where=where, params=params, order_by=order_by, limit=1)
        return found[0] if found else None

    def count(
        self,
        model: type[ManagedObject],
        where: str | None = None,
        params: Sequence[Any] = (),
    ) -> int:
        entity = self._entity(model)
        sql = f"SELECT COUNT(*) FROM {quote_identifier(entity.name)}"
        if where:
            sql += f" WHERE {where}"
        with self._lock:
            return int(self._execute(sql, params).fetchone()[0])

    def _aggregate_column(
        self, entity: EntityDescription, name: str
    ) -> tuple[str, AttributeDescription | None]:
        if name == "pk":
            return PRIMARY_KEY_COLUMN, None
        attr = entity.attribute(name)
        if attr is None:
            raise ValidationError(
                f"Cannot aggregate {entity.name} by unknown attribute '{name}'"
            )
        return name, attr

    def aggregate(
        self,
        model: type[ManagedObject],
        function: AggregateFunction | str,
        attribute: str,
        where: str | None = None,
        params: Sequence[Any] = (),
        group_by: Sequence[str] = (),
    ) -> list[dict[str, Any]]:
        """Apply an aggregate function to one attribute, optionally per group.

        Args:
            model: ManagedObject subclass naming the entity.
            function: Aggregate to apply.
            attribute: Attribute to aggregate, or "pk".
            where: SQL condition with ``?`` placeholders.
            params: Values for the placeholders.
            group_by: Attributes to group by. Groups are returned in
                ascending order.

        Returns:
            One dict per group with the group attributes and the result
            under the function's name. A single dict when ungrouped.

        Example:
            context.aggregate(NoteMO, "sum", "word_count", group_by=["pinned"])
            # [{"pinned": False, "sum": 23}, {"pinned": True, "sum": 4}]
        """
        try:
            function = AggregateFunction(function)
        except ValueError as e:
            raise ValidationError(f"Unknown aggregate function '{function}'") from e
        entity = self._entity(model)
        column, attr = self._aggregate_column(entity, attribute)
        groups = [(name, *self._aggregate_column(entity, name)) for name in group_by]

        group_columns = ", ".join(quote_identifier(c) for _, c, _ in groups)
        select = f"{function.value.upper()}({quote_identifier(column)})"
        if group_columns:
            select = f"{group_columns}, {select}"
        sql = f"SELECT {select} FROM {quote_identifier(entity.name)}"
        if where:
            sql += f" WHERE {where}"
        if group_columns:
            sql += f" GROUP BY {group_columns} ORDER BY {group_columns}"

        with self._lock:
            rows = self._execute(sql, params).fetchall()

        columns: list[list[Any]] = []
        for index, (_, _, group_attr) in enumerate(groups):
            values = [row[index] for row in rows]
            columns.append(self._from_storage(group_attr, values) if group_attr else values)
        results = [row[len(groups)] for row in rows]
        if attr is not None and function in (AggregateFunction.MIN, AggregateFunction.MAX):
            results = self._from_storage(attr, results)

        group_names = [name for name, _, _ in groups]
        return [
            {**dict(zip(group_names, values)), function.value: result}
            for *values, result in zip(*columns, results)
        ]

    # -------------------------------------------------------------------------
    # Unit of work
    # -------------------------------------------------------------------------

    @property
    def has_changes(self) -> bool:
        with self._lock:
            return self._conn.in_transaction

    def save(self) -> None:
        """Commit pending changes, if any."""
        with self._lock:
            if not self._conn.in_transaction:
                return
            try:
                self._conn.commit()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to save changes: {e}") from e

    def rollback(self) -> None:
        with self._lock:
            self._conn.rollback()

    def perform(self, block: Callable[[], T]) -> Future[T]:
        """Run ``block`` on the context's worker thread."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="data-context")
        return self._executor.submit(self.perform_and_wait, block)

    def perform_and_wait(self, block: Callable[[], T]) -> T:
        """Run ``block`` with exclusive use of the context."""
        with self._lock:
            return block()

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        with self._lock:
            if self._conn.in_transaction:
                logger.warning("Closing data context with unsaved changes; discarding them")
                self._conn.rollback()
            self._conn.close()
