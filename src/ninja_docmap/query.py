"""Immutable scoped queries over a mapped collection.

A :class:`ScopedQuery` pairs a :class:`~ninja_docmap.expression.DatasetExpression`
with the collection's mapping metadata and a connection. Chain operations are
pure: each returns a new ``ScopedQuery`` and leaves the receiver untouched, so
a scope can be shared and refined independently by several callers::

    published = adapter.query("articles").where(status="published")
    recent = published.order_by("-published_at").limit(10)
    drafts_excluded = published.exclude(author_id="bot")

Terminal operations (``insert``, ``update``, ``delete``, ``materialize`` and
friends) are the only ones that touch the connection.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping
from typing import Any

from ninja_docmap.connection import Connection, DeleteMany, InsertOne, UpdateMany
from ninja_docmap.exceptions import (
    ArgumentError,
    ConnectionFailedError,
    InvalidCommandError,
    InvalidQueryError,
    PersistenceError,
    is_connection_error,
)
from ninja_docmap.expression import DatasetExpression, Join, JoinKind, SortKey, sort_key
from ninja_docmap.mapping import MappedCollection
from ninja_docmap.predicates import Eq, Or, Predicate, validate_field_name

logger = logging.getLogger(__name__)


def _validate_window(value: Any, name: str) -> int:
    """Validate a ``limit``/``offset`` argument: a non-negative ``int``."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ArgumentError(f"{name} must be an integer, got {type(value).__name__}")
    if value < 0:
        raise ArgumentError(f"{name} must be >= 0, got {value}")
    return value


class ScopedQuery:
    """A dataset expression bound to a mapped collection and a connection."""

    __slots__ = ("_expression", "_mapped", "_connection")

    def __init__(
        self,
        expression: DatasetExpression,
        mapped_collection: MappedCollection,
        connection: Connection,
    ) -> None:
        self._expression = expression
        self._mapped = mapped_collection
        self._connection = connection

    @property
    def expression(self) -> DatasetExpression:
        return self._expression

    @property
    def mapped_collection(self) -> MappedCollection:
        return self._mapped

    @property
    def connection(self) -> Connection:
        return self._connection

    @property
    def table_name(self) -> str:
        return self._mapped.name

    @property
    def identity(self) -> str:
        """Store column of the identity attribute."""
        return self._mapped.identity_column

    def _derive(self, expression: DatasetExpression) -> ScopedQuery:
        return ScopedQuery(expression, self._mapped, self._connection)

    def with_connection(self, connection: Connection) -> ScopedQuery:
        return ScopedQuery(self._expression, self._mapped, connection)

    def __repr__(self) -> str:
        return f"ScopedQuery({self._expression!r})"

    # -- chain operations -----------------------------------------------------

    def _predicate(self, predicate: Predicate | None, conditions: Mapping[str, Any]) -> Predicate:
        clauses: list[Predicate] = []
        if predicate is not None:
            if not isinstance(predicate, Predicate):
                raise ArgumentError(f"Expected a Predicate, got {type(predicate).__name__}")
            clauses.append(predicate)
        for name, value in conditions.items():
            if name == self._mapped.identity:
                value = self._mapped.coercer.dump(value)
            clauses.append(Eq(self._mapped.column(name), value))
        if not clauses:
            raise ArgumentError("At least one condition is required")
        result = clauses[0]
        for clause in clauses[1:]:
            result = result & clause
        return result

    def where(self, predicate: Predicate | None = None, /, **conditions: Any) -> ScopedQuery:
        """Narrow the scope with a predicate and/or ``attribute=value`` conditions.

        Keyword conditions use entity attribute names, and identity values
        are dumped to their wire form; predicates built with
        :func:`~ninja_docmap.predicates.field` use store column names and
        values as given.
        """
        return self._derive(self._expression.narrow(self._predicate(predicate, conditions)))

    filter = where

    def or_where(self, predicate: Predicate | None = None, /, **conditions: Any) -> ScopedQuery:
        """Widen the scope: match the current predicate OR the given one."""
        addition = self._predicate(predicate, conditions)
        current = self._expression.predicate
        if current is None:
            return self._derive(self._expression)
        return self._derive(self._expression.with_predicate(Or((current, addition))))

    def exclude(self, predicate: Predicate | None = None, /, **conditions: Any) -> ScopedQuery:
        """Narrow the scope to documents NOT matching the given conditions."""
        return self._derive(self._expression.narrow(self._predicate(predicate, conditions).negate()))

    def limit(self, n: int) -> ScopedQuery:
        return self._derive(self._expression.with_window(limit=_validate_window(n, "limit")))

    def offset(self, n: int) -> ScopedQuery:
        return self._derive(self._expression.with_window(skip=_validate_window(n, "offset")))

    def _sort_keys(self, fields: tuple[str | SortKey, ...]) -> tuple[SortKey, ...]:
        if not fields:
            raise ArgumentError("At least one sort field is required")
        keys = []
        for spec in fields:
            key = sort_key(spec)
            keys.append(SortKey(self._mapped.column(key.field), key.descending))
        return tuple(keys)

    def order_by(self, *fields: str | SortKey) -> ScopedQuery:
        """Append sort keys; ``"-name"`` or ``desc("name")`` sorts descending.

        Earlier keys take precedence, so ``order_by("a").order_by("b")`` sorts
        by ``a`` and breaks ties with ``b``.
        """
        return self._derive(self._expression.with_order(self._expression.order + self._sort_keys(fields)))

    order = order_by
    order_more = order_by

    def unordered(self) -> ScopedQuery:
        return self._derive(self._expression.with_order(()))

    def select(self, *fields: str) -> ScopedQuery:
        """Project onto *fields*; the identity column is always kept."""
        if not fields:
            raise ArgumentError("At least one field is required")
        columns = [self.identity]
        for name in fields:
            column = self._mapped.column(validate_field_name(name))
            if column not in columns:
                columns.append(column)
        return self._derive(self._expression.with_projection(tuple(columns)))

    def select_all(self) -> ScopedQuery:
        return self._derive(self._expression.with_projection(None))

    def group(self, *fields: str) -> ScopedQuery:
        if not fields:
            raise ArgumentError("At least one field is required")
        columns = tuple(self._mapped.column(validate_field_name(name)) for name in fields)
        return self._derive(self._expression.with_grouping(columns))

    def join_table(
        self,
        other: str | ScopedQuery,
        on: Mapping[str, str],
        *,
        how: str | JoinKind = JoinKind.INNER,
        alias: str | None = None,
    ) -> ScopedQuery:
        """Join another table; ``on`` maps local attributes to the other table's columns.

        ``how`` must be ``"inner"`` (drop unmatched documents) or ``"left"``
        (keep them without the joined document). The joined document is nested
        under ``alias``, which defaults to the other table's name.
        """
        table = other.table_name if isinstance(other, ScopedQuery) else other
        if not isinstance(table, str) or not table:
            raise ArgumentError("join_table requires a table name or a ScopedQuery")
        if not on:
            raise ArgumentError("join_table requires at least one join condition")
        try:
            kind = JoinKind(how)
        except ValueError:
            raise ArgumentError(f"Unknown join kind {how!r}; expected 'inner' or 'left'") from None
        pairs = tuple(
            (self._mapped.column(validate_field_name(local)), validate_field_name(foreign))
            for local, foreign in on.items()
        )
        join = Join(table=table, on=pairs, kind=kind, alias=validate_field_name(alias) if alias else "")
        return self._derive(self._expression.with_join(join))

    # -- terminal operations --------------------------------------------------

    def insert(self, entity: Any) -> Any:
        """Create *entity* in the bare table and return it with its identity set.

        Accumulated filters are ignored: creation always targets the table.
        The caller's entity is not modified.
        """
        record = self._mapped.serialize(entity)
        ack = self._connection.run_write(InsertOne(table=self.table_name, record=record, identity=self.identity))
        identity = record.get(self.identity)
        if identity is None:
            identity = self._mapped.coercer.load(ack)
        if identity is None:
            raise InvalidCommandError(
                entity_name=self.table_name,
                operation="create",
                detail="The store did not report a generated identity.",
            )
        created = {**record, self.identity: identity}
        return self._mapped.deserialize([created])[0]

    def update(self, entity: Any) -> Any:
        """Write *entity*'s non-identity fields to every document in scope.

        A scope matching no documents is a successful no-op.
        """
        record = self._mapped.serialize(entity)
        changes = {key: value for key, value in record.items() if key != self.identity}
        matched = self._update(changes)
        if matched == 0:
            logger.debug("Update on %s matched no documents", self.table_name)
        return self._mapped.deserialize([record])[0]

    def update_all(self, changes: Mapping[str, Any]) -> int:
        """Set ``attribute=value`` *changes* on every document in scope; return the match count."""
        columns = {self._mapped.column(validate_field_name(name)): value for name, value in changes.items()}
        if self.identity in columns:
            raise ArgumentError("The identity field cannot be updated")
        return self._update(columns)

    def _update(self, changes: Mapping[str, Any]) -> int:
        ack = self._connection.run_write(
            UpdateMany(expression=self._expression, changes=changes, identity=self.identity)
        )
        return int(ack.get("matched", 0))

    def delete(self) -> int:
        """Delete every document in scope and return how many were removed."""
        ack = self._connection.run_write(DeleteMany(expression=self._expression, identity=self.identity))
        return int(ack.get("deleted", 0))

    def clear(self) -> int:
        """Delete every document in an unfiltered scope."""
        if self._expression.is_filtered:
            raise ArgumentError("clear() requires an unfiltered scope; use delete() instead")
        return self.delete()

    def records(self) -> list[dict[str, Any]]:
        """Run the scope as a read and return key-normalized records."""
        raw = self._read("records")
        return [self._mapped.normalize(record) for record in raw]

    def materialize(self) -> list[Any]:
        """Run the scope as a read and return entities in store order."""
        return self._mapped.deserialize(self._read("materialize"))

    to_list = materialize

    def __iter__(self) -> Iterator[Any]:
        return iter(self.materialize())

    def first(self) -> Any | None:
        found = self.limit(1).materialize()
        return found[0] if found else None

    def last(self) -> Any | None:
        order = self._expression.order or (SortKey(self.identity),)
        reversed_scope = self._derive(self._expression.with_order(tuple(key.reversed() for key in order)))
        return reversed_scope.first()

    def count(self) -> int:
        return len(self._derive(self._expression.with_projection((self.identity,))).records())

    def exists(self) -> bool:
        return self.first() is not None

    def _read(self, operation: str) -> list[Any]:
        try:
            return self._connection.run_query(self._expression)
        except (PersistenceError, ArgumentError):
            raise
        except Exception as exc:
            if is_connection_error(exc):
                logger.error("Read connection error for %s: %s", self.table_name, type(exc).__name__)
                raise ConnectionFailedError(
                    entity_name=self.table_name,
                    operation=operation,
                    detail="Database connection failed during read.",
                    cause=exc,
                ) from exc
            logger.error("Read failed for %s: %s", self.table_name, type(exc).__name__)
            raise InvalidQueryError(
                entity_name=self.table_name,
                operation=operation,
                detail="Query execution failed.",
                cause=exc,
            ) from exc


QueryContext = Callable[[ScopedQuery], ScopedQuery]
