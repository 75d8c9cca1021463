"""In-memory document store for testing, backed by dict-of-lists tables.

Mirrors the :class:`~ninja_docmap.connection.Connection` protocol and evaluates
dataset expressions with the same stage order as the compiled MongoDB pipeline.
Constraint failures raise driver-style errors that the command error mapping
recognizes.
"""

from __future__ import annotations

import copy
import uuid
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from ninja_docmap.connection import (
    DeleteMany,
    InsertOne,
    RollbackPolicy,
    UpdateMany,
    WriteOperation,
    transaction_scope,
)
from ninja_docmap.exceptions import ArgumentError
from ninja_docmap.expression import DatasetExpression, JoinKind
from ninja_docmap.predicates import resolve_path


class MemoryStoreError(Exception):
    """Base class for errors raised by the in-memory store."""

    code: int | None = None


class DuplicateKeyError(MemoryStoreError):
    code = 11000


class NotNullViolation(MemoryStoreError):
    pass


class ForeignKeyViolation(MemoryStoreError):
    pass


class CheckViolation(MemoryStoreError):
    code = 121


@dataclass(frozen=True)
class _Reference:
    field: str
    table: str
    target: str


@dataclass(frozen=True)
class _Check:
    name: str
    rule: Callable[[Mapping[str, Any]], bool]


class InMemoryConnection:
    """Dict-based document store that honours the connection protocol."""

    def __init__(self) -> None:
        self._tables: dict[str, list[dict[str, Any]]] = {}
        self._unique: dict[str, list[tuple[str, ...]]] = {}
        self._required: dict[str, set[str]] = {}
        self._references: dict[str, list[_Reference]] = {}
        self._checks: dict[str, list[_Check]] = {}
        self._in_transaction = False
        self.closed = False

    # -- schema constraints ---------------------------------------------------

    def unique(self, table: str, *fields: str) -> None:
        self._unique.setdefault(table, []).append(fields)

    def required(self, table: str, *fields: str) -> None:
        self._required.setdefault(table, set()).update(fields)

    def references(self, table: str, field: str, target_table: str, target_field: str = "_id") -> None:
        self._references.setdefault(table, []).append(_Reference(field, target_table, target_field))

    def check(self, table: str, name: str, rule: Callable[[Mapping[str, Any]], bool]) -> None:
        self._checks.setdefault(table, []).append(_Check(name, rule))

    def documents(self, table: str) -> list[dict[str, Any]]:
        """Copies of the documents currently stored in *table*."""
        return copy.deepcopy(self._tables.get(table, []))

    # -- reads ----------------------------------------------------------------

    def run_query(self, expression: DatasetExpression) -> list[dict[str, Any]]:
        rows = self._scope(expression)
        if expression.grouping:
            rows = _group(rows, expression.grouping)
        rows = _window(rows, expression)
        if expression.projection is not None:
            rows = [{k: row[k] for k in expression.projection if k in row} for row in rows]
        return copy.deepcopy(rows)

    def _scope(self, expression: DatasetExpression) -> list[dict[str, Any]]:
        rows = [dict(doc) for doc in self._tables.get(expression.table, [])]
        for join in expression.joins:
            others = self._tables.get(join.table, [])
            joined: list[dict[str, Any]] = []
            for row in rows:
                matches = [
                    other
                    for other in others
                    if all(resolve_path(row, local) == resolve_path(other, foreign) for local, foreign in join.on)
                ]
                if not matches and join.kind is JoinKind.LEFT:
                    joined.append(row)
                joined.extend({**row, join.target: dict(other)} for other in matches)
            rows = joined
        if expression.predicate is not None:
            rows = [row for row in rows if expression.predicate.matches(row)]
        return rows

    # -- writes ---------------------------------------------------------------

    def run_write(self, operation: WriteOperation) -> dict[str, Any]:
        if isinstance(operation, InsertOne):
            return self._insert(operation)
        if isinstance(operation, UpdateMany):
            return self._update(operation)
        if isinstance(operation, DeleteMany):
            return self._delete(operation)
        raise ArgumentError(f"Unsupported write operation {type(operation).__name__}")

    def _insert(self, operation: InsertOne) -> dict[str, Any]:
        document = copy.deepcopy(dict(operation.record))
        generated: list[str] = []
        if document.get(operation.identity) is None:
            key = uuid.uuid4().hex
            document[operation.identity] = key
            generated.append(key)
        table = self._tables.setdefault(operation.table, [])
        self._validate(operation.table, document, operation.identity, others=table)
        table.append(document)
        return {"inserted": 1, "generated_keys": generated}

    def _update(self, operation: UpdateMany) -> dict[str, Any]:
        table_name = operation.expression.table
        targets = self._matching_identities(operation.expression, operation.identity)
        table = self._tables.get(table_name, [])
        updated = [
            {**doc, **copy.deepcopy(dict(operation.changes))} if doc.get(operation.identity) in targets else doc
            for doc in table
        ]
        modified = 0
        for before, after in zip(table, updated):
            if after is before:
                continue
            rest = [doc for doc in updated if doc is not after]
            self._validate(table_name, after, operation.identity, others=rest)
            modified += after != before
        if table_name in self._tables:
            self._tables[table_name] = updated
        return {"matched": len(targets), "modified": modified}

    def _delete(self, operation: DeleteMany) -> dict[str, Any]:
        table_name = operation.expression.table
        targets = self._matching_identities(operation.expression, operation.identity)
        table = self._tables.get(table_name, [])
        kept = [doc for doc in table if doc.get(operation.identity) not in targets]
        if table_name in self._tables:
            self._tables[table_name] = kept
        return {"deleted": len(table) - len(kept)}

    def _matching_identities(self, expression: DatasetExpression, identity: str) -> set[Any]:
        if expression.grouping:
            raise ArgumentError("Grouped scopes cannot be written to")
        rows = _window(self._scope(expression), expression)
        return {row.get(identity) for row in rows}

    def _validate(
        self, table: str, document: Mapping[str, Any], identity: str, *, others: list[dict[str, Any]]
    ) -> None:
        for name in sorted(self._required.get(table, ())):
            if document.get(name) is None:
                raise NotNullViolation(f"{table}.{name} must not be null")
        for fields in [(identity,), *self._unique.get(table, [])]:
            key = tuple(document.get(name) for name in fields)
            if any(tuple(other.get(name) for name in fields) == key for other in others):
                raise DuplicateKeyError(f"duplicate key on {table} {fields}: {key}")
        for ref in self._references.get(table, []):
            value = document.get(ref.field)
            if value is None:
                continue
            if not any(doc.get(ref.target) == value for doc in self._tables.get(ref.table, [])):
                raise ForeignKeyViolation(f"{table}.{ref.field} references a missing {ref.table} document")
        for check in self._checks.get(table, []):
            if not check.rule(document):
                raise CheckViolation(f"check '{check.name}' failed on {table}")

    # -- lifecycle ------------------------------------------------------------

    @contextmanager
    def transaction(self, *, rollback: str | RollbackPolicy | None = None) -> Iterator[None]:
        policy = RollbackPolicy.parse(rollback)
        if self._in_transaction:
            yield
            return
        snapshot = copy.deepcopy(self._tables)

        def abort() -> None:
            self._tables = snapshot

        self._in_transaction = True
        try:
            with transaction_scope(policy, commit=lambda: None, abort=abort):
                yield
        finally:
            self._in_transaction = False

    def disconnect(self) -> None:
        self.closed = True

    def clear(self) -> None:
        self._tables.clear()


def _group(rows: list[dict[str, Any]], fields: tuple[str, ...]) -> list[dict[str, Any]]:
    seen: dict[tuple[Any, ...], dict[str, Any]] = {}
    for row in rows:
        key = tuple(_freeze(row.get(name)) for name in fields)
        if key not in seen:
            seen[key] = {name: row.get(name) for name in fields}
    return list(seen.values())


def _freeze(value: Any) -> Any:
    if isinstance(value, dict):
        return tuple(sorted((k, _freeze(v)) for k, v in value.items()))
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


def _window(rows: list[dict[str, Any]], expression: DatasetExpression) -> list[dict[str, Any]]:
    # Stable sorts applied from the least to the most significant key.
    for key in reversed(expression.effective_order):
        rows = sorted(
            rows,
            key=lambda row, name=key.field: _sortable(resolve_path(row, name)),
            reverse=key.descending,
        )
    rows = rows[expression.skip :]
    if expression.limit is not None:
        rows = rows[: expression.limit]
    return rows


def _sortable(value: Any) -> tuple[int, Any]:
    # Nulls sort first, like MongoDB.
    return (0, 0) if value is None else (1, value)
