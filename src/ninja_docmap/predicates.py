"""Typed filter predicates.

Predicates form a closed tree of four node kinds (``Eq``, ``Ne``, ``And``,
``Or``) built directly from field names and literal values. They compile to
MongoDB filter documents and can be evaluated against plain records, which is
how the in-memory store runs them.

Example::

    status = field("status")
    active = (status == "active") | (status == "trial")
    inactive = ~active                # Ne/And via De Morgan
    by_author = where(author_id="u1", status="active")
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from ninja_docmap.exceptions import ArgumentError

_MISSING = object()


def validate_field_name(name: Any) -> str:
    """Return *name* if it is a usable field path, else raise ``ArgumentError``.

    ``$``-prefixed names are rejected so operators cannot be smuggled in as
    field references.
    """
    if not isinstance(name, str) or not name:
        raise ArgumentError(f"Field name must be a non-empty string, got {name!r}")
    if name.startswith("$") or "\x00" in name:
        raise ArgumentError(f"Field name {name!r} is not allowed")
    return name


def resolve_path(record: Mapping[str, Any], path: str) -> Any:
    """Read a dotted *path* from *record*; missing segments resolve to ``None``."""
    value: Any = record
    for segment in path.split("."):
        if not isinstance(value, Mapping):
            return None
        value = value.get(segment, _MISSING)
        if value is _MISSING:
            return None
    return value


class Predicate(ABC):
    """Base class for predicate nodes."""

    @abstractmethod
    def to_filter(self) -> dict[str, Any]: ...

    @abstractmethod
    def matches(self, record: Mapping[str, Any]) -> bool: ...

    @abstractmethod
    def negate(self) -> Predicate: ...

    def __and__(self, other: Predicate) -> Predicate:
        return And((self, other))

    def __or__(self, other: Predicate) -> Predicate:
        return Or((self, other))

    def __invert__(self) -> Predicate:
        return self.negate()


@dataclass(frozen=True)
class Eq(Predicate):
    field: str
    value: Any

    def __post_init__(self) -> None:
        validate_field_name(self.field)

    def to_filter(self) -> dict[str, Any]:
        # $eq keeps literal dict values from being read as operators.
        return {self.field: {"$eq": self.value}}

    def matches(self, record: Mapping[str, Any]) -> bool:
        return resolve_path(record, self.field) == self.value

    def negate(self) -> Predicate:
        return Ne(self.field, self.value)


@dataclass(frozen=True)
class Ne(Predicate):
    field: str
    value: Any

    def __post_init__(self) -> None:
        validate_field_name(self.field)

    def to_filter(self) -> dict[str, Any]:
        return {self.field: {"$ne": self.value}}

    def matches(self, record: Mapping[str, Any]) -> bool:
        return resolve_path(record, self.field) != self.value

    def negate(self) -> Predicate:
        return Eq(self.field, self.value)


@dataclass(frozen=True)
class And(Predicate):
    clauses: tuple[Predicate, ...]

    def __post_init__(self) -> None:
        _check_clauses(self.clauses, "And")

    def to_filter(self) -> dict[str, Any]:
        if len(self.clauses) == 1:
            return self.clauses[0].to_filter()
        return {"$and": [clause.to_filter() for clause in self.clauses]}

    def matches(self, record: Mapping[str, Any]) -> bool:
        return all(clause.matches(record) for clause in self.clauses)

    def negate(self) -> Predicate:
        return Or(tuple(clause.negate() for clause in self.clauses))


@dataclass(frozen=True)
class Or(Predicate):
    clauses: tuple[Predicate, ...]

    def __post_init__(self) -> None:
        _check_clauses(self.clauses, "Or")

    def to_filter(self) -> dict[str, Any]:
        if len(self.clauses) == 1:
            return self.clauses[0].to_filter()
        return {"$or": [clause.to_filter() for clause in self.clauses]}

    def matches(self, record: Mapping[str, Any]) -> bool:
        return any(clause.matches(record) for clause in self.clauses)

    def negate(self) -> Predicate:
        return And(tuple(clause.negate() for clause in self.clauses))


def _check_clauses(clauses: Any, kind: str) -> None:
    if not isinstance(clauses, tuple) or not clauses:
        raise ArgumentError(f"{kind} requires a non-empty tuple of predicates")
    for clause in clauses:
        if not isinstance(clause, Predicate):
            raise ArgumentError(f"{kind} clauses must be predicates, got {type(clause).__name__}")


class Field:
    """A field reference; comparing it with ``==`` / ``!=`` builds a predicate."""

    __slots__ = ("name",)

    def __init__(self, name: str) -> None:
        self.name = validate_field_name(name)

    def __eq__(self, value: Any) -> Eq:  # type: ignore[override]
        return Eq(self.name, value)

    def __ne__(self, value: Any) -> Ne:  # type: ignore[override]
        return Ne(self.name, value)

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"Field({self.name!r})"


def field(name: str) -> Field:
    return Field(name)


def where(conditions: Mapping[str, Any] | None = None, /, **kwargs: Any) -> Predicate:
    """Build a conjunction of equality clauses from a mapping and/or keywords."""
    merged = {**(conditions or {}), **kwargs}
    if not merged:
        raise ArgumentError("At least one condition is required")
    clauses = tuple(Eq(name, value) for name, value in merged.items())
    return clauses[0] if len(clauses) == 1 else And(clauses)


def conjoin(left: Predicate | None, right: Predicate) -> Predicate:
    """AND *right* onto *left*, flattening nested conjunctions."""
    if left is None:
        return right
    left_clauses = left.clauses if isinstance(left, And) else (left,)
    right_clauses = right.clauses if isinstance(right, And) else (right,)
    return And(left_clauses + right_clauses)
