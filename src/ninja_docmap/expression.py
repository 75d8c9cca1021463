"""Store-native dataset expressions.

A :class:`DatasetExpression` is an immutable description of "table plus a
chain of operations". It compiles to a MongoDB filter document (for writes on
plain scopes) or an aggregation pipeline (for reads), and the in-memory store
evaluates the same fields in the same stage order:

    join -> match -> group -> sort -> skip -> limit -> project
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ninja_docmap.exceptions import ArgumentError
from ninja_docmap.predicates import Predicate, conjoin, validate_field_name


class JoinKind(str, Enum):
    """How unmatched rows of a join are treated."""

    INNER = "inner"
    LEFT = "left"


@dataclass(frozen=True)
class SortKey:
    field: str
    descending: bool = False

    def reversed(self) -> SortKey:
        return SortKey(self.field, not self.descending)


def asc(name: str) -> SortKey:
    return SortKey(validate_field_name(name))


def desc(name: str) -> SortKey:
    return SortKey(validate_field_name(name), descending=True)


def sort_key(spec: str | SortKey) -> SortKey:
    """Coerce ``"name"`` / ``"-name"`` / ``SortKey`` into a ``SortKey``."""
    if isinstance(spec, SortKey):
        return spec
    if isinstance(spec, str) and spec.startswith("-"):
        return desc(spec[1:])
    return asc(spec)


@dataclass(frozen=True)
class Join:
    table: str
    on: tuple[tuple[str, str], ...]
    kind: JoinKind = JoinKind.INNER
    alias: str = ""

    @property
    def target(self) -> str:
        return self.alias or self.table


@dataclass(frozen=True)
class DatasetExpression:
    """Immutable table reference plus accumulated query operations."""

    table: str
    predicate: Predicate | None = None
    order: tuple[SortKey, ...] = ()
    skip: int = 0
    limit: int | None = None
    projection: tuple[str, ...] | None = None
    grouping: tuple[str, ...] = ()
    joins: tuple[Join, ...] = ()

    def narrow(self, predicate: Predicate) -> DatasetExpression:
        return dataclasses.replace(self, predicate=conjoin(self.predicate, predicate))

    def with_predicate(self, predicate: Predicate | None) -> DatasetExpression:
        return dataclasses.replace(self, predicate=predicate)

    def with_order(self, order: tuple[SortKey, ...]) -> DatasetExpression:
        return dataclasses.replace(self, order=order)

    def with_window(self, *, skip: int | None = None, limit: int | None = None) -> DatasetExpression:
        changes: dict[str, Any] = {}
        if skip is not None:
            changes["skip"] = skip
        if limit is not None:
            changes["limit"] = limit
        return dataclasses.replace(self, **changes)

    def with_projection(self, projection: tuple[str, ...] | None) -> DatasetExpression:
        return dataclasses.replace(self, projection=projection)

    def with_grouping(self, grouping: tuple[str, ...]) -> DatasetExpression:
        for name in grouping:
            if "." in name:
                raise ArgumentError(f"Cannot group on nested field {name!r}")
        return dataclasses.replace(self, grouping=grouping)

    def with_join(self, join: Join) -> DatasetExpression:
        return dataclasses.replace(self, joins=self.joins + (join,))

    def base(self) -> DatasetExpression:
        """The bare table with every operation dropped."""
        return DatasetExpression(table=self.table)

    @property
    def is_filtered(self) -> bool:
        return (
            self.predicate is not None
            or bool(self.joins)
            or bool(self.grouping)
            or self.skip > 0
            or self.limit is not None
        )

    @property
    def effective_order(self) -> tuple[SortKey, ...]:
        """Sort keys with later repeats of a field dropped; the first occurrence wins."""
        seen: set[str] = set()
        keys = []
        for key in self.order:
            if key.field not in seen:
                seen.add(key.field)
                keys.append(key)
        return tuple(keys)

    @property
    def needs_resolution(self) -> bool:
        """True when writes cannot be expressed as a plain filter document."""
        return bool(self.joins) or self.skip > 0 or self.limit is not None

    # -- compilation ----------------------------------------------------------

    def to_filter(self) -> dict[str, Any]:
        if self.grouping:
            raise ArgumentError("Grouped scopes cannot be written to")
        return self.predicate.to_filter() if self.predicate is not None else {}

    def to_pipeline(self) -> list[dict[str, Any]]:
        pipeline = self._scope_stages()
        if self.grouping:
            pipeline.append({"$group": {"_id": {name: f"${name}" for name in self.grouping}}})
            pipeline.append({"$replaceRoot": {"newRoot": "$_id"}})
        pipeline.extend(self._window_stages())
        if self.projection is not None:
            pipeline.append({"$project": {name: 1 for name in self.projection}})
        return pipeline

    def identity_pipeline(self, identity: str) -> list[dict[str, Any]]:
        """Pipeline yielding only *identity* for every document in scope."""
        if self.grouping:
            raise ArgumentError("Grouped scopes cannot be written to")
        pipeline = self._scope_stages()
        pipeline.extend(self._window_stages())
        pipeline.append({"$project": {identity: 1}})
        return pipeline

    def _scope_stages(self) -> list[dict[str, Any]]:
        stages: list[dict[str, Any]] = []
        for join in self.joins:
            variables = {f"k{i}": f"${local}" for i, (local, _) in enumerate(join.on)}
            conditions = [{"$eq": [f"${foreign}", f"$$k{i}"]} for i, (_, foreign) in enumerate(join.on)]
            stages.append(
                {
                    "$lookup": {
                        "from": join.table,
                        "let": variables,
                        "pipeline": [{"$match": {"$expr": {"$and": conditions}}}],
                        "as": join.target,
                    }
                }
            )
            stages.append(
                {
                    "$unwind": {
                        "path": f"${join.target}",
                        "preserveNullAndEmptyArrays": join.kind is JoinKind.LEFT,
                    }
                }
            )
        if self.predicate is not None:
            stages.append({"$match": self.predicate.to_filter()})
        return stages

    def _window_stages(self) -> list[dict[str, Any]]:
        stages: list[dict[str, Any]] = []
        if self.order:
            sort: dict[str, int] = {}
            for key in self.effective_order:
                sort[key.field] = -1 if key.descending else 1
            stages.append({"$sort": sort})
        if self.skip:
            stages.append({"$skip": self.skip})
        if self.limit is not None:
            stages.append({"$limit": self.limit})
        return stages
