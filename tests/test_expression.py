"""Tests for dataset expression compilation."""

from __future__ import annotations

import pytest
from ninja_docmap.exceptions import ArgumentError
from ninja_docmap.expression import DatasetExpression, Join, JoinKind, SortKey, asc, desc, sort_key
from ninja_docmap.predicates import Eq


def test_bare_table_pipeline_is_empty():
    expr = DatasetExpression(table="articles")
    assert expr.to_pipeline() == []
    assert expr.to_filter() == {}
    assert expr.is_filtered is False


def test_pipeline_stage_order():
    expr = (
        DatasetExpression(table="articles")
        .narrow(Eq("status", "a"))
        .with_order((SortKey("rank", descending=True), SortKey("title")))
        .with_window(skip=5, limit=10)
        .with_projection(("_id", "title"))
    )
    assert expr.to_pipeline() == [
        {"$match": {"status": {"$eq": "a"}}},
        {"$sort": {"rank": -1, "title": 1}},
        {"$skip": 5},
        {"$limit": 10},
        {"$project": {"_id": 1, "title": 1}},
    ]


def test_narrow_accumulates_with_and():
    expr = DatasetExpression(table="articles").narrow(Eq("status", "a")).narrow(Eq("rank", 1))
    assert expr.to_filter() == {"$and": [{"status": {"$eq": "a"}}, {"rank": {"$eq": 1}}]}


def test_join_compiles_to_lookup_and_unwind():
    join = Join(table="authors", on=(("author_id", "_id"),), kind=JoinKind.LEFT)
    pipeline = DatasetExpression(table="articles").with_join(join).to_pipeline()
    assert pipeline == [
        {
            "$lookup": {
                "from": "authors",
                "let": {"k0": "$author_id"},
                "pipeline": [{"$match": {"$expr": {"$and": [{"$eq": ["$_id", "$$k0"]}]}}}],
                "as": "authors",
            }
        },
        {"$unwind": {"path": "$authors", "preserveNullAndEmptyArrays": True}},
    ]


def test_inner_join_drops_unmatched():
    join = Join(table="authors", on=(("author_id", "_id"),), alias="writer")
    unwind = DatasetExpression(table="articles").with_join(join).to_pipeline()[1]
    assert unwind == {"$unwind": {"path": "$writer", "preserveNullAndEmptyArrays": False}}


def test_group_pipeline_replaces_root():
    expr = DatasetExpression(table="articles").with_grouping(("status",))
    assert expr.to_pipeline() == [
        {"$group": {"_id": {"status": "$status"}}},
        {"$replaceRoot": {"newRoot": "$_id"}},
    ]
    with pytest.raises(ArgumentError):
        expr.to_filter()


def test_group_rejects_nested_fields():
    with pytest.raises(ArgumentError):
        DatasetExpression(table="articles").with_grouping(("author.name",))


def test_identity_pipeline_projects_identity_only():
    expr = DatasetExpression(table="articles").narrow(Eq("status", "a")).with_window(limit=2)
    assert expr.needs_resolution is True
    assert expr.identity_pipeline("_id") == [
        {"$match": {"status": {"$eq": "a"}}},
        {"$limit": 2},
        {"$project": {"_id": 1}},
    ]


def test_base_drops_operations():
    expr = DatasetExpression(table="articles").narrow(Eq("status", "a")).with_window(limit=1)
    assert expr.is_filtered is True
    assert expr.base() == DatasetExpression(table="articles")


def test_sort_key_parsing():
    assert sort_key("rank") == asc("rank")
    assert sort_key("-rank") == desc("rank") == SortKey("rank", descending=True)
    assert desc("rank").reversed() == asc("rank")


def test_repeated_sort_field_keeps_first_occurrence():
    expr = DatasetExpression(table="t").with_order((SortKey("rank"), SortKey("title"), desc("rank")))
    assert expr.effective_order == (SortKey("rank"), SortKey("title"))
    assert expr.to_pipeline() == [{"$sort": {"rank": 1, "title": 1}}]
