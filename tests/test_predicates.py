"""Tests for typed filter predicates."""

from __future__ import annotations

import pytest
from ninja_docmap.exceptions import ArgumentError
from ninja_docmap.predicates import And, Eq, Ne, Or, Predicate, conjoin, field, resolve_path, where


def test_field_comparisons_build_nodes():
    assert (field("status") == "a") == Eq("status", "a")
    assert (field("status") != "a") == Ne("status", "a")


def test_combinators():
    a = Eq("status", "a")
    b = Eq("rank", 1)
    assert (a & b) == And((a, b))
    assert (a | b) == Or((a, b))
    assert ~a == Ne("status", "a")


def test_negation_applies_de_morgan():
    predicate = And((Eq("status", "a"), Eq("rank", 1)))
    assert predicate.negate() == Or((Ne("status", "a"), Ne("rank", 1)))
    assert predicate.negate().negate() == predicate


def test_to_filter_uses_literal_operators():
    predicate = Or((Eq("status", "a"), And((Ne("rank", 1), Eq("title", "x")))))
    assert predicate.to_filter() == {
        "$or": [
            {"status": {"$eq": "a"}},
            {"$and": [{"rank": {"$ne": 1}}, {"title": {"$eq": "x"}}]},
        ]
    }


def test_operator_shaped_values_stay_literal():
    """A dict value is compared for equality, never interpreted as an operator."""
    predicate = Eq("status", {"$ne": None})
    assert predicate.to_filter() == {"status": {"$eq": {"$ne": None}}}
    assert predicate.matches({"status": "published"}) is False


def test_single_clause_groups_collapse():
    assert And((Eq("a", 1),)).to_filter() == {"a": {"$eq": 1}}
    assert Or((Eq("a", 1),)).to_filter() == {"a": {"$eq": 1}}


@pytest.mark.parametrize("name", ["", "$where", "a\x00b", 42])
def test_rejects_bad_field_names(name):
    with pytest.raises(ArgumentError):
        Eq(name, 1)


def test_rejects_empty_or_non_predicate_clauses():
    with pytest.raises(ArgumentError):
        And(())
    with pytest.raises(ArgumentError):
        Or((Eq("a", 1), "b == 2"))  # type: ignore[arg-type]


def test_matches_dotted_paths_and_missing_fields():
    record = {"status": "a", "author": {"name": "Ann"}}
    assert Eq("author.name", "Ann").matches(record)
    assert Eq("author.age", None).matches(record)
    assert Ne("missing", "x").matches(record)
    assert resolve_path(record, "status.length") is None


def test_where_builds_conjunction():
    assert where(status="a") == Eq("status", "a")
    assert where({"status": "a"}, rank=2) == And((Eq("status", "a"), Eq("rank", 2)))
    with pytest.raises(ArgumentError, match="At least one condition"):
        where()


def test_conjoin_flattens():
    a, b, c = Eq("a", 1), Eq("b", 2), Eq("c", 3)
    assert conjoin(None, a) == a
    assert conjoin(And((a, b)), c) == And((a, b, c))
    assert conjoin(a, And((b, c))) == And((a, b, c))


def test_predicate_base_is_abstract():
    class Partial(Predicate):
        def to_filter(self):
            return {}

        def matches(self, record):
            return True

    with pytest.raises(TypeError):
        Predicate()
    with pytest.raises(TypeError):
        Partial()
