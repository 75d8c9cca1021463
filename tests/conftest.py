"""Shared fixtures for ninja-docmap tests."""

from __future__ import annotations

import pytest
from entities import Article, Author
from ninja_docmap.adapter import DocumentAdapter
from ninja_docmap.mapping import Mapper
from ninja_docmap.memory import InMemoryConnection


@pytest.fixture
def mapper() -> Mapper:
    mapper = Mapper()
    mapper.collection("articles", Article, identity_column="_id")
    mapper.collection("authors", Author, identity_column="_id")
    return mapper


@pytest.fixture
def connection() -> InMemoryConnection:
    return InMemoryConnection()


@pytest.fixture
def adapter(mapper: Mapper, connection: InMemoryConnection) -> DocumentAdapter:
    return DocumentAdapter(mapper, connection)


@pytest.fixture
def seeded(adapter: DocumentAdapter) -> DocumentAdapter:
    """Two authors and four articles with caller-supplied identities."""
    adapter.create("authors", Author(id="u1", name="Ann"))
    adapter.create("authors", Author(id="u2", name="Bob"))
    adapter.create("articles", Article(id="1", title="Alpha", status="a", author_id="u1", rank=3))
    adapter.create("articles", Article(id="2", title="Beta", status="b", author_id="u2", rank=1))
    adapter.create("articles", Article(id="3", title="Gamma", status="a", author_id="u9", rank=2))
    adapter.create("articles", Article(id="4", title="Delta", status="b", author_id=None, rank=2))
    return adapter
