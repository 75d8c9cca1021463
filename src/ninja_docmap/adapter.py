"""Adapter facade that owns the connection and builds queries and commands."""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager
from typing import Any

from ninja_docmap.command import Command
from ninja_docmap.config import StoreConfig
from ninja_docmap.connection import Connection, DisconnectedResource, RollbackPolicy, connect
from ninja_docmap.expression import DatasetExpression
from ninja_docmap.mapping import Mapper
from ninja_docmap.predicates import Eq
from ninja_docmap.query import QueryContext, ScopedQuery

logger = logging.getLogger(__name__)


class QueryFactory:
    """Produces fresh scoped queries anchored at a mapped collection."""

    def __init__(self, mapper: Mapper, connection: Connection) -> None:
        self._mapper = mapper
        self._connection = connection

    def build(self, collection: str) -> ScopedQuery:
        mapped = self._mapper[collection]
        return ScopedQuery(DatasetExpression(table=mapped.name), mapped, self._connection)


class DocumentAdapter:
    """Persists and queries mapped entities through a store connection.

    Example::

        mapper = Mapper()
        mapper.collection("articles", Article, identity_column="_id")
        adapter = DocumentAdapter(mapper, InMemoryConnection())

        article = adapter.create("articles", Article(title="Hello"))
        with adapter.transaction(rollback="reraise"):
            adapter.update("articles", article.model_copy(update={"title": "Hi"}))
    """

    def __init__(self, mapper: Mapper, connection: Connection) -> None:
        self._mapper = mapper
        self._connection = connection

    @classmethod
    def from_config(cls, mapper: Mapper, config: StoreConfig | None = None) -> DocumentAdapter:
        """Connect using *config*, or the config file when none is given."""
        return cls(mapper, connect(config or StoreConfig.from_file()))

    @property
    def mapper(self) -> Mapper:
        return self._mapper

    @property
    def connection(self) -> Connection:
        return self._connection

    # -- commands -------------------------------------------------------------

    def create(self, collection: str, entity: Any) -> Any:
        """Create a document for *entity*; returns the entity with its identity assigned."""
        return self.command(self.query(collection)).create(entity)

    def update(self, collection: str, entity: Any) -> Any:
        """Update the document holding *entity*'s identity."""
        return self.command(self._find(collection, self._identity_of(collection, entity))).update(entity)

    def delete(self, collection: str, entity: Any) -> int:
        """Delete the document holding *entity*'s identity; returns the count removed."""
        return self.command(self._find(collection, self._identity_of(collection, entity))).delete()

    def clear(self, collection: str) -> int:
        """Delete every document of *collection*."""
        return self.command(self.query(collection)).clear()

    def command(self, query: ScopedQuery) -> Command:
        return Command(query, self._connection)

    # -- queries --------------------------------------------------------------

    def query(self, collection: str, context: QueryContext | None = None) -> ScopedQuery:
        """Build a scoped query for *collection*, refined by *context* when given."""
        scoped = QueryFactory(self._mapper, self._connection).build(collection)
        if context is not None:
            scoped = context(scoped)
        return scoped

    def find(self, collection: str, id: Any) -> Any | None:
        return self._find(collection, id).first()

    def all(self, collection: str) -> list[Any]:
        return self.query(collection).materialize()

    def first(self, collection: str) -> Any | None:
        scoped = self.query(collection)
        return scoped.order_by(scoped.identity).first()

    def last(self, collection: str) -> Any | None:
        scoped = self.query(collection)
        return scoped.order_by(scoped.identity).last()

    def _find(self, collection: str, id: Any) -> ScopedQuery:
        scoped = self.query(collection)
        identity = scoped.mapped_collection.coercer.dump(id)
        return scoped.where(Eq(scoped.identity, identity))

    def _identity_of(self, collection: str, entity: Any) -> Any:
        return getattr(entity, self._mapper[collection].identity, None)

    # -- lifecycle ------------------------------------------------------------

    def transaction(self, *, rollback: str | RollbackPolicy | None = None) -> AbstractContextManager[Any]:
        """Wrap a block in the connection's native transaction.

        ``rollback="always"`` rolls back even when the block succeeds;
        ``rollback="reraise"`` rolls back and re-raises any error, including
        :class:`~ninja_docmap.exceptions.Rollback`. By default errors roll back
        and propagate, while ``Rollback`` rolls back silently.
        """
        return self._connection.transaction(rollback=rollback)

    def disconnect(self) -> None:
        """Release the connection; any further use raises ``ConnectionFailedError``."""
        self._connection.disconnect()
        self._connection = DisconnectedResource()
        logger.info("Adapter disconnected")
