"""Store connections: the boundary between the mapping core and a driver."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from ninja_docmap.exceptions import ArgumentError, ConnectionFailedError, Rollback, TransactionError
from ninja_docmap.expression import DatasetExpression

if TYPE_CHECKING:
    from pymongo import MongoClient
    from pymongo.client_session import ClientSession

    from ninja_docmap.config import StoreConfig

logger = logging.getLogger(__name__)


# -- Write operations ---------------------------------------------------------


@dataclass(frozen=True)
class InsertOne:
    """Create one document in ``table``; ``identity`` names the identity column."""

    table: str
    record: Mapping[str, Any]
    identity: str


@dataclass(frozen=True)
class UpdateMany:
    """Set ``changes`` on every document matched by ``expression``."""

    expression: DatasetExpression
    changes: Mapping[str, Any]
    identity: str


@dataclass(frozen=True)
class DeleteMany:
    """Remove every document matched by ``expression``."""

    expression: DatasetExpression
    identity: str


WriteOperation = InsertOne | UpdateMany | DeleteMany


# -- Transactions -------------------------------------------------------------


class RollbackPolicy(str, Enum):
    """Transaction rollback policy.

    ``DEFAULT`` rolls back and re-raises on error but swallows :class:`Rollback`.
    ``ALWAYS`` rolls back even when the block succeeds.
    ``RERAISE`` rolls back and re-raises every error, :class:`Rollback` included.
    """

    DEFAULT = "default"
    ALWAYS = "always"
    RERAISE = "reraise"

    @classmethod
    def parse(cls, value: str | RollbackPolicy | None) -> RollbackPolicy:
        if value is None:
            return cls.DEFAULT
        try:
            return cls(value)
        except ValueError:
            raise ArgumentError(
                f"Unknown rollback policy {value!r}; expected one of {[p.value for p in cls]}"
            ) from None


@contextmanager
def transaction_scope(
    policy: RollbackPolicy,
    *,
    commit: Callable[[], None],
    abort: Callable[[], None],
) -> Iterator[None]:
    """Apply *policy* around a block, calling *commit* or *abort* exactly once."""
    try:
        yield
    except Rollback:
        logger.debug("Transaction rolled back on request")
        abort()
        if policy is RollbackPolicy.RERAISE:
            raise
    except BaseException:
        logger.debug("Transaction rolled back after error")
        abort()
        raise
    else:
        if policy is RollbackPolicy.ALWAYS:
            logger.debug("Transaction rolled back by policy")
            abort()
        else:
            commit()


# -- Protocol -----------------------------------------------------------------


@runtime_checkable
class Connection(Protocol):
    """Store connection consumed by queries and commands."""

    def run_query(self, expression: DatasetExpression) -> list[dict[str, Any]]:
        """Execute *expression* as a read and return raw records in store order."""
        ...

    def run_write(self, operation: WriteOperation) -> dict[str, Any]:
        """Execute a write and return the store's acknowledgement payload."""
        ...

    def transaction(self, *, rollback: str | RollbackPolicy | None = None) -> AbstractContextManager[Any]:
        """Open a native transaction governed by the given rollback policy."""
        ...

    def disconnect(self) -> None: ...


class DisconnectedResource:
    """Stands in for a connection after ``disconnect()``; every use raises."""

    def _fail(self, operation: str) -> ConnectionFailedError:
        return ConnectionFailedError(
            entity_name="connection",
            operation=operation,
            detail="The adapter has been disconnected.",
        )

    def run_query(self, expression: DatasetExpression) -> list[dict[str, Any]]:
        raise self._fail("run_query")

    def run_write(self, operation: WriteOperation) -> dict[str, Any]:
        raise self._fail("run_write")

    def transaction(self, *, rollback: str | RollbackPolicy | None = None) -> AbstractContextManager[Any]:
        raise self._fail("transaction")

    def disconnect(self) -> None:
        raise self._fail("disconnect")


# -- MongoDB ------------------------------------------------------------------


class MongoConnection:
    """Synchronous MongoDB connection backed by PyMongo.

    Reads run the expression's aggregation pipeline. Writes on plain scopes use
    the compiled filter directly; scopes with joins or a result window first
    resolve the identities they cover and then write by ``$in``.

    Identities generated here are ``str(ObjectId())`` so they round-trip
    through :class:`~ninja_docmap.coercer.IdentityCoercer` unchanged.
    """

    def __init__(self, client: MongoClient, database: str) -> None:
        self._client = client
        self._database = client[database]
        self._session: ClientSession | None = None

    def _collection(self, name: str) -> Any:
        return self._database[name]

    def run_query(self, expression: DatasetExpression) -> list[dict[str, Any]]:
        if expression.limit == 0:
            return []
        cursor = self._collection(expression.table).aggregate(expression.to_pipeline(), session=self._session)
        return [dict(doc) for doc in cursor]

    def run_write(self, operation: WriteOperation) -> dict[str, Any]:
        if isinstance(operation, InsertOne):
            return self._insert(operation)
        if isinstance(operation, UpdateMany):
            return self._update(operation)
        if isinstance(operation, DeleteMany):
            return self._delete(operation)
        raise ArgumentError(f"Unsupported write operation {type(operation).__name__}")

    def _insert(self, operation: InsertOne) -> dict[str, Any]:
        from bson import ObjectId

        document = dict(operation.record)
        generated: list[str] = []
        if document.get(operation.identity) is None:
            key = str(ObjectId())
            document[operation.identity] = key
            generated.append(key)
        self._collection(operation.table).insert_one(document, session=self._session)
        return {"inserted": 1, "generated_keys": generated}

    def _update(self, operation: UpdateMany) -> dict[str, Any]:
        coll = self._collection(operation.expression.table)
        filter_doc = self._resolve_filter(operation.expression, operation.identity)
        if not operation.changes:
            return {"matched": coll.count_documents(filter_doc, session=self._session), "modified": 0}
        result = coll.update_many(filter_doc, {"$set": dict(operation.changes)}, session=self._session)
        return {"matched": result.matched_count, "modified": result.modified_count}

    def _delete(self, operation: DeleteMany) -> dict[str, Any]:
        coll = self._collection(operation.expression.table)
        filter_doc = self._resolve_filter(operation.expression, operation.identity)
        result = coll.delete_many(filter_doc, session=self._session)
        return {"deleted": result.deleted_count}

    def _resolve_filter(self, expression: DatasetExpression, identity: str) -> dict[str, Any]:
        if not expression.needs_resolution:
            return expression.to_filter()
        if expression.limit == 0:
            return {identity: {"$in": []}}
        cursor = self._collection(expression.table).aggregate(
            expression.identity_pipeline(identity), session=self._session
        )
        return {identity: {"$in": [doc[identity] for doc in cursor]}}

    @contextmanager
    def transaction(self, *, rollback: str | RollbackPolicy | None = None) -> Iterator[ClientSession | None]:
        policy = RollbackPolicy.parse(rollback)
        if self._session is not None:
            # Nested blocks join the outer transaction.
            yield self._session
            return
        with self._client.start_session() as session:
            session.start_transaction()
            self._session = session
            try:
                with transaction_scope(
                    policy,
                    commit=_guarded(session.commit_transaction, "commit"),
                    abort=_guarded(session.abort_transaction, "rollback"),
                ):
                    yield session
            finally:
                self._session = None

    def disconnect(self) -> None:
        self._client.close()


def _guarded(action: Callable[[], None], step: str) -> Callable[[], None]:
    def run() -> None:
        try:
            action()
        except Exception as exc:
            logger.error("Transaction %s failed: %s", step, type(exc).__name__)
            raise TransactionError(
                entity_name="transaction",
                operation=step,
                detail=f"Transaction {step} failed.",
                cause=exc,
            ) from exc

    return run


def connect(config: StoreConfig) -> Connection:
    """Open a connection for *config* (``memory://`` or a MongoDB URL)."""
    from ninja_docmap.config import redact_url

    logger.info("Connecting to %s", redact_url(config.url))
    if config.is_memory:
        from ninja_docmap.memory import InMemoryConnection

        return InMemoryConnection()

    from pymongo import MongoClient

    client: MongoClient = MongoClient(config.url, **config.options)
    return MongoConnection(client, config.database_name)
