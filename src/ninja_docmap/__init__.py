"""Ninja Docmap: typed entity mapping and scoped queries for document stores."""

from ninja_docmap.adapter import DocumentAdapter, QueryFactory
from ninja_docmap.coercer import IdentityCoercer
from ninja_docmap.command import Command
from ninja_docmap.config import InvalidStoreURL, StoreConfig
from ninja_docmap.connection import (
    Connection,
    DisconnectedResource,
    MongoConnection,
    RollbackPolicy,
    connect,
)
from ninja_docmap.exceptions import (
    ArgumentError,
    CheckConstraintViolationError,
    ConnectionFailedError,
    ForeignKeyConstraintViolationError,
    InvalidCommandError,
    InvalidQueryError,
    MappingError,
    NotNullConstraintViolationError,
    PersistenceError,
    Rollback,
    TransactionError,
    UniqueConstraintViolationError,
)
from ninja_docmap.expression import DatasetExpression, JoinKind, asc, desc
from ninja_docmap.mapping import MappedCollection, Mapper
from ninja_docmap.memory import InMemoryConnection
from ninja_docmap.predicates import And, Eq, Field, Ne, Or, Predicate, field, where
from ninja_docmap.query import ScopedQuery

__all__ = [
    "And",
    "ArgumentError",
    "CheckConstraintViolationError",
    "Command",
    "Connection",
    "ConnectionFailedError",
    "DatasetExpression",
    "DisconnectedResource",
    "DocumentAdapter",
    "Eq",
    "Field",
    "ForeignKeyConstraintViolationError",
    "IdentityCoercer",
    "InMemoryConnection",
    "InvalidCommandError",
    "InvalidQueryError",
    "InvalidStoreURL",
    "JoinKind",
    "MappedCollection",
    "Mapper",
    "MappingError",
    "MongoConnection",
    "Ne",
    "NotNullConstraintViolationError",
    "Or",
    "PersistenceError",
    "Predicate",
    "QueryFactory",
    "Rollback",
    "RollbackPolicy",
    "ScopedQuery",
    "TransactionError",
    "UniqueConstraintViolationError",
    "asc",
    "connect",
    "desc",
    "field",
    "where",
]
