"""Write commands: the single translation boundary for store write errors."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from types import MappingProxyType
from typing import Any

from ninja_docmap.connection import Connection
from ninja_docmap.exceptions import (
    ArgumentError,
    CheckConstraintViolationError,
    ConnectionFailedError,
    ForeignKeyConstraintViolationError,
    InvalidCommandError,
    NotNullConstraintViolationError,
    PersistenceError,
    UniqueConstraintViolationError,
    is_connection_error,
)
from ninja_docmap.query import ScopedQuery

logger = logging.getLogger(__name__)

# Driver exception class name -> domain exception.
DRIVER_ERROR_MAPPING: Mapping[str, type[PersistenceError]] = MappingProxyType(
    {
        "DuplicateKeyError": UniqueConstraintViolationError,
        "ForeignKeyViolation": ForeignKeyConstraintViolationError,
        "NotNullViolation": NotNullConstraintViolationError,
        "CheckViolation": CheckConstraintViolationError,
    }
)

# Driver error code -> domain exception, for errors raised under generic classes
# such as pymongo's ``WriteError`` / ``BulkWriteError``.
DRIVER_ERROR_CODES: Mapping[int, type[PersistenceError]] = MappingProxyType(
    {
        11000: UniqueConstraintViolationError,  # DuplicateKey
        11001: UniqueConstraintViolationError,  # legacy DuplicateKey on update
        121: CheckConstraintViolationError,  # DocumentValidationFailure
    }
)

_DETAILS: Mapping[type[PersistenceError], str] = MappingProxyType(
    {
        UniqueConstraintViolationError: "A document with the same key already exists.",
        ForeignKeyConstraintViolationError: "The document references a missing document.",
        NotNullConstraintViolationError: "A required field is missing.",
        CheckConstraintViolationError: "The document failed validation.",
        InvalidCommandError: "Write operation failed.",
    }
)


def translate_error(exc: BaseException) -> type[PersistenceError]:
    """Look up the domain exception for a driver exception."""
    for cls in type(exc).__mro__:
        mapped = DRIVER_ERROR_MAPPING.get(cls.__name__)
        if mapped is not None:
            return mapped
    code = getattr(exc, "code", None)
    if isinstance(code, int) and code in DRIVER_ERROR_CODES:
        return DRIVER_ERROR_CODES[code]
    return InvalidCommandError


class Command:
    """Executes one write against a scoped query.

    Any driver error raised by the write is re-raised as a domain error;
    nothing is retried.
    """

    def __init__(self, query: ScopedQuery, connection: Connection) -> None:
        self._query = query.with_connection(connection)
        self._connection = connection

    @property
    def query(self) -> ScopedQuery:
        return self._query

    def create(self, entity: Any) -> Any:
        """Create a document for *entity* and return the entity with its identity."""
        with self._handle_database_error("create"):
            return self._query.insert(entity)

    def update(self, entity: Any) -> Any:
        """Write *entity* to every document in scope; zero matches is success."""
        with self._handle_database_error("update"):
            return self._query.update(entity)

    def delete(self) -> int:
        """Delete every document in scope; returns the number removed."""
        with self._handle_database_error("delete"):
            return self._query.delete()

    def clear(self) -> int:
        """Delete every document of an unfiltered scope."""
        with self._handle_database_error("clear"):
            return self._query.clear()

    @contextmanager
    def _handle_database_error(self, operation: str) -> Iterator[None]:
        entity_name = self._query.table_name
        try:
            yield
        except (PersistenceError, ArgumentError):
            raise
        except Exception as exc:
            if is_connection_error(exc):
                logger.error("%s connection error for %s: %s", operation, entity_name, type(exc).__name__)
                raise ConnectionFailedError(
                    entity_name=entity_name,
                    operation=operation,
                    detail="Database connection failed during write.",
                    cause=exc,
                ) from exc
            error_class = translate_error(exc)
            logger.error("%s failed for %s: %s", operation, entity_name, type(exc).__name__)
            raise error_class(
                entity_name=entity_name,
                operation=operation,
                detail=_DETAILS[error_class],
                cause=exc,
            ) from exc
