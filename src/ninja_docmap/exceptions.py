"""Domain exceptions for the document mapping layer.

Driver exceptions raised by a store connection are caught at the command and
query boundaries and re-raised as one of these domain exceptions, so callers
can pattern-match on a small, stable vocabulary instead of raw driver errors.
"""

from __future__ import annotations


class PersistenceError(Exception):
    """Base exception for all mapping and store errors.

    Attributes:
        entity_name: The name of the collection involved.
        operation: The operation that failed (e.g. ``"create"``, ``"materialize"``).
        detail: A sanitised description of what went wrong.
    """

    def __init__(
        self,
        *,
        entity_name: str,
        operation: str,
        detail: str,
        cause: Exception | None = None,
    ) -> None:
        self.entity_name = entity_name
        self.operation = operation
        self.detail = detail
        msg = f"[{entity_name}] {operation} failed: {detail}"
        super().__init__(msg)
        if cause is not None:
            self.__cause__ = cause


class ConnectionFailedError(PersistenceError):
    """Raised when the store cannot be reached or the adapter was disconnected."""


class MappingError(PersistenceError):
    """Raised when a record cannot be serialized or deserialized against its collection."""


class UniqueConstraintViolationError(PersistenceError):
    """Raised when a write violates a uniqueness constraint."""


class ForeignKeyConstraintViolationError(PersistenceError):
    """Raised when a write references a document that does not exist."""


class NotNullConstraintViolationError(PersistenceError):
    """Raised when a write leaves a required field empty."""


class CheckConstraintViolationError(PersistenceError):
    """Raised when a write is rejected by a validation rule."""


class InvalidCommandError(PersistenceError):
    """Raised for any write failure without a more specific mapping."""


class InvalidQueryError(PersistenceError):
    """Raised for any failure while reading from the store."""


class TransactionError(PersistenceError):
    """Raised when a transaction fails to commit or roll back."""


class ArgumentError(ValueError):
    """Raised when a caller passes an invalid parameter (e.g. a negative limit)."""


class Rollback(Exception):
    """Raise inside a transaction block to roll it back.

    The transaction swallows it unless the ``"reraise"`` rollback policy is used.
    """


_CONNECTION_ERROR_NAMES = frozenset(
    {"ConnectionFailure", "ServerSelectionTimeoutError", "AutoReconnect", "NetworkTimeout"}
)


def is_connection_error(exc: BaseException) -> bool:
    """Check whether *exc* indicates a connection-level failure.

    Detects PyMongo ``ConnectionFailure`` and its network-layer subclasses by
    class name, so in-memory and test doubles can participate without the import.
    """
    type_names = {cls.__name__ for cls in type(exc).__mro__}
    return bool(type_names & _CONNECTION_ERROR_NAMES)
