"""Collection metadata and entity <-> record serialization."""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ValidationError

from ninja_docmap.coercer import IdentityCoercer
from ninja_docmap.exceptions import ArgumentError, MappingError

logger = logging.getLogger(__name__)


def normalize_key(key: Any) -> str:
    """Align a record key with the ``str`` names used by the mapping."""
    if isinstance(key, Enum):
        return str(key.value)
    if isinstance(key, str):
        return key
    if isinstance(key, bytes):
        return key.decode("utf-8")
    raise TypeError(f"unsupported record key type {type(key).__name__}")


def _entity_attributes(entity: type) -> list[str]:
    if isinstance(entity, type) and issubclass(entity, BaseModel):
        return list(entity.model_fields)
    if dataclasses.is_dataclass(entity):
        return [f.name for f in dataclasses.fields(entity)]
    raise ArgumentError(
        f"Cannot derive attributes from {entity!r}; pass them explicitly via `columns`."
    )


@dataclass(frozen=True)
class MappedCollection:
    """Static schema knowledge for one collection.

    Attributes:
        name: The collection (table) name in the store.
        entity: The entity class records are deserialized into.
        identity: The entity attribute holding the identity.
        attributes: Entity attribute name -> store column name, in record order.
        coercer: Identity coercer applied on the way in and out.

    Identities are strings on the wire and are handed to the entity as read.
    Pydantic models coerce them to the declared field type; dataclasses and
    plain classes receive the ``str`` form, so an ``id: int`` dataclass
    reads back as ``id="5"``.
    """

    name: str
    entity: type
    identity: str
    attributes: Mapping[str, str]
    coercer: type[IdentityCoercer] = IdentityCoercer

    def __post_init__(self) -> None:
        if self.identity not in self.attributes:
            raise ArgumentError(f"Identity attribute {self.identity!r} is not mapped for {self.name!r}")
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))

    @classmethod
    def for_entity(
        cls,
        name: str,
        entity: type,
        *,
        identity: str = "id",
        columns: Mapping[str, str] | Iterable[str] | None = None,
        identity_column: str | None = None,
        coercer: type[IdentityCoercer] = IdentityCoercer,
    ) -> MappedCollection:
        """Build a collection from a pydantic model or dataclass.

        ``columns`` may rename attributes (``{"attr": "column"}``) or restrict
        them (an iterable of attribute names). ``identity_column`` overrides the
        store column for the identity attribute.
        """
        if columns is None:
            attributes = {attr: attr for attr in _entity_attributes(entity)}
        elif isinstance(columns, Mapping):
            attributes = {attr: columns.get(attr, attr) for attr in _entity_attributes(entity)}
        else:
            attributes = {attr: attr for attr in columns}
        if identity_column is not None:
            attributes[identity] = identity_column
        return cls(name=name, entity=entity, identity=identity, attributes=attributes, coercer=coercer)

    @property
    def identity_column(self) -> str:
        return self.attributes[self.identity]

    def column(self, attribute: str) -> str:
        """Store column for *attribute*; unmapped names pass through unchanged."""
        return self.attributes.get(attribute, attribute)

    def serialize(self, entity: Any) -> dict[str, Any]:
        """Turn *entity* into a wire record; an unset identity is omitted."""
        values = self._extract(entity)
        record: dict[str, Any] = {}
        for attr, col in self.attributes.items():
            if attr not in values:
                raise MappingError(
                    entity_name=self.name,
                    operation="serialize",
                    detail=f"Entity has no attribute '{attr}'.",
                )
            value = values[attr]
            if attr == self.identity:
                if value is None:
                    continue
                value = self.coercer.dump(value)
            record[col] = value
        return record

    def deserialize(self, records: Iterable[Any]) -> list[Any]:
        """Build one entity per record, preserving input order."""
        return [self._load(record) for record in records]

    def normalize(self, record: Any) -> dict[str, Any]:
        if not isinstance(record, Mapping):
            raise MappingError(
                entity_name=self.name,
                operation="deserialize",
                detail=f"Expected a mapping record, got {type(record).__name__}.",
            )
        try:
            return {normalize_key(key): value for key, value in record.items()}
        except (TypeError, UnicodeDecodeError) as exc:
            raise MappingError(
                entity_name=self.name,
                operation="deserialize",
                detail=f"Record keys could not be normalized: {exc}",
                cause=exc,
            ) from exc

    def _load(self, record: Any) -> Any:
        normalized = self.normalize(record)
        values = {attr: normalized[col] for attr, col in self.attributes.items() if col in normalized}
        if self.identity in values:
            values[self.identity] = self.coercer.load(values[self.identity])
        try:
            if issubclass(self.entity, BaseModel):
                return self.entity.model_validate(values)
            return self.entity(**values)
        except (ValidationError, TypeError) as exc:
            logger.error("Deserialization failed for %s: %s", self.name, type(exc).__name__)
            raise MappingError(
                entity_name=self.name,
                operation="deserialize",
                detail="Record does not match the entity schema.",
                cause=exc,
            ) from exc

    @staticmethod
    def _extract(entity: Any) -> dict[str, Any]:
        if isinstance(entity, BaseModel):
            return entity.model_dump()
        if dataclasses.is_dataclass(entity) and not isinstance(entity, type):
            return {f.name: getattr(entity, f.name) for f in dataclasses.fields(entity)}
        if isinstance(entity, Mapping):
            return dict(entity)
        return vars(entity)


class Mapper:
    """Registry of mapped collections, built once at configuration time."""

    def __init__(self) -> None:
        self._collections: dict[str, MappedCollection] = {}

    def collection(self, name: str, entity: type, **options: Any) -> MappedCollection:
        """Map *entity* onto the store collection *name*.

        Keyword options are forwarded to :meth:`MappedCollection.for_entity`.
        """
        if name in self._collections:
            raise ArgumentError(f"Collection {name!r} is already mapped")
        mapped = MappedCollection.for_entity(name, entity, **options)
        self._collections[name] = mapped
        return mapped

    def register(self, mapped: MappedCollection) -> MappedCollection:
        if mapped.name in self._collections:
            raise ArgumentError(f"Collection {mapped.name!r} is already mapped")
        self._collections[mapped.name] = mapped
        return mapped

    def __getitem__(self, name: str) -> MappedCollection:
        try:
            return self._collections[name]
        except KeyError:
            raise MappingError(
                entity_name=name,
                operation="lookup",
                detail=f"Collection is not mapped. Available: {sorted(self._collections)}",
            ) from None

    def __contains__(self, name: object) -> bool:
        return name in self._collections

    def names(self) -> list[str]:
        return list(self._collections)
