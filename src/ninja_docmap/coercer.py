"""Identity coercion between store acknowledgements, records and predicates."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any


class IdentityCoercer:
    """Extracts and normalizes identity values.

    ``load`` accepts a write acknowledgement (``{"generated_keys": [...]}``),
    a driver result exposing ``inserted_id``, or a bare identity value read
    back from a record. ``dump`` produces the string form used on the wire and
    in identity look-ups.
    """

    @classmethod
    def load(cls, value: Any) -> Any:
        """Return the identity carried by *value*, or ``None`` if there is none.

        Never raises: the identity may legitimately be caller-supplied, in
        which case the acknowledgement carries nothing useful. A mapping is
        always read as an acknowledgement and never acts as an identity
        itself, so a mapping without ``generated_keys`` loads to ``None``.
        """
        if value is None:
            return None
        if isinstance(value, Mapping):
            try:
                return value["generated_keys"][0]
            except (KeyError, IndexError, TypeError):
                return None
        inserted_id = getattr(value, "inserted_id", None)
        if inserted_id is not None:
            return inserted_id
        if isinstance(value, (list, tuple, set)):
            return None
        return value

    @classmethod
    def dump(cls, value: Any) -> str | None:
        if value is None:
            return None
        return str(value)
