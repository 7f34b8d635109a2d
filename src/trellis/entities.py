"""Entity: the record type produced by in-memory creation and data-layer reads."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any


class Entity(Mapping[str, Any]):
    """An immutable record of one created template.

    Fields are reachable both as attributes (``post.title``) and as items
    (``post["title"]``).
    """

    __slots__ = ("_fields", "kind")

    def __init__(self, kind: str, fields: Mapping[str, Any] | None = None) -> None:
        object.__setattr__(self, "kind", kind)
        object.__setattr__(self, "_fields", dict(fields or {}))

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self._fields[name]
        except KeyError:
            msg = f"{self.kind} entity has no field {name!r}"
            raise AttributeError(msg) from None

    def __setattr__(self, name: str, value: Any) -> None:
        msg = "Entity is immutable"
        raise AttributeError(msg)

    def __getitem__(self, key: str) -> Any:
        return self._fields[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Entity):
            return NotImplemented
        return self.kind == other.kind and self._fields == other._fields

    def __hash__(self) -> int:
        return hash((self.kind, self._fields.get("id")))

    def __repr__(self) -> str:
        return f"Entity({self.kind!r}, {self._fields!r})"

    def to_dict(self) -> dict[str, Any]:
        return {key: value.to_dict() if isinstance(value, Entity) else value for key, value in self._fields.items()}


def kind_of(entity: Any) -> str:
    """Concrete kind of a created entity, whatever produced it."""
    kind = getattr(entity, "kind", None)
    if isinstance(kind, str) and kind:
        return kind
    return type(entity).__name__


def primary_key_of(entity: Any, field: str | None = "id") -> Any:
    if field is None:
        return entity
    if isinstance(entity, Mapping):
        return entity.get(field)
    return getattr(entity, field, None)
