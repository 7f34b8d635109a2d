"""Schema catalog: what the engine knows about each kind.

A ``KindSchema`` declares a kind's attributes, which of those attributes are
relationships (and to which kind they point), and the bits of creation
metadata the strategies need: primary key, partition key, timestamps and
the default create action. Kinds are grouped into domains; touching one
kind of a domain makes the store register its siblings too.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from trellis.templates import FunctionSpec, Template

DEFAULT_DOMAIN = "default"


@dataclass(frozen=True)
class Relationship:
    """A belongs-to style link: ``attribute`` holds a reference to ``destination``."""

    attribute: str
    destination: str
    name: str = ""


@dataclass(frozen=True)
class KindSchema:
    kind: str
    domain: str = DEFAULT_DOMAIN
    attributes: tuple[str, ...] = ()
    relationships: tuple[Relationship, ...] = ()
    primary_key: str | None = "id"
    partition_key: str | None = None
    timestamps: tuple[str, ...] = ()
    required: tuple[str, ...] = ()
    requires_actor: bool = False
    create_action: str = "create"
    create_function: FunctionSpec | None = None

    def relationship_for(self, attribute: str) -> Relationship | None:
        for rel in self.relationships:
            if rel.attribute == attribute:
                return rel
        return None

    @property
    def relationship_attributes(self) -> frozenset[str]:
        return frozenset(rel.attribute for rel in self.relationships)

    def knows_attribute(self, attribute: str) -> bool:
        return (
            attribute in self.attributes
            or attribute in self.relationship_attributes
            or attribute == self.primary_key
            or attribute == self.partition_key
            or attribute in self.timestamps
        )


@dataclass
class _Declaration:
    schema: KindSchema
    templates: list[Template] = field(default_factory=list)


class SchemaCatalog:
    """Registry of kind schemas and the templates declared alongside them.

    Declaration order is preserved; it decides cross-kind rebinding order
    when the store registers a whole domain at once.
    """

    def __init__(self) -> None:
        self._kinds: dict[str, _Declaration] = {}
        self._lock = threading.RLock()

    def declare(self, schema: KindSchema, templates: Iterable[Template] = ()) -> None:
        """Declare (or redeclare) a kind and its templates."""
        batch = list(templates)
        for tpl in batch:
            if tpl.kind != schema.kind:
                msg = f"Template {tpl.kind}:{tpl.name} declared under kind {schema.kind!r}"
                raise ValueError(msg)
        with self._lock:
            self._kinds[schema.kind] = _Declaration(schema=schema, templates=batch)

    def get(self, kind: str) -> KindSchema | None:
        decl = self._kinds.get(kind)
        return decl.schema if decl is not None else None

    def require(self, kind: str) -> KindSchema:
        schema = self.get(kind)
        if schema is None:
            msg = f"Unknown kind: {kind!r}. Known kinds: {', '.join(self.kinds()) or '(none)'}"
            raise KeyError(msg)
        return schema

    def __contains__(self, kind: object) -> bool:
        return kind in self._kinds

    def kinds(self) -> list[str]:
        return list(self._kinds)

    def domain_of(self, kind: str) -> str | None:
        schema = self.get(kind)
        return schema.domain if schema is not None else None

    def kinds_in_domain(self, domain: str) -> list[str]:
        return [k for k, decl in self._kinds.items() if decl.schema.domain == domain]

    def domains(self) -> list[str]:
        seen: dict[str, None] = {}
        for decl in self._kinds.values():
            seen.setdefault(decl.schema.domain)
        return list(seen)

    def templates_for(self, kind: str) -> list[Template]:
        decl = self._kinds.get(kind)
        return list(decl.templates) if decl is not None else []

    def clear(self) -> None:
        with self._lock:
            self._kinds.clear()
