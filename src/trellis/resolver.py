"""Turns a template plus overrides into the concrete attributes for creation."""

from __future__ import annotations

import functools
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from trellis.entities import kind_of
from trellis.sequence import Sequence
from trellis.store import TemplateStore
from trellis.templates import ACTOR_KEY, CallContext, Computed, Ref, Template, actor_ref

if TYPE_CHECKING:
    from trellis.strategies import CreationStrategy

_MISSING = object()


@dataclass(frozen=True)
class ResolvedAttributes:
    values: dict[str, Any]
    explicit_nil_keys: frozenset[str]


class AttributeResolver:
    def __init__(self, store: TemplateStore, sequence: Sequence) -> None:
        self.store = store
        self.sequence = sequence

    def resolve(
        self,
        template: Template,
        override: Mapping[str, Any] | None,
        created: Mapping[Ref, Any],
        strategy: CreationStrategy,
    ) -> ResolvedAttributes:
        """Merge, evaluate and substitute the attributes of one template.

        Only attributes the kind's schema declares as relationships are
        looked up in ``created``; a string elsewhere is always a literal.
        """
        override = override or {}
        values = template.with_attributes(override)
        explicit_nil = frozenset(key for key, value in override.items() if value is None)

        for key, value in values.items():
            if isinstance(value, Computed):
                counter = functools.partial(self.sequence.next, (template.kind, template.name, key))
                values[key] = value.evaluate(counter, CallContext(template.kind, template.name, key))

        schema = self.store.catalog.get(template.kind)
        for key, value in values.items():
            if key in template.virtuals:
                continue
            if key == ACTOR_KEY:
                actor = self._lookup_actor(value, created)
                if actor is not _MISSING:
                    values[key] = actor
                continue
            if schema is None or not isinstance(value, str):
                continue
            rel = schema.relationship_for(key)
            if rel is None:
                continue
            entity = self._lookup(rel.destination, value, created)
            if entity is not _MISSING:
                values[key] = strategy.reference_handle(entity, self.store.catalog.get(kind_of(entity)))

        return ResolvedAttributes(values=values, explicit_nil_keys=explicit_nil)

    def _lookup(self, kind: str, name: str, created: Mapping[Ref, Any]) -> Any:
        # Destination kind only; a miss leaves the value as a literal.
        return created.get(Ref(kind, name), _MISSING)

    def _lookup_actor(self, value: Any, created: Mapping[Ref, Any]) -> Any:
        target = actor_ref(value)
        if isinstance(target, Ref):
            ref = self.store.resolve(target.kind, target.name)
            if ref is not None and ref in created:
                return created[ref]
            return self._lookup(target.kind, target.name, created)
        if isinstance(target, str):
            ref = self.store.find_by_name(target)
            if ref is not None and ref in created:
                return created[ref]
        return _MISSING
