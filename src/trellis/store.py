"""TemplateStore: the registry of templates keyed by (kind, name).

Registration derives each template's dependency edges and rejects the batch
if the combined graph would contain a cycle; a rejected batch leaves the
store exactly as it was.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping
from typing import Any

from trellis.errors import CircularDependencyError, TemplateNotFoundError
from trellis.graph import find_cycle
from trellis.schema import SchemaCatalog
from trellis.templates import ACTOR_KEY, Ref, Template, actor_ref

logger = logging.getLogger(__name__)


class TemplateStore:
    def __init__(self, catalog: SchemaCatalog | None = None) -> None:
        self.catalog = catalog if catalog is not None else SchemaCatalog()
        self._templates: dict[str, dict[str, Template]] = {}
        self._edges: dict[Ref, list[Ref]] = {}
        self._lock = threading.RLock()

    # -- Registration ---------------------------------------------------------

    def register(self, kind: str, templates: Iterable[Template] | None = None) -> list[Template]:
        """Register (or replace) the templates of ``kind``.

        With ``templates=None`` the templates declared for ``kind`` in the
        catalog are used. Raises CircularDependencyError if the new graph
        has a cycle; the store is unchanged in that case.
        """
        batch = list(templates) if templates is not None else self.catalog.templates_for(kind)
        by_name: dict[str, Template] = {}
        for tpl in batch:
            if tpl.kind != kind:
                msg = f"Cannot register {tpl.kind}:{tpl.name} under kind {kind!r}"
                raise ValueError(msg)
            if tpl.name in by_name:
                msg = f"Duplicate template name {tpl.name!r} for kind {kind!r}"
                raise ValueError(msg)
            by_name[tpl.name] = tpl

        with self._lock:
            candidate = {k: dict(v) for k, v in self._templates.items()}
            candidate[kind] = by_name
            edges: dict[Ref, list[Ref]] = {}
            for kind_templates in candidate.values():
                for tpl in kind_templates.values():
                    edges[tpl.ref] = self._extract_edges(tpl, tpl.attributes, candidate)

            cycle = find_cycle(edges)
            if cycle is not None:
                logger.warning(
                    "Rejected registration of %s: circular dependency %s",
                    kind,
                    " -> ".join(str(r) for r in cycle),
                    extra={"component": "store", "kind": kind},
                )
                raise CircularDependencyError(cycle)

            self._templates = candidate
            self._edges = edges
        logger.debug("Registered %d template(s) for %s", len(by_name), kind, extra={"component": "store", "kind": kind})
        return list(by_name.values())

    def clear(self) -> None:
        with self._lock:
            self._templates.clear()
            self._edges.clear()

    # -- Lookup ---------------------------------------------------------------

    def get(self, kind: str, name: str) -> Template:
        """Return the template for (kind, name), rebinding across kinds if needed."""
        ref = self.resolve(kind, name)
        if ref is None:
            raise TemplateNotFoundError(kind, name, self.refs())
        return self._templates[ref.kind][ref.name]

    def resolve(self, kind: str, name: str) -> Ref | None:
        """Return the ref that (kind, name) resolves to, or None.

        Touching an unregistered kind registers every kind of its domain
        first. If the kind does not define ``name``, the first registered
        kind (in registration order) that does is used instead.
        """
        with self._lock:
            self._ensure_domain(kind)
            if name in self._templates.get(kind, {}):
                return Ref(kind, name)
            return self._match_name(name, requested=kind)

    def resolve_in_kind(self, kind: str, name: str) -> Ref | None:
        """Like ``resolve`` but never rebinds: only ``kind`` itself is searched."""
        with self._lock:
            self._ensure_domain(kind)
            if name in self._templates.get(kind, {}):
                return Ref(kind, name)
            return None

    def find_by_name(self, name: str) -> Ref | None:
        """Cross-kind lookup for a bare template name."""
        with self._lock:
            found = self._match_name(name)
            if found is not None:
                return found
            for kind in self.catalog.kinds():
                if kind not in self._templates:
                    self.register(kind)
            return self._match_name(name)

    def list(self, kind: str | None = None) -> list[Template]:
        with self._lock:
            if kind is None:
                return [tpl for by_name in self._templates.values() for tpl in by_name.values()]
            self._ensure_domain(kind)
            return list(self._templates.get(kind, {}).values())

    def kinds(self) -> list[str]:
        return list(self._templates)

    def is_registered(self, kind: str) -> bool:
        return kind in self._templates

    def refs(self) -> list[Ref]:
        return [Ref(kind, name) for kind, by_name in self._templates.items() for name in by_name]

    def edges(self) -> dict[Ref, list[Ref]]:
        return {ref: list(deps) for ref, deps in self._edges.items()}

    def dependencies_of(self, template: Template, attributes: Mapping[str, Any] | None = None) -> list[Ref]:
        """Refs ``template`` depends on, given its (possibly overridden) attributes."""
        attrs = template.attributes if attributes is None else attributes
        with self._lock:
            return self._extract_edges(template, attrs, self._templates, lazy=True)

    # -- Internals ------------------------------------------------------------

    def _ensure_domain(self, kind: str) -> None:
        if kind in self._templates or kind not in self.catalog:
            return
        domain = self.catalog.domain_of(kind)
        siblings = self.catalog.kinds_in_domain(domain) if domain is not None else [kind]
        logger.debug("Discovering domain %s for %s", domain, kind, extra={"component": "store", "kind": kind})
        for sibling in siblings:
            if sibling not in self._templates:
                self.register(sibling)

    def _match_name(self, name: str, requested: str | None = None) -> Ref | None:
        matches = [kind for kind, by_name in self._templates.items() if name in by_name]
        if not matches:
            return None
        if len(matches) > 1:
            logger.warning(
                "Template name %r is defined by several kinds (%s); using %s",
                name,
                ", ".join(matches),
                matches[0],
                extra={"component": "store", "kind": requested or matches[0]},
            )
        return Ref(matches[0], name)

    def _extract_edges(
        self,
        template: Template,
        attributes: Mapping[str, Any],
        known: Mapping[str, Mapping[str, Template]],
        *,
        lazy: bool = False,
    ) -> list[Ref]:
        schema = self.catalog.get(template.kind)
        refs: dict[Ref, None] = {}
        for key, value in attributes.items():
            if key in template.virtuals:
                continue
            if key == ACTOR_KEY:
                target = actor_ref(value)
                if isinstance(target, Ref):
                    refs.setdefault(target)
                elif isinstance(target, str):
                    found = self.find_by_name(target) if lazy else _first_with_name(known, target)
                    if found is not None:
                        refs.setdefault(found)
                continue
            if schema is None or not isinstance(value, str) or not value:
                continue
            rel = schema.relationship_for(key)
            if rel is not None:
                refs.setdefault(Ref(rel.destination, value))
        return list(refs)


def _first_with_name(known: Mapping[str, Mapping[str, Template]], name: str) -> Ref | None:
    for kind, by_name in known.items():
        if name in by_name:
            return Ref(kind, name)
    return None
