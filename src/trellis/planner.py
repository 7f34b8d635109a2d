"""Dependency expansion and execution planning."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from trellis.errors import CircularDependencyError, TemplateNotFoundError
from trellis.graph import find_cycle, topological_order
from trellis.store import TemplateStore
from trellis.templates import ACTOR_KEY, Ref, Template, actor_ref

logger = logging.getLogger(__name__)


@dataclass
class ExecutionPlan:
    """Templates in creation order plus the edges and overrides of one run."""

    steps: list[Template]
    edges: dict[Ref, list[Ref]] = field(default_factory=dict)
    overrides: dict[Ref, dict[str, Any]] = field(default_factory=dict)
    targets: list[Ref] = field(default_factory=list)

    @property
    def refs(self) -> list[Ref]:
        return [step.ref for step in self.steps]

    def kinds(self) -> list[str]:
        return list(dict.fromkeys(step.kind for step in self.steps))

    def override_for(self, ref: Ref) -> dict[str, Any]:
        return self.overrides.get(ref, {})

    def to_dict(self) -> dict[str, Any]:
        return {
            "targets": [str(r) for r in self.targets],
            "steps": [
                {"ref": str(step.ref), "depends_on": [str(d) for d in self.edges.get(step.ref, [])]}
                for step in self.steps
            ],
        }


def expand_dependencies(
    store: TemplateStore,
    targets: Sequence[Ref],
    overrides: Mapping[Ref, Mapping[str, Any]] | None = None,
) -> tuple[list[Ref], dict[Ref, list[Ref]], dict[Ref, dict[str, Any]]]:
    """Breadth-first closure of ``targets`` over template dependencies.

    Each template is inspected with its overrides applied, so an override
    can pull in (or drop) a dependency. Returns the discovered refs in
    discovery order, the edges between them, and the overrides re-keyed by
    the refs they resolved to.
    """
    overrides = overrides or {}
    queue: deque[Ref] = deque(Ref.coerce(t) for t in targets)
    nodes: list[Ref] = []
    edges: dict[Ref, list[Ref]] = {}
    applied: dict[Ref, dict[str, Any]] = {}

    while queue:
        requested = queue.popleft()
        resolved = store.resolve(requested.kind, requested.name)
        if resolved is None:
            raise TemplateNotFoundError(requested.kind, requested.name, store.refs())
        if resolved in edges:
            continue
        template = store.get(resolved.kind, resolved.name)
        override = {**overrides.get(resolved, {}), **overrides.get(requested, {})}
        if override:
            applied[resolved] = override
        attributes = template.with_attributes(override)
        explicit_actor = actor_ref(attributes.get(ACTOR_KEY))
        actor_dep = store.find_by_name(explicit_actor) if isinstance(explicit_actor, str) else explicit_actor

        nodes.append(resolved)
        deps: list[Ref] = []
        for dep in store.dependencies_of(template, attributes):
            # Relationship values only ever match their destination kind.
            if dep == actor_dep:
                dep_ref = store.resolve(dep.kind, dep.name)
            else:
                dep_ref = store.resolve_in_kind(dep.kind, dep.name)
            if dep_ref is None:
                if dep == explicit_actor:
                    raise TemplateNotFoundError(dep.kind, dep.name, store.refs())
                logger.debug("Treating %s as a literal value", dep, extra={"component": "planner"})
                continue
            deps.append(dep_ref)
            queue.append(dep_ref)
        edges[resolved] = deps

    return nodes, edges, applied


def plan_execution(
    store: TemplateStore,
    targets: Sequence[Ref],
    overrides: Mapping[Ref, Mapping[str, Any]] | None = None,
) -> ExecutionPlan:
    """Expand ``targets`` and order the closure so dependencies come first."""
    target_refs = [Ref.coerce(t) for t in targets]
    nodes, edges, applied = expand_dependencies(store, target_refs, overrides)
    # Overrides can introduce edges the store never saw at registration.
    cycle = find_cycle(edges)
    if cycle is not None:
        raise CircularDependencyError(cycle)
    order = topological_order(nodes, edges)
    steps = [store.get(ref.kind, ref.name) for ref in order]
    logger.debug(
        "Planned %d step(s): %s",
        len(steps),
        ", ".join(str(r) for r in order),
        extra={"component": "planner"},
    )
    return ExecutionPlan(steps=steps, edges=edges, overrides=applied, targets=target_refs)
