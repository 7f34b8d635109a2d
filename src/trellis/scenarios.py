"""Named scenarios: reusable override sets that can extend one another.

A scenario lists templates (by bare name or by ``(kind, name)``) with the
attributes to override for each. ``extends`` pulls in parent scenarios:

- templates only the parent names are inherited as they are,
- templates only the child names are added,
- templates both name are merged key by key, the child winning.

With several parents, earlier parents win over later ones.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from trellis.errors import CircularExtensionError, UnknownScenarioError, UnknownScenarioReferenceError
from trellis.store import TemplateStore
from trellis.templates import Ref

logger = logging.getLogger(__name__)

ScenarioKey = str | Ref
Resolved = dict[ScenarioKey, dict[str, Any]]


def _coerce_key(key: Any) -> ScenarioKey:
    if isinstance(key, str) and ":" not in key:
        return key
    return Ref.coerce(key)


@dataclass(frozen=True)
class Scenario:
    name: str
    entries: tuple[tuple[ScenarioKey, Mapping[str, Any]], ...] = ()
    extends: tuple[str, ...] = ()
    description: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            msg = "Scenario name must be non-empty"
            raise ValueError(msg)
        raw: Iterable[Any] = self.entries.items() if isinstance(self.entries, Mapping) else self.entries
        entries = []
        for item in raw:
            if not isinstance(item, tuple) or len(item) != 2 or not isinstance(item[1], Mapping):
                msg = f"Scenario {self.name!r}: entries must be (template, {{attr: value}}) pairs, got {item!r}"
                raise ValueError(msg)
            entries.append((_coerce_key(item[0]), MappingProxyType(dict(item[1]))))
        extends = (self.extends,) if isinstance(self.extends, str) else tuple(self.extends)
        object.__setattr__(self, "entries", tuple(entries))
        object.__setattr__(self, "extends", extends)


def merge_scenarios(parent: Resolved, child: Resolved) -> Resolved:
    """Lay ``child`` over ``parent``: parent order first, then child-only entries."""
    merged: Resolved = {}
    for key, attrs in parent.items():
        merged[key] = {**attrs, **child.get(key, {})}
    for key, attrs in child.items():
        if key not in merged:
            merged[key] = dict(attrs)
    return merged


class ScenarioBook:
    """Holds scenarios by name and resolves their ``extends`` chains."""

    def __init__(self) -> None:
        self._scenarios: dict[str, Scenario] = {}
        self._cache: dict[str, Resolved] = {}
        self._lock = threading.RLock()

    def add(self, scenario: Scenario) -> None:
        with self._lock:
            self._scenarios[scenario.name] = scenario
            self._cache.clear()

    def get(self, name: str) -> Scenario:
        try:
            return self._scenarios[name]
        except KeyError:
            raise UnknownScenarioError(name, self._scenarios) from None

    def names(self) -> list[str]:
        return list(self._scenarios)

    def __contains__(self, name: object) -> bool:
        return name in self._scenarios

    def clear(self) -> None:
        with self._lock:
            self._scenarios.clear()
            self._cache.clear()

    def resolve(self, name: str) -> Resolved:
        """Flatten ``name`` and its ancestors into one override set."""
        with self._lock:
            resolved = self._resolve(name, ())
        return {key: dict(attrs) for key, attrs in resolved.items()}

    def _resolve(self, name: str, path: tuple[str, ...]) -> Resolved:
        if name in path:
            raise CircularExtensionError([*path, name])
        cached = self._cache.get(name)
        if cached is not None:
            return cached
        scenario = self.get(name)

        own: Resolved = {}
        for key, attrs in scenario.entries:
            own.setdefault(key, {}).update(attrs)

        result = own
        for parent in scenario.extends:
            result = merge_scenarios(self._resolve(parent, (*path, name)), result)
        self._cache[name] = result
        return result

    def validate(self, name: str, store: TemplateStore) -> dict[ScenarioKey, Ref]:
        """Map every template the resolved scenario names to its store ref."""
        found: dict[ScenarioKey, Ref] = {}
        for key in self.resolve(name):
            ref = store.find_by_name(key) if isinstance(key, str) else store.resolve(key.kind, key.name)
            if ref is None:
                logger.warning("Scenario %s references unknown template %s", name, key, extra={"component": "scenarios"})
                raise UnknownScenarioReferenceError(name, str(key))
            found[key] = ref
        return found
