"""Normalization and composition of per-run attribute overrides."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from trellis.templates import Ref

OverrideMap = dict[Ref, dict[str, Any]]


def parse_entry(entry: Any) -> tuple[Ref, dict[str, Any] | None]:
    """Split a run entry into its ref and optional inline overrides.

    Accepted: ``Ref``, ``(kind, name)``, ``"Kind:name"`` and
    ``(kind, name, {attr: value})``.
    """
    if isinstance(entry, tuple) and len(entry) == 3:
        kind, name, attrs = entry
        if not isinstance(attrs, Mapping):
            msg = f"Inline overrides for {kind}:{name} must be a mapping, got {type(attrs).__name__}"
            raise ValueError(msg)
        return Ref.coerce((kind, name)), dict(attrs)
    return Ref.coerce(entry), None


def is_keyed_by_ref(overrides: Mapping[Any, Any]) -> bool:
    return bool(overrides) and all(isinstance(key, tuple) for key in overrides)


def normalize_request(
    entries: Iterable[Any],
    overrides: Mapping[Any, Any] | None = None,
) -> tuple[list[Ref], OverrideMap]:
    """Return the ordered, de-duplicated refs and the composed override map.

    Precedence, lowest first: the template's own attributes (applied later
    by the resolver), the top-level ``overrides`` argument, the inline
    per-entry map. Maps merge key by key.
    """
    refs: dict[Ref, None] = {}
    inline: OverrideMap = {}
    for entry in entries:
        ref, attrs = parse_entry(entry)
        refs.setdefault(ref)
        if attrs is not None:
            inline.setdefault(ref, {}).update(attrs)

    top: OverrideMap = {}
    if overrides:
        if is_keyed_by_ref(overrides):
            for key, attrs in overrides.items():
                if not isinstance(attrs, Mapping):
                    msg = f"Overrides for {key} must be a mapping, got {type(attrs).__name__}"
                    raise ValueError(msg)
                top.setdefault(Ref.coerce(key), {}).update(attrs)
        elif len(refs) == 1:
            top[next(iter(refs))] = dict(overrides)
        else:
            msg = (
                f"A bare override map needs exactly one template, got {len(refs)}; "
                "key the overrides by (kind, name) instead"
            )
            raise ValueError(msg)

    return list(refs), compose(top, inline)


def compose(*layers: Mapping[Ref, Mapping[str, Any]]) -> OverrideMap:
    """Merge override maps; later layers win key by key."""
    merged: OverrideMap = {}
    for layer in layers:
        for ref, attrs in layer.items():
            merged.setdefault(ref, {}).update(attrs)
    return merged
