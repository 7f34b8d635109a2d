"""Template value types: references, templates and computed attribute values."""

from __future__ import annotations

import importlib
import inspect
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, NamedTuple

from trellis.errors import InvalidCustomFunctionError

# Attribute keys with engine-level meaning; never validated against the schema.
ACTOR_KEY = "actor"
AUTHORIZE_KEY = "authorize"
RESERVED_KEYS: frozenset[str] = frozenset({ACTOR_KEY, AUTHORIZE_KEY})

# A custom create function: a callable, a "module:function" string, or either
# one followed by fixed extra arguments.
FunctionSpec = Callable[..., Any] | str | tuple[Any, ...]


class Ref(NamedTuple):
    """Identity of a template: ``Ref("Post", "example_post")``."""

    kind: str
    name: str

    def __str__(self) -> str:
        return f"{self.kind}:{self.name}"

    @classmethod
    def parse(cls, raw: str) -> Ref:
        """Parse ``"Kind:name"``."""
        kind, sep, name = raw.partition(":")
        if not sep or not kind or not name:
            msg = f"Invalid template reference {raw!r}: expected 'Kind:name'"
            raise ValueError(msg)
        return cls(kind, name)

    @classmethod
    def coerce(cls, value: Any) -> Ref:
        if isinstance(value, Ref):
            return value
        if isinstance(value, str):
            return cls.parse(value)
        if isinstance(value, tuple) and len(value) == 2 and all(isinstance(v, str) for v in value):
            return cls(value[0], value[1])
        msg = f"Invalid template reference {value!r}: expected (kind, name)"
        raise ValueError(msg)


def load_callable(obj: Callable[..., Any] | str) -> Callable[..., Any]:
    """Return ``obj`` itself, or import it from a ``"package.module:attr"`` string."""
    if callable(obj):
        return obj
    if not isinstance(obj, str) or ":" not in obj:
        raise InvalidCustomFunctionError(repr(obj))
    module_name, _, attr_path = obj.partition(":")
    try:
        target: Any = importlib.import_module(module_name)
        for part in attr_path.split("."):
            target = getattr(target, part)
    except (ImportError, AttributeError) as exc:
        raise InvalidCustomFunctionError(obj) from exc
    if not callable(target):
        raise InvalidCustomFunctionError(obj)
    return target


def split_function(function: FunctionSpec) -> tuple[Callable[..., Any] | str, tuple[Any, ...]]:
    """Split a function descriptor into its target and fixed extra arguments."""
    if isinstance(function, tuple):
        if not function:
            raise InvalidCustomFunctionError(repr(function))
        return function[0], tuple(function[1:])
    return function, ()


def positional_arity(func: Callable[..., Any]) -> int | None:
    """Number of positional parameters ``func`` accepts, or None for ``*args``."""
    try:
        sig = inspect.signature(func)
    except (TypeError, ValueError):
        return None
    count = 0
    for param in sig.parameters.values():
        if param.kind is inspect.Parameter.VAR_POSITIONAL:
            return None
        if param.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD):
            count += 1
    return count


@dataclass(frozen=True)
class CallContext:
    """Passed to two-argument computed values."""

    kind: str
    name: str
    attribute: str


@dataclass(frozen=True)
class Computed:
    """An attribute value produced by calling ``func`` at resolution time.

    ``func`` receives ``args`` first, then up to two implicit arguments
    depending on how many positional parameters remain: the per-attribute
    sequence index, then a ``CallContext``.
    """

    func: Callable[..., Any] | str
    args: tuple[Any, ...] = ()

    def implicit_count(self) -> int:
        func = load_callable(self.func)
        arity = positional_arity(func)
        if arity is None:
            return 1
        implicit = arity - len(self.args)
        if implicit < 0 or implicit > 2:
            raise InvalidCustomFunctionError(f"{self.describe()} with {len(self.args)} fixed argument(s)")
        return implicit

    def evaluate(self, next_index: Callable[[], int], context: CallContext) -> Any:
        func = load_callable(self.func)
        implicit = self.implicit_count()
        extra: list[Any] = []
        if implicit >= 1:
            extra.append(next_index())
        if implicit == 2:
            extra.append(context)
        return func(*self.args, *extra)

    def describe(self) -> str:
        if isinstance(self.func, str):
            return self.func
        return getattr(self.func, "__qualname__", repr(self.func))


@dataclass(frozen=True)
class Template:
    """A named, reusable attribute set for one kind."""

    kind: str
    name: str
    attributes: Mapping[str, Any] = field(default_factory=dict)
    action: str | None = None
    function: FunctionSpec | None = None
    virtuals: frozenset[str] = frozenset()
    description: str = ""

    def __post_init__(self) -> None:
        if not self.kind or not self.name:
            msg = f"Template kind and name must be non-empty, got {self.kind!r}:{self.name!r}"
            raise ValueError(msg)
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))
        object.__setattr__(self, "virtuals", frozenset(self.virtuals))

    @property
    def ref(self) -> Ref:
        return Ref(self.kind, self.name)

    def with_attributes(self, overrides: Mapping[str, Any]) -> dict[str, Any]:
        """Base attributes with ``overrides`` laid on top (a fresh dict)."""
        merged = dict(self.attributes)
        merged.update(overrides)
        return merged


def actor_ref(value: Any) -> Ref | str | None:
    """Interpret an ``actor`` attribute value as a template reference.

    Returns a ``Ref`` for an explicit ``(kind, name)``, the bare name for a
    string, and None for anything else (an already-built actor entity).
    """
    if isinstance(value, Ref):
        return value
    if isinstance(value, tuple) and len(value) == 2 and all(isinstance(v, str) for v in value):
        return Ref(value[0], value[1])
    if isinstance(value, str) and value:
        return value
    return None
