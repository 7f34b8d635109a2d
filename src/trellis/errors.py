"""Exception taxonomy for trellis.

Every error derives from ``TrellisError`` and from the builtin exception a
caller would naturally catch (``KeyError`` for lookups, ``ValueError`` for
bad input), so existing ``except KeyError`` call sites keep working.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any


class TrellisError(Exception):
    """Base class for all trellis errors."""


class TemplateNotFoundError(TrellisError, KeyError):
    """Raised when a (kind, name) template cannot be resolved."""

    def __init__(self, kind: str, name: str, known: Iterable[Any] = ()) -> None:
        self.kind = kind
        self.name = name
        self.known = sorted(str(k) for k in known)
        msg = f"Template not found: {kind}:{name}"
        if self.known:
            msg += f". Known templates: {', '.join(self.known)}"
        super().__init__(msg)

    def __str__(self) -> str:
        # KeyError.__str__ repr()s the argument; keep the message readable.
        return str(self.args[0])


class UnknownScenarioError(TrellisError, KeyError):
    """Raised when a scenario (or a scenario parent) is not defined."""

    def __init__(self, name: str, available: Iterable[str] = ()) -> None:
        self.name = name
        self.available = sorted(available)
        msg = f"Unknown scenario: {name!r}"
        if self.available:
            msg += f". Available: {', '.join(self.available)}"
        super().__init__(msg)

    def __str__(self) -> str:
        return str(self.args[0])


class UnknownScenarioReferenceError(TrellisError, ValueError):
    """Raised when a scenario names a template that does not exist."""

    def __init__(self, scenario: str, name: str) -> None:
        self.scenario = scenario
        self.name = name
        super().__init__(f"Unknown resources referenced in scenario {scenario!r}: {name}")


class CircularDependencyError(TrellisError, ValueError):
    """Raised when template references form a cycle."""

    def __init__(self, path: Sequence[Any]) -> None:
        self.path = list(path)
        rendered = " -> ".join(str(p) for p in self.path)
        super().__init__(f"Circular dependency detected: {rendered}")


class CircularExtensionError(TrellisError, ValueError):
    """Raised when scenario ``extends`` chains loop back on themselves."""

    def __init__(self, path: Sequence[str]) -> None:
        self.path = list(path)
        super().__init__(f"Circular scenario extension: {' -> '.join(self.path)}")


class CreationFailedError(TrellisError, RuntimeError):
    """Raised when the creation strategy fails for one template."""

    def __init__(self, kind: str, name: str, cause: BaseException | str) -> None:
        self.kind = kind
        self.name = name
        self.cause = cause
        super().__init__(f"Failed to create {kind}:{name}: {cause}")


class InvalidCustomFunctionError(TrellisError, TypeError):
    """Raised when a custom creation function has an unusable signature."""

    def __init__(self, signature: str) -> None:
        self.signature = signature
        super().__init__(
            f"Invalid custom function {signature}: expected a callable taking (attributes, options, *extra_args)",
        )
