"""Trellis: dependency-ordered creation of named template graphs."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("trellis")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from trellis.engine import Engine
from trellis.entities import Entity
from trellis.errors import (
    CircularDependencyError,
    CircularExtensionError,
    CreationFailedError,
    InvalidCustomFunctionError,
    TemplateNotFoundError,
    TrellisError,
    UnknownScenarioError,
    UnknownScenarioReferenceError,
)
from trellis.scenarios import Scenario
from trellis.schema import KindSchema, Relationship, SchemaCatalog
from trellis.templates import Computed, Ref, Template

__all__ = [
    "CircularDependencyError",
    "CircularExtensionError",
    "Computed",
    "CreationFailedError",
    "Engine",
    "Entity",
    "InvalidCustomFunctionError",
    "KindSchema",
    "Ref",
    "Relationship",
    "Scenario",
    "SchemaCatalog",
    "Template",
    "TemplateNotFoundError",
    "TrellisError",
    "UnknownScenarioError",
    "UnknownScenarioReferenceError",
    "__version__",
]
