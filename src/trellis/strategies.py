"""Creation strategies: how a resolved template becomes an entity.

``PersistedStrategy`` goes through a host data layer inside one
transaction per run. ``InMemoryStrategy`` builds ``Entity`` records
directly and never touches storage. Either one hands off to a custom
function when the template (or its kind) declares one.
"""

from __future__ import annotations

import inspect
import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, ClassVar

from trellis.datalayer import DataLayer
from trellis.entities import Entity, primary_key_of
from trellis.errors import InvalidCustomFunctionError
from trellis.resolver import ResolvedAttributes
from trellis.schema import KindSchema, SchemaCatalog
from trellis.templates import ACTOR_KEY, AUTHORIZE_KEY, FunctionSpec, Template, load_callable, split_function

if TYPE_CHECKING:
    from trellis.planner import ExecutionPlan

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreateOptions:
    """Everything besides attributes that one create call needs."""

    action: str | None = None
    tenant: Any = None
    actor: Any = None
    authorize: bool | None = None
    explicit_nil_keys: frozenset[str] = frozenset()
    virtual_keys: frozenset[str] = frozenset()
    trace_id: str = ""
    context: Mapping[str, Any] = field(default_factory=dict)


def call_custom_function(
    function: FunctionSpec,
    attributes: dict[str, Any],
    options: CreateOptions,
) -> Any:
    """Call ``function(attributes, options, *extra_args)`` after checking it can take them.

    ``function`` is a callable or ``"module:function"`` string, optionally
    wrapped in a tuple with fixed extra arguments: ``(build, "draft")``.
    """
    target, extra_args = split_function(function)
    func = load_callable(target)
    try:
        inspect.signature(func).bind(attributes, options, *extra_args)
    except TypeError:
        name = target if isinstance(target, str) else getattr(func, "__qualname__", repr(func))
        raise InvalidCustomFunctionError(f"{name} with {len(extra_args)} extra argument(s)") from None
    except ValueError:
        pass  # builtins without a signature; let the call decide
    return func(attributes, options, *extra_args)


class CreationStrategy(ABC):
    name: ClassVar[str]

    def __init__(self, catalog: SchemaCatalog) -> None:
        self.catalog = catalog

    def create(self, template: Template, resolved: ResolvedAttributes, defaults: CreateOptions) -> Any:
        """Create one entity, routing to the custom function when declared."""
        schema = self.catalog.get(template.kind) or KindSchema(kind=template.kind)
        attrs = dict(resolved.values)
        options = replace(
            defaults,
            action=template.action or schema.create_action,
            explicit_nil_keys=resolved.explicit_nil_keys,
            virtual_keys=template.virtuals,
        )
        function = template.function or schema.create_function
        if function is not None:
            tenant = options.tenant
            if schema.partition_key and attrs.get(schema.partition_key) is not None:
                tenant = attrs[schema.partition_key]
            actor = attrs.get(ACTOR_KEY, options.actor)
            return call_custom_function(function, attrs, replace(options, tenant=tenant, actor=actor))
        return self.create_entity(schema, attrs, options)

    @abstractmethod
    def create_entity(self, schema: KindSchema, attributes: dict[str, Any], options: CreateOptions) -> Any:
        """Create one entity of ``schema.kind`` from concrete attributes."""

    @abstractmethod
    def reference_handle(self, entity: Any, schema: KindSchema | None) -> Any:
        """What a relationship attribute pointing at ``entity`` is set to."""

    def wrap_execution(self, plan: ExecutionPlan, options: CreateOptions, body: Callable[[], Any]) -> Any:
        return body()


class PersistedStrategy(CreationStrategy):
    name = "persisted"

    def __init__(self, data_layer: DataLayer, catalog: SchemaCatalog) -> None:
        super().__init__(catalog)
        self.data_layer = data_layer

    def create_entity(self, schema: KindSchema, attributes: dict[str, Any], options: CreateOptions) -> Any:
        tenant = options.tenant
        if schema.partition_key:
            value = attributes.pop(schema.partition_key, None)
            if value is not None:
                tenant = value
        actor = attributes.pop(ACTOR_KEY, options.actor)
        authorize = attributes.pop(AUTHORIZE_KEY, options.authorize)
        if authorize is None:
            authorize = actor is not None
        # Unset attributes are left to the host's defaults; explicit nulls are kept.
        values = {k: v for k, v in attributes.items() if v is not None or k in options.explicit_nil_keys}
        return self.data_layer.create(
            schema.kind,
            values,
            replace(options, tenant=tenant, actor=actor, authorize=bool(authorize)),
        )

    def reference_handle(self, entity: Any, schema: KindSchema | None) -> Any:
        return primary_key_of(entity, schema.primary_key if schema is not None else "id")

    def wrap_execution(self, plan: ExecutionPlan, options: CreateOptions, body: Callable[[], Any]) -> Any:
        with self.data_layer.transaction(plan.kinds()):
            return body()


class InMemoryStrategy(CreationStrategy):
    name = "memory"

    def create_entity(self, schema: KindSchema, attributes: dict[str, Any], options: CreateOptions) -> Entity:
        attributes.pop(AUTHORIZE_KEY, None)
        pk = schema.primary_key
        if pk and attributes.get(pk) is None and pk not in options.explicit_nil_keys:
            attributes[pk] = str(uuid.uuid4())
        if schema.partition_key and attributes.get(schema.partition_key) is None and options.tenant is not None:
            attributes[schema.partition_key] = options.tenant
        now = datetime.now(UTC)
        for ts in schema.timestamps:
            if attributes.get(ts) is None:
                attributes[ts] = now
        return Entity(schema.kind, attributes)

    def reference_handle(self, entity: Any, schema: KindSchema | None) -> Any:
        return entity
