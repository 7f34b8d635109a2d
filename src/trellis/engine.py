"""Engine: the call surface for registering templates and running them.

A run normalizes the request, expands and orders the dependency closure,
then resolves and creates each template in order inside the strategy's
execution wrapper. The first failure stops the run; with the persisted
strategy everything created earlier in the run is rolled back.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from trellis.config import DB_FILENAME, find_trellis_root, get_default_strategy, read_config
from trellis.datalayer import DataLayer, SQLiteDataLayer
from trellis.entities import kind_of
from trellis.errors import CreationFailedError, InvalidCustomFunctionError, TrellisError
from trellis.loader import load_project
from trellis.overrides import compose, normalize_request
from trellis.planner import ExecutionPlan, plan_execution
from trellis.resolver import AttributeResolver
from trellis.scenarios import Scenario, ScenarioBook
from trellis.schema import KindSchema, SchemaCatalog
from trellis.sequence import Sequence
from trellis.store import TemplateStore
from trellis.strategies import CreateOptions, CreationStrategy, InMemoryStrategy, PersistedStrategy
from trellis.templates import Ref, Template

logger = logging.getLogger(__name__)


class Engine:
    def __init__(
        self,
        catalog: SchemaCatalog | None = None,
        *,
        store: TemplateStore | None = None,
        scenarios: ScenarioBook | None = None,
        sequence: Sequence | None = None,
        data_layer: DataLayer | None = None,
        default_strategy: str = "persisted",
    ) -> None:
        self.catalog = catalog if catalog is not None else SchemaCatalog()
        self.store = store if store is not None else TemplateStore(self.catalog)
        self.scenarios = scenarios if scenarios is not None else ScenarioBook()
        self.sequence = sequence if sequence is not None else Sequence()
        self.data_layer = data_layer
        self.default_strategy = default_strategy
        self.resolver = AttributeResolver(self.store, self.sequence)

    @classmethod
    def from_project(cls, project_path: Path | None = None) -> Engine:
        """Build an Engine from .trellis/ discovered from project_path (or cwd)."""
        trellis_dir = find_trellis_root(project_path)
        config = read_config(trellis_dir)
        catalog = SchemaCatalog()
        scenarios = ScenarioBook()
        load_project(trellis_dir, catalog, scenarios, enabled_packs=config.get("enabled_packs"))
        data_layer = SQLiteDataLayer(trellis_dir / config.get("database", DB_FILENAME), catalog)
        data_layer.initialize()
        return cls(
            catalog,
            scenarios=scenarios,
            data_layer=data_layer,
            default_strategy=get_default_strategy(config),
        )

    def close(self) -> None:
        if isinstance(self.data_layer, SQLiteDataLayer):
            self.data_layer.close()

    def __enter__(self) -> Engine:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # -- Definitions ----------------------------------------------------------

    def declare(self, schema: KindSchema, templates: Iterable[Template] = ()) -> None:
        self.catalog.declare(schema, templates)

    def register(self, kind: str, templates: Iterable[Template] | None = None) -> list[Template]:
        return self.store.register(kind, templates)

    def add_scenario(self, scenario: Scenario) -> None:
        self.scenarios.add(scenario)

    def clear(self) -> None:
        """Forget every registered template. Declarations and scenarios stay."""
        self.store.clear()

    # -- Running --------------------------------------------------------------

    def strategy_for(self, strategy: str | CreationStrategy | None = None) -> CreationStrategy:
        if isinstance(strategy, CreationStrategy):
            return strategy
        name = strategy or self.default_strategy
        if name == "memory":
            return InMemoryStrategy(self.catalog)
        if name == "persisted":
            if self.data_layer is None:
                msg = "The persisted strategy needs a data layer; pass data_layer= or use strategy='memory'"
                raise ValueError(msg)
            return PersistedStrategy(self.data_layer, self.catalog)
        msg = f"Unknown strategy {name!r}. Expected 'persisted', 'memory' or a CreationStrategy"
        raise ValueError(msg)

    def plan(self, refs: Iterable[Any], overrides: Mapping[Any, Any] | None = None) -> ExecutionPlan:
        targets, override_map = normalize_request(refs, overrides)
        return plan_execution(self.store, targets, override_map)

    def run(
        self,
        refs: Iterable[Any],
        *,
        strategy: str | CreationStrategy | None = None,
        overrides: Mapping[Any, Any] | None = None,
        tenant: Any = None,
        actor: Any = None,
        authorize: bool | None = None,
        context: Mapping[str, Any] | None = None,
        trace_id: str | None = None,
    ) -> dict[Ref, Any]:
        """Create ``refs`` and everything they depend on.

        Returns every created entity keyed by its ref, dependencies included.
        """
        trace_id = trace_id or uuid.uuid4().hex
        log_extra: dict[str, Any] = {"component": "engine", "trace_id": trace_id}
        start = time.monotonic()
        creator = self.strategy_for(strategy)
        plan = self.plan(refs, overrides)
        logger.info(
            "Running %d step(s) with %s strategy: %s",
            len(plan.steps),
            creator.name,
            ", ".join(str(r) for r in plan.refs),
            extra=log_extra,
        )
        defaults = CreateOptions(
            tenant=tenant,
            actor=actor,
            authorize=authorize,
            trace_id=trace_id,
            context=dict(context or {}),
        )
        created: dict[Ref, Any] = {}

        def execute() -> None:
            for template in plan.steps:
                self._create_step(template, plan, created, creator, defaults)

        try:
            creator.wrap_execution(plan, defaults, execute)
        except Exception as exc:
            duration_ms = round((time.monotonic() - start) * 1000, 2)
            logger.error("Run failed: %s", exc, extra={**log_extra, "duration_ms": duration_ms, "error": type(exc).__name__})
            raise
        duration_ms = round((time.monotonic() - start) * 1000, 2)
        logger.info("Run finished: created %d entities", len(plan.steps), extra={**log_extra, "duration_ms": duration_ms})
        return created

    def run_one(self, kind: str, name: str, **kwargs: Any) -> Any:
        """Run a single template and return just its entity."""
        created = self.run([(kind, name)], **kwargs)
        ref = self.store.resolve(kind, name) or Ref(kind, name)
        return created[ref]

    def run_all(self, kind: str, **kwargs: Any) -> dict[Ref, Any]:
        """Run every template registered for ``kind``."""
        refs = [tpl.ref for tpl in self.store.list(kind)]
        if not refs:
            return {}
        return self.run(refs, **kwargs)

    def run_scenario(self, name: str, **kwargs: Any) -> dict[str, Any]:
        """Run a scenario; returns every created entity keyed by template name."""
        resolved = self.scenarios.resolve(name)
        refs_by_key = self.scenarios.validate(name, self.store)
        scenario_overrides: dict[Ref, dict[str, Any]] = {}
        for key, attrs in resolved.items():
            scenario_overrides.setdefault(refs_by_key[key], {}).update(attrs)
        extra = kwargs.pop("overrides", None) or {}
        _, caller_overrides = normalize_request(refs_by_key.values(), extra)
        overrides = compose(scenario_overrides, caller_overrides)

        logger.info("Running scenario %s", name, extra={"component": "engine"})
        created = self.run(list(dict.fromkeys(refs_by_key.values())), overrides=overrides, **kwargs)
        return {ref.name: entity for ref, entity in created.items()}

    def _create_step(
        self,
        template: Template,
        plan: ExecutionPlan,
        created: dict[Ref, Any],
        creator: CreationStrategy,
        defaults: CreateOptions,
    ) -> None:
        ref = template.ref
        try:
            resolved = self.resolver.resolve(template, plan.override_for(ref), created, creator)
        except TrellisError:
            raise
        except Exception as exc:
            raise self._creation_failed(template, exc, defaults) from exc
        try:
            entity = creator.create(template, resolved, defaults)
        except InvalidCustomFunctionError:
            raise
        except Exception as exc:
            # Trellis errors raised by host or custom code are creation failures too.
            raise self._creation_failed(template, exc, defaults) from exc

        created[ref] = entity
        concrete = kind_of(entity)
        if concrete != template.kind and concrete in self.catalog:
            created.setdefault(Ref(concrete, template.name), entity)
        logger.debug("Created %s", ref, extra={"component": "engine", "ref": str(ref), "trace_id": defaults.trace_id})

    def _creation_failed(self, template: Template, exc: Exception, defaults: CreateOptions) -> CreationFailedError:
        logger.error(
            "Failed to create %s: %s",
            template.ref,
            exc,
            extra={"component": "engine", "ref": str(template.ref), "trace_id": defaults.trace_id, "error": type(exc).__name__},
        )
        return CreationFailedError(template.kind, template.name, exc)
