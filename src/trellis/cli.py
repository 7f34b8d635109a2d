"""CLI for trellis.

Convention-based: discovers .trellis/ by walking up from cwd.

Usage:
    trellis init                                   # Initialize .trellis/ in cwd
    trellis kinds                                  # List declared kinds
    trellis templates [KIND]                       # List templates
    trellis plan Post:example_post                 # Show creation order
    trellis run Post:example_post                  # Create (persisted)
    trellis run Post:example_post --memory         # Create in memory only
    trellis run Post:example_post --set Post:example_post.title='"Hi"'
    trellis scenarios                              # List scenarios
    trellis scenario extended                      # Run a scenario
    trellis records Post                           # Show persisted records
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import click

from trellis import __version__
from trellis.cli_common import echo_json, entity_to_dict, fail, get_engine, parse_assignment, parse_ref
from trellis.config import DB_FILENAME, PACKS_DIR_NAME, TRELLIS_DIR_NAME, default_config, read_config, write_config
from trellis.datalayer import SQLiteDataLayer
from trellis.errors import TrellisError
from trellis.templates import Ref


@click.group()
@click.version_option(version=__version__, prog_name="trellis")
def cli() -> None:
    """Trellis: build dependency-ordered template graphs."""


@cli.command()
def init() -> None:
    """Initialize .trellis/ in the current directory."""
    cwd = Path.cwd()
    trellis_dir = cwd / TRELLIS_DIR_NAME

    if trellis_dir.exists():
        click.echo(f"{TRELLIS_DIR_NAME}/ already exists in {cwd}")
        # Still ensure DB is initialized
        config = read_config(trellis_dir)
        with SQLiteDataLayer(trellis_dir / config.get("database", DB_FILENAME)) as data_layer:
            data_layer.initialize()
        return

    trellis_dir.mkdir()
    (trellis_dir / PACKS_DIR_NAME).mkdir()
    config = default_config()
    write_config(trellis_dir, config)

    with SQLiteDataLayer(trellis_dir / DB_FILENAME) as data_layer:
        data_layer.initialize()

    click.echo(f"Initialized {TRELLIS_DIR_NAME}/ in {cwd}")
    click.echo(f"  Database: {trellis_dir / DB_FILENAME}")
    click.echo(f"  Packs: {trellis_dir / PACKS_DIR_NAME}/ (add .json packs here)")
    click.echo("\nNext: trellis templates")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def kinds(as_json: bool) -> None:
    """List declared kinds with their domain and relationships."""
    with get_engine() as engine:
        rows = []
        for kind in engine.catalog.kinds():
            schema = engine.catalog.require(kind)
            rows.append(
                {
                    "kind": kind,
                    "domain": schema.domain,
                    "relationships": {r.attribute: r.destination for r in schema.relationships},
                    "templates": len(engine.catalog.templates_for(kind)),
                }
            )
        if as_json:
            echo_json(rows)
            return
        for row in rows:
            rels = ", ".join(f"{a} -> {d}" for a, d in row["relationships"].items())
            click.echo(f"{row['kind']} [{row['domain']}] {row['templates']} template(s)" + (f"  ({rels})" if rels else ""))


@cli.command()
@click.argument("kind", required=False)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def templates(kind: str | None, as_json: bool) -> None:
    """List templates, optionally for one kind."""
    with get_engine() as engine:
        kinds_to_show = [kind] if kind else engine.catalog.kinds()
        try:
            listing = [tpl for k in kinds_to_show for tpl in engine.store.list(k)]
        except TrellisError as e:
            fail(str(e), as_json)
        if as_json:
            echo_json([{"ref": str(t.ref), "attributes": dict(t.attributes)} for t in listing])
            return
        for tpl in listing:
            deps = ", ".join(str(d) for d in engine.store.dependencies_of(tpl))
            click.echo(f"{tpl.ref}" + (f"  <- {deps}" if deps else ""))
        click.echo(f"\n{len(listing)} template(s)")


@cli.command()
@click.argument("refs", nargs=-1, required=True)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def plan(refs: tuple[str, ...], as_json: bool) -> None:
    """Show the creation order for REFS (Kind:name)."""
    targets = [parse_ref(r) for r in refs]
    with get_engine() as engine:
        try:
            execution = engine.plan(targets)
        except TrellisError as e:
            fail(str(e), as_json)
        if as_json:
            echo_json(execution.to_dict())
            return
        for i, step in enumerate(execution.steps, 1):
            deps = ", ".join(str(d) for d in execution.edges.get(step.ref, []))
            click.echo(f"{i}. {step.ref}" + (f"  <- {deps}" if deps else ""))


@cli.command()
@click.argument("refs", nargs=-1, required=True)
@click.option("--memory", is_flag=True, help="Build in-memory records instead of persisting")
@click.option("--set", "assignments", multiple=True, help="Override as Kind:name.attr=value (repeatable)")
@click.option("--tenant", default=None, help="Tenant for partitioned kinds")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def run(refs: tuple[str, ...], memory: bool, assignments: tuple[str, ...], tenant: str | None, as_json: bool) -> None:
    """Create REFS (Kind:name) and everything they depend on."""
    targets = [parse_ref(r) for r in refs]
    overrides: dict[Ref, dict[str, Any]] = {}
    for raw in assignments:
        ref, attr, value = parse_assignment(raw)
        overrides.setdefault(ref, {})[attr] = value

    with get_engine() as engine:
        try:
            created = engine.run(targets, overrides=overrides, tenant=tenant, strategy="memory" if memory else None)
        except TrellisError as e:
            fail(str(e), as_json)
        _echo_created({str(ref): entity for ref, entity in created.items()}, as_json)


@cli.command("scenarios")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def list_scenarios(as_json: bool) -> None:
    """List scenarios."""
    with get_engine() as engine:
        rows = []
        for name in engine.scenarios.names():
            scenario = engine.scenarios.get(name)
            rows.append({"name": name, "extends": list(scenario.extends), "description": scenario.description})
        if as_json:
            echo_json(rows)
            return
        for row in rows:
            parents = f" (extends {', '.join(row['extends'])})" if row["extends"] else ""
            click.echo(f"{row['name']}{parents}")


@cli.command()
@click.argument("name")
@click.option("--memory", is_flag=True, help="Build in-memory records instead of persisting")
@click.option("--tenant", default=None, help="Tenant for partitioned kinds")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def scenario(name: str, memory: bool, tenant: str | None, as_json: bool) -> None:
    """Run scenario NAME."""
    with get_engine() as engine:
        try:
            created = engine.run_scenario(name, tenant=tenant, strategy="memory" if memory else None)
        except TrellisError as e:
            fail(str(e), as_json)
        _echo_created(created, as_json)


@cli.command()
@click.argument("kind")
@click.option("--tenant", default=None, help="Only records for this tenant")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def records(kind: str, tenant: str | None, as_json: bool) -> None:
    """Show persisted records of KIND."""
    with get_engine() as engine:
        data_layer = engine.data_layer
        if not isinstance(data_layer, SQLiteDataLayer):
            fail("No SQLite data layer configured", as_json)
        rows = data_layer.read(kind, tenant=tenant)
        if as_json:
            echo_json([entity_to_dict(e) for e in rows])
            return
        for entity in rows:
            click.echo(f"{entity.kind} {entity.get('id')}: {entity_to_dict(entity)}")
        click.echo(f"\n{len(rows)} record(s)")


def _echo_created(created: dict[str, Any], as_json: bool) -> None:
    if as_json:
        echo_json({key: entity_to_dict(entity) for key, entity in created.items()})
        return
    for key, entity in created.items():
        click.echo(f"Created {key}: {entity_to_dict(entity)}")
    click.echo(f"\n{len(created)} created")


if __name__ == "__main__":
    cli()
