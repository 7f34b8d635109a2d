"""Shared CLI helpers: project discovery, ref parsing and JSON output."""

from __future__ import annotations

import json as json_mod
import sys
from collections.abc import Mapping
from typing import Any, NoReturn

import click

from trellis.config import TRELLIS_DIR_NAME, find_trellis_root
from trellis.engine import Engine
from trellis.entities import Entity
from trellis.logging import setup_logging
from trellis.templates import Ref


def get_engine() -> Engine:
    """Discover .trellis/ and return an Engine wired to the project."""
    try:
        trellis_dir = find_trellis_root()
    except FileNotFoundError:
        click.echo(f"No {TRELLIS_DIR_NAME}/ found. Run 'trellis init' first.", err=True)
        sys.exit(1)
    setup_logging(trellis_dir)
    return Engine.from_project(trellis_dir.parent)


def parse_ref(raw: str) -> Ref:
    try:
        return Ref.parse(raw)
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from None


def parse_assignment(raw: str) -> tuple[Ref, str, Any]:
    """Parse ``Kind:name.attr=value``; the value is JSON when it parses as JSON."""
    target, sep, value = raw.partition("=")
    ref_part, dot, attr = target.rpartition(".")
    if not sep or not dot or not attr:
        msg = f"Invalid --set {raw!r}: expected Kind:name.attr=value"
        raise click.BadParameter(msg)
    try:
        parsed: Any = json_mod.loads(value)
    except ValueError:
        parsed = value
    return parse_ref(ref_part), attr, parsed


def entity_to_dict(entity: Any) -> Any:
    if isinstance(entity, Entity):
        return {"kind": entity.kind, **entity.to_dict()}
    if isinstance(entity, Mapping):
        return dict(entity)
    return entity


def echo_json(payload: Any) -> None:
    click.echo(json_mod.dumps(payload, indent=2, default=str))


def fail(message: str, as_json: bool) -> NoReturn:
    """Report an error the way every command does, then exit 1."""
    if as_json:
        click.echo(json_mod.dumps({"error": message}))
    else:
        click.echo(f"Error: {message}", err=True)
    sys.exit(1)
