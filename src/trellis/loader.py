"""Loading kinds, templates and scenarios from JSON packs.

A pack is one domain. Its JSON shape::

    {
      "pack": "blog",
      "version": "1.0",
      "kinds": [
        {"kind": "Post", "attributes": ["title"],
         "relationships": [{"attribute": "blog_id", "destination": "Blog"}],
         "templates": [{"name": "example_post", "attributes": {"blog_id": "example_blog"}}]}
      ],
      "scenarios": [
        {"name": "base", "templates": {"example_post": {"title": "Base"}}}
      ]
    }

Attribute values are plain JSON, except ``{"$computed": "pkg.mod:func",
"args": [...]}`` for computed values and ``{"$ref": "Kind:name"}`` for an
explicit template reference. A kind's ``create_function`` or a template's
``function`` is a ``"pkg.mod:func"`` string, or ``{"$function": "pkg.mod:func",
"args": [...]}`` to pass fixed extra arguments after the attributes and options.

Layers, loaded in order by ``load_project``:

1. Built-in packs from ``trellis.packs_data.BUILT_IN_PACKS``
2. Installed packs from ``.trellis/packs/*.json``
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from trellis.config import PACKS_DIR_NAME
from trellis.scenarios import Scenario, ScenarioBook
from trellis.schema import KindSchema, Relationship, SchemaCatalog
from trellis.templates import RESERVED_KEYS, Computed, Ref, Template

logger = logging.getLogger(__name__)

_KIND_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_]{0,63}$")
_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_\-]{0,127}$")
MAX_TEMPLATES_PER_KIND = 500


def _string_list(raw: Any, what: str) -> tuple[str, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list) or not all(isinstance(i, str) for i in raw):
        msg = f"{what} must be a list of strings"
        raise ValueError(msg)
    return tuple(raw)


def decode_value(raw: Any) -> Any:
    """Turn the JSON encoding of an attribute value into its runtime form."""
    if isinstance(raw, dict):
        if "$computed" in raw:
            args = raw.get("args", [])
            if not isinstance(args, list):
                msg = f"'args' of computed value {raw['$computed']!r} must be a list"
                raise ValueError(msg)
            return Computed(raw["$computed"], tuple(args))
        if "$ref" in raw:
            return Ref.parse(raw["$ref"])
    return raw


def decode_function(raw: Any, what: str) -> str | tuple[Any, ...] | None:
    """Read a custom function: ``"pkg.mod:func"`` or ``{"$function": "pkg.mod:func", "args": [...]}``."""
    if raw is None or isinstance(raw, str):
        return raw
    if isinstance(raw, dict) and isinstance(raw.get("$function"), str):
        args = raw.get("args", [])
        if not isinstance(args, list):
            msg = f"{what}: 'args' must be a list"
            raise ValueError(msg)
        return (raw["$function"], *args)
    msg = f"{what} must be a 'module:function' string or a '$function' object"
    raise ValueError(msg)


def parse_kind(raw: dict[str, Any], domain: str) -> KindSchema:
    """Parse a kind declaration (without its templates)."""
    kind = raw.get("kind")
    if not isinstance(kind, str) or not _KIND_PATTERN.match(kind):
        msg = f"Invalid kind name {kind!r}: must match {_KIND_PATTERN.pattern}"
        raise ValueError(msg)

    raw_rels = raw.get("relationships") or []
    if not isinstance(raw_rels, list):
        msg = f"Kind '{kind}': 'relationships' must be a list, got {type(raw_rels).__name__}"
        raise ValueError(msg)
    relationships = []
    for i, r in enumerate(raw_rels):
        if not isinstance(r, dict) or "attribute" not in r or "destination" not in r:
            msg = f"Kind '{kind}': relationship at index {i} must be a dict with 'attribute' and 'destination'"
            raise ValueError(msg)
        relationships.append(Relationship(attribute=r["attribute"], destination=r["destination"], name=r.get("name", "")))

    create_function = decode_function(raw.get("create_function"), f"Kind '{kind}': 'create_function'")

    return KindSchema(
        kind=kind,
        domain=domain,
        attributes=_string_list(raw.get("attributes"), f"Kind '{kind}': 'attributes'"),
        relationships=tuple(relationships),
        primary_key=raw.get("primary_key", "id"),
        partition_key=raw.get("partition_key"),
        timestamps=_string_list(raw.get("timestamps"), f"Kind '{kind}': 'timestamps'"),
        required=_string_list(raw.get("required"), f"Kind '{kind}': 'required'"),
        requires_actor=bool(raw.get("requires_actor", False)),
        create_action=raw.get("create_action", "create"),
        create_function=create_function,
    )


def parse_template(raw: dict[str, Any], kind: str) -> Template:
    name = raw.get("name")
    if not isinstance(name, str) or not _NAME_PATTERN.match(name):
        msg = f"Kind '{kind}': invalid template name {name!r}"
        raise ValueError(msg)
    attributes = raw.get("attributes", {})
    if not isinstance(attributes, dict):
        msg = f"Template '{kind}:{name}': 'attributes' must be an object, got {type(attributes).__name__}"
        raise ValueError(msg)
    function = decode_function(raw.get("function"), f"Template '{kind}:{name}': 'function'")
    return Template(
        kind=kind,
        name=name,
        attributes={key: decode_value(value) for key, value in attributes.items()},
        action=raw.get("action"),
        function=function,
        virtuals=frozenset(_string_list(raw.get("virtuals"), f"Template '{kind}:{name}': 'virtuals'")),
        description=raw.get("description", ""),
    )


def parse_scenario(raw: dict[str, Any]) -> Scenario:
    name = raw.get("name")
    if not isinstance(name, str) or not name:
        msg = f"Scenario name must be a non-empty string, got {name!r}"
        raise ValueError(msg)
    templates = raw.get("templates", {})
    if not isinstance(templates, dict):
        msg = f"Scenario '{name}': 'templates' must be an object"
        raise ValueError(msg)
    entries = []
    for key, attrs in templates.items():
        if not isinstance(attrs, dict):
            msg = f"Scenario '{name}': overrides for {key!r} must be an object"
            raise ValueError(msg)
        entries.append((key, {k: decode_value(v) for k, v in attrs.items()}))
    extends = raw.get("extends", ())
    if isinstance(extends, str):
        extends = (extends,)
    return Scenario(
        name=name,
        entries=tuple(entries),
        extends=_string_list(list(extends), f"Scenario '{name}': 'extends'"),
        description=raw.get("description", ""),
    )


def validate_template(template: Template, schema: KindSchema) -> list[str]:
    """Check a template against its kind's schema.

    Returns:
        List of error messages. Empty list means valid.
    """
    errors: list[str] = []
    for key, value in template.attributes.items():
        if key in template.virtuals or key in RESERVED_KEYS:
            continue
        if not schema.knows_attribute(key):
            errors.append(f"{template.ref}: unknown attribute '{key}' (not declared on {schema.kind})")
            continue
        if schema.relationship_for(key) is not None and not isinstance(value, str | Computed | None):
            errors.append(f"{template.ref}: relationship '{key}' must reference a template name")
    for key in template.virtuals:
        if schema.knows_attribute(key):
            errors.append(f"{template.ref}: virtual '{key}' shadows a declared attribute")
    return errors


def load_pack(raw: dict[str, Any], catalog: SchemaCatalog, scenarios: ScenarioBook) -> str:
    """Declare every kind of a pack and add its scenarios. Returns the pack name.

    Raises ValueError, listing every problem found, if anything is invalid;
    nothing is declared in that case.
    """
    pack = raw.get("pack")
    if not isinstance(pack, str) or not pack:
        msg = f"Pack name must be a non-empty string, got {pack!r}"
        raise ValueError(msg)
    raw_kinds = raw.get("kinds", [])
    if not isinstance(raw_kinds, list):
        msg = f"Pack '{pack}': 'kinds' must be a list"
        raise ValueError(msg)

    declarations: list[tuple[KindSchema, list[Template]]] = []
    errors: list[str] = []
    for raw_kind in raw_kinds:
        if not isinstance(raw_kind, dict):
            msg = f"Pack '{pack}': each kind must be an object"
            raise ValueError(msg)
        schema = parse_kind(raw_kind, domain=pack)
        raw_templates = raw_kind.get("templates", [])
        if not isinstance(raw_templates, list):
            msg = f"Kind '{schema.kind}': 'templates' must be a list"
            raise ValueError(msg)
        if len(raw_templates) > MAX_TEMPLATES_PER_KIND:
            msg = f"Kind '{schema.kind}' has {len(raw_templates)} templates (max {MAX_TEMPLATES_PER_KIND})"
            raise ValueError(msg)
        templates = [parse_template(t, schema.kind) for t in raw_templates]
        for tpl in templates:
            errors.extend(validate_template(tpl, schema))
        declarations.append((schema, templates))

    parsed_scenarios = [parse_scenario(s) for s in raw.get("scenarios", [])]
    if errors:
        msg = f"Pack '{pack}' is invalid:\n  " + "\n  ".join(errors)
        raise ValueError(msg)

    for schema, templates in declarations:
        catalog.declare(schema, templates)
    for scenario in parsed_scenarios:
        scenarios.add(scenario)
    logger.debug("Loaded pack %s: %d kind(s), %d scenario(s)", pack, len(declarations), len(parsed_scenarios))
    return pack


def load_project(
    trellis_dir: Path,
    catalog: SchemaCatalog,
    scenarios: ScenarioBook,
    *,
    enabled_packs: Iterable[str] | None = None,
) -> list[str]:
    """Load built-in and installed packs. Returns the names of loaded packs."""
    from trellis.packs_data import BUILT_IN_PACKS

    if isinstance(enabled_packs, str):
        logger.warning("enabled_packs is a string ('%s'), wrapping in list", enabled_packs)
        enabled_packs = [enabled_packs]
    enabled = set(enabled_packs) if enabled_packs is not None else set(BUILT_IN_PACKS)
    logger.info("Loading packs: enabled_packs=%s", sorted(enabled))
    loaded: list[str] = []

    for pack_name, pack_data in BUILT_IN_PACKS.items():
        if pack_name not in enabled:
            logger.debug("Skipping disabled built-in pack: %s", pack_name)
            continue
        loaded.append(load_pack(pack_data, catalog, scenarios))

    packs_dir = trellis_dir / PACKS_DIR_NAME
    if packs_dir.is_dir():
        for pack_file in sorted(packs_dir.glob("*.json")):
            try:
                pack_data = json.loads(pack_file.read_text())
                if not isinstance(pack_data, dict):
                    msg = "pack file must contain a JSON object"
                    raise ValueError(msg)
                pack_name = pack_data.get("pack", pack_file.stem)
                if pack_name not in enabled:
                    logger.debug("Skipping disabled installed pack: %s", pack_name)
                    continue
                loaded.append(load_pack(pack_data, catalog, scenarios))
                logger.info("Loaded installed pack: %s from %s", pack_name, pack_file.name)
            except (ValueError, KeyError, TypeError) as exc:
                logger.warning("Skipping invalid pack file %s: %s", pack_file.name, exc)
    return loaded
