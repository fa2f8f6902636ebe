"""chronoconf schema — show the settings a schema file defines."""

from __future__ import annotations

import json
from typing import Any

import typer
import yaml

from chronoconf.cli import _exitcodes as ec
from chronoconf.cli._output import print_error, print_table
from chronoconf.errors import SchemaError
from chronoconf.schema import SchemaRegistry

_FORMATS = ("table", "json", "yaml")


def _describe(registry: SchemaRegistry) -> list[dict[str, Any]]:
    return [
        {
            "path": d.path,
            "type": d.data_type,
            "mutability": d.mutability.value,
            "default": d.default,
            "description": d.description,
        }
        for d in registry
    ]


def schema_cmd(
    fmt: str = typer.Option("table", "--format", "-f", help="Output format: table, json or yaml"),
) -> None:
    """List the settings defined by the schema file."""
    from chronoconf.cli import state

    if fmt not in _FORMATS:
        print_error(f"Unknown format '{fmt}'; expected one of {', '.join(_FORMATS)}")
        raise typer.Exit(ec.USAGE_ERROR)
    if not state.schema:
        print_error("A schema file is required (--schema or CHRONOCONF_SCHEMA)")
        raise typer.Exit(ec.USAGE_ERROR)
    try:
        registry = SchemaRegistry.from_yaml(state.schema)
    except SchemaError as e:
        print_error(str(e))
        raise typer.Exit(ec.SCHEMA_ERROR)

    rows = _describe(registry)
    if state.json_output or fmt == "json":
        print(json.dumps(rows, indent=2, default=str))
    elif fmt == "yaml":
        print(yaml.safe_dump(rows, sort_keys=False), end="")
    else:
        print_table(
            ["path", "type", "mutability", "default"],
            [[r["path"], r["type"], r["mutability"], json.dumps(r["default"])] for r in rows],
        )
