"""chronoconf get / set / history / revision — read and write setting values."""

from __future__ import annotations

import json
from typing import Any

import typer

from chronoconf.cli import _exitcodes as ec
from chronoconf.cli._output import format_value, print_error, print_object, print_table
from chronoconf.cli._storage import open_client
from chronoconf.errors import BackingStoreError, InvalidKeyError
from chronoconf.types import UNSET


def _parse_assignment(raw: str) -> tuple[str, Any]:
    """Parse PATH=VALUE; VALUE is JSON when it parses as JSON, else a plain string."""
    path, sep, text = raw.partition("=")
    if not sep or not path:
        raise ValueError(f"Expected PATH=VALUE, got '{raw}'")
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        value = text
    return path.strip(), value


def get_cmd(
    paths: list[str] = typer.Argument(..., help="Dotted setting paths"),
) -> None:
    """Show current values of one or more settings."""
    from chronoconf.cli import state

    client = open_client()
    try:
        values = client.get_many(paths)
    except InvalidKeyError as e:
        print_error(str(e))
        raise typer.Exit(ec.INVALID_KEY)
    except BackingStoreError as e:
        print_error(str(e))
        raise typer.Exit(ec.DATABASE_ERROR)
    finally:
        client.close()

    if state.json_output:
        print_object(dict(zip(paths, values)), json_mode=True)
        return
    for path, value in zip(paths, values):
        print(f"{path}: {format_value(value)}")


def set_cmd(
    assignments: list[str] = typer.Argument(..., help="PATH=VALUE pairs (VALUE as JSON or text)"),
) -> None:
    """Atomically write one or more dynamic settings."""
    from chronoconf.cli import state

    pairs: dict[str, Any] = {}
    for raw in assignments:
        try:
            path, value = _parse_assignment(raw)
        except ValueError as e:
            print_error(str(e))
            raise typer.Exit(ec.USAGE_ERROR)
        pairs[path] = value

    client = open_client()
    try:
        revision = client.set(pairs)
    except InvalidKeyError as e:
        print_error(str(e))
        raise typer.Exit(ec.INVALID_KEY)
    except BackingStoreError as e:
        print_error(str(e))
        raise typer.Exit(ec.DATABASE_ERROR)
    finally:
        client.close()

    if state.json_output:
        print_object({"revision": revision, "written": sorted(pairs)}, json_mode=True)
    else:
        print(f"Wrote {len(pairs)} setting(s) at revision {revision}")


def history_cmd(
    path: str = typer.Argument(..., help="Dotted setting path"),
    depth: int = typer.Option(5, "--depth", "-n", min=1, help="Number of revisions to show"),
) -> None:
    """Show the current value of a setting followed by its previous values."""
    from chronoconf.cli import state

    client = open_client()
    rows: list[list[Any]] = []
    try:
        for offset in range(depth):
            value = client.get_history(path, offset)
            if value is UNSET:
                break
            rows.append([offset, value if state.json_output else format_value(value)])
    except InvalidKeyError as e:
        print_error(str(e))
        raise typer.Exit(ec.INVALID_KEY)
    except BackingStoreError as e:
        print_error(str(e))
        raise typer.Exit(ec.DATABASE_ERROR)
    finally:
        client.close()

    if not rows and not state.json_output:
        print("No history recorded.")
        return
    print_table(["offset", "value"], rows, json_mode=state.json_output)


def revision_cmd() -> None:
    """Show the namespace-wide global revision."""
    from chronoconf.cli import state

    client = open_client(require_schema=False)
    try:
        revision = client.global_revision()
    except BackingStoreError as e:
        print_error(str(e))
        raise typer.Exit(ec.DATABASE_ERROR)
    finally:
        client.close()

    if state.json_output:
        print_object({"namespace": client.namespace, "revision": revision}, json_mode=True)
    else:
        print(revision)
