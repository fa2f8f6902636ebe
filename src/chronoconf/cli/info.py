"""chronoconf info — show backend status and namespace metadata."""

from __future__ import annotations

import os
from typing import Any

import typer

from chronoconf.cli import _exitcodes as ec
from chronoconf.cli._output import print_error, print_object
from chronoconf.cli._storage import open_client
from chronoconf.errors import BackingStoreError


def info_cmd() -> None:
    """Show backend status, global revision and schema summary."""
    from chronoconf.cli import state

    client = open_client(require_schema=False)
    try:
        data: dict[str, Any] = {
            "namespace": client.namespace,
            "global_revision": client.global_revision(),
            **client.chronicle.storage_info(),
        }
    except BackingStoreError as e:
        print_error(str(e))
        raise typer.Exit(ec.DATABASE_ERROR)
    finally:
        client.close()

    if data.get("backend") == "sqlite":
        db_path = str(data.get("db_path"))
        if os.path.exists(db_path):
            data["file_size_bytes"] = os.path.getsize(db_path)

    if state.schema:
        data["schema"] = state.schema
        data["dynamic_settings"] = len(client.schema.dynamic_paths())
        data["static_settings"] = len(client.schema.static_paths())

    print_object(data, json_mode=state.json_output)
