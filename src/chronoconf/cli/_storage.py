"""CLI helpers for chronicle and client construction."""

from __future__ import annotations

import os

import typer

from chronoconf.cli import _exitcodes as ec
from chronoconf.cli._output import print_error
from chronoconf.client import AppConfig
from chronoconf.config import ChronoconfConfig
from chronoconf.errors import BackingStoreError, SchemaError
from chronoconf.schema import SchemaRegistry
from chronoconf.storage import ChronicleProtocol, open_chronicle


def _config_from_env() -> ChronoconfConfig:
    """Build client config from CLI state and environment defaults."""
    from chronoconf.cli import state

    endpoint = os.getenv("CHRONOCONF_S3_ENDPOINT_URL") or os.getenv("CHRONOCONF_S3_ENDPOINT")
    region = os.getenv("CHRONOCONF_S3_REGION")
    return ChronoconfConfig(
        namespace=state.namespace,
        s3_region=region,
        s3_endpoint_url=endpoint,
    )


def open_store() -> ChronicleProtocol:
    """Open the chronicle selected by the global CLI options."""
    from chronoconf.cli import state

    try:
        return open_chronicle(state.storage_uri, config=_config_from_env())
    except BackingStoreError as e:
        print_error(f"Cannot open storage backend: {e}")
        raise typer.Exit(ec.DATABASE_ERROR)


def open_client(*, require_schema: bool = True) -> AppConfig:
    """Open an AppConfig over the selected chronicle and schema file.

    Without a schema (when allowed) the client sees no settings and seeds nothing.
    """
    from chronoconf.cli import state

    config = _config_from_env()
    if state.schema:
        try:
            schema = SchemaRegistry.from_yaml(state.schema)
        except SchemaError as e:
            print_error(str(e))
            raise typer.Exit(ec.SCHEMA_ERROR)
    elif require_schema:
        print_error("A schema file is required (--schema or CHRONOCONF_SCHEMA)")
        raise typer.Exit(ec.USAGE_ERROR)
    else:
        schema = SchemaRegistry([])
        config.seed_defaults = False

    chronicle = open_store()
    try:
        return AppConfig(schema, chronicle, config=config)
    except BackingStoreError as e:
        chronicle.close()
        print_error(str(e))
        raise typer.Exit(ec.DATABASE_ERROR)
