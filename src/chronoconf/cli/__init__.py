"""chronoconf CLI: inspect and edit revisioned settings from the shell."""

from __future__ import annotations

import logging
from typing import Optional

import typer

from chronoconf.cli import info, schema, settings

app = typer.Typer(
    name="chronoconf",
    help="chronoconf CLI: inspect and edit revisioned settings.",
    no_args_is_help=True,
)


class _State:
    """Global CLI state shared across subcommands."""

    schema: str | None = None
    storage_uri: str | None = None
    namespace: str = "app_settings"
    json_output: bool = False
    verbose: bool = False


state = _State()


def _version_callback(value: bool) -> None:
    if value:
        try:
            from importlib.metadata import version

            v = version("chronoconf")
        except Exception:
            v = "unknown"
        print(f"chronoconf {v}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    schema_path: Optional[str] = typer.Option(
        None,
        "--schema",
        "-s",
        envvar="CHRONOCONF_SCHEMA",
        help="YAML schema file describing the settings",
    ),
    storage_uri: Optional[str] = typer.Option(
        None,
        "--storage-uri",
        envvar="CHRONOCONF_STORAGE_URI",
        help="Chronicle URI (e.g. sqlite:///conf.db, memory://, s3://bucket/prefix)",
    ),
    namespace: str = typer.Option(
        "app_settings",
        "--namespace",
        envvar="CHRONOCONF_NAMESPACE",
        help="Settings namespace inside the chronicle",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output when supported"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    version: bool = typer.Option(
        False, "--version", help="Show version", is_eager=True, callback=_version_callback
    ),
) -> None:
    """Global options for all chronoconf commands."""
    from chronoconf.errors import BackingStoreError
    from chronoconf.storage import parse_storage_target

    if storage_uri:
        try:
            parse_storage_target(storage_uri)
        except BackingStoreError as e:
            raise typer.BadParameter(str(e))

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        logging.getLogger("botocore").setLevel(logging.WARNING)
        logging.getLogger("urllib3").setLevel(logging.WARNING)

    state.schema = schema_path
    state.storage_uri = storage_uri
    state.namespace = namespace
    state.json_output = json_output
    state.verbose = verbose
    if ctx.invoked_subcommand is None and not version:
        print(ctx.get_help())
        raise typer.Exit()


app.command(name="get")(settings.get_cmd)
app.command(name="set")(settings.set_cmd)
app.command(name="history")(settings.history_cmd)
app.command(name="revision")(settings.revision_cmd)
app.command(name="schema")(schema.schema_cmd)
app.command(name="info")(info.info_cmd)


def main() -> None:
    """Entry point for the chronoconf CLI."""
    app()
