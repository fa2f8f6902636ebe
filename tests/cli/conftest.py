"""Shared fixtures for CLI tests."""

from __future__ import annotations

import pytest
from typer.testing import CliRunner

from chronoconf import AppConfig
from chronoconf.cli import app


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def cli_db(tmp_path):
    """Storage URI for a temp SQLite chronicle."""
    return f"sqlite:///{tmp_path / 'cli_test.db'}"


@pytest.fixture
def seeded_db(cli_db, schema_file):
    """A chronicle with defaults seeded and one written value."""
    with AppConfig.open(schema_file, cli_db) as client:
        client.set({"system.email": "ops@example.com"})
    return cli_db


@pytest.fixture
def invoke(runner, schema_file):
    """Invoke the CLI against a storage URI, with the test schema unless told otherwise."""

    def _invoke(args, storage_uri=None, *, schema=True):
        prefix = []
        if schema:
            prefix += ["--schema", schema_file]
        if storage_uri:
            prefix += ["--storage-uri", storage_uri]
        return runner.invoke(app, prefix + list(args), catch_exceptions=False)

    return _invoke
