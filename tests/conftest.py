"""Shared test fixtures for chronoconf tests."""

from __future__ import annotations

import pytest
import yaml

from chronoconf import AppConfig, ChronoconfConfig, MemoryChronicle, SchemaRegistry
from chronoconf.storage import SqliteChronicle

# --- Test schema ---

SCHEMA_DEFINITIONS = {
    "system": {
        "description": "Core application parameters",
        "isa": "section",
        "contains": {
            "email": {
                "description": "Dummy email address",
                "isa": "Str",
                "default": "dummy@mail.com",
                "global": 1,
            },
            "admins": {
                "description": "Administrators",
                "isa": "ArrayRef",
                "default": [],
            },
        },
    },
    "limits": {
        "isa": "section",
        "contains": {
            "max_users": {"isa": "Int", "default": 10, "global": True},
            "features": {"isa": "HashRef", "default": {"beta": False}, "global": True},
            "region": {"isa": "Str", "default": "eu-west-1"},
        },
    },
}


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def schema():
    return SchemaRegistry.from_definitions(SCHEMA_DEFINITIONS)


@pytest.fixture
def schema_file(tmp_path):
    """Write the test schema as YAML and return its path."""
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.safe_dump(SCHEMA_DEFINITIONS), encoding="utf-8")
    return str(path)


@pytest.fixture
def chronicle():
    """A fresh in-memory chronicle."""
    store = MemoryChronicle()
    yield store
    store.close()


@pytest.fixture
def sqlite_chronicle(tmp_path):
    """A fresh SQLite chronicle in a temp directory."""
    store = SqliteChronicle(str(tmp_path / "chronicle.db"))
    yield store
    store.close()


@pytest.fixture
def make_client(schema, chronicle, clock):
    """Factory for AppConfig instances sharing one chronicle and one clock."""

    def _make(store=None, **overrides):
        return AppConfig(
            schema,
            store if store is not None else chronicle,
            config=ChronoconfConfig(**overrides),
            clock=clock,
        )

    return _make
