"""Tests for the chronicle backends: latest values, history, atomic batches, publish."""

from __future__ import annotations

import logging

import pytest

from chronoconf import (
    BackingStoreError,
    ChronicleProtocol,
    MemoryChronicle,
    NotificationUnsupportedError,
    SqliteChronicle,
)
from chronoconf.storage import open_chronicle, parse_storage_target

NS = "app_settings"


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        backend = MemoryChronicle()
    else:
        backend = SqliteChronicle(str(tmp_path / "chronicle.db"))
    yield backend
    backend.close()


class TestReadsAndWrites:
    def test_conforms_to_protocol(self, store):
        assert isinstance(store, ChronicleProtocol)

    def test_get_missing(self, store):
        assert store.get(NS, "system.email") is None

    def test_set_and_get(self, store):
        store.set(NS, "system.email", {"data": "a@x.io", "_rev": 5})
        assert store.get(NS, "system.email") == {"data": "a@x.io", "_rev": 5}

    def test_namespaces_are_isolated(self, store):
        store.set(NS, "k", {"data": 1, "_rev": 1})
        assert store.get("other", "k") is None

    def test_returned_documents_are_copies(self, store):
        doc = {"data": {"nested": [1]}, "_rev": 1}
        store.set(NS, "k", doc)
        doc["data"]["nested"].append(2)
        fetched = store.get(NS, "k")
        fetched["data"]["nested"].append(3)
        assert store.get(NS, "k") == {"data": {"nested": [1]}, "_rev": 1}

    def test_mget_is_index_aligned(self, store):
        store.mset([(NS, "a", {"data": 1, "_rev": 1}), (NS, "c", {"data": 3, "_rev": 1})])
        docs = store.mget([(NS, "c"), (NS, "b"), (NS, "a")])
        assert docs == [{"data": 3, "_rev": 1}, None, {"data": 1, "_rev": 1}]

    def test_mget_empty(self, store):
        assert store.mget([]) == []

    def test_msetnx_only_writes_absent_keys(self, store):
        store.set(NS, "a", {"data": "kept", "_rev": 7})
        written = store.msetnx([(NS, "a", {"data": "seed", "_rev": 0}), (NS, "b", {"data": 2})])
        assert written == [False, True]
        assert store.get(NS, "a") == {"data": "kept", "_rev": 7}
        assert store.get(NS, "b") == {"data": 2}

    def test_storage_info(self, store):
        store.mset([(NS, "a", {"data": 1}), (NS, "b", {"data": 2})])
        info = store.storage_info()
        assert info["backend"] in {"memory", "sqlite"}
        assert info["key_count"] == 2
        assert info["history_count"] == 2
        assert info["publish_on_set"] is (info["backend"] == "memory")


class TestHistory:
    def test_history_newest_first(self, store):
        for i in range(3):
            store.set(NS, "k", {"data": i, "_rev": i})
        assert store.get_history(NS, "k", 0) == {"data": 2, "_rev": 2}
        assert store.get_history(NS, "k", 2) == {"data": 0, "_rev": 0}
        assert store.get_history(NS, "k", 3) is None

    def test_history_missing_key(self, store):
        assert store.get_history(NS, "nope", 0) is None

    def test_archive_false_skips_history(self, store):
        store.set(NS, "k", {"data": 1})
        store.set(NS, "k", {"data": 2}, archive=False)
        assert store.get(NS, "k") == {"data": 2}
        assert store.get_history(NS, "k", 0) == {"data": 1}
        assert store.get_history(NS, "k", 1) is None

    def test_msetnx_records_history(self, store):
        store.msetnx([(NS, "k", {"data": "seed"})])
        assert store.get_history(NS, "k", 0) == {"data": "seed"}

    def test_negative_offset(self, store):
        with pytest.raises(ValueError):
            store.get_history(NS, "k", -1)


class TestPublish:
    @pytest.fixture
    def store(self):
        backend = MemoryChronicle()
        yield backend
        backend.close()

    def test_subscriber_receives_writes(self, store):
        seen = []
        store.subscribe(NS, "k", lambda key, doc: seen.append((key, doc)))
        store.set(NS, "k", {"data": 1})
        store.mset([(NS, "k", {"data": 2}), (NS, "other", {"data": 3})])
        assert seen == [("k", {"data": 1}), ("k", {"data": 2})]

    def test_publish_false_is_silent(self, store):
        seen = []
        store.subscribe(NS, "k", lambda key, doc: seen.append(doc))
        store.set(NS, "k", {"data": 1}, publish=False)
        assert seen == []

    def test_unsubscribe(self, store):
        seen = []

        def callback(key, doc):
            seen.append(doc)

        store.subscribe(NS, "k", callback)
        store.unsubscribe(NS, "k", callback)
        store.unsubscribe(NS, "k", callback)
        store.set(NS, "k", {"data": 1})
        assert seen == []

    def test_failing_subscriber_is_logged(self, store, caplog):
        def broken(key, doc):
            raise RuntimeError("boom")

        seen = []
        store.subscribe(NS, "k", broken)
        store.subscribe(NS, "k", lambda key, doc: seen.append(doc))
        with caplog.at_level(logging.ERROR, logger="chronoconf.storage"):
            store.set(NS, "k", {"data": 1})
        assert store.get(NS, "k") == {"data": 1}
        assert seen == [{"data": 1}]
        assert "Subscriber for app_settings::k raised" in caplog.text

    def test_publish_disabled(self):
        store = MemoryChronicle(publish_on_set=False)
        seen = []
        store.subscribe(NS, "k", lambda key, doc: seen.append(doc))
        store.set(NS, "k", {"data": 1})
        assert seen == []


class TestSqlite:
    def test_publish_is_unsupported(self, sqlite_chronicle):
        assert sqlite_chronicle.publish_on_set is False
        with pytest.raises(NotificationUnsupportedError):
            sqlite_chronicle.subscribe(NS, "k", lambda key, doc: None)
        with pytest.raises(NotificationUnsupportedError):
            sqlite_chronicle.unsubscribe(NS, "k", lambda key, doc: None)

    def test_values_survive_reopen(self, tmp_path):
        path = str(tmp_path / "persist.db")
        first = SqliteChronicle(path)
        first.mset([(NS, "a", {"data": [1, 2], "_rev": 3})])
        first.close()

        second = SqliteChronicle(path)
        assert second.get(NS, "a") == {"data": [1, 2], "_rev": 3}
        assert second.get_history(NS, "a", 0) == {"data": [1, 2], "_rev": 3}
        second.close()

    def test_unserializable_batch_writes_nothing(self, sqlite_chronicle):
        unserializable = {"data": object()}
        with pytest.raises(TypeError):
            sqlite_chronicle.mset([(NS, "a", {"data": 1}), (NS, "b", unserializable)])
        assert sqlite_chronicle.get(NS, "a") is None

    def test_two_connections_share_data(self, tmp_path):
        path = str(tmp_path / "shared.db")
        writer = SqliteChronicle(path)
        reader = SqliteChronicle(path)
        writer.set(NS, "k", {"data": "v"})
        assert reader.get(NS, "k") == {"data": "v"}
        writer.close()
        reader.close()


class TestStorageTarget:
    def test_default_is_sqlite_file(self):
        target = parse_storage_target(None)
        assert target.backend == "sqlite"
        assert target.db_path == "chronoconf.db"

    def test_bare_path(self):
        target = parse_storage_target("/tmp/conf.db")
        assert target.backend == "sqlite"
        assert target.db_path == "/tmp/conf.db"

    def test_sqlite_uri(self):
        assert parse_storage_target("sqlite:///tmp/conf.db").db_path == "/tmp/conf.db"
        assert parse_storage_target("sqlite:///:memory:").db_path == ":memory:"

    def test_memory_uri(self):
        assert parse_storage_target("memory://").backend == "memory"

    def test_s3_uri(self):
        target = parse_storage_target("s3://bucket/some/prefix/")
        assert target.backend == "s3"
        assert target.bucket == "bucket"
        assert target.prefix == "some/prefix"

    def test_s3_uri_requires_bucket(self):
        with pytest.raises(BackingStoreError):
            parse_storage_target("s3:///prefix")

    def test_unsupported_scheme(self):
        with pytest.raises(BackingStoreError, match="Unsupported storage URI scheme"):
            parse_storage_target("redis://localhost")

    def test_open_chronicle_backends(self, tmp_path):
        mem = open_chronicle("memory://")
        assert isinstance(mem, MemoryChronicle)
        sqlite = open_chronicle(str(tmp_path / "x.db"))
        assert isinstance(sqlite, SqliteChronicle)
        sqlite.close()

    def test_open_chronicle_missing_directory(self, tmp_path):
        with pytest.raises(BackingStoreError, match="does not exist"):
            open_chronicle(str(tmp_path / "missing" / "x.db"))
