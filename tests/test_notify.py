"""Tests for change notifications routed through the chronicle's publish-on-set."""

from __future__ import annotations

import pytest

from chronoconf import (
    AppConfig,
    InvalidKeyError,
    MemoryChronicle,
    NotificationUnsupportedError,
    SettingRecord,
    SqliteChronicle,
)


class TestSubscribe:
    def test_callback_sees_writes_from_any_client(self, make_client):
        listener = make_client()
        writer = make_client()
        seen: list[SettingRecord] = []
        listener.subscribe("system.email", seen.append)

        revision = writer.set({"system.email": "a@x.io", "limits.max_users": 3})
        assert seen == [SettingRecord("system.email", "a@x.io", revision)]

    def test_seeding_does_not_notify(self, make_client, chronicle, schema):
        seen = []
        make_client(seed_defaults=False).subscribe("system.email", seen.append)
        make_client()
        assert seen == []

    def test_subscribe_is_idempotent(self, make_client):
        client = make_client()
        seen = []
        client.subscribe("system.email", seen.append)
        client.subscribe("system.email", seen.append)
        client.set({"system.email": "a@x.io"})
        assert len(seen) == 1
        assert client._notifier.subscription_count() == 1

    def test_unsubscribe(self, make_client):
        client = make_client()
        seen = []
        client.subscribe("system.email", seen.append)
        client.unsubscribe("system.email", seen.append)
        client.set({"system.email": "a@x.io"})
        assert seen == []
        assert client._notifier.subscription_count() == 0

    def test_unsubscribe_unknown_callback_is_noop(self, make_client):
        make_client().unsubscribe("system.email", print)

    def test_failing_callback_does_not_fail_write(self, make_client):
        client = make_client()

        def broken(record):
            raise RuntimeError("boom")

        client.subscribe("system.email", broken)
        client.set({"system.email": "a@x.io"})
        assert client.get("system.email") == "a@x.io"


class TestSubscribeErrors:
    def test_requires_callable(self, make_client):
        with pytest.raises(TypeError):
            make_client().subscribe("system.email", "not callable")  # type: ignore[arg-type]

    @pytest.mark.parametrize("path", ["system.admins", "system.nope"])
    def test_requires_dynamic_path(self, make_client, path):
        with pytest.raises(InvalidKeyError):
            make_client().subscribe(path, print)

    def test_requires_publish_on_set(self, make_client):
        client = make_client(MemoryChronicle(publish_on_set=False))
        with pytest.raises(NotificationUnsupportedError) as exc_info:
            client.subscribe("system.email", print)
        assert exc_info.value.backend == "memory"
        with pytest.raises(NotificationUnsupportedError):
            client.unsubscribe("system.email", print)

    def test_sqlite_chronicle_cannot_notify_other_connections(self, schema, tmp_path):
        path = str(tmp_path / "shared.db")
        listener = AppConfig(schema, SqliteChronicle(path))
        writer = AppConfig(schema, SqliteChronicle(path))
        with pytest.raises(NotificationUnsupportedError) as exc_info:
            listener.subscribe("system.email", print)
        assert exc_info.value.backend == "sqlite"
        writer.set({"system.email": "a@x.io"})
        assert listener.get("system.email") == "a@x.io"
        listener.close()
        writer.close()
