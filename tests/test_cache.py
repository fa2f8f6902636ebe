"""Tests for LocalCache and HistoryCache in isolation."""

from __future__ import annotations

import pytest

from chronoconf import BackingStoreError, MemoryChronicle, SettingRecord
from chronoconf.cache import HistoryCache, LocalCache
from chronoconf.types import GLOBAL_REVISION_KEY, marker_document

NS = "app_settings"
PATHS = ("system.email", "limits.max_users")


def _write(store, revision, **values):
    items = [(NS, p.replace("__", "."), {"data": v, "_rev": revision}) for p, v in values.items()]
    items.append((NS, GLOBAL_REVISION_KEY, marker_document(revision)))
    store.mset(items)


class TestLocalCache:
    def test_offer_keeps_newer_revision(self, clock):
        cache = LocalCache(10, clock)
        assert cache.offer(SettingRecord("a", "v2", 2))
        assert not cache.offer(SettingRecord("a", "v1", 1))
        assert not cache.offer(SettingRecord("a", "v2b", 2))
        assert cache.get("a").value == "v2"

    def test_put_always_wins(self, clock):
        cache = LocalCache(10, clock)
        cache.offer(SettingRecord("a", "remote", 5))
        cache.put(SettingRecord("a", "local", 3))
        assert cache.get("a").value == "local"

    def test_marker_tracking(self, clock):
        cache = LocalCache(10, clock)
        assert cache.marker_revision == 0
        cache.offer(SettingRecord(GLOBAL_REVISION_KEY, 4, 4))
        cache.offer(SettingRecord(GLOBAL_REVISION_KEY, 3, 3))
        assert cache.marker_revision == 4
        assert len(cache) == 0

    def test_refresh_populates_entries(self, clock):
        store = MemoryChronicle()
        _write(store, 7, system__email="a@x.io")
        cache = LocalCache(10, clock)
        assert cache.refresh(store, NS, PATHS)
        assert cache.get("system.email") == SettingRecord("system.email", "a@x.io", 7)
        assert cache.get("limits.max_users") is None
        assert cache.marker_revision == 7
        assert cache.last_refresh == clock()

    def test_refresh_is_rate_limited(self, clock):
        store = MemoryChronicle()
        cache = LocalCache(10, clock)
        cache.refresh(store, NS, PATHS)
        reads = store.read_count
        clock.advance(9.9)
        assert not cache.refresh(store, NS, PATHS)
        assert store.read_count == reads
        assert cache.refresh(store, NS, PATHS, force=True)
        clock.advance(10)
        assert cache.is_due()

    def test_unchanged_marker_skips_bulk_read(self, clock):
        store = MemoryChronicle()
        _write(store, 3, system__email="a@x.io")
        cache = LocalCache(10, clock)
        cache.refresh(store, NS, PATHS)
        reads = store.read_count
        clock.advance(10)
        assert cache.refresh(store, NS, PATHS)
        assert store.read_count == reads + 1

    def test_refresh_does_not_regress_local_write(self, clock):
        store = MemoryChronicle()
        _write(store, 3, system__email="old@x.io")
        cache = LocalCache(10, clock)
        cache.put(SettingRecord("system.email", "mine@x.io", 9))
        cache.refresh(store, NS, PATHS, force=True)
        assert cache.get("system.email").value == "mine@x.io"

    def test_failed_refresh_leaves_timer(self, clock):
        class _Broken(MemoryChronicle):
            def mget(self, pairs):
                raise BackingStoreError("mget", "offline")

        store = _Broken()
        store.set(NS, GLOBAL_REVISION_KEY, marker_document(1))
        cache = LocalCache(10, clock)
        with pytest.raises(BackingStoreError):
            cache.refresh(store, NS, PATHS)
        assert cache.last_refresh is None
        assert cache.is_due()


class TestHistoryCache:
    def test_store_and_lookup(self, clock):
        cache = HistoryCache(10, clock)
        cache.store("a", 2, "old")
        slot = cache.lookup("a", 2)
        assert slot is not None and slot.value == "old"
        assert cache.lookup("a", 1) is None
        assert len(cache) == 1

    def test_single_slot_per_path(self, clock):
        cache = HistoryCache(10, clock)
        cache.store("a", 1, "one")
        cache.store("a", 2, "two")
        assert cache.lookup("a", 1) is None
        assert cache.lookup("a", 2).value == "two"

    def test_expiry(self, clock):
        cache = HistoryCache(10, clock)
        cache.store("a", 1, "one")
        clock.advance(9.99)
        assert cache.lookup("a", 1) is not None
        clock.advance(0.02)
        assert cache.lookup("a", 1) is None
        assert len(cache) == 0

    def test_evict_and_clear(self, clock):
        cache = HistoryCache(10, clock)
        cache.store("a", 1, "one")
        cache.store("b", 1, "one")
        assert cache.evict("a")
        assert not cache.evict("a")
        cache.clear()
        assert len(cache) == 0
