"""AppConfig: revisioned reads and writes of schema-defined settings.

Dynamic settings live in a chronicle (see ``chronoconf.storage``) as one record
per path, ``{"data": value, "_rev": revision}``, next to a namespace-wide
revision marker stored under ``_rev``. Every write stores its records and the
marker in one atomic ``mset``, so a reader never sees records newer than the
marker or a marker newer than the records it covers.
"""

from __future__ import annotations

import copy
import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from chronoconf.cache import Clock, HistoryCache, LocalCache
from chronoconf.config import ChronoconfConfig
from chronoconf.errors import CachingDisabledError, InvalidKeyError
from chronoconf.notify import ChangeNotifier, SettingCallback
from chronoconf.schema import Mutability, SchemaRegistry, load_schema
from chronoconf.storage import ChronicleProtocol, open_chronicle
from chronoconf.types import (
    GLOBAL_REVISION_KEY,
    UNSET,
    SettingRecord,
    marker_document,
    revision_timestamp,
    stored_form,
    wall_clock_revision,
)

logger = logging.getLogger(__name__)


@dataclass
class Snapshot:
    """Whole-namespace view of the dynamic values at one marker revision."""

    revision: int
    values: dict[str, Any] = field(default_factory=dict)

    def get(self, path: str, default: Any = UNSET) -> Any:
        return self.values.get(path, default)

    def nested(self) -> dict[str, Any]:
        """Values as a nested mapping keyed by path segment."""
        tree: dict[str, Any] = {}
        for path, value in self.values.items():
            node = tree
            *parents, leaf = path.split(".")
            for part in parents:
                node = node.setdefault(part, {})
            node[leaf] = value
        return tree


class AppConfig:
    """Client for one namespace of settings stored in a chronicle.

    Each instance owns its own local cache, history cache and snapshot; several
    instances, in one process or many, may share the same chronicle.
    """

    def __init__(
        self,
        schema: SchemaRegistry | Mapping[str, Any] | str | Path,
        chronicle: ChronicleProtocol,
        *,
        config: ChronoconfConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._config = config or ChronoconfConfig()
        self.namespace = self._config.namespace
        self.schema = load_schema(schema)
        self.chronicle = chronicle
        self._clock = clock or time.monotonic

        self._local_cache: LocalCache | None = None
        if self._config.local_caching:
            self._local_cache = LocalCache(self._config.refresh_interval, self._clock)
        self._history_cache: HistoryCache | None = None
        if self._config.cache_history:
            self._history_cache = HistoryCache(self._config.history_cache_ttl, self._clock)
        self._notifier = ChangeNotifier(chronicle, self.namespace, self.schema)

        self._revision_floor = 0
        self._snapshot: Snapshot | None = None
        self._snapshot_checked_at: float | None = None

        if self._config.seed_defaults:
            self.seed_defaults()
        if self._local_cache is not None:
            self.update_cache(force=True)

    @classmethod
    def open(
        cls,
        schema: SchemaRegistry | Mapping[str, Any] | str | Path,
        storage_uri: str | None = None,
        *,
        config: ChronoconfConfig | None = None,
        clock: Clock | None = None,
    ) -> AppConfig:
        """Open a chronicle from *storage_uri* and build a client over it."""
        cfg = config or ChronoconfConfig()
        return cls(schema, open_chronicle(storage_uri, config=cfg), config=cfg, clock=clock)

    def close(self) -> None:
        self.chronicle.close()

    def __enter__(self) -> AppConfig:
        return self

    def __exit__(self, exc_type: Any, exc_value: Any, traceback: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"AppConfig(namespace={self.namespace!r}, settings={len(self.schema)}, "
            f"local_caching={self.local_caching}, history_caching={self.history_caching})"
        )

    @property
    def config(self) -> ChronoconfConfig:
        return self._config

    @property
    def refresh_interval(self) -> float:
        return self._config.refresh_interval

    @property
    def local_caching(self) -> bool:
        return self._local_cache is not None

    @property
    def history_caching(self) -> bool:
        return self._history_cache is not None

    # --- Revisions ---

    def _observe(self, revision: int) -> None:
        if revision > self._revision_floor:
            self._revision_floor = revision

    def _next_revision(self) -> int:
        floor = self._revision_floor
        if self._local_cache is not None:
            floor = max(floor, self._local_cache.marker_revision)
        revision = max(wall_clock_revision(), floor + 1)
        self._revision_floor = revision
        return revision

    def _require_known(self, path: str) -> Mutability:
        mutability = self.schema.classify(path)
        if mutability is Mutability.UNKNOWN:
            raise InvalidKeyError(path)
        return mutability

    def seed_defaults(self) -> int:
        """Store schema defaults for dynamic paths that have no record yet.

        Seeded records and the marker carry revision 0, so they never look newer
        than a value another process already wrote. Returns the number of records
        written.
        """
        paths = self.schema.dynamic_paths()
        items = [
            (self.namespace, path, {"data": self.schema.default_of(path), "_rev": 0})
            for path in paths
        ]
        items.append((self.namespace, GLOBAL_REVISION_KEY, marker_document(0)))
        written = self.chronicle.msetnx(items)
        count = sum(1 for ok in written[: len(paths)] if ok)
        if count:
            logger.info("Seeded %d default setting(s) in namespace %s", count, self.namespace)
        return count

    # --- Reads ---

    def get(self, path: str | Sequence[str]) -> Any:
        """Return the current value of *path*, or a list of values for a list of paths.

        Static paths return their schema default. Dynamic paths return the locally
        cached value when local caching is enabled, else the chronicle's value;
        UNSET when no record exists.
        """
        if isinstance(path, (list, tuple)):
            return self.get_many(path)
        mutability = self._require_known(path)
        if mutability is Mutability.STATIC:
            return self.schema.default_of(path)
        if self._local_cache is not None:
            record = self._local_cache.get(path)
        else:
            record = SettingRecord.from_document(path, self.chronicle.get(self.namespace, path))
        return copy.deepcopy(record.value) if record is not None else UNSET

    def get_many(self, paths: Sequence[str]) -> list[Any]:
        """Return values in request order; dynamic values come from one atomic read."""
        values: list[Any] = [UNSET] * len(paths)
        dynamic: list[tuple[int, str]] = []
        for i, path in enumerate(paths):
            if self._require_known(path) is Mutability.STATIC:
                values[i] = self.schema.default_of(path)
            else:
                dynamic.append((i, path))
        if not dynamic:
            return values

        if self._local_cache is not None:
            records = [self._local_cache.get(path) for _i, path in dynamic]
        else:
            documents = self.chronicle.mget([(self.namespace, path) for _i, path in dynamic])
            records = [
                SettingRecord.from_document(path, doc)
                for (_i, path), doc in zip(dynamic, documents)
            ]
        for (i, _path), record in zip(dynamic, records):
            if record is not None:
                values[i] = copy.deepcopy(record.value)
        return values

    def global_revision(self) -> int:
        """Revision of the most recent write to any dynamic path (0 if none)."""
        if self._local_cache is not None:
            return self._local_cache.marker_revision
        marker = SettingRecord.from_document(
            GLOBAL_REVISION_KEY, self.chronicle.get(self.namespace, GLOBAL_REVISION_KEY)
        )
        self._observe(marker.revision if marker is not None else 0)
        # A peer with a slower clock can store a lower marker than one already seen.
        return self._revision_floor

    # --- Writes ---

    def set(self, pairs: Mapping[str, Any]) -> int | None:
        """Atomically write dynamic values; returns the revision they were stamped with.

        Values are stored as JSON, so every cache holds them in their stored form.
        Raises InvalidKeyError if any path is not dynamic, and TypeError if a value
        is not JSON-serializable, both before any I/O.
        """
        for path in pairs:
            if self._require_known(path) is not Mutability.DYNAMIC:
                raise InvalidKeyError(path, "static settings cannot be set at runtime")
        values = {path: stored_form(value) for path, value in pairs.items()}
        if not values:
            return None

        revision = self._next_revision()
        records = [SettingRecord(path, value, revision) for path, value in values.items()]
        marker = SettingRecord(GLOBAL_REVISION_KEY, revision, revision)
        items = [(self.namespace, r.path, r.to_document()) for r in records]
        items.append((self.namespace, GLOBAL_REVISION_KEY, marker.to_document()))
        self.chronicle.mset(items, revision_timestamp(revision))

        if self._local_cache is not None:
            for record in records:
                self._local_cache.put(record)
            self._local_cache.put(marker)
        if self._snapshot is not None:
            for record in records:
                self._snapshot.values[record.path] = copy.deepcopy(record.value)
        if self._history_cache is not None:
            for record in records:
                self._history_cache.evict(record.path)

        logger.debug(
            "Wrote %d setting(s) to namespace %s at revision %d",
            len(records),
            self.namespace,
            revision,
        )
        return revision

    # --- Local cache ---

    def update_cache(self, force: bool = False) -> bool:
        """Synchronize the local cache, at most once per refresh_interval unless forced.

        Returns False when the rate limit skipped the refresh.
        """
        if self._local_cache is None:
            raise CachingDisabledError("update_cache")
        ran = self._local_cache.refresh(
            self.chronicle, self.namespace, self.schema.dynamic_paths(), force=force
        )
        if ran:
            self._observe(self._local_cache.marker_revision)
        return ran

    # --- Snapshot ---

    def _load_snapshot(self) -> Snapshot:
        keys = list(self.schema.dynamic_paths())
        keys.append(GLOBAL_REVISION_KEY)
        documents = self.chronicle.mget([(self.namespace, key) for key in keys])
        snapshot = Snapshot(revision=0)
        for key, document in zip(keys, documents):
            record = SettingRecord.from_document(key, document)
            if record is None:
                continue
            if key == GLOBAL_REVISION_KEY:
                snapshot.revision = record.revision
            else:
                snapshot.values[key] = record.value
        self._observe(snapshot.revision)
        return snapshot

    @property
    def data_set(self) -> Snapshot:
        """The whole-namespace snapshot, loaded on first access."""
        if self._snapshot is None:
            self._snapshot = self._load_snapshot()
            self._snapshot_checked_at = self._clock()
        return self._snapshot

    def check_for_update(self, force: bool = False) -> int | None:
        """Reload the snapshot if the chronicle's marker moved.

        Rate-limited by refresh_interval; returns None when skipped, else the
        chronicle's current marker revision.
        """
        now = self._clock()
        if (
            not force
            and self._snapshot_checked_at is not None
            and now - self._snapshot_checked_at < self._config.refresh_interval
        ):
            return None

        marker = SettingRecord.from_document(
            GLOBAL_REVISION_KEY, self.chronicle.get(self.namespace, GLOBAL_REVISION_KEY)
        )
        db_revision = marker.revision if marker is not None else 0
        self._observe(db_revision)
        if self._snapshot is None or self._snapshot.revision != db_revision:
            logger.debug(
                "Reloading snapshot for namespace %s at revision %d", self.namespace, db_revision
            )
            self._snapshot = self._load_snapshot()
        self._snapshot_checked_at = now
        return db_revision

    # --- History ---

    def get_history(self, path: str, offset: int, cache_result: bool = False) -> Any:
        """Return the value *offset* writes before the current one.

        Offset 0 is the current value (same as ``get(path)``). Returns UNSET when
        the offset reaches past the stored history.
        """
        if offset < 0:
            raise ValueError(f"offset must be >= 0, got {offset}")
        mutability = self._require_known(path)
        if offset == 0:
            return self.get(path)
        if mutability is Mutability.STATIC:
            return UNSET

        if self._history_cache is not None:
            slot = self._history_cache.lookup(path, offset)
            if slot is not None:
                return copy.deepcopy(slot.value)

        record = SettingRecord.from_document(
            path, self.chronicle.get_history(self.namespace, path, offset)
        )
        if record is None:
            return UNSET
        if cache_result and self._history_cache is not None:
            self._history_cache.store(path, offset, copy.deepcopy(record.value))
        return copy.deepcopy(record.value)

    # --- Notifications ---

    def subscribe(self, path: str, callback: SettingCallback) -> None:
        self._notifier.subscribe(path, callback)

    def unsubscribe(self, path: str, callback: SettingCallback) -> None:
        self._notifier.unsubscribe(path, callback)
