"""Per-instance caches: the local record mirror and the single-slot history memo."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from chronoconf.storage import ChronicleProtocol
from chronoconf.types import GLOBAL_REVISION_KEY, SettingRecord

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass
class LocalCacheEntry:
    record: SettingRecord
    refreshed_at: float


class LocalCache:
    """In-process mirror of the dynamic records and the global revision marker.

    Entries only move forward: a fetched record replaces the cached one when its
    revision is strictly greater, so a slow refresh cannot undo a newer local write.
    """

    def __init__(self, refresh_interval: float, clock: Clock | None = None) -> None:
        self.refresh_interval = refresh_interval
        self._clock = clock or time.monotonic
        self._entries: dict[str, LocalCacheEntry] = {}
        self._marker: SettingRecord | None = None
        self._last_refresh: float | None = None

    @property
    def marker_revision(self) -> int:
        return self._marker.revision if self._marker is not None else 0

    @property
    def last_refresh(self) -> float | None:
        return self._last_refresh

    def get(self, path: str) -> SettingRecord | None:
        entry = self._entries.get(path)
        return entry.record if entry is not None else None

    def __len__(self) -> int:
        return len(self._entries)

    def is_due(self, force: bool = False) -> bool:
        if force or self._last_refresh is None:
            return True
        return self._clock() - self._last_refresh >= self.refresh_interval

    def offer(self, record: SettingRecord) -> bool:
        """Store *record* if it is newer than what is cached. Returns True if stored."""
        if record.path == GLOBAL_REVISION_KEY:
            if self._marker is not None and record.revision <= self._marker.revision:
                return False
            self._marker = record
            return True
        current = self._entries.get(record.path)
        if current is not None and record.revision <= current.record.revision:
            return False
        self._entries[record.path] = LocalCacheEntry(record=record, refreshed_at=self._clock())
        return True

    def put(self, record: SettingRecord) -> None:
        """Write-through from a local set; the writer's own value always wins."""
        if record.path == GLOBAL_REVISION_KEY:
            self._marker = record
            return
        self._entries[record.path] = LocalCacheEntry(record=record, refreshed_at=self._clock())

    def refresh(
        self,
        chronicle: ChronicleProtocol,
        namespace: str,
        paths: Iterable[str],
        *,
        force: bool = False,
    ) -> bool:
        """Synchronize with the chronicle, at most once per refresh_interval.

        Returns False when skipped by the rate limit, True when a check ran.
        """
        if not self.is_due(force):
            logger.debug(
                "Local cache refresh skipped; interval %.3fs not elapsed", self.refresh_interval
            )
            return False
        started = self._clock()

        marker = SettingRecord.from_document(
            GLOBAL_REVISION_KEY, chronicle.get(namespace, GLOBAL_REVISION_KEY)
        )
        if (
            marker is not None
            and self._marker is not None
            and marker.revision == self._marker.revision
        ):
            self._last_refresh = started
            return True

        keys = list(paths)
        keys.append(GLOBAL_REVISION_KEY)
        documents = chronicle.mget([(namespace, key) for key in keys])
        updated = 0
        for key, document in zip(keys, documents):
            record = SettingRecord.from_document(key, document)
            if record is not None and self.offer(record) and key != GLOBAL_REVISION_KEY:
                updated += 1
        self._last_refresh = started
        logger.debug(
            "Local cache refreshed for namespace %s: %d record(s) updated, marker revision %d",
            namespace,
            updated,
            self.marker_revision,
        )
        return True


@dataclass(frozen=True)
class HistoryCacheSlot:
    path: str
    offset: int
    value: Any
    expires_at: float


class HistoryCache:
    """Remembers the most recent historical lookup per path, for a short time."""

    def __init__(self, ttl: float, clock: Clock | None = None) -> None:
        self.ttl = ttl
        self._clock = clock or time.monotonic
        self._slots: dict[str, HistoryCacheSlot] = {}

    def lookup(self, path: str, offset: int) -> HistoryCacheSlot | None:
        slot = self._slots.get(path)
        if slot is None:
            return None
        if self._clock() >= slot.expires_at:
            del self._slots[path]
            return None
        if slot.offset != offset:
            return None
        return slot

    def store(self, path: str, offset: int, value: Any) -> HistoryCacheSlot:
        slot = HistoryCacheSlot(
            path=path, offset=offset, value=value, expires_at=self._clock() + self.ttl
        )
        self._slots[path] = slot
        return slot

    def evict(self, path: str) -> bool:
        return self._slots.pop(path, None) is not None

    def clear(self) -> None:
        self._slots.clear()

    def __len__(self) -> int:
        return len(self._slots)
