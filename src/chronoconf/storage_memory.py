"""In-memory chronicle backend.

Useful for unit tests and for several AppConfig instances sharing one process.

Invariants:
    - All data is lost when the object is dropped
    - Every multi-key operation runs under one lock, so it is atomic to readers
    - Stored documents are deep copies; callers cannot mutate stored state
"""

from __future__ import annotations

import copy
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from chronoconf.storage import ChronicleCallback, Document, SubscriberRegistry, _iso


@dataclass
class _KeyState:
    latest: Document
    recorded_at: str
    history: list[Document] = field(default_factory=list)


class MemoryChronicle:
    """Process-local chronicle with history and publish-on-set."""

    backend = "memory"

    def __init__(self, *, publish_on_set: bool = True) -> None:
        self.publish_on_set = publish_on_set
        self._lock = threading.RLock()
        self._keys: dict[tuple[str, str], _KeyState] = {}
        self._subscribers = SubscriberRegistry()
        self.read_count = 0
        self.write_count = 0

    def close(self) -> None:
        with self._lock:
            self._keys.clear()

    def _write(
        self, namespace: str, key: str, value: Document, recorded_at: str, archive: bool
    ) -> None:
        state = self._keys.get((namespace, key))
        if state is None:
            state = _KeyState(latest=value, recorded_at=recorded_at)
            self._keys[(namespace, key)] = state
        else:
            state.latest = value
            state.recorded_at = recorded_at
        if archive:
            state.history.append(copy.deepcopy(value))

    # --- Reads ---

    def get(self, namespace: str, key: str) -> Document | None:
        with self._lock:
            self.read_count += 1
            state = self._keys.get((namespace, key))
            return copy.deepcopy(state.latest) if state else None

    def mget(self, pairs: Sequence[tuple[str, str]]) -> list[Document | None]:
        with self._lock:
            self.read_count += 1
            out: list[Document | None] = []
            for namespace, key in pairs:
                state = self._keys.get((namespace, key))
                out.append(copy.deepcopy(state.latest) if state else None)
            return out

    def get_history(self, namespace: str, key: str, offset: int) -> Document | None:
        if offset < 0:
            raise ValueError(f"offset must be >= 0, got {offset}")
        with self._lock:
            self.read_count += 1
            state = self._keys.get((namespace, key))
            if state is None or offset >= len(state.history):
                return None
            return copy.deepcopy(state.history[-1 - offset])

    # --- Writes ---

    def set(
        self,
        namespace: str,
        key: str,
        value: Document,
        timestamp: datetime | None = None,
        archive: bool = True,
        publish: bool = True,
    ) -> None:
        stored = copy.deepcopy(value)
        with self._lock:
            self.write_count += 1
            self._write(namespace, key, stored, _iso(timestamp), archive)
        if publish and self.publish_on_set:
            self._subscribers.publish(namespace, key, copy.deepcopy(stored))

    def mset(
        self,
        items: Sequence[tuple[str, str, Document]],
        timestamp: datetime | None = None,
    ) -> None:
        staged = [(ns, key, copy.deepcopy(value)) for ns, key, value in items]
        recorded_at = _iso(timestamp)
        with self._lock:
            self.write_count += 1
            for namespace, key, value in staged:
                self._write(namespace, key, value, recorded_at, True)
        if self.publish_on_set:
            for namespace, key, value in staged:
                self._subscribers.publish(namespace, key, copy.deepcopy(value))

    def msetnx(
        self,
        items: Sequence[tuple[str, str, Document]],
        timestamp: datetime | None = None,
    ) -> list[bool]:
        recorded_at = _iso(timestamp)
        written: list[bool] = []
        with self._lock:
            self.write_count += 1
            for namespace, key, value in items:
                if (namespace, key) in self._keys:
                    written.append(False)
                    continue
                self._write(namespace, key, copy.deepcopy(value), recorded_at, True)
                written.append(True)
        return written

    # --- Publish-on-set ---

    def subscribe(self, namespace: str, key: str, callback: ChronicleCallback) -> None:
        self._subscribers.add(namespace, key, callback)

    def unsubscribe(self, namespace: str, key: str, callback: ChronicleCallback) -> None:
        self._subscribers.remove(namespace, key, callback)

    def storage_info(self) -> dict[str, Any]:
        with self._lock:
            return {
                "backend": self.backend,
                "publish_on_set": self.publish_on_set,
                "key_count": len(self._keys),
                "history_count": sum(len(s.history) for s in self._keys.values()),
            }
