"""Record types and sentinels shared by the client, caches and backends."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

# Key of the namespace-wide revision marker.
GLOBAL_REVISION_KEY = "_rev"


class _UnsetType:
    """Sentinel for "no value stored", distinct from a stored ``None``."""

    _instance: _UnsetType | None = None

    def __new__(cls) -> _UnsetType:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False

    def __reduce__(self) -> str:
        return "UNSET"


UNSET: Any = _UnsetType()


@dataclass(frozen=True)
class SettingRecord:
    """A dynamic value together with the revision it was written at."""

    path: str
    value: Any
    revision: int

    def to_document(self) -> dict[str, Any]:
        return {"data": self.value, "_rev": self.revision}

    @classmethod
    def from_document(cls, path: str, document: dict[str, Any] | None) -> SettingRecord | None:
        if document is None:
            return None
        return cls(path=path, value=document.get("data"), revision=int(document.get("_rev") or 0))


def stored_form(value: Any) -> Any:
    """Return *value* as it reads back from a chronicle, after a JSON round trip.

    Raises TypeError for values JSON cannot represent.
    """
    return json.loads(json.dumps(value))


def marker_document(revision: int) -> dict[str, Any]:
    """Document stored under GLOBAL_REVISION_KEY."""
    return {"data": revision, "_rev": revision}


def wall_clock_revision() -> int:
    """Current wall-clock time as integer microseconds since the epoch."""
    return time.time_ns() // 1000


def revision_timestamp(revision: int) -> datetime:
    return datetime.fromtimestamp(revision / 1_000_000, tz=timezone.utc)
