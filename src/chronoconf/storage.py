"""Chronicle backends: revisioned key/value storage with history and publish-on-set."""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable
from urllib.parse import urlparse

from chronoconf.config import ChronoconfConfig
from chronoconf.errors import BackingStoreError, NotificationUnsupportedError

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "chronoconf.db"

Document = dict[str, Any]
ChronicleCallback = Callable[[str, Document], None]


def _iso(timestamp: datetime | None) -> str:
    return (timestamp or datetime.now(timezone.utc)).isoformat()


@dataclass(frozen=True)
class StorageTarget:
    """Resolved chronicle target from a storage URI or bare SQLite path."""

    backend: str
    uri: str
    db_path: str | None = None
    bucket: str | None = None
    prefix: str | None = None


def parse_storage_target(storage_uri: str | None = None) -> StorageTarget:
    """Resolve the backend for a storage URI.

    Bare paths (no scheme) are SQLite database files.
    """
    if not storage_uri:
        storage_uri = DEFAULT_DB_PATH

    if "://" not in storage_uri:
        return StorageTarget(backend="sqlite", uri=f"sqlite:///{storage_uri}", db_path=storage_uri)

    parsed = urlparse(storage_uri)

    if parsed.scheme == "sqlite":
        sqlite_path = parsed.path
        if parsed.netloc:
            sqlite_path = f"{parsed.netloc}{sqlite_path}"
        elif sqlite_path.startswith("//"):
            # sqlite:////abs/path -> /abs/path
            sqlite_path = sqlite_path[1:]
        if sqlite_path == "/:memory:":
            sqlite_path = ":memory:"
        if not sqlite_path:
            raise BackingStoreError("parse_storage_uri", f"Invalid sqlite URI: {storage_uri}")
        return StorageTarget(backend="sqlite", uri=storage_uri, db_path=sqlite_path)

    if parsed.scheme == "memory":
        return StorageTarget(backend="memory", uri=storage_uri)

    if parsed.scheme == "s3":
        bucket = parsed.netloc
        prefix = parsed.path.lstrip("/").rstrip("/")
        if not bucket:
            raise BackingStoreError("parse_storage_uri", f"Invalid s3 URI: {storage_uri}")
        return StorageTarget(backend="s3", uri=storage_uri, bucket=bucket, prefix=prefix)

    raise BackingStoreError(
        "parse_storage_uri",
        f"Unsupported storage URI scheme '{parsed.scheme}' for '{storage_uri}'",
    )


@runtime_checkable
class ChronicleProtocol(Protocol):
    """Backend-agnostic chronicle contract used by AppConfig and the CLI."""

    publish_on_set: bool

    def close(self) -> None: ...

    def get(self, namespace: str, key: str) -> Document | None: ...

    def mget(self, pairs: Sequence[tuple[str, str]]) -> list[Document | None]: ...

    def set(
        self,
        namespace: str,
        key: str,
        value: Document,
        timestamp: datetime | None = None,
        archive: bool = True,
        publish: bool = True,
    ) -> None: ...

    def mset(
        self,
        items: Sequence[tuple[str, str, Document]],
        timestamp: datetime | None = None,
    ) -> None: ...

    def msetnx(
        self,
        items: Sequence[tuple[str, str, Document]],
        timestamp: datetime | None = None,
    ) -> list[bool]: ...

    def get_history(self, namespace: str, key: str, offset: int) -> Document | None: ...

    def subscribe(self, namespace: str, key: str, callback: ChronicleCallback) -> None: ...

    def unsubscribe(self, namespace: str, key: str, callback: ChronicleCallback) -> None: ...

    def storage_info(self) -> dict[str, Any]: ...


class SubscriberRegistry:
    """In-process publish-on-set fan-out used by the memory backend."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._callbacks: dict[tuple[str, str], list[ChronicleCallback]] = {}

    def add(self, namespace: str, key: str, callback: ChronicleCallback) -> None:
        with self._lock:
            callbacks = self._callbacks.setdefault((namespace, key), [])
            if callback not in callbacks:
                callbacks.append(callback)

    def remove(self, namespace: str, key: str, callback: ChronicleCallback) -> None:
        with self._lock:
            callbacks = self._callbacks.get((namespace, key))
            if not callbacks or callback not in callbacks:
                return
            callbacks.remove(callback)
            if not callbacks:
                del self._callbacks[(namespace, key)]

    def count(self, namespace: str, key: str) -> int:
        with self._lock:
            return len(self._callbacks.get((namespace, key), ()))

    def publish(self, namespace: str, key: str, document: Document) -> None:
        with self._lock:
            callbacks = list(self._callbacks.get((namespace, key), ()))
        for callback in callbacks:
            try:
                callback(key, document)
            except Exception:
                # The write is already committed; a failing subscriber must not undo it.
                logger.exception("Subscriber for %s::%s raised", namespace, key)


class SqliteChronicle:
    """SQLite-backed chronicle with a latest-value table and an append-only history.

    Other connections to the same file have no channel to learn about writes, so
    publish-on-set is not supported.
    """

    backend = "sqlite"
    publish_on_set = False

    def __init__(
        self,
        db_path: str,
        *,
        timeout_s: float = 5.0,
    ) -> None:
        self.db_path = db_path
        try:
            self._conn = sqlite3.connect(db_path, timeout=timeout_s, isolation_level=None)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._create_tables()
        except sqlite3.Error as e:
            raise BackingStoreError("open", f"Cannot open {db_path!r}: {e}") from e

    def _create_tables(self) -> None:
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS chronicle_latest (
                namespace TEXT NOT NULL,
                key TEXT NOT NULL,
                value_json TEXT NOT NULL,
                recorded_at TEXT NOT NULL,
                PRIMARY KEY (namespace, key)
            );

            CREATE TABLE IF NOT EXISTS chronicle_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                namespace TEXT NOT NULL,
                key TEXT NOT NULL,
                value_json TEXT NOT NULL,
                recorded_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_chronicle_history_lookup
                ON chronicle_history(namespace, key, id DESC);
        """)

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def _write_transaction(self, operation: str) -> Iterator[None]:
        try:
            self._conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise BackingStoreError(operation, str(e)) from e
        try:
            yield
            self._conn.execute("COMMIT")
        except sqlite3.Error as e:
            if self._conn.in_transaction:
                self._conn.execute("ROLLBACK")
            raise BackingStoreError(operation, str(e)) from e
        except BaseException:
            if self._conn.in_transaction:
                self._conn.execute("ROLLBACK")
            raise

    def _write_row(
        self, namespace: str, key: str, value_json: str, recorded_at: str, archive: bool
    ) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO chronicle_latest (namespace, key, value_json, recorded_at) "
            "VALUES (?, ?, ?, ?)",
            (namespace, key, value_json, recorded_at),
        )
        if archive:
            self._conn.execute(
                "INSERT INTO chronicle_history (namespace, key, value_json, recorded_at) "
                "VALUES (?, ?, ?, ?)",
                (namespace, key, value_json, recorded_at),
            )

    # --- Reads ---

    def get(self, namespace: str, key: str) -> Document | None:
        try:
            row = self._conn.execute(
                "SELECT value_json FROM chronicle_latest WHERE namespace = ? AND key = ?",
                (namespace, key),
            ).fetchone()
        except sqlite3.Error as e:
            raise BackingStoreError("get", str(e)) from e
        return json.loads(row[0]) if row else None

    def mget(self, pairs: Sequence[tuple[str, str]]) -> list[Document | None]:
        """Read several keys with a single statement so they come from one snapshot."""
        if not pairs:
            return []
        params: list[str] = []
        clauses = []
        for namespace, key in pairs:
            clauses.append("(namespace = ? AND key = ?)")
            params.extend((namespace, key))
        sql = (
            "SELECT namespace, key, value_json FROM chronicle_latest WHERE "
            + " OR ".join(clauses)
        )
        try:
            rows = self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise BackingStoreError("mget", str(e)) from e
        found = {(r[0], r[1]): r[2] for r in rows}
        out: list[Document | None] = []
        for pair in pairs:
            raw = found.get((pair[0], pair[1]))
            out.append(json.loads(raw) if raw is not None else None)
        return out

    def get_history(self, namespace: str, key: str, offset: int) -> Document | None:
        if offset < 0:
            raise ValueError(f"offset must be >= 0, got {offset}")
        try:
            row = self._conn.execute(
                "SELECT value_json FROM chronicle_history "
                "WHERE namespace = ? AND key = ? ORDER BY id DESC LIMIT 1 OFFSET ?",
                (namespace, key, offset),
            ).fetchone()
        except sqlite3.Error as e:
            raise BackingStoreError("get_history", str(e)) from e
        return json.loads(row[0]) if row else None

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
        value_json = json.dumps(value)
        with self._write_transaction("set"):
            self._write_row(namespace, key, value_json, _iso(timestamp), archive)

    def mset(
        self,
        items: Sequence[tuple[str, str, Document]],
        timestamp: datetime | None = None,
    ) -> None:
        encoded = [(ns, key, json.dumps(value)) for ns, key, value in items]
        recorded_at = _iso(timestamp)
        with self._write_transaction("mset"):
            for namespace, key, value_json in encoded:
                self._write_row(namespace, key, value_json, recorded_at, True)

    def msetnx(
        self,
        items: Sequence[tuple[str, str, Document]],
        timestamp: datetime | None = None,
    ) -> list[bool]:
        """Write each item only if its key is absent; all in one transaction."""
        encoded = [(ns, key, json.dumps(value)) for ns, key, value in items]
        recorded_at = _iso(timestamp)
        written: list[bool] = []
        with self._write_transaction("msetnx"):
            for namespace, key, value_json in encoded:
                cursor = self._conn.execute(
                    "INSERT OR IGNORE INTO chronicle_latest "
                    "(namespace, key, value_json, recorded_at) VALUES (?, ?, ?, ?)",
                    (namespace, key, value_json, recorded_at),
                )
                inserted = cursor.rowcount == 1
                if inserted:
                    self._conn.execute(
                        "INSERT INTO chronicle_history (namespace, key, value_json, recorded_at) "
                        "VALUES (?, ?, ?, ?)",
                        (namespace, key, value_json, recorded_at),
                    )
                written.append(inserted)
        return written

    # --- Publish-on-set ---

    def subscribe(self, namespace: str, key: str, callback: ChronicleCallback) -> None:
        raise NotificationUnsupportedError(self.backend)

    def unsubscribe(self, namespace: str, key: str, callback: ChronicleCallback) -> None:
        raise NotificationUnsupportedError(self.backend)

    def storage_info(self) -> dict[str, Any]:
        try:
            keys = self._conn.execute("SELECT COUNT(*) FROM chronicle_latest").fetchone()[0]
            history = self._conn.execute("SELECT COUNT(*) FROM chronicle_history").fetchone()[0]
        except sqlite3.Error as e:
            raise BackingStoreError("storage_info", str(e)) from e
        return {
            "backend": self.backend,
            "db_path": self.db_path,
            "publish_on_set": self.publish_on_set,
            "key_count": keys,
            "history_count": history,
        }


def open_chronicle(
    storage_uri: str | None = None,
    *,
    config: ChronoconfConfig | None = None,
) -> ChronicleProtocol:
    """Open a chronicle backend for a storage URI."""
    cfg = config or ChronoconfConfig()
    target = parse_storage_target(storage_uri)
    if target.backend == "sqlite":
        assert target.db_path is not None
        if target.db_path != ":memory:":
            parent = os.path.dirname(os.path.abspath(target.db_path))
            if not os.path.isdir(parent):
                raise BackingStoreError(
                    "open", f"Directory for sqlite chronicle does not exist: {parent}"
                )
        return SqliteChronicle(
            target.db_path,
            timeout_s=cfg.sqlite_timeout_s,
        )
    if target.backend == "memory":
        from chronoconf.storage_memory import MemoryChronicle

        return MemoryChronicle(publish_on_set=cfg.publish_on_set)
    if target.backend == "s3":
        from chronoconf.storage_s3 import S3Chronicle

        assert target.bucket is not None
        return S3Chronicle(
            bucket=target.bucket,
            prefix=target.prefix or "",
            storage_uri=target.uri,
            config=cfg,
        )
    raise BackingStoreError("open_chronicle", f"Unsupported backend '{target.backend}'")


__all__ = [
    "ChronicleProtocol",
    "ChronicleCallback",
    "Document",
    "SqliteChronicle",
    "StorageTarget",
    "SubscriberRegistry",
    "open_chronicle",
    "parse_storage_target",
]
