"""S3 chronicle backend with immutable state objects and a CAS-published head pointer.

Layout under ``s3://bucket/prefix``::

    meta/head.json                 {"generation": n, "state_path": "...", "updated_at": ...}
    states/<generation>-<id>.json  full namespace state written once, never modified

Writers build a new state object and then swap ``meta/head.json`` with a
conditional put (If-Match on the previous ETag). Readers resolve the head once
and read a single immutable state object, so ``mget`` always sees one commit.
"""

from __future__ import annotations

import copy
import json
import logging
import random
import time
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from typing import Any, TypeVar

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError, ParamValidationError

from chronoconf.config import ChronoconfConfig
from chronoconf.errors import BackingStoreError, NotificationUnsupportedError
from chronoconf.storage import ChronicleCallback, Document, _iso

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _PreconditionFailed(Exception):
    pass


def _empty_state() -> dict[str, Any]:
    return {"generation": 0, "namespaces": {}}


class S3Chronicle:
    """S3-backed chronicle. Publish-on-set is not supported."""

    backend = "s3"
    publish_on_set = False

    def __init__(
        self,
        *,
        bucket: str,
        prefix: str,
        storage_uri: str,
        config: ChronoconfConfig,
        client: Any | None = None,
    ) -> None:
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.storage_uri = storage_uri
        self._config = config

        if client is None:
            session = boto3.Session(region_name=config.s3_region)
            client = session.client(
                "s3",
                region_name=config.s3_region,
                endpoint_url=config.s3_endpoint_url,
                config=BotoConfig(
                    connect_timeout=config.s3_request_timeout_s,
                    read_timeout=config.s3_request_timeout_s,
                    retries={"max_attempts": 5, "mode": "standard"},
                ),
            )
        self._s3 = client
        # State objects are immutable, so the last one read can be reused by path.
        self._state_cache: tuple[str, dict[str, Any]] | None = None

    def _k(self, rel_path: str) -> str:
        return f"{self.prefix}/{rel_path}" if self.prefix else rel_path

    def _head_key(self) -> str:
        return self._k("meta/head.json")

    def _is_not_found(self, err: Exception) -> bool:
        if isinstance(err, ClientError):
            code = err.response.get("Error", {}).get("Code", "")
            return code in {"NoSuchKey", "404", "NotFound"}
        return False

    def _is_precondition_failed(self, err: Exception) -> bool:
        if isinstance(err, ClientError):
            code = err.response.get("Error", {}).get("Code", "")
            return code in {"PreconditionFailed", "412", "ConditionalRequestConflict", "409"}
        return False

    def _call(self, operation: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except (ClientError, BotoCoreError) as e:
            raise BackingStoreError(operation, f"{self.storage_uri}: {e}") from e

    # --- Raw object access ---

    def _put_json(
        self,
        *,
        key: str,
        obj: dict[str, Any],
        if_none_match: str | None = None,
        if_match: str | None = None,
    ) -> str:
        kwargs: dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": json.dumps(obj, sort_keys=True, separators=(",", ":")).encode("utf-8"),
            "ContentType": "application/json",
        }
        if if_none_match is not None:
            kwargs["IfNoneMatch"] = if_none_match
        if if_match is not None:
            kwargs["IfMatch"] = if_match
        try:
            resp = self._s3.put_object(**kwargs)
        except ParamValidationError as e:
            raise BackingStoreError(
                "conditional_write",
                "S3 endpoint does not support conditional write preconditions",
            ) from e
        except ClientError as e:
            if self._is_precondition_failed(e):
                raise _PreconditionFailed() from e
            raise
        etag = resp.get("ETag")
        return etag if isinstance(etag, str) else ""

    def _get_json(self, key: str) -> tuple[dict[str, Any] | None, str | None]:
        try:
            resp = self._s3.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if self._is_not_found(e):
                return None, None
            raise
        body = resp["Body"].read()
        etag = resp.get("ETag")
        return json.loads(body.decode("utf-8")), etag if isinstance(etag, str) else None

    def _load_state(self, head: dict[str, Any] | None) -> dict[str, Any]:
        if head is None or not head.get("state_path"):
            return _empty_state()
        state_path = str(head["state_path"])
        if self._state_cache is not None and self._state_cache[0] == state_path:
            return self._state_cache[1]
        state, _ = self._get_json(self._k(state_path))
        if state is None:
            raise BackingStoreError(
                "read_state", f"Head points at missing state object '{state_path}'"
            )
        self._state_cache = (state_path, state)
        return state

    def _read_state(self) -> dict[str, Any]:
        head, _ = self._get_json(self._head_key())
        return self._load_state(head)

    @staticmethod
    def _entry(state: dict[str, Any], namespace: str, key: str) -> dict[str, Any] | None:
        return state["namespaces"].get(namespace, {}).get(key)

    # --- Commit protocol ---

    def _commit(
        self,
        operation: str,
        mutate: Callable[[dict[str, Any]], T],
        *,
        changed: Callable[[T], bool] = lambda _result: True,
    ) -> T:
        retries = self._config.s3_cas_retries
        for attempt in range(retries + 1):
            head, etag = self._get_json(self._head_key())
            state = copy.deepcopy(self._load_state(head))
            result = mutate(state)
            if not changed(result):
                return result

            generation = int(state.get("generation", 0)) + 1
            state["generation"] = generation
            state_path = f"states/{generation:012d}-{uuid.uuid4().hex}.json"
            self._put_json(key=self._k(state_path), obj=state, if_none_match="*")
            new_head = {
                "generation": generation,
                "state_path": state_path,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            }
            try:
                if etag is None:
                    self._put_json(key=self._head_key(), obj=new_head, if_none_match="*")
                else:
                    self._put_json(key=self._head_key(), obj=new_head, if_match=etag)
            except _PreconditionFailed:
                logger.debug(
                    "Head moved during %s on %s (attempt %d)", operation, self.storage_uri, attempt
                )
                self._s3.delete_object(Bucket=self.bucket, Key=self._k(state_path))
                time.sleep(random.uniform(0.01, 0.05) * (attempt + 1))
                continue
            self._state_cache = (state_path, state)
            return result
        raise BackingStoreError(
            operation, f"head pointer changed concurrently {retries + 1} times; giving up"
        )

    def _apply(
        self,
        state: dict[str, Any],
        namespace: str,
        key: str,
        value: Document,
        recorded_at: str,
        archive: bool,
    ) -> None:
        entries = state["namespaces"].setdefault(namespace, {})
        entry = entries.setdefault(key, {"latest": None, "recorded_at": None, "history": []})
        entry["latest"] = copy.deepcopy(value)
        entry["recorded_at"] = recorded_at
        if archive:
            entry["history"].append(copy.deepcopy(value))
            depth = self._config.s3_history_depth
            if depth > 0 and len(entry["history"]) > depth:
                del entry["history"][: len(entry["history"]) - depth]

    # --- Reads ---

    def close(self) -> None:
        self._state_cache = None

    def get(self, namespace: str, key: str) -> Document | None:
        return self.mget([(namespace, key)])[0]

    def mget(self, pairs: Sequence[tuple[str, str]]) -> list[Document | None]:
        state = self._call("mget", self._read_state)
        out: list[Document | None] = []
        for namespace, key in pairs:
            entry = self._entry(state, namespace, key)
            out.append(copy.deepcopy(entry["latest"]) if entry else None)
        return out

    def get_history(self, namespace: str, key: str, offset: int) -> Document | None:
        if offset < 0:
            raise ValueError(f"offset must be >= 0, got {offset}")
        state = self._call("get_history", self._read_state)
        entry = self._entry(state, namespace, key)
        if entry is None or offset >= len(entry["history"]):
            return None
        return copy.deepcopy(entry["history"][-1 - offset])

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
        recorded_at = _iso(timestamp)
        self._call(
            "set",
            lambda: self._commit(
                "set",
                lambda state: self._apply(state, namespace, key, value, recorded_at, archive),
            ),
        )

    def mset(
        self,
        items: Sequence[tuple[str, str, Document]],
        timestamp: datetime | None = None,
    ) -> None:
        recorded_at = _iso(timestamp)

        def _mutate(state: dict[str, Any]) -> None:
            for namespace, key, value in items:
                self._apply(state, namespace, key, value, recorded_at, True)

        self._call("mset", lambda: self._commit("mset", _mutate))

    def msetnx(
        self,
        items: Sequence[tuple[str, str, Document]],
        timestamp: datetime | None = None,
    ) -> list[bool]:
        recorded_at = _iso(timestamp)

        def _mutate(state: dict[str, Any]) -> list[bool]:
            written: list[bool] = []
            for namespace, key, value in items:
                if self._entry(state, namespace, key) is not None:
                    written.append(False)
                    continue
                self._apply(state, namespace, key, value, recorded_at, True)
                written.append(True)
            return written

        return self._call("msetnx", lambda: self._commit("msetnx", _mutate, changed=any))

    # --- Publish-on-set ---

    def subscribe(self, namespace: str, key: str, callback: ChronicleCallback) -> None:
        raise NotificationUnsupportedError(self.backend)

    def unsubscribe(self, namespace: str, key: str, callback: ChronicleCallback) -> None:
        raise NotificationUnsupportedError(self.backend)

    def storage_info(self) -> dict[str, Any]:
        head, _ = self._call("storage_info", lambda: self._get_json(self._head_key()))
        state = self._call("storage_info", lambda: self._load_state(head))
        namespaces = state["namespaces"]
        return {
            "backend": self.backend,
            "storage_uri": self.storage_uri,
            "bucket": self.bucket,
            "prefix": self.prefix,
            "publish_on_set": self.publish_on_set,
            "generation": int(state.get("generation", 0)),
            "key_count": sum(len(keys) for keys in namespaces.values()),
        }
