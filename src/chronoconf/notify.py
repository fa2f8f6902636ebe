"""Change notification bridge over the chronicle's publish-on-set support."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from chronoconf.errors import InvalidKeyError, NotificationUnsupportedError
from chronoconf.schema import Mutability, SchemaRegistry
from chronoconf.storage import ChronicleCallback, ChronicleProtocol
from chronoconf.types import SettingRecord

SettingCallback = Callable[[SettingRecord], Any]


class ChangeNotifier:
    """Forwards subscribe/unsubscribe for setting paths to the chronicle.

    Callbacks receive a SettingRecord for every write of the path made through the
    shared chronicle, by any client instance.
    """

    def __init__(
        self, chronicle: ChronicleProtocol, namespace: str, schema: SchemaRegistry
    ) -> None:
        self._chronicle = chronicle
        self._namespace = namespace
        self._schema = schema
        self._bridges: dict[tuple[str, SettingCallback], ChronicleCallback] = {}

    def _require_publish(self) -> None:
        if not getattr(self._chronicle, "publish_on_set", False):
            raise NotificationUnsupportedError(getattr(self._chronicle, "backend", "unknown"))

    def subscribe(self, path: str, callback: SettingCallback) -> None:
        self._require_publish()
        if not callable(callback):
            raise TypeError("Subscription requires a callable")
        if self._schema.classify(path) is not Mutability.DYNAMIC:
            raise InvalidKeyError(path, "only dynamic settings publish changes")
        if (path, callback) in self._bridges:
            return

        def _bridge(key: str, document: dict[str, Any]) -> None:
            record = SettingRecord.from_document(key, document)
            if record is not None:
                callback(record)

        self._bridges[(path, callback)] = _bridge
        self._chronicle.subscribe(self._namespace, path, _bridge)

    def unsubscribe(self, path: str, callback: SettingCallback) -> None:
        self._require_publish()
        if not callable(callback):
            raise TypeError("Unsubscription requires a callable")
        bridge = self._bridges.pop((path, callback), None)
        if bridge is None:
            return
        self._chronicle.unsubscribe(self._namespace, path, bridge)

    def subscription_count(self) -> int:
        return len(self._bridges)
