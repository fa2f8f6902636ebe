"""chronoconf: schema-defined settings stored in a revisioned chronicle."""

__version__ = "0.6.0"

from chronoconf.client import AppConfig, Snapshot
from chronoconf.config import ChronoconfConfig
from chronoconf.errors import (
    BackingStoreError,
    CachingDisabledError,
    ChronoconfError,
    InvalidKeyError,
    NotificationUnsupportedError,
    SchemaError,
)
from chronoconf.schema import AttributeDefinition, Mutability, SchemaRegistry, load_schema
from chronoconf.storage import ChronicleProtocol, SqliteChronicle, open_chronicle
from chronoconf.storage_memory import MemoryChronicle
from chronoconf.types import UNSET, SettingRecord

__all__ = [
    "__version__",
    "AppConfig",
    "Snapshot",
    "ChronoconfConfig",
    "SchemaRegistry",
    "AttributeDefinition",
    "Mutability",
    "load_schema",
    "ChronicleProtocol",
    "SqliteChronicle",
    "MemoryChronicle",
    "open_chronicle",
    "SettingRecord",
    "UNSET",
    "ChronoconfError",
    "SchemaError",
    "InvalidKeyError",
    "CachingDisabledError",
    "NotificationUnsupportedError",
    "BackingStoreError",
]
