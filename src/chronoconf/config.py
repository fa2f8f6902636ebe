"""Configuration for chronoconf clients and chronicle backends."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class ChronoconfConfig:
    """Configuration for an AppConfig client and its chronicle backend."""

    namespace: str = "app_settings"
    refresh_interval: float = 10.0
    local_caching: bool = False
    cache_history: bool = False
    history_cache_ttl: float = 10.0
    seed_defaults: bool = True
    publish_on_set: bool = True
    sqlite_timeout_s: float = 5.0
    s3_region: str | None = None
    s3_endpoint_url: str | None = None
    s3_request_timeout_s: float = 10.0
    s3_history_depth: int = 100
    s3_cas_retries: int = 5
