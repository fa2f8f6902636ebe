"""Structured error types for chronoconf."""

from __future__ import annotations


class ChronoconfError(Exception):
    """Base error for all chronoconf errors."""


class SchemaError(ChronoconfError):
    """Raised when a schema definition is malformed or uses a reserved name."""

    def __init__(self, message: str, path: str | None = None) -> None:
        self.path = path
        if path:
            message = f"{message} (at '{path}')"
        super().__init__(message)


class InvalidKeyError(ChronoconfError):
    """Raised when a path is unknown, or is not dynamic where a dynamic path is required."""

    def __init__(self, path: str, reason: str = "unknown setting") -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid key '{path}': {reason}")


class CachingDisabledError(ChronoconfError):
    """Raised when a local-cache operation is invoked without local caching enabled."""

    def __init__(self, operation: str = "update_cache") -> None:
        self.operation = operation
        super().__init__(
            f"{operation}() requires local caching; "
            "construct the client with ChronoconfConfig(local_caching=True)"
        )


class NotificationUnsupportedError(ChronoconfError):
    """Raised when subscribe/unsubscribe is used on a chronicle without publish-on-set."""

    def __init__(self, backend: str) -> None:
        self.backend = backend
        super().__init__(f"Chronicle backend '{backend}' does not have publish_on_set enabled")


class BackingStoreError(ChronoconfError):
    """Raised when a chronicle backend operation fails."""

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"Backing store error during {operation}: {detail}")
