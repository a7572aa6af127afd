# fulfillment/errors.py
import json
from typing import Any, Optional


class SyncError(Exception):
    """Base sync error."""
    def __init__(self, msg: str = ""):
        super().__init__(msg)
        self.msg = msg

    def __str__(self):
        return self.msg or self.__class__.__name__

class TransportError(SyncError):
    """Timeout or connection failure; no HTTP response was obtained."""

class RemoteRejection(SyncError):
    """Upstream answered with a non-2xx status."""

    def __init__(self, status: int, body: Optional[Any] = None, msg: str = ""):
        super().__init__(msg or f"HTTP {status}: {body_snippet(body)}")
        self.status = status
        self.body = body

    @property
    def is_rate_limited(self) -> bool:
        return self.status == 429

    @property
    def is_scope_rejection(self) -> bool:
        """Auth / not-found class answers that a scoped inventory request may recover from."""
        return self.status in (401, 403, 404)

class StorageError(SyncError):
    """Read or write against the order/stock store failed."""

class ResolutionError(SyncError):
    """An inventory record's SKU could not be determined."""

    def __init__(self, msg: str = "", handle: Optional[str] = None):
        super().__init__(msg)
        self.handle = handle

class NotFoundError(ResolutionError):
    """Lookup target does not exist upstream."""

class ConfigError(SyncError):
    """Configuration is missing a required key or holds an invalid value."""


def body_snippet(body: Any, limit: int = 300) -> str:
    if body is None:
        return ""
    s = body if isinstance(body, str) else json.dumps(body, ensure_ascii=False, default=str)
    return s if len(s) <= limit else s[:limit] + "..."
