# infra/__init__.py
from __future__ import annotations

import asyncio
import logging
from typing import Protocol, Mapping, Any, Optional, Dict

from infra.http_client import HttpClient, HttpError, HttpResponse

# ========== 1) Port: upper layers depend on this, not on the concrete HttpClient ==========
class HttpPort(Protocol):
    async def request_raw(self, method: str, path: str, **kwargs) -> HttpResponse: ...
    async def request(self, method: str, path: str, **kwargs) -> Any: ...
    async def close(self) -> None: ...


# ========== 2) Named clients: one per upstream (commerce API, order store) ==========
class HttpClientRegistry:
    """
    Keeps one HttpClient per upstream name for the process lifetime.
    Typical use: registry.add("bsale", cfg["bsale"], headers=...), registry.add("store", cfg["store"], ...)
    """
    def __init__(self) -> None:
        self._clients: Dict[str, HttpClient] = {}

    def add(self, name: str,
            cfg: Mapping[str, Any],
            logger: Optional[logging.Logger] = None,
            *,
            headers: Optional[Mapping[str, str]] = None,
            ) -> HttpClient:
        if name in self._clients:
            return self._clients[name]
        cli = HttpClient(cfg, logger=logger, headers=headers, name=name)
        self._clients[name] = cli
        return cli

    def __contains__(self, name: str) -> bool:
        return name in self._clients

    async def close_all(self) -> None:
        await asyncio.gather(*(c.close() for c in self._clients.values()), return_exceptions=True)
        self._clients.clear()


__all__ = ["HttpPort", "HttpClient", "HttpError", "HttpResponse", "HttpClientRegistry"]
