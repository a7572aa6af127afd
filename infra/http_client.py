# infra/http_client.py
from __future__ import annotations

import aiohttp
import asyncio
import json
import random
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode
import logging
from utils.logger import logger

JSON_SEPARATORS = (",", ":")
NETWORK_ERROR_STATUS = 599


class HttpError(Exception):
    def __init__(self, status: int, message: str, payload: Optional[Any] = None):
        super().__init__(f"HTTP {status}: {message}")
        self.status = status
        self.message = message
        self.payload = payload if payload is not None else {}

    @property
    def is_network(self) -> bool:
        return self.status == NETWORK_ERROR_STATUS


@dataclass
class HttpResponse:
    status: int
    payload: Any
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def _json_dumps_compact(obj: Any) -> str:
    return json.dumps(obj, separators=JSON_SEPARATORS, ensure_ascii=False, default=str)

def _build_query(params: Optional[Mapping[str, Any]]) -> str:
    if not params:
        return ""
    return "?" + urlencode(params, doseq=True, safe=":/()[],")

def _mask(s: Optional[str]) -> str:
    if not s:
        return ""
    if len(s) <= 8:
        return "*" * len(s)
    return s[:4] + "*" * (len(s) - 8) + s[-4:]

def _parse_body(text: str) -> Any:
    if not text:
        return {}
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return {"raw": text}


class HttpClient:
    """
    Async JSON-over-HTTP client for one upstream.

    cfg is the upstream's config section:
        base_url: str
        timeout_ms: int              default per-request timeout
        retries: {max_attempts, backoff_ms, jitter_ms}
    """
    def __init__(self,
                 cfg: Mapping[str, Any],
                 logger: Optional[logging.Logger] = None,
                 *,
                 headers: Optional[Mapping[str, str]] = None,
                 timeout_ms: Optional[int] = None,
                 session: Optional[aiohttp.ClientSession] = None,
                 name: str = "http",
                 ) -> None:
        self.cfg = cfg
        self.name = name
        self.log = logger or logging.getLogger(f"HttpClient[{name}]")
        self.session = session
        self._owned_session = session is None

        self.base_url = str(cfg.get("base_url", "")).rstrip("/")
        self.default_headers: Dict[str, str] = {
            "Content-Type": "application/json", "Accept": "application/json"
        }
        if headers:
            self.default_headers.update(headers)

        retries_cfg = cfg.get("retries", {}) or {}
        self.timeout_ms = int(timeout_ms or cfg.get("timeout_ms", 15000))
        self.max_attempts = max(1, int(retries_cfg.get("max_attempts", 4)))
        self.backoff_ms = int(retries_cfg.get("backoff_ms", 500))
        self.jitter_ms = int(retries_cfg.get("jitter_ms", 0))

        if self.session is None:
            timeout = aiohttp.ClientTimeout(total=self.timeout_ms / 1000)
            self.session = aiohttp.ClientSession(timeout=timeout, raise_for_status=False, trust_env=True)

        auth_values = [v for k, v in self.default_headers.items() if k.lower() in ("authorization", "access_token", "apikey")]
        self.log.debug(
            f"HttpClient[{name}] init base_url={self.base_url} key={_mask(auth_values[0] if auth_values else None)}"
        )

    # ---- async context manager ----------------------------------------------------
    async def __aenter__(self) -> "HttpClient":
        if self._owned_session and (self.session is None or self.session.closed):
            timeout = aiohttp.ClientTimeout(total=self.timeout_ms / 1000.0)
            self.session = aiohttp.ClientSession(timeout=timeout, raise_for_status=False, trust_env=True)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owned_session and self.session is not None and not self.session.closed:
            await self.session.close()

    def _url(self, path: str, params: Optional[Mapping[str, Any]]) -> str:
        if path.startswith(("http://", "https://")):
            base = path
        else:
            if not path.startswith("/"):
                path = "/" + path
            base = self.base_url + path
        query = _build_query(params)
        if query and "?" in base:
            query = "&" + query[1:]
        return base + query

    async def request_raw(
            self,
            method: str,
            path: str,
            *,
            params: Optional[Mapping[str, Any]] = None,
            json_body: Optional[Any] = None,
            headers: Optional[Mapping[str, str]] = None,
            timeout_ms: Optional[int] = None,
            retry: bool = True,
        ) -> HttpResponse:
        """
        Send one request and hand back status + decoded body, whatever the status.
        - path: relative to base_url, or an absolute url (pagination links, hrefs)
        - retry: on 429/5xx and network errors, back off exponentially up to max_attempts
        Raises HttpError(599) only when no HTTP response was obtained.
        """
        method = method.upper()
        url = self._url(path, params)
        body_str = _json_dumps_compact(json_body) if json_body is not None else None
        req_headers = dict(self.default_headers)
        if headers:
            req_headers.update(headers)

        timeout_ctx = aiohttp.ClientTimeout(total=(timeout_ms or self.timeout_ms) / 1000.0)

        attempt = 0
        while True:
            attempt += 1
            try:
                async with self.session.request(
                    method,
                    url,
                    data=body_str,
                    headers=req_headers,
                    timeout=timeout_ctx,
                ) as resp:
                    text = await resp.text()
                    status = resp.status
                    if retry and (status >= 500 or status == 429) and attempt < self.max_attempts:
                        logger.warning(f"[{self.name}] {method} {url} -> {status}, retry {attempt}/{self.max_attempts - 1}")
                        await self._sleep_backoff(attempt)
                        continue
                    return HttpResponse(
                        status=status,
                        payload=_parse_body(text),
                        text=text,
                    )
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if retry and attempt < self.max_attempts:
                    logger.warning(f"[{self.name}] Network error: {e!r} when requesting {url}, retrying...")
                    await self._sleep_backoff(attempt)
                    continue
                raise HttpError(NETWORK_ERROR_STATUS, f"Network error: {e!r}") from e

    async def request(
            self,
            method: str,
            path: str,
            *,
            params: Optional[Mapping[str, Any]] = None,
            json_body: Optional[Any] = None,
            headers: Optional[Mapping[str, str]] = None,
            timeout_ms: Optional[int] = None,
            retry: bool = True,
        ) -> Any:
        """Like request_raw, but raises HttpError on any status >= 400 and returns the body."""
        resp = await self.request_raw(
            method, path,
            params=params, json_body=json_body, headers=headers,
            timeout_ms=timeout_ms, retry=retry,
        )
        if resp.status >= 400:
            raise HttpError(resp.status, resp.text[:512], resp.payload)
        return resp.payload

    async def _sleep_backoff(self, attempt: int) -> None:
        base = self.backoff_ms * (2 ** (attempt - 1))
        jitter = random.randint(0, self.jitter_ms) if self.jitter_ms > 0 else 0
        await asyncio.sleep((base + jitter) / 1000.0)
