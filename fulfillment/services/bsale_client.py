# fulfillment/services/bsale_client.py
from __future__ import annotations

import re
from typing import Any, Dict, Mapping, Optional

from fulfillment.config import BsaleSettings
from fulfillment.enums import Pagination
from fulfillment.errors import NotFoundError, RemoteRejection, ResolutionError, TransportError
from fulfillment.models import InventoryPage, RemoteResponse
from fulfillment.services.endpoints import BsaleEndpoints
from infra import HttpPort
from infra.http_client import HttpError
from utils.logger import logger

_VARIANT_ID = re.compile(r"/variants/(\d+)(?:\.json)?")


def _to_domain_error(e: HttpError) -> Exception:
    if e.is_network:
        return TransportError(str(e))
    return RemoteRejection(e.status, e.payload if e.payload else e.message)


class BsaleClient:
    """
    Commerce API surface used by the reconcilers:
    - submit_document: POST /v1/documents.json, status passthrough (never raises on non-2xx)
    - fetch_inventory_page: GET /v1/stocks.json by offset or cursor, optional office scope
    - resolve_identifier: variant href / id -> variant code (SKU)
    """

    def __init__(self, http_client: HttpPort, endpoints: BsaleEndpoints, settings: BsaleSettings) -> None:
        self._http = http_client
        self._ep = endpoints
        self._settings = settings

    # ---- documents ---------------------------------------------------------------
    async def submit_document(self, payload: Mapping[str, Any]) -> RemoteResponse:
        """
        One attempt only: a retried POST could emit the same document twice.
        Raises TransportError when no HTTP response was obtained (incl. timeout).
        """
        try:
            resp = await self._http.request_raw(
                "POST", self._ep.documents,
                json_body=dict(payload),
                timeout_ms=self._settings.submit_timeout_ms,
                retry=False,
            )
        except HttpError as e:
            raise TransportError(str(e)) from e
        return RemoteResponse(status_code=resp.status, body=resp.payload)

    # ---- inventory ---------------------------------------------------------------
    def scope_filter(self) -> Dict[str, Any]:
        return {"officeid": self._settings.office_id}

    async def fetch_inventory_page(self,
                                   *,
                                   page_number: int = 0,
                                   page_token: Optional[str] = None,
                                   scope: Optional[Mapping[str, Any]] = None) -> InventoryPage:
        """
        GET one inventory page. 429/5xx are retried with exponential backoff by the
        http client; whatever is still failing afterwards surfaces as
        RemoteRejection (with status) or TransportError.
        """
        s = self._settings
        path = self._ep.stocks
        params: Dict[str, Any] = {"limit": s.page_size}
        if s.expand:
            params["expand"] = s.expand

        if s.pagination is Pagination.CURSOR:
            if page_token and page_token.startswith(("http://", "https://")):
                # absolute continuation links already carry every query parameter
                path, params = page_token, {}
            elif page_token:
                params[s.cursor_param] = page_token
        else:
            params["offset"] = page_number * s.page_size

        if scope and path == self._ep.stocks:
            params.update(scope)

        try:
            payload = await self._http.request(
                "GET", path, params=params, timeout_ms=s.page_timeout_ms, retry=True,
            )
        except HttpError as e:
            raise _to_domain_error(e) from e

        payload = payload if isinstance(payload, dict) else {"items": payload or []}
        items = list(payload.get("items") or [])
        next_token = payload.get(s.next_field) or None

        if s.pagination is Pagination.CURSOR:
            has_more = bool(next_token)
        else:
            offset = int(payload.get("offset", params.get("offset", 0)) or 0)
            count = payload.get("count")
            has_more = bool(next_token) or (count is not None and offset + len(items) < int(count))

        return InventoryPage(
            items=items,
            page_number=page_number,
            next_token=str(next_token) if next_token else None,
            has_more=has_more,
        )

    # ---- lookups -----------------------------------------------------------------
    def _variant_path(self, handle: str) -> str:
        if handle.startswith(("http://", "https://")):
            return handle
        m = _VARIANT_ID.search(handle)
        return self._ep.variant_path(m.group(1) if m else handle.strip("/"))

    async def resolve_identifier(self, handle: str) -> str:
        """Variant handle (href or id) -> variant code. 404 raises NotFoundError."""
        try:
            body = await self._http.request(
                "GET", self._variant_path(handle),
                timeout_ms=self._settings.lookup_timeout_ms, retry=True,
            )
        except HttpError as e:
            if e.status == 404:
                raise NotFoundError(f"variant not found: {handle}", handle=handle) from e
            raise _to_domain_error(e) from e

        code = (body or {}).get("code") if isinstance(body, dict) else None
        if not code or not str(code).strip():
            raise ResolutionError(f"variant has no code: {handle}", handle=handle)
        logger.debug(f"[bsale] resolved {handle} -> {code}")
        return str(code).strip()
