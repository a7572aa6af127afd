# fulfillment/services/stock_reconciler.py
from __future__ import annotations

import asyncio
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from fulfillment.config import StockReconcilerSettings
from fulfillment.errors import RemoteRejection, ResolutionError, SyncError, TransportError
from fulfillment.models import InventoryPage, NormalizedStock, StockPassReport, StockRecord
from fulfillment.stores.stock_store import StockStorePort
from utils.logger import logger
from utils.num import safe_float
from utils.time import utc_now


def _clean(x: Any) -> Optional[str]:
    if x is None:
        return None
    s = str(x).strip()
    return s or None


def normalize_record(record: Mapping[str, Any]) -> NormalizedStock:
    """
    Raw inventory record -> {sku, quantity}.
    SKU order: record code -> nested variant code -> variant handle (resolved later).
    """
    qty = record.get("quantityAvailable")
    if qty is None:
        qty = record.get("quantity")
    quantity = max(0.0, safe_float(qty))

    sku = _clean(record.get("code")) or _clean(record.get("sku"))
    variant = record.get("variant")
    handle = None
    if not sku and isinstance(variant, Mapping):
        sku = _clean(variant.get("code"))
        if not sku:
            handle = _clean(variant.get("href")) or _clean(variant.get("id"))
    return NormalizedStock(quantity=quantity, sku=sku, handle=handle)


class StockReconciler:
    """
    Pulls the upstream inventory feed page by page and upserts {sku, quantity}
    into the local stock table (SKU is the conflict key, last write wins).
    Records are never deleted here.
    """

    def __init__(self, store: StockStorePort, client, settings: StockReconcilerSettings) -> None:
        self._store = store
        self._client = client
        self._s = settings

    async def resolve(self, handles: Iterable[str]) -> Dict[str, Optional[str]]:
        """Look up handles with at most resolve_concurrency requests in flight; failures map to None."""
        sem = asyncio.Semaphore(self._s.resolve_concurrency)

        async def _one(handle: str):
            async with sem:
                try:
                    return handle, await self._client.resolve_identifier(handle)
                except (ResolutionError, RemoteRejection, TransportError) as e:
                    logger.warning(f"[stock] could not resolve {handle}, dropping record: {e}")
                    return handle, None

        pairs = await asyncio.gather(*(_one(h) for h in handles))
        return dict(pairs)

    async def _fetch(self,
                     page_number: int,
                     token: Optional[str],
                     scope: Optional[Mapping[str, Any]],
                     report: StockPassReport) -> Tuple[InventoryPage, Optional[Mapping[str, Any]]]:
        """Fetch one page; on page 1 a scope rejection falls back to an unscoped request, once."""
        try:
            page = await self._client.fetch_inventory_page(page_number=page_number, page_token=token, scope=scope)
            return page, scope
        except RemoteRejection as e:
            if e.is_rate_limited:
                logger.warning(f"[stock] page {page_number + 1} still rate limited after retries")
            if not (page_number == 0 and scope and e.is_scope_rejection
                    and self._s.scope_fallback and not report.scope_fallback):
                raise
            logger.warning(f"[stock] scoped inventory request rejected ({e.status}), retrying without scope")
            report.scope_fallback = True
            page = await self._client.fetch_inventory_page(page_number=page_number, page_token=token, scope=None)
            return page, None

    async def reconcile_page(self,
                             page: InventoryPage,
                             cache: Dict[str, Optional[str]],
                             report: StockPassReport) -> List[StockRecord]:
        normalized = [normalize_record(r) for r in page.items]

        pending = sorted({n.handle for n in normalized if n.unresolved and n.handle not in cache})
        if pending:
            resolved = await self.resolve(pending)
            report.resolved += sum(1 for v in resolved.values() if v)
            cache.update(resolved)

        now = utc_now()
        by_sku: Dict[str, StockRecord] = {}
        for n in normalized:
            sku = n.sku or (cache.get(n.handle) if n.handle else None)
            if not sku:
                report.dropped += 1
                continue
            by_sku[sku] = StockRecord(sku=sku, quantity=n.quantity, updated_at=now)

        records = list(by_sku.values())
        if records:
            await self._store.upsert_stock(records)
            report.upserted += len(records)
        return records

    async def run_once(self) -> StockPassReport:
        """
        One sync pass. Page-fetch and upsert failures abort the pass; pages already
        upserted stay committed. The returned report says whether it aborted.
        """
        report = StockPassReport()
        cache: Dict[str, Optional[str]] = {}
        scope = self._client.scope_filter()
        token: Optional[str] = None
        page_number = 0

        try:
            while page_number < self._s.max_pages:
                page, scope = await self._fetch(page_number, token, scope, report)
                report.pages += 1
                report.seen += len(page.items)
                await self.reconcile_page(page, cache, report)

                if not page.has_more or not page.items:
                    break
                token = page.next_token
                page_number += 1
            else:
                logger.warning(f"[stock] stopped after max_pages={self._s.max_pages}")
        except SyncError as e:
            report.aborted = True
            report.error = str(e)
            logger.error(f"[stock] pass aborted on page {page_number + 1}: {e}")

        logger.info(
            f"[stock] pass done pages={report.pages} seen={report.seen} upserted={report.upserted} "
            f"dropped={report.dropped} resolved={report.resolved} fallback={report.scope_fallback} "
            f"aborted={report.aborted}"
        )
        return report
