# fulfillment/services/order_reconciler.py
from __future__ import annotations

from datetime import timedelta
from typing import Any, List, Optional

from fulfillment.config import OrderReconcilerSettings
from fulfillment.enums import OrderStatus, RECONCILABLE_STATUSES
from fulfillment.errors import RemoteRejection, StorageError, TransportError, body_snippet
from fulfillment.models import Order, OrderPassReport
from fulfillment.services.document_builder import DocumentBuilder
from fulfillment.stores.order_store import OrderStorePort
from utils.logger import logger
from utils.time import is_older_than, utc_now

LAST_ERROR_MAX = 2000


def extract_document_id(body: Any) -> Optional[str]:
    """The remote document id from a submit response body, if it carries one."""
    if not isinstance(body, dict):
        return None
    doc_id = body.get("id")
    if doc_id is None and isinstance(body.get("data"), dict):
        doc_id = body["data"].get("id")
    if doc_id is None or str(doc_id).strip() == "":
        return None
    return str(doc_id)


class OrderReconciler:
    """
    Poller that pushes stored orders to the commerce API as documents.

    One pass: discover a bounded batch -> claim each (compare-and-swap on
    status + claimed_at) -> read items -> build payload -> submit -> record
    the outcome. Orders are handled one at a time, in discovery order.
    """

    def __init__(self,
                 store: OrderStorePort,
                 client,
                 builder: DocumentBuilder,
                 settings: OrderReconcilerSettings) -> None:
        self._store = store
        self._client = client
        self._builder = builder
        self._s = settings

    async def discover(self) -> List[Order]:
        """
        Oldest reconcilable orders first. Orders another poller holds are filtered
        in the query so they never take batch slots from pending ones.
        """
        stale = self._s.stale_claim_after_s
        if stale is None:
            statuses, claimed_before = RECONCILABLE_STATUSES - {OrderStatus.PROCESSING}, None
        else:
            statuses, claimed_before = RECONCILABLE_STATUSES, utc_now() - timedelta(seconds=stale)
        return await self._store.find_orders(
            statuses,
            processed_at_is_null=True,
            order_by=self._s.order_by,
            limit=self._s.batch_size,
            attempts_below=self._s.max_attempts,
            claimed_before=claimed_before,
        )

    def _claimable(self, order: Order) -> bool:
        if order.status is not OrderStatus.PROCESSING:
            return True
        # another worker holds it unless the claim went stale
        if self._s.stale_claim_after_s is None:
            return False
        return is_older_than(order.claimed_at, self._s.stale_claim_after_s)

    async def claim(self, order: Order) -> bool:
        """True iff this worker won the conditional update for the order."""
        if not self._claimable(order):
            logger.debug(f"[orders] {order.id} is in flight elsewhere, skipping")
            return False
        try:
            won = await self._store.claim_order(
                order.id,
                order.status,
                expected_claimed_at=order.claimed_at,
                attempts=order.attempts,
            )
        except StorageError as e:
            logger.warning(f"[orders] claim failed for {order.id}: {e}")
            return False
        if not won:
            logger.debug(f"[orders] {order.id} already claimed by another poller")
        elif order.status is OrderStatus.PROCESSING:
            logger.warning(f"[orders] re-claimed stale order {order.id} (claimed_at={order.claimed_at})")
        return won

    async def _fail(self, order: Order, reason: str) -> OrderStatus:
        logger.error(f"[orders] {order.id} -> error: {reason}")
        await self._store.update_order_result(
            order.id,
            OrderStatus.ERROR,
            last_error=reason[:LAST_ERROR_MAX],
            remote_document_id=None,
        )
        return OrderStatus.ERROR

    async def process(self, order: Order) -> OrderStatus:
        """Submit a claimed order and record the outcome; returns the resulting status."""
        try:
            items = await self._store.find_items(order.id)
        except StorageError as e:
            return await self._fail(order, f"items read failed: {e}")
        if not items:
            return await self._fail(order, "items read failed: order has no items")

        payload = self._builder.build(order, items)
        try:
            resp = await self._client.submit_document(payload)
        except TransportError as e:
            return await self._fail(order, f"transport error: {e}")

        doc_id = extract_document_id(resp.body) if resp.ok else None
        if not resp.ok:
            return await self._fail(order, str(RemoteRejection(resp.status_code, resp.body)))
        if doc_id is None:
            return await self._fail(
                order, f"HTTP {resp.status_code}: response carries no document id: {body_snippet(resp.body)}"
            )

        try:
            await self._store.update_order_result(
                order.id,
                OrderStatus.PROCESSED,
                processed_at=utc_now(),
                remote_document_id=doc_id,
                remote_response=resp.body,
                last_error=None,
            )
        except StorageError:
            # the document exists upstream; a stale re-claim would submit it again
            logger.exception(f"[orders] {order.id} submitted as document {doc_id} but the result write failed")
            return OrderStatus.PROCESSING
        logger.info(f"[orders] {order.id} processed -> document {doc_id}")
        return OrderStatus.PROCESSED

    async def run_once(self) -> OrderPassReport:
        report = OrderPassReport()
        orders = await self.discover()
        report.discovered = len(orders)
        if not orders:
            return report

        for order in orders:
            if not await self.claim(order):
                report.skipped += 1
                continue
            report.claimed += 1
            report.order_ids.append(order.id)
            try:
                status = await self.process(order)
            except Exception as e:
                logger.exception(f"[orders] unexpected failure on {order.id}: {e}")
                report.failed += 1
                try:
                    await self._fail(order, f"unexpected: {e!r}")
                except StorageError as se:
                    logger.error(f"[orders] could not record failure for {order.id}: {se}")
                continue
            if status is OrderStatus.PROCESSED:
                report.processed += 1
            else:
                report.failed += 1

        logger.info(
            f"[orders] pass done discovered={report.discovered} claimed={report.claimed} "
            f"processed={report.processed} failed={report.failed} skipped={report.skipped}"
        )
        return report

    async def enqueue_order(self, order_id: str) -> bool:
        """Put an order back to pending so the next pass picks it up."""
        ok = await self._store.reset_order(order_id)
        if ok:
            logger.info(f"[orders] {order_id} enqueued (status=pending)")
        else:
            logger.warning(f"[orders] enqueue: order {order_id} not found")
        return ok
