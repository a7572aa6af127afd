# fulfillment/stores/order_store.py
import asyncio
import copy
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

from fulfillment.enums import OrderStatus
from fulfillment.errors import StorageError
from fulfillment.models import Order, OrderItem
from utils.time import utc_now

# columns a caller may write through update_where / update_order_result
WRITABLE_FIELDS = frozenset({
    "status", "processed_at", "claimed_at", "attempts",
    "last_error", "remote_document_id", "remote_response",
})


class OrderStorePort(Protocol):
    """Order/order-item gateway consumed by the order reconciler."""

    async def find_orders(self,
                          status_in: Iterable[OrderStatus],
                          *,
                          processed_at_is_null: bool = True,
                          order_by: str = "created_at",
                          limit: int = 5,
                          attempts_below: Optional[int] = None,
                          claimed_before: Optional[datetime] = None) -> List[Order]: ...

    async def get_order(self, order_id: str) -> Optional[Order]: ...

    async def update_where(self, order_id: str, expected: Mapping[str, Any], new: Mapping[str, Any]) -> int: ...

    async def claim_order(self,
                          order_id: str,
                          expected_status: OrderStatus,
                          *,
                          expected_claimed_at: Optional[datetime] = None,
                          attempts: int = 0) -> bool: ...

    async def update_order_result(self, order_id: str, status: OrderStatus, **fields: Any) -> None: ...

    async def reset_order(self, order_id: str) -> bool: ...

    async def find_items(self, order_id: str) -> List[OrderItem]: ...


def claim_values(attempts: int, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Column values written by a successful claim."""
    return {
        "status": OrderStatus.PROCESSING,
        "claimed_at": now or utc_now(),
        "attempts": attempts + 1,
    }


def is_stale_claim(order: Order, claimed_before: Optional[datetime]) -> bool:
    if claimed_before is None:
        return False
    return order.claimed_at is None or order.claimed_at < claimed_before


def result_values(status: OrderStatus, fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Validate a result write; keeps processed_at non-null iff status is processed."""
    unknown = set(fields) - WRITABLE_FIELDS
    if unknown:
        raise StorageError(f"refusing to write unknown order fields: {sorted(unknown)}")
    values: Dict[str, Any] = dict(fields)
    values["status"] = status
    if status is OrderStatus.PROCESSED:
        if values.get("processed_at") is None:
            values["processed_at"] = utc_now()
    else:
        values["processed_at"] = None
    return values


class InMemoryOrderStore:
    """
    In-memory order gateway keyed by order id.
    Every read-modify-write runs under one asyncio.Lock, so update_where is atomic.
    """

    def __init__(self, orders: Sequence[Order] = (), items: Sequence[OrderItem] = ()) -> None:
        self._orders: Dict[str, Order] = {}
        self._items: Dict[str, List[OrderItem]] = {}
        self._seq: Dict[str, int] = {}
        self._lock = asyncio.Lock()
        for o in orders:
            self.add_order(o)
        for it in items:
            self.add_item(it)

    # ---- seeding -----------------------------------------------------------------
    def add_order(self, order: Order) -> None:
        if order.created_at is None:
            order = replace(order, created_at=utc_now())
        self._seq.setdefault(order.id, len(self._seq))
        self._orders[order.id] = order

    def add_item(self, item: OrderItem) -> None:
        self._items.setdefault(item.order_id, []).append(item)

    def snapshot(self, order_id: str) -> Optional[Order]:
        o = self._orders.get(order_id)
        return copy.deepcopy(o) if o else None

    def all_orders(self) -> List[Order]:
        return [copy.deepcopy(o) for o in self._orders.values()]

    # ---- gateway -----------------------------------------------------------------
    async def find_orders(self,
                          status_in: Iterable[OrderStatus],
                          *,
                          processed_at_is_null: bool = True,
                          order_by: str = "created_at",
                          limit: int = 5,
                          attempts_below: Optional[int] = None,
                          claimed_before: Optional[datetime] = None) -> List[Order]:
        """
        processing rows only count when their claim is older than claimed_before
        (or was never stamped); without a cutoff they are left out entirely.
        """
        wanted = {OrderStatus(s) for s in status_in}
        async with self._lock:
            rows = [
                o for o in self._orders.values()
                if o.status in wanted
                and (o.status is not OrderStatus.PROCESSING or is_stale_claim(o, claimed_before))
                and (not processed_at_is_null or o.processed_at is None)
                and (attempts_below is None or o.attempts < attempts_below)
            ]
            rows.sort(key=lambda o: (getattr(o, order_by, None) or utc_now(), self._seq[o.id]))
            return [copy.deepcopy(o) for o in rows[:limit]]

    async def get_order(self, order_id: str) -> Optional[Order]:
        async with self._lock:
            return self.snapshot(order_id)

    async def update_where(self, order_id: str, expected: Mapping[str, Any], new: Mapping[str, Any]) -> int:
        unknown = set(new) - WRITABLE_FIELDS
        if unknown:
            raise StorageError(f"refusing to write unknown order fields: {sorted(unknown)}")
        async with self._lock:
            cur = self._orders.get(order_id)
            if cur is None:
                return 0
            for k, v in expected.items():
                if getattr(cur, k) != v:
                    return 0
            self._orders[order_id] = replace(cur, **dict(new))
            return 1

    async def claim_order(self,
                          order_id: str,
                          expected_status: OrderStatus,
                          *,
                          expected_claimed_at: Optional[datetime] = None,
                          attempts: int = 0) -> bool:
        matched = await self.update_where(
            order_id,
            {"status": expected_status, "claimed_at": expected_claimed_at},
            claim_values(attempts),
        )
        return matched == 1

    async def update_order_result(self, order_id: str, status: OrderStatus, **fields: Any) -> None:
        values = result_values(status, fields)
        async with self._lock:
            cur = self._orders.get(order_id)
            if cur is None:
                raise StorageError(f"order {order_id} not found")
            self._orders[order_id] = replace(cur, **values)

    async def reset_order(self, order_id: str) -> bool:
        async with self._lock:
            cur = self._orders.get(order_id)
            if cur is None:
                return False
            self._orders[order_id] = replace(
                cur, status=OrderStatus.PENDING, processed_at=None, claimed_at=None
            )
            return True

    async def find_items(self, order_id: str) -> List[OrderItem]:
        async with self._lock:
            return [copy.deepcopy(it) for it in self._items.get(order_id, [])]
