# fulfillment/stores/postgrest_store.py
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from fulfillment.config import StoreSettings
from fulfillment.enums import OrderStatus
from fulfillment.errors import StorageError
from fulfillment.models import Order, OrderItem, StockRecord
from fulfillment.services.endpoints import StoreEndpoints
from fulfillment.stores.order_store import WRITABLE_FIELDS, claim_values, result_values
from infra import HttpPort
from infra.http_client import HttpError
from utils.logger import logger
from utils.num import safe_float
from utils.time import parse_ts, to_iso, utc_now

RETURN_ROWS = {"Prefer": "return=representation"}
MERGE_DUPLICATES = {"Prefer": "resolution=merge-duplicates,return=minimal"}


def _str_or_none(x: Any) -> Optional[str]:
    if x is None:
        return None
    s = str(x)
    return s if s != "" else None

def _db_value(v: Any) -> Any:
    if isinstance(v, Enum):
        return v.value
    if isinstance(v, datetime):
        return to_iso(v)
    return v

def _filter(v: Any) -> str:
    """PostgREST horizontal filter for an equality guard."""
    if v is None:
        return "is.null"
    return f"eq.{_db_value(v)}"

def _status_filter(wanted: Iterable[OrderStatus], claimed_before: Optional[datetime]) -> Dict[str, str]:
    """
    Status filter for discovery. processing rows only match when their claim
    predates claimed_before (or was never stamped); without a cutoff they never match.
    """
    idle = ",".join(sorted(s.value for s in wanted if s is not OrderStatus.PROCESSING))
    if OrderStatus.PROCESSING not in wanted or claimed_before is None:
        return {"status": f"in.({idle})"}
    # timestamps carry reserved characters (: . +), so they are quoted inside logic trees
    stale = f'claimed_at.is.null,claimed_at.lt."{to_iso(claimed_before)}"'
    if not idle:
        return {"status": "eq.processing", "or": f"({stale})"}
    return {"or": f"(status.in.({idle}),and(status.eq.processing,or({stale})))"}


def order_from_row(row: Mapping[str, Any]) -> Order:
    return Order(
        id=str(row["id"]),
        order_number=_str_or_none(row.get("order_number")),
        status=OrderStatus(row.get("status") or OrderStatus.PENDING.value),
        created_at=parse_ts(row.get("created_at")),
        processed_at=parse_ts(row.get("processed_at")),
        claimed_at=parse_ts(row.get("claimed_at")),
        attempts=int(row.get("attempts") or 0),
        last_error=row.get("last_error"),
        remote_document_id=_str_or_none(row.get("remote_document_id")),
        remote_response=row.get("remote_response"),
        customer_code=_str_or_none(row.get("customer_code")),
        customer_name=_str_or_none(row.get("customer_name")),
        customer_activity=_str_or_none(row.get("customer_activity")),
        customer_email=_str_or_none(row.get("customer_email")),
        customer_address=_str_or_none(row.get("customer_address")),
        customer_city=_str_or_none(row.get("customer_city")),
        notes=_str_or_none(row.get("notes")),
    )


def item_from_row(row: Mapping[str, Any], relation: str = "products") -> OrderItem:
    product = row.get(relation) or {}
    if isinstance(product, list):
        product = product[0] if product else {}
    return OrderItem(
        id=_str_or_none(row.get("id")),
        order_id=str(row.get("order_id", "")),
        quantity=int(safe_float(row.get("quantity"))),
        unit_price=safe_float(row.get("unit_price")),
        discount_percentage=safe_float(row.get("discount_percentage")),
        sku=str(product.get("sku") or "").strip(),
    )


class PostgrestStore:
    """
    Order, order-item and stock gateway over Supabase's PostgREST interface.
    Conditional writes are PATCHes whose filters carry the expected column values;
    the number of returned rows is the matched count.
    """

    def __init__(self, http_client: HttpPort, endpoints: StoreEndpoints, settings: StoreSettings) -> None:
        self._http = http_client
        self._ep = endpoints
        self._settings = settings

    async def _call(self, method: str, path: str, *, what: str, retry: bool = False, **kwargs) -> Any:
        try:
            return await self._http.request(method, path, retry=retry, **kwargs)
        except HttpError as e:
            raise StorageError(f"{what} failed: {e}") from e

    # ---- orders ------------------------------------------------------------------
    async def find_orders(self,
                          status_in: Iterable[OrderStatus],
                          *,
                          processed_at_is_null: bool = True,
                          order_by: str = "created_at",
                          limit: int = 5,
                          attempts_below: Optional[int] = None,
                          claimed_before: Optional[datetime] = None) -> List[Order]:
        wanted = {OrderStatus(s) for s in status_in}
        params: Dict[str, Any] = {
            "select": "*",
            "order": f"{order_by}.asc,id.asc",
            "limit": str(limit),
        }
        params.update(_status_filter(wanted, claimed_before))
        if processed_at_is_null:
            params["processed_at"] = "is.null"
        if attempts_below is not None:
            params["attempts"] = f"lt.{attempts_below}"
        rows = await self._call("GET", self._ep.orders, params=params, what="find_orders", retry=True)
        return [order_from_row(r) for r in rows or []]

    async def get_order(self, order_id: str) -> Optional[Order]:
        rows = await self._call(
            "GET", self._ep.orders,
            params={"select": "*", "id": f"eq.{order_id}", "limit": "1"},
            what="get_order", retry=True,
        )
        return order_from_row(rows[0]) if rows else None

    async def update_where(self, order_id: str, expected: Mapping[str, Any], new: Mapping[str, Any]) -> int:
        unknown = set(new) - WRITABLE_FIELDS
        if unknown:
            raise StorageError(f"refusing to write unknown order fields: {sorted(unknown)}")
        params: Dict[str, Any] = {"id": f"eq.{order_id}", "select": "id"}
        for col, val in expected.items():
            params[col] = _filter(val)
        body = {k: _db_value(v) for k, v in new.items()}
        rows = await self._call(
            "PATCH", self._ep.orders,
            params=params, json_body=body, headers=RETURN_ROWS, what="update_where",
        )
        return len(rows or [])

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
        body = {k: _db_value(v) for k, v in values.items()}
        rows = await self._call(
            "PATCH", self._ep.orders,
            params={"id": f"eq.{order_id}", "select": "id"},
            json_body=body, headers=RETURN_ROWS, what="update_order_result",
        )
        if not rows:
            raise StorageError(f"update_order_result matched no row for order {order_id}")

    async def reset_order(self, order_id: str) -> bool:
        rows = await self._call(
            "PATCH", self._ep.orders,
            params={"id": f"eq.{order_id}", "select": "id"},
            json_body={"status": OrderStatus.PENDING.value, "processed_at": None, "claimed_at": None},
            headers=RETURN_ROWS, what="reset_order",
        )
        return bool(rows)

    async def find_items(self, order_id: str) -> List[OrderItem]:
        rel = self._settings.products_relation
        rows = await self._call(
            "GET", self._ep.order_items,
            params={
                "select": f"id,order_id,quantity,unit_price,discount_percentage,{rel}(sku)",
                "order_id": f"eq.{order_id}",
            },
            what="find_items", retry=True,
        )
        return [item_from_row(r, rel) for r in rows or []]

    # ---- stock -------------------------------------------------------------------
    async def upsert_stock(self, records: Sequence[StockRecord]) -> int:
        if not records:
            return 0
        now = utc_now()
        body = [
            {"sku": r.sku, "quantity": r.quantity, "updated_at": to_iso(r.updated_at or now)}
            for r in records
        ]
        await self._call(
            "POST", self._ep.stock,
            params={"on_conflict": "sku"},
            json_body=body, headers=MERGE_DUPLICATES, what="upsert_stock",
        )
        logger.debug(f"[store] upserted {len(body)} stock rows")
        return len(body)
