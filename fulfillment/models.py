# fulfillment/models.py
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any, List

from fulfillment.enums import OrderStatus


@dataclass
class Order:
    id: str
    order_number: Optional[str] = None
    status: OrderStatus = OrderStatus.PENDING
    created_at: Optional[datetime] = None

    # --- reconciliation bookkeeping ---
    processed_at: Optional[datetime] = None
    claimed_at: Optional[datetime] = None   # stamped by each claim; part of the CAS guard
    attempts: int = 0
    last_error: Optional[str] = None
    remote_document_id: Optional[str] = None
    remote_response: Optional[Any] = None

    # --- buyer / document fields (payload only) ---
    customer_code: Optional[str] = None     # tax id (RUT)
    customer_name: Optional[str] = None
    customer_activity: Optional[str] = None
    customer_email: Optional[str] = None
    customer_address: Optional[str] = None
    customer_city: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class OrderItem:
    order_id: str
    quantity: int
    unit_price: float
    discount_percentage: float = 0.0
    sku: str = ""                           # resolved from the product reference
    id: Optional[str] = None


@dataclass
class StockRecord:
    sku: str
    quantity: float
    updated_at: Optional[datetime] = None


@dataclass
class RemoteResponse:
    status_code: int
    body: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


@dataclass
class InventoryPage:
    """One upstream inventory page; never persisted."""
    items: List[Dict[str, Any]]
    page_number: int = 0
    next_token: Optional[str] = None
    has_more: bool = False


@dataclass
class NormalizedStock:
    """A raw inventory record mapped to {sku, quantity}; sku is None until resolved."""
    quantity: float
    sku: Optional[str] = None
    handle: Optional[str] = None

    @property
    def unresolved(self) -> bool:
        return not self.sku and bool(self.handle)


@dataclass
class OrderPassReport:
    discovered: int = 0
    claimed: int = 0
    skipped: int = 0
    processed: int = 0
    failed: int = 0
    order_ids: List[str] = field(default_factory=list)


@dataclass
class StockPassReport:
    pages: int = 0
    seen: int = 0
    upserted: int = 0
    dropped: int = 0
    resolved: int = 0
    scope_fallback: bool = False
    aborted: bool = False
    error: Optional[str] = None
