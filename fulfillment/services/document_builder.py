# fulfillment/services/document_builder.py
from __future__ import annotations

import time
from typing import Any, Dict, List, Optional, Sequence

from fulfillment.config import BsaleSettings
from fulfillment.models import Order, OrderItem


def _num(x: float) -> float | int:
    """Send integral amounts as ints (CLP has no decimals)."""
    x = float(x)
    return int(x) if x.is_integer() else x


class DocumentBuilder:
    """
    Maps an order and its items to a Bsale document payload.
    Buyer fields missing on the order fall back to the configured defaults.
    """

    def __init__(self, settings: BsaleSettings) -> None:
        self._s = settings

    def details(self, items: Sequence[OrderItem]) -> List[Dict[str, Any]]:
        tax = list(self._s.tax_ids)
        return [
            {
                "code": it.sku or "",
                "quantity": int(it.quantity),
                "netUnitValue": _num(it.unit_price),
                "discount": _num(it.discount_percentage or 0),
                "taxId": f"[{','.join(str(t) for t in tax)}]",
            }
            for it in items
        ]

    def client(self, order: Order) -> Dict[str, Any]:
        d = self._s.buyer
        client: Dict[str, Any] = {
            "code": order.customer_code or d.code,
            "company": order.customer_name or d.company,
            "activity": order.customer_activity or d.activity,
        }
        if order.customer_email:
            client["email"] = order.customer_email
        if order.customer_address:
            client["address"] = order.customer_address
        if order.customer_city:
            client["city"] = order.customer_city
        return client

    def build(self, order: Order, items: Sequence[OrderItem], *, emission_ts: Optional[int] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "documentTypeId": self._s.document_type_id,
            "officeId": self._s.office_id,
            "emissionDate": int(emission_ts if emission_ts is not None else time.time()),
            "declareSii": 1 if self._s.declare_sii else 0,
            "client": self.client(order),
            "details": self.details(items),
        }
        if self._s.price_list_id is not None:
            payload["priceListId"] = self._s.price_list_id
        ref = order.order_number or order.id
        payload["salesId"] = str(ref)
        if order.notes:
            payload["observation"] = order.notes[:255]
        return payload
