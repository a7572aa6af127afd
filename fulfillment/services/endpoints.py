# fulfillment/services/endpoints.py
from dataclasses import dataclass

from fulfillment.config import BsaleSettings, StoreSettings

@dataclass
class BsaleEndpoints:
    base_url: str

    documents: str = "/v1/documents.json"
    stocks: str = "/v1/stocks.json"
    variant: str = "/v1/variants/{id}.json"

    def variant_path(self, variant_id: str) -> str:
        return self.variant.format(id=variant_id)


@dataclass
class StoreEndpoints:
    base_url: str
    orders: str
    order_items: str
    stock: str


def make_bsale_endpoints(settings: BsaleSettings) -> BsaleEndpoints:
    return BsaleEndpoints(base_url=settings.base_url)


def make_store_endpoints(settings: StoreSettings) -> StoreEndpoints:
    prefix = "/" + settings.schema_path.strip("/")
    return StoreEndpoints(
        base_url=settings.url,
        orders=f"{prefix}/{settings.orders_table}",
        order_items=f"{prefix}/{settings.items_table}",
        stock=f"{prefix}/{settings.stock_table}",
    )
