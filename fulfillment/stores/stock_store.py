# fulfillment/stores/stock_store.py
import asyncio
from dataclasses import replace
from typing import Dict, List, Optional, Protocol, Sequence

from fulfillment.errors import StorageError
from fulfillment.models import StockRecord
from utils.time import utc_now


class StockStorePort(Protocol):
    """Stock table gateway consumed by the stock reconciler."""

    async def upsert_stock(self, records: Sequence[StockRecord]) -> int: ...


class InMemoryStockStore:
    """
    In-memory stock mirror keyed by SKU; last write wins.
    """

    def __init__(self) -> None:
        self._data: Dict[str, StockRecord] = {}
        self._lock = asyncio.Lock()
        self.batches: List[List[StockRecord]] = []

    async def upsert_stock(self, records: Sequence[StockRecord]) -> int:
        """Insert or replace by SKU; stamps updated_at when the caller did not."""
        batch = list(records)
        if any(not r.sku for r in batch):
            raise StorageError("stock upsert rejected: empty sku")
        now = utc_now()
        async with self._lock:
            for r in batch:
                self._data[r.sku] = r if r.updated_at else replace(r, updated_at=now)
            self.batches.append(batch)
        return len(batch)

    def get(self, sku: str) -> Optional[StockRecord]:
        return self._data.get(sku)

    def all(self) -> Dict[str, StockRecord]:
        return dict(self._data)
