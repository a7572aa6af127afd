# tests/test_order_store.py
import asyncio

import pytest

from fulfillment.enums import OrderStatus, RECONCILABLE_STATUSES
from fulfillment.errors import StorageError
from fulfillment.models import Order, OrderItem
from fulfillment.stores.order_store import InMemoryOrderStore, result_values

from conftest import ts


def _store():
    return InMemoryOrderStore(
        orders=[
            Order("late", status=OrderStatus.PENDING, created_at=ts(10)),
            Order("early", status=OrderStatus.ERROR, created_at=ts(1), attempts=3),
            Order("done", status=OrderStatus.PROCESSED, created_at=ts(0), processed_at=ts(2)),
            Order("busy", status=OrderStatus.PROCESSING, created_at=ts(5), claimed_at=ts(6)),
        ],
        items=[OrderItem("late", 1, 100.0, sku="A"), OrderItem("late", 2, 50.0, sku="B")],
    )


@pytest.mark.asyncio
async def test_find_orders_filters_and_orders_by_created_at():
    store = _store()
    found = await store.find_orders(RECONCILABLE_STATUSES, limit=10)
    assert [o.id for o in found] == ["early", "late"]

    assert [o.id for o in await store.find_orders(RECONCILABLE_STATUSES, limit=1)] == ["early"]
    # attempt cap hides orders that already used their attempts
    capped = await store.find_orders(RECONCILABLE_STATUSES, limit=10, attempts_below=3)
    assert "early" not in {o.id for o in capped}


@pytest.mark.asyncio
async def test_find_orders_only_returns_claims_older_than_the_cutoff():
    store = _store()
    store.add_order(Order("unstamped", status=OrderStatus.PROCESSING, created_at=ts(7)))

    recent = await store.find_orders(RECONCILABLE_STATUSES, limit=10, claimed_before=ts(6))
    assert [o.id for o in recent] == ["early", "unstamped", "late"]

    expired = await store.find_orders(RECONCILABLE_STATUSES, limit=10, claimed_before=ts(8))
    assert [o.id for o in expired] == ["early", "busy", "unstamped", "late"]

    # a cutoff never pulls in statuses the caller did not ask for
    idle = await store.find_orders([OrderStatus.PENDING], limit=10, claimed_before=ts(8))
    assert [o.id for o in idle] == ["late"]


@pytest.mark.asyncio
async def test_find_orders_returns_copies():
    store = _store()
    (o,) = await store.find_orders([OrderStatus.PENDING])
    o.status = OrderStatus.PROCESSED
    assert store.snapshot("late").status is OrderStatus.PENDING


@pytest.mark.asyncio
async def test_concurrent_claims_have_exactly_one_winner():
    store = _store()
    snap = store.snapshot("late")
    results = await asyncio.gather(*(
        store.claim_order("late", snap.status, expected_claimed_at=snap.claimed_at, attempts=snap.attempts)
        for _ in range(10)
    ))
    assert results.count(True) == 1
    after = store.snapshot("late")
    assert after.status is OrderStatus.PROCESSING
    assert after.attempts == 1
    assert after.claimed_at is not None


@pytest.mark.asyncio
async def test_claim_guard_includes_claimed_at():
    store = _store()
    # a poller that read the row before another re-claimed it must lose
    assert not await store.claim_order("busy", OrderStatus.PROCESSING, expected_claimed_at=ts(0))
    assert await store.claim_order("busy", OrderStatus.PROCESSING, expected_claimed_at=ts(6))
    assert not await store.claim_order("busy", OrderStatus.PROCESSING, expected_claimed_at=ts(6))


@pytest.mark.asyncio
async def test_update_where_rejects_unknown_columns():
    store = _store()
    with pytest.raises(StorageError):
        await store.update_where("late", {"status": OrderStatus.PENDING}, {"order_number": "x"})
    assert await store.update_where("missing", {}, {"status": OrderStatus.ERROR}) == 0


@pytest.mark.asyncio
async def test_result_keeps_processed_at_in_step_with_status():
    store = _store()
    await store.update_order_result("late", OrderStatus.PROCESSED, remote_document_id="9")
    o = store.snapshot("late")
    assert o.processed_at is not None and o.remote_document_id == "9"

    await store.update_order_result("late", OrderStatus.ERROR, processed_at=ts(0), last_error="boom")
    o = store.snapshot("late")
    assert o.status is OrderStatus.ERROR and o.processed_at is None

    with pytest.raises(StorageError):
        await store.update_order_result("missing", OrderStatus.ERROR)


def test_result_values_refuses_unknown_fields():
    with pytest.raises(StorageError):
        result_values(OrderStatus.ERROR, {"notes": "x"})


@pytest.mark.asyncio
async def test_reset_order_makes_it_pending_again():
    store = _store()
    assert await store.reset_order("done")
    o = store.snapshot("done")
    assert (o.status, o.processed_at, o.claimed_at) == (OrderStatus.PENDING, None, None)
    assert not await store.reset_order("missing")


@pytest.mark.asyncio
async def test_get_order():
    store = _store()
    assert (await store.get_order("busy")).claimed_at == ts(6)
    assert await store.get_order("missing") is None


@pytest.mark.asyncio
async def test_find_items():
    store = _store()
    items = await store.find_items("late")
    assert [(i.sku, i.quantity) for i in items] == [("A", 1), ("B", 2)]
    assert await store.find_items("early") == []
