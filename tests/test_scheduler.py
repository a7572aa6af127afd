# tests/test_scheduler.py
import asyncio

import pytest

from fulfillment.config import SchedulerSettings
from fulfillment.services.scheduler import SyncScheduler


class FakeReconciler:
    def __init__(self, *, block=None, fail=False):
        self.calls = 0
        self.enqueued = []
        self.block = block
        self.fail = fail
        self.known = {"o1"}

    async def run_once(self):
        self.calls += 1
        if self.block is not None:
            await self.block.wait()
        if self.fail:
            raise RuntimeError("boom")
        return {"pass": self.calls}

    async def enqueue_order(self, order_id):
        self.enqueued.append(order_id)
        return order_id in self.known


def _scheduler(orders=None, stock=None, **kw):
    settings = SchedulerSettings(**{"start_delay_s": 0, "order_interval_s": 0.01,
                                    "stock_interval_s": 0.01, "debounce_s": 0, **kw})
    return SyncScheduler(orders or FakeReconciler(), stock or FakeReconciler(), settings)


@pytest.mark.asyncio
async def test_tick_skips_while_the_same_job_runs():
    gate = asyncio.Event()
    orders = FakeReconciler(block=gate)
    sched = _scheduler(orders)

    first = asyncio.create_task(sched.tick("orders"))
    await asyncio.sleep(0)
    assert await sched.tick("orders") is False
    assert sched.jobs["orders"].skipped == 1

    gate.set()
    assert await first is True
    assert orders.calls == 1


@pytest.mark.asyncio
async def test_jobs_do_not_block_each_other():
    gate = asyncio.Event()
    sched = _scheduler(FakeReconciler(block=gate), FakeReconciler())
    blocked = asyncio.create_task(sched.tick("orders"))
    await asyncio.sleep(0)
    assert await sched.tick("stock") is True
    gate.set()
    await blocked


@pytest.mark.asyncio
async def test_exceptions_never_escape_a_tick():
    orders = FakeReconciler(fail=True)
    sched = _scheduler(orders)
    assert await sched.tick("orders") is True
    job = sched.jobs["orders"]
    assert job.failures == 1 and job.last_result is None
    # the next tick still runs
    orders.fail = False
    await sched.tick("orders")
    assert job.runs == 2 and job.last_result == {"pass": 2}


@pytest.mark.asyncio
async def test_trigger_enqueues_then_runs_an_order_pass():
    orders = FakeReconciler()
    sched = _scheduler(orders)
    await sched.trigger_order("o1")
    await asyncio.sleep(0)
    assert orders.enqueued == ["o1"] and orders.calls == 1
    assert sched.pending_triggers() == 0


@pytest.mark.asyncio
async def test_trigger_for_unknown_order_runs_no_pass():
    orders = FakeReconciler()
    sched = _scheduler(orders)
    await sched.trigger_order("nope")
    assert orders.enqueued == ["nope"] and orders.calls == 0


@pytest.mark.asyncio
async def test_trigger_waits_for_a_running_pass():
    gate = asyncio.Event()
    orders = FakeReconciler(block=gate)
    sched = _scheduler(orders)
    running = asyncio.create_task(sched.tick("orders"))
    await asyncio.sleep(0)

    trig = sched.trigger_order("o1")
    await asyncio.sleep(0.01)
    assert orders.calls == 1        # still inside the first pass
    gate.set()
    await asyncio.gather(running, trig)
    assert orders.calls == 2


@pytest.mark.asyncio
async def test_start_runs_periodic_passes_and_stop_cancels():
    orders, stock = FakeReconciler(), FakeReconciler()
    sched = _scheduler(orders, stock, stock_enabled=False)
    await sched.start()
    assert sched.running
    await asyncio.sleep(0.05)
    await sched.stop()
    assert orders.calls >= 2
    assert stock.calls == 0
    assert not sched.running

    calls = orders.calls
    await asyncio.sleep(0.03)
    assert orders.calls == calls


@pytest.mark.asyncio
async def test_stop_cancels_pending_triggers():
    sched = _scheduler(FakeReconciler(), debounce_s=10)
    task = sched.trigger_order("o1")
    assert sched.pending_triggers() == 1
    await sched.stop()
    assert task.cancelled()
