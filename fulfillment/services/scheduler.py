# fulfillment/services/scheduler.py
from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from fulfillment.config import SchedulerSettings
from utils.logger import logger


class Job:
    """A named periodic pass with its own lock; runs of one job never overlap."""

    def __init__(self, name: str, run: Callable[[], Awaitable[Any]], interval_s: float) -> None:
        self.name = name
        self.run = run
        self.interval_s = interval_s
        self.lock = asyncio.Lock()
        self.runs = 0
        self.skipped = 0
        self.failures = 0
        self.last_result: Any = None


class SyncScheduler:
    """
    Drives the order and stock reconcilers on one event loop.
    - periodic ticks per job after a startup delay; a tick that finds the job busy is skipped
    - trigger_order(): debounce, enqueue the order, then run an order pass under the same lock
    - no exception escapes a tick
    """

    def __init__(self, order_reconciler, stock_reconciler, settings: SchedulerSettings) -> None:
        self._orders = order_reconciler
        self._stock = stock_reconciler
        self._s = settings
        self.jobs: Dict[str, Job] = {
            "orders": Job("orders", order_reconciler.run_once, settings.order_interval_s),
            "stock": Job("stock", stock_reconciler.run_once, settings.stock_interval_s),
        }
        self._tasks: List[asyncio.Task] = []
        self._triggers: Set[asyncio.Task] = set()
        self._started = False

    @property
    def running(self) -> bool:
        return self._started

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        enabled = {"orders": self._s.orders_enabled, "stock": self._s.stock_enabled}
        for name, job in self.jobs.items():
            if not enabled[name]:
                logger.info(f"[scheduler] job {name} disabled")
                continue
            self._tasks.append(asyncio.create_task(self._loop(job), name=f"job:{name}"))
        logger.info(
            f"[scheduler] started: orders every {self._s.order_interval_s}s, "
            f"stock every {self._s.stock_interval_s}s, start delay {self._s.start_delay_s}s"
        )

    async def stop(self) -> None:
        tasks = self._tasks + list(self._triggers)
        for t in tasks:
            t.cancel()
        for t in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await t
        self._tasks.clear()
        self._triggers.clear()
        self._started = False
        logger.info("[scheduler] stopped")

    async def _loop(self, job: Job) -> None:
        await asyncio.sleep(self._s.start_delay_s)
        while True:
            await self.tick(job.name)
            await asyncio.sleep(job.interval_s)

    async def tick(self, name: str) -> bool:
        """Periodic entry: skip when the job is already running. Returns True if it ran."""
        job = self.jobs[name]
        if job.lock.locked():
            job.skipped += 1
            logger.info(f"[scheduler] {name} still running, tick skipped")
            return False
        await self._run_locked(job)
        return True

    async def _run_locked(self, job: Job) -> Any:
        async with job.lock:
            job.runs += 1
            try:
                job.last_result = await job.run()
                return job.last_result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                job.failures += 1
                logger.exception(f"[scheduler] {job.name} pass crashed: {e}")
                return None

    # ---- manual entry points -----------------------------------------------------
    async def run_order_pass(self) -> Any:
        """Run one order pass now, waiting for a running pass to finish first."""
        return await self._run_locked(self.jobs["orders"])

    async def run_stock_pass(self) -> Any:
        return await self._run_locked(self.jobs["stock"])

    def trigger_order(self, order_id: str, *, delay_s: Optional[float] = None) -> asyncio.Task:
        """Schedule: wait the debounce delay, reset the order to pending, run an order pass."""
        delay = self._s.debounce_s if delay_s is None else delay_s
        logger.info(f"[scheduler] trigger received for order {order_id}, waiting {delay}s")
        return self.spawn(self._delayed_enqueue(order_id, delay), name=f"trigger:{order_id}")

    def spawn(self, coro: Awaitable[Any], *, name: str) -> asyncio.Task:
        """Run a one-off coroutine on the scheduler's loop; tracked so stop() can cancel it."""
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self._triggers.add(task)
        task.add_done_callback(self._triggers.discard)
        return task

    async def _delayed_enqueue(self, order_id: str, delay_s: float) -> None:
        await asyncio.sleep(delay_s)
        try:
            found = await self._orders.enqueue_order(order_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"[scheduler] enqueue of order {order_id} failed: {e}")
            return
        if found:
            await self.run_order_pass()

    def pending_triggers(self) -> int:
        return len(self._triggers)
