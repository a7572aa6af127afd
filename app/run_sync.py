# app/run_sync.py
import asyncio, signal, os, argparse
import uvicorn
import contextlib

from utils.config import load_cfg
from utils.logger import logger, setup_logging
from infra import HttpClientRegistry
from fulfillment.config import SyncSettings
from fulfillment.enums import StoreBackend
from fulfillment.services.endpoints import make_bsale_endpoints, make_store_endpoints
from fulfillment.services.bsale_client import BsaleClient
from fulfillment.services.document_builder import DocumentBuilder
from fulfillment.services.order_reconciler import OrderReconciler
from fulfillment.services.stock_reconciler import StockReconciler
from fulfillment.services.scheduler import SyncScheduler
from fulfillment.stores.order_store import InMemoryOrderStore
from fulfillment.stores.stock_store import InMemoryStockStore
from fulfillment.stores.postgrest_store import PostgrestStore
from app.control import build_app


def env_default(name: str, default=None):
    return os.getenv(name, default)

def build_parser():
    p = argparse.ArgumentParser("bsale-sync")
    p.add_argument("--config-path", default=env_default("SYNC_CONFIG", None))
    p.add_argument("--host",        default=env_default("SYNC_HOST", None))
    p.add_argument("--port",        type=int, default=int(env_default("SYNC_PORT", "0") or 0))
    p.add_argument("--token",       default=env_default("SYNC_TOKEN", None))
    p.add_argument("--once", choices=["orders", "stock"], default=None,
                   help="run a single pass and exit instead of serving")
    return p


def build_services(settings: SyncSettings, registry: HttpClientRegistry):
    """Composition root: wire stores, clients and reconcilers from settings."""
    bsale_http = registry.add("bsale", settings.bsale.http_cfg(), headers=settings.bsale.auth_headers())
    client = BsaleClient(bsale_http, make_bsale_endpoints(settings.bsale), settings.bsale)

    if settings.store.backend is StoreBackend.MEMORY:
        logger.warning("store.backend=memory: orders and stock live in process memory only")
        order_store, stock_store = InMemoryOrderStore(), InMemoryStockStore()
    else:
        store_http = registry.add("store", settings.store.http_cfg(), headers=settings.store.auth_headers())
        order_store = stock_store = PostgrestStore(store_http, make_store_endpoints(settings.store), settings.store)

    orders = OrderReconciler(order_store, client, DocumentBuilder(settings.bsale), settings.orders)
    stock = StockReconciler(stock_store, client, settings.stock)
    scheduler = SyncScheduler(orders, stock, settings.scheduler)
    return orders, stock, scheduler


async def main():
    args = build_parser().parse_args()

    cfg = load_cfg(args.config_path)
    settings = SyncSettings.from_cfg(cfg)
    setup_logging(settings.log_level, settings.log_dir)

    registry = HttpClientRegistry()
    orders, stock, scheduler = build_services(settings, registry)

    if args.once:
        try:
            report = await (orders.run_once() if args.once == "orders" else stock.run_once())
            logger.info(f"single {args.once} pass: {report}")
        finally:
            await registry.close_all()
        return

    host = args.host or settings.server.host
    port = args.port or settings.server.port
    token = args.token or settings.server.token

    app = build_app(scheduler, token=token)
    server = uvicorn.Server(
        uvicorn.Config(app, host=host,
                            port=port,
                            loop="asyncio",
                            lifespan="off",
                            timeout_keep_alive=10,
                            log_config=None,
                            access_log=False)
    )

    await scheduler.start()
    http_task = asyncio.create_task(server.serve(), name="http")
    logger.info(f"Serving on http://{host}:{port}")
    stop_event = asyncio.Event()

    def _graceful(*_):
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _graceful)
        except NotImplementedError:
            pass

    await stop_event.wait()
    await scheduler.stop()
    server.should_exit = True
    with contextlib.suppress(asyncio.CancelledError):
        await http_task
    await registry.close_all()


def cli():
    asyncio.run(main())


if __name__ == "__main__":
    cli()
