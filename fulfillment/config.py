# fulfillment/config.py
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from fulfillment.enums import Pagination, StoreBackend
from fulfillment.errors import ConfigError


@dataclass(frozen=True)
class BuyerDefaults:
    """Client block used when an order carries no buyer data."""
    code: str = "99999999-9"
    company: str = "Mayorista Cliente"
    activity: str = "Venta al por mayor"


@dataclass(frozen=True)
class BsaleSettings:
    """Commerce API (Bsale) connection & document settings."""
    base_url: str
    access_token: str

    document_type_id: int = 1
    office_id: int = 1
    price_list_id: Optional[int] = None
    tax_ids: Tuple[int, ...] = (1,)
    declare_sii: bool = False
    buyer: BuyerDefaults = field(default_factory=BuyerDefaults)

    submit_timeout_ms: int = 20000
    page_timeout_ms: int = 15000
    lookup_timeout_ms: int = 15000

    pagination: Pagination = Pagination.OFFSET
    page_size: int = 50
    cursor_param: str = "cursor"
    next_field: str = "next"
    expand: Optional[str] = None        # e.g. "[variant]"

    max_attempts: int = 4               # rate-limit retry ceiling per GET
    backoff_ms: int = 500
    jitter_ms: int = 0

    def http_cfg(self) -> Dict[str, Any]:
        return {
            "base_url": self.base_url,
            "timeout_ms": self.page_timeout_ms,
            "retries": {"max_attempts": self.max_attempts, "backoff_ms": self.backoff_ms, "jitter_ms": self.jitter_ms},
        }

    def auth_headers(self) -> Dict[str, str]:
        return {"access_token": self.access_token}


@dataclass(frozen=True)
class StoreSettings:
    """Order store gateway settings (Supabase/PostgREST or in-memory)."""
    backend: StoreBackend = StoreBackend.POSTGREST
    url: str = ""
    service_key: str = ""
    schema_path: str = "/rest/v1"
    orders_table: str = "orders"
    items_table: str = "order_items"
    products_relation: str = "products"
    stock_table: str = "stock"
    timeout_ms: int = 10000
    max_attempts: int = 3
    backoff_ms: int = 200

    def http_cfg(self) -> Dict[str, Any]:
        return {
            "base_url": self.url,
            "timeout_ms": self.timeout_ms,
            "retries": {"max_attempts": self.max_attempts, "backoff_ms": self.backoff_ms},
        }

    def auth_headers(self) -> Dict[str, str]:
        return {"apikey": self.service_key, "Authorization": f"Bearer {self.service_key}"}


@dataclass(frozen=True)
class OrderReconcilerSettings:
    batch_size: int = 5
    order_by: str = "created_at"
    stale_claim_after_s: Optional[float] = 600.0   # None: never re-claim a 'processing' order
    max_attempts: Optional[int] = None             # None: retry 'error' orders forever


@dataclass(frozen=True)
class StockReconcilerSettings:
    max_pages: int = 50
    resolve_concurrency: int = 5
    scope_fallback: bool = True


@dataclass(frozen=True)
class SchedulerSettings:
    start_delay_s: float = 5.0
    order_interval_s: float = 30.0
    stock_interval_s: float = 900.0
    debounce_s: float = 10.0
    orders_enabled: bool = True
    stock_enabled: bool = True


@dataclass(frozen=True)
class ServerSettings:
    host: str = "127.0.0.1"
    port: int = 3000
    token: Optional[str] = None


@dataclass(frozen=True)
class SyncSettings:
    """Runtime configuration, built once at process start and passed down explicitly."""
    bsale: BsaleSettings
    store: StoreSettings
    orders: OrderReconcilerSettings = field(default_factory=OrderReconcilerSettings)
    stock: StockReconcilerSettings = field(default_factory=StockReconcilerSettings)
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    server: ServerSettings = field(default_factory=ServerSettings)
    log_level: str = "INFO"
    log_dir: Optional[str] = None

    @classmethod
    def from_cfg(cls, cfg: Mapping[str, Any]) -> "SyncSettings":
        try:
            b = cfg["bsale"]
            s = cfg.get("store", {}) or {}
            o = cfg.get("orders", {}) or {}
            st = cfg.get("stock", {}) or {}
            sc = cfg.get("scheduler", {}) or {}
            srv = cfg.get("server", {}) or {}
            lg = cfg.get("logging", {}) or {}

            timeouts = b.get("timeouts", {}) or {}
            retries = b.get("retries", {}) or {}
            buyer = b.get("buyer", {}) or {}

            bsale = BsaleSettings(
                base_url=str(b["base_url"]).rstrip("/"),
                access_token=str(b.get("access_token") or ""),
                document_type_id=int(b.get("document_type_id", 1)),
                office_id=int(b.get("office_id", 1)),
                price_list_id=_opt_int(b.get("price_list_id")),
                tax_ids=tuple(int(t) for t in (b.get("tax_ids") or [1])),
                declare_sii=_bool(b.get("declare_sii", False)),
                buyer=BuyerDefaults(
                    code=str(buyer.get("code", BuyerDefaults.code)),
                    company=str(buyer.get("company", BuyerDefaults.company)),
                    activity=str(buyer.get("activity", BuyerDefaults.activity)),
                ),
                submit_timeout_ms=int(timeouts.get("submit_ms", 20000)),
                page_timeout_ms=int(timeouts.get("page_ms", 15000)),
                lookup_timeout_ms=int(timeouts.get("lookup_ms", 15000)),
                pagination=Pagination(str(b.get("pagination", "offset")).lower()),
                page_size=int(b.get("page_size", 50)),
                cursor_param=str(b.get("cursor_param", "cursor")),
                next_field=str(b.get("next_field", "next")),
                expand=b.get("expand") or None,
                max_attempts=int(retries.get("max_attempts", 4)),
                backoff_ms=int(retries.get("backoff_ms", 500)),
                jitter_ms=int(retries.get("jitter_ms", 0)),
            )

            tables = s.get("tables", {}) or {}
            backend = StoreBackend(str(s.get("backend", "postgrest")).lower())
            store = StoreSettings(
                backend=backend,
                url=str(s.get("url") or "").rstrip("/"),
                service_key=str(s.get("service_key") or ""),
                schema_path=str(s.get("schema_path", "/rest/v1")),
                orders_table=str(tables.get("orders", "orders")),
                items_table=str(tables.get("order_items", "order_items")),
                products_relation=str(tables.get("products", "products")),
                stock_table=str(tables.get("stock", "stock")),
                timeout_ms=int(s.get("timeout_ms", 10000)),
                max_attempts=int((s.get("retries", {}) or {}).get("max_attempts", 3)),
                backoff_ms=int((s.get("retries", {}) or {}).get("backoff_ms", 200)),
            )
            if backend is StoreBackend.POSTGREST and not store.url:
                raise ConfigError("store.url is required for the postgrest backend")

            orders = OrderReconcilerSettings(
                batch_size=int(o.get("batch_size", 5)),
                order_by=str(o.get("order_by", "created_at")),
                stale_claim_after_s=_opt_float(o.get("stale_claim_after_s", 600)),
                max_attempts=_opt_int(o.get("max_attempts")),
            )
            stock = StockReconcilerSettings(
                max_pages=int(st.get("max_pages", 50)),
                resolve_concurrency=int(st.get("resolve_concurrency", 5)),
                scope_fallback=_bool(st.get("scope_fallback", True)),
            )
            scheduler = SchedulerSettings(
                start_delay_s=float(sc.get("start_delay_s", 5)),
                order_interval_s=float(sc.get("order_interval_s", 30)),
                stock_interval_s=float(sc.get("stock_interval_s", 900)),
                debounce_s=float(sc.get("debounce_s", 10)),
                orders_enabled=_bool(sc.get("orders_enabled", True)),
                stock_enabled=_bool(sc.get("stock_enabled", True)),
            )
            server = ServerSettings(
                host=str(srv.get("host", "127.0.0.1")),
                port=int(srv.get("port", 3000)),
                token=srv.get("token") or None,
            )
        except KeyError as e:
            raise ConfigError(f"Invalid cfg missing key: {e}") from e
        except ValueError as e:
            raise ConfigError(f"Invalid cfg value: {e}") from e

        if orders.batch_size <= 0:
            raise ConfigError("orders.batch_size must be > 0")
        if stock.max_pages <= 0 or stock.resolve_concurrency <= 0:
            raise ConfigError("stock.max_pages and stock.resolve_concurrency must be > 0")

        return cls(
            bsale=bsale,
            store=store,
            orders=orders,
            stock=stock,
            scheduler=scheduler,
            server=server,
            log_level=str(lg.get("level", "INFO")),
            log_dir=lg.get("dir") or None,
        )


def _opt_int(x) -> Optional[int]:
    if x is None or str(x).strip() == "":
        return None
    return int(x)

def _opt_float(x) -> Optional[float]:
    if x is None or str(x).strip() == "":
        return None
    return float(x)

def _bool(x) -> bool:
    if isinstance(x, bool):
        return x
    return str(x).strip().lower() in ("1", "true", "yes", "on")
