# tests/test_control_api.py
from fastapi.testclient import TestClient

from app.control import build_app


class FakeJob:
    def __init__(self):
        self.runs = 3
        self.skipped = 1
        self.failures = 0
        self.lock = self

    def locked(self):
        return False


class FakeScheduler:
    def __init__(self):
        self.triggered = []
        self.spawned = []
        self.jobs = {"orders": FakeJob(), "stock": FakeJob()}

    def trigger_order(self, order_id, *, delay_s=None):
        self.triggered.append(order_id)

    async def run_stock_pass(self):
        return None

    def spawn(self, coro, *, name):
        self.spawned.append(name)
        coro.close()

    def pending_triggers(self):
        return len(self.triggered)


def test_health():
    client = TestClient(build_app(FakeScheduler()))
    r = client.get("/health")
    assert r.status_code == 200 and r.json() == {"ok": True}


def test_order_trigger_is_accepted():
    sched = FakeScheduler()
    client = TestClient(build_app(sched))
    r = client.post("/api/bsale", json={"order_id": 42})
    assert r.status_code == 202
    assert r.json()["order_id"] == "42"
    assert sched.triggered == ["42"]


def test_missing_order_id_is_400():
    sched = FakeScheduler()
    client = TestClient(build_app(sched))
    assert client.post("/api/bsale", json={}).status_code == 400
    assert client.post("/api/bsale", json={"order_id": "  "}).json() == {"error": "missing order_id"}
    assert client.post("/api/bsale").status_code == 400
    # malformed bodies are rejected by request validation
    assert client.post("/api/bsale", content=b"not json", headers={"content-type": "application/json"}).status_code == 422
    assert sched.triggered == []


def test_token_is_enforced_when_configured():
    sched = FakeScheduler()
    client = TestClient(build_app(sched, token="s3cret"))
    assert client.post("/api/bsale", json={"order_id": "1"}).status_code == 401
    assert client.post("/api/bsale", json={"order_id": "1"}, headers={"x-token": "s3cret"}).status_code == 202
    # health stays open
    assert client.get("/health").status_code == 200


def test_manual_stock_sync_and_status():
    sched = FakeScheduler()
    client = TestClient(build_app(sched))
    r = client.post("/api/sync/stock")
    assert r.status_code == 202 and sched.spawned == ["manual:stock"]

    st = client.get("/status").json()
    assert st["orders"] == {"running": False, "runs": 3, "skipped": 1, "failures": 0}
    assert st["pending_triggers"] == 0


def test_cors_preflight_echoes_the_origin():
    client = TestClient(build_app(FakeScheduler(), token="s3cret"))
    r = client.options("/api/bsale", headers={
        "Origin": "https://shop.example.cl",
        "Access-Control-Request-Method": "POST",
        "Access-Control-Request-Headers": "content-type,x-token",
    })
    assert r.status_code == 200
    assert r.headers["access-control-allow-origin"] == "https://shop.example.cl"
    assert "POST" in r.headers["access-control-allow-methods"]

    disallowed = client.options("/api/bsale", headers={
        "Origin": "https://shop.example.cl",
        "Access-Control-Request-Method": "DELETE",
    })
    assert disallowed.status_code == 400


def test_cors_headers_on_simple_requests():
    client = TestClient(build_app(FakeScheduler()))
    r = client.get("/health", headers={"Origin": "https://dash.example.cl"})
    assert r.headers["access-control-allow-origin"] == "https://dash.example.cl"
    assert r.headers["access-control-allow-credentials"] == "true"
