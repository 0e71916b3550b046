from fastapi import FastAPI
from fastapi.testclient import TestClient
from survey_recorder.api.ratelimit import RateLimitMiddleware


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def make_client(clock, max_requests=2, window_seconds=60):
    app = FastAPI()
    app.add_middleware(
        RateLimitMiddleware, max_requests=max_requests, window_seconds=window_seconds, clock=clock
    )

    @app.get("/api/ping")
    def ping():
        return {"ok": True}

    @app.get("/docs-ish")
    def outside():
        return {"ok": True}

    return TestClient(app)


def test_rate_limit_blocks_after_max():
    client = make_client(FakeClock())
    assert client.get("/api/ping").status_code == 200
    assert client.get("/api/ping").status_code == 200

    response = client.get("/api/ping")
    assert response.status_code == 429
    assert response.json()["error"] == "Too many requests"
    assert int(response.headers["retry-after"]) == 60


def test_rate_limit_window_resets():
    clock = FakeClock()
    client = make_client(clock)
    for _ in range(3):
        client.get("/api/ping")
    clock.now += 61
    assert client.get("/api/ping").status_code == 200


def test_rate_limit_ignores_other_paths():
    client = make_client(FakeClock(), max_requests=1)
    for _ in range(5):
        assert client.get("/docs-ish").status_code == 200


def test_rate_limit_forgets_expired_clients():
    clock = FakeClock()
    limiter = RateLimitMiddleware(FastAPI(), max_requests=2, window_seconds=60, clock=clock)
    for ip in ("10.0.0.1", "10.0.0.2", "10.0.0.3"):
        limiter._hit(ip, clock())
    assert len(limiter._windows) == 3

    clock.now += 30
    limiter._hit("10.0.0.4", clock())
    assert len(limiter._windows) == 4

    clock.now += 31
    limiter._hit("10.0.0.4", clock())
    assert list(limiter._windows) == ["10.0.0.4"]
