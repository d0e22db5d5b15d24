"""Unit tests for rate limiting middleware

Tests cover:
- Requests under limit allowed
- Minute and hour limit enforcement
- Exempt paths (root, health) and CORS preflight
- Per-IP isolation behind a trusted proxy
- Image limits on the scan routes
- Memory cleanup
"""

from __future__ import annotations

import time

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from mailroom.api.middleware.rate_limit import RateLimitMiddleware, count_images

PROXY = {"X-Cloud-Trace-Context": "trace/1"}


def make_app(**limits) -> FastAPI:
    test_app = FastAPI()
    test_app.add_middleware(RateLimitMiddleware, **limits)

    @test_app.get("/api/test")
    async def test_endpoint():
        return {"status": "ok"}

    @test_app.get("/api/health")
    async def health():
        return {"status": "healthy"}

    @test_app.post("/api/scan/smart-match")
    async def smart_match(request: Request):
        body = await request.json()
        return {"received": bool(body.get("image"))}

    @test_app.post("/api/scan/smart-match-batch")
    async def smart_match_batch(request: Request):
        body = await request.json()
        return {"received": len(body["images"])}

    return test_app


@pytest.fixture
def app():
    """Low limits for testing"""
    return make_app(requests_per_minute=5, requests_per_hour=20, images_per_minute=5, images_per_hour=8)


def batch(n: int) -> dict:
    return {"images": [{"image": "aGVsbG8="}] * n, "contacts": []}


def test_requests_under_limit_allowed(app):
    client = TestClient(app)

    for _ in range(3):
        response = client.get("/api/test")
        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit-Minute"] == "5"
        assert "X-RateLimit-Remaining-Minute" in response.headers


def test_minute_limit_enforced(app):
    client = TestClient(app)

    for _ in range(5):
        assert client.get("/api/test").status_code == 200

    response = client.get("/api/test")
    assert response.status_code == 429
    assert response.json()["detail"] == "Rate limit exceeded. Maximum 5 requests per minute."
    assert response.json()["retry_after"] == 60
    assert response.headers["Retry-After"] == "60"


def test_hour_limit_enforced():
    client = TestClient(make_app(requests_per_minute=100, requests_per_hour=3))

    for _ in range(3):
        assert client.get("/api/test").status_code == 200

    response = client.get("/api/test")
    assert response.status_code == 429
    assert "per hour" in response.json()["detail"]
    assert response.headers["Retry-After"] == "3600"


def test_health_and_preflight_bypass_rate_limit(app):
    client = TestClient(app)
    for _ in range(6):
        client.get("/api/test")

    response = client.get("/api/health")
    assert response.status_code == 200
    assert "X-RateLimit-Limit-Minute" not in response.headers
    assert client.options("/api/test").status_code != 429


def test_per_ip_isolation_behind_proxy(app):
    client = TestClient(app)

    for _ in range(5):
        assert client.get("/api/test", headers={**PROXY, "X-Forwarded-For": "192.168.1.1"}).status_code == 200
    assert client.get("/api/test", headers={**PROXY, "X-Forwarded-For": "192.168.1.1"}).status_code == 429

    assert client.get("/api/test", headers={**PROXY, "X-Forwarded-For": "192.168.1.2"}).status_code == 200


def test_forwarded_for_uses_first_hop(app):
    client = TestClient(app)

    for _ in range(5):
        client.get("/api/test", headers={**PROXY, "X-Forwarded-For": "203.0.113.1, 10.0.0.1"})

    response = client.get("/api/test", headers={**PROXY, "X-Forwarded-For": "203.0.113.1, 10.0.0.2"})
    assert response.status_code == 429


def test_invalid_forwarded_ip_falls_back_to_socket(app):
    middleware = RateLimitMiddleware(FastAPI().router)
    request = Request(
        {
            "type": "http",
            "headers": [(b"x-forwarded-for", b"not-an-ip"), (b"x-cloud-trace-context", b"t")],
            "client": ("10.1.2.3", 1234),
        }
    )
    assert middleware._get_client_ip(request) == "10.1.2.3"


def test_rate_limit_headers_accuracy(app):
    client = TestClient(app)

    response = client.get("/api/test")
    assert response.headers["X-RateLimit-Remaining-Minute"] == "4"
    assert response.headers["X-RateLimit-Remaining-Hour"] == "19"

    response = client.get("/api/test")
    assert response.headers["X-RateLimit-Remaining-Minute"] == "3"
    assert response.headers["X-RateLimit-Remaining-Hour"] == "18"


def test_scan_body_is_replayed_to_route(app):
    client = TestClient(app)

    assert client.post("/api/scan/smart-match-batch", json=batch(3)).json() == {"received": 3}
    assert client.post("/api/scan/smart-match", json={"image": "aGVsbG8="}).json() == {"received": True}


def test_image_minute_limit_counts_photos_not_requests(app):
    client = TestClient(app)

    assert client.post("/api/scan/smart-match-batch", json=batch(3)).status_code == 200

    response = client.post("/api/scan/smart-match-batch", json=batch(3))
    assert response.status_code == 429
    assert response.json()["detail"] == (
        "Image rate limit exceeded. Maximum 5 images per minute. Current: 3, Requested: 3"
    )
    assert response.headers["Retry-After"] == "60"

    # A rejected batch is not charged against the window
    assert client.post("/api/scan/smart-match-batch", json=batch(2)).status_code == 200


def test_image_hour_limit():
    client = TestClient(
        make_app(requests_per_minute=100, requests_per_hour=100, images_per_minute=100, images_per_hour=4)
    )

    assert client.post("/api/scan/smart-match-batch", json=batch(4)).status_code == 200

    response = client.post("/api/scan/smart-match", json={"image": "aGVsbG8="})
    assert response.status_code == 429
    assert "per hour" in response.json()["detail"]
    assert response.json()["retry_after"] == 3600


@pytest.mark.parametrize(
    "path, body, expected",
    [
        ("/api/scan/smart-match", b'{"image": "abc"}', 1),
        ("/api/scan/smart-match", b'{"image": ""}', 0),
        ("/api/scan/smart-match-batch", b'{"images": [{}, {}, {}]}', 3),
        ("/api/scan/smart-match-batch", b'{"images": "nope"}', 0),
        ("/api/scan/smart-match-batch", b"not json", 0),
        ("/api/scan/smart-match-batch", b"[1, 2]", 0),
        ("/api/scan/smart-match", b"", 0),
    ],
)
def test_count_images(path, body, expected):
    assert count_images(path, body) == expected


def test_memory_cleanup():
    """Old IP addresses are cleaned up to prevent memory leak"""
    middleware = RateLimitMiddleware(FastAPI().router, requests_per_minute=100, requests_per_hour=1000)

    for i in range(100):
        middleware.minute_buckets[f"192.168.1.{i}"] = [time.time()]
        middleware.hour_buckets[f"192.168.1.{i}"] = [time.time()]

    old_timestamp = time.time() - 10800
    for i in range(50):
        middleware.minute_buckets[f"192.168.2.{i}"] = [old_timestamp]
        middleware.hour_buckets[f"192.168.2.{i}"] = [old_timestamp]

    assert len(middleware.minute_buckets) == 150

    middleware._cleanup_old_buckets()

    assert len(middleware.minute_buckets) == 100
