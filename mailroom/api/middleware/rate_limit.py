"""Rate limiting middleware for the Mailroom API

Request-based limits per client IP, plus image-count limits on the scan
routes so one large batch cannot burn the AI budget faster than a steady
stream of single photos would.
"""

from __future__ import annotations

import ipaddress
import json
import secrets
import time
from collections.abc import Callable
from typing import Any

from cachetools import TTLCache
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from mailroom.config import (
    RATE_LIMIT_IMAGES_PH,
    RATE_LIMIT_IMAGES_PM,
    RATE_LIMIT_MAX_IPS,
    RATE_LIMIT_RPH,
    RATE_LIMIT_RPM,
    is_development,
)
from mailroom.observability.telemetry import log_event

SCAN_IMAGE_PATHS = ("/api/scan/smart-match", "/api/scan/smart-match-batch")
EXEMPT_PATHS = ("/", "/api/health")


def count_images(path: str, body: bytes) -> int:
    """Images carried by a scan request body; 0 when it cannot be parsed."""
    try:
        data = json.loads(body) if body else {}
    except (json.JSONDecodeError, UnicodeDecodeError):
        return 0
    if not isinstance(data, dict):
        return 0
    if path.endswith("-batch"):
        images = data.get("images")
        return len(images) if isinstance(images, list) else 0
    return 1 if data.get("image") else 0


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Per-IP sliding-window rate limiting.

    Buckets live in TTLCaches so idle IPs fall out on their own.
    """

    def __init__(
        self,
        app: Any,
        requests_per_minute: int = RATE_LIMIT_RPM,
        requests_per_hour: int = RATE_LIMIT_RPH,
        images_per_minute: int = RATE_LIMIT_IMAGES_PM,
        images_per_hour: int = RATE_LIMIT_IMAGES_PH,
    ) -> None:
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        self.requests_per_hour = requests_per_hour
        self.images_per_minute = images_per_minute
        self.images_per_hour = images_per_hour

        self.minute_buckets: TTLCache[str, list[float]] = TTLCache(maxsize=RATE_LIMIT_MAX_IPS, ttl=120)
        self.hour_buckets: TTLCache[str, list[float]] = TTLCache(maxsize=RATE_LIMIT_MAX_IPS, ttl=7200)
        # {ip: [(timestamp, image_count), ...]}
        self.image_minute_buckets: TTLCache[str, list[tuple[float, int]]] = TTLCache(
            maxsize=RATE_LIMIT_MAX_IPS, ttl=120
        )
        self.image_hour_buckets: TTLCache[str, list[tuple[float, int]]] = TTLCache(
            maxsize=RATE_LIMIT_MAX_IPS, ttl=7200
        )

        # Cloud Run sets this header - only trust X-Forwarded-For when present
        self._trusted_proxy_header = "X-Cloud-Trace-Context"

    @staticmethod
    def _is_valid_ip(ip_str: str) -> bool:
        try:
            ipaddress.ip_address(ip_str)
            return True
        except ValueError:
            return False

    def _get_client_ip(self, request: Request) -> str:
        """Socket IP, or the forwarded IP behind Cloud Run (and in development)."""
        if self._trusted_proxy_header in request.headers or is_development():
            forwarded = request.headers.get("X-Forwarded-For")
            if forwarded:
                ip = forwarded.split(",")[0].strip()
                if self._is_valid_ip(ip):
                    return ip

        return request.client.host if request.client else "unknown"

    @staticmethod
    def _clean_old_requests(bucket: list[float], max_age_seconds: int) -> list[float]:
        now = time.time()
        return [ts for ts in bucket if now - ts < max_age_seconds]

    @staticmethod
    def _clean_old_image_counts(bucket: list[tuple[float, int]], max_age_seconds: int) -> list[tuple[float, int]]:
        now = time.time()
        return [(ts, count) for ts, count in bucket if now - ts < max_age_seconds]

    def _cleanup_old_buckets(self) -> None:
        """Drop IPs idle for more than two hours."""
        now = time.time()
        for ip in list(self.minute_buckets.keys()):
            bucket = self.minute_buckets.get(ip, [])
            if not bucket or now - max(bucket) > 7200:
                self.minute_buckets.pop(ip, None)
                self.hour_buckets.pop(ip, None)

    @staticmethod
    def _too_many(detail: str, retry_after: int) -> JSONResponse:
        return JSONResponse(
            status_code=429,
            content={"detail": detail, "retry_after": retry_after},
            headers={"Retry-After": str(retry_after)},
        )

    def _check_images(self, client_ip: str, image_count: int) -> JSONResponse | None:
        self.image_minute_buckets[client_ip] = self._clean_old_image_counts(
            self.image_minute_buckets.get(client_ip, []), 60
        )
        self.image_hour_buckets[client_ip] = self._clean_old_image_counts(
            self.image_hour_buckets.get(client_ip, []), 3600
        )

        for label, bucket, limit, retry_after in (
            ("minute", self.image_minute_buckets[client_ip], self.images_per_minute, 60),
            ("hour", self.image_hour_buckets[client_ip], self.images_per_hour, 3600),
        ):
            current = sum(count for _, count in bucket)
            if current + image_count > limit:
                log_event(
                    "api.rate_limit.image_exceeded",
                    ip=client_ip,
                    limit=label,
                    current=current,
                    requested=image_count,
                    max=limit,
                )
                return self._too_many(
                    f"Image rate limit exceeded. Maximum {limit} images per {label}. "
                    f"Current: {current}, Requested: {image_count}",
                    retry_after,
                )
        return None

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in EXEMPT_PATHS or request.method == "OPTIONS":
            return await call_next(request)

        if secrets.randbelow(100) == 0:
            self._cleanup_old_buckets()

        client_ip = self._get_client_ip(request)
        now = time.time()

        self.minute_buckets[client_ip] = self._clean_old_requests(self.minute_buckets.get(client_ip, []), 60)
        self.hour_buckets[client_ip] = self._clean_old_requests(self.hour_buckets.get(client_ip, []), 3600)

        minute_requests = len(self.minute_buckets[client_ip])
        if minute_requests >= self.requests_per_minute:
            log_event("api.rate_limit.request_exceeded", ip=client_ip, limit="minute", count=minute_requests)
            return self._too_many(
                f"Rate limit exceeded. Maximum {self.requests_per_minute} requests per minute.", 60
            )

        hour_requests = len(self.hour_buckets[client_ip])
        if hour_requests >= self.requests_per_hour:
            log_event("api.rate_limit.request_exceeded", ip=client_ip, limit="hour", count=hour_requests)
            return self._too_many(
                f"Rate limit exceeded. Maximum {self.requests_per_hour} requests per hour.", 3600
            )

        image_count = 0
        if request.method == "POST" and request.url.path in SCAN_IMAGE_PATHS:
            body_bytes = await request.body()
            image_count = count_images(request.url.path, body_bytes)

            # body() drains the stream; replay it for the route handler
            async def receive_wrapper():
                return {"type": "http.request", "body": body_bytes}

            request._receive = receive_wrapper

            if image_count > 0:
                rejected = self._check_images(client_ip, image_count)
                if rejected is not None:
                    return rejected

        self.minute_buckets[client_ip].append(now)
        self.hour_buckets[client_ip].append(now)
        if image_count > 0:
            self.image_minute_buckets[client_ip].append((now, image_count))
            self.image_hour_buckets[client_ip].append((now, image_count))

        response = await call_next(request)

        response.headers["X-RateLimit-Limit-Minute"] = str(self.requests_per_minute)
        response.headers["X-RateLimit-Remaining-Minute"] = str(self.requests_per_minute - minute_requests - 1)
        response.headers["X-RateLimit-Limit-Hour"] = str(self.requests_per_hour)
        response.headers["X-RateLimit-Remaining-Hour"] = str(self.requests_per_hour - hour_requests - 1)

        return response
