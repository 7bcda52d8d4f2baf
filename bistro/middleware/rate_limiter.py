"""
Bistro — Sliding window rate limiter middleware (Redis-backed)

Limits per route:
  POST /reservations               3 per 300 s   (admins exempt)
  GET  /reservations/availability  20 per 60 s   (includes /availability/day)
  POST /orders                     5 per 900 s
Key is the authenticated account id, or the client IP for anonymous callers.
Uses sorted sets (ZADD/ZREMRANGEBYSCORE/ZCARD) for a true sliding window.
"""
import time
import uuid
from dataclasses import dataclass

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from bistro.core.config import get_settings
from bistro.core.redis_client import get_redis

settings = get_settings()

RATE_LIMIT_PREFIX = "ratelimit:"


@dataclass(frozen=True)
class RateRule:
    name: str
    method: str
    path: str
    max_attempts: int
    window_seconds: int
    message: str
    admin_exempt: bool = False
    prefix_match: bool = False

    def matches(self, method: str, path: str) -> bool:
        if method != self.method:
            return False
        path = path.rstrip("/") or "/"
        if self.prefix_match:
            return path == self.path or path.startswith(self.path + "/")
        return path == self.path


def default_rules() -> tuple[RateRule, ...]:
    return (
        RateRule(
            name="reservation_create",
            method="POST",
            path="/reservations",
            max_attempts=settings.RESERVATION_CREATE_MAX_ATTEMPTS,
            window_seconds=settings.RESERVATION_CREATE_WINDOW_SECONDS,
            message="Too many reservation attempts. Please try again later.",
            admin_exempt=True,
        ),
        RateRule(
            name="availability",
            method="GET",
            path="/reservations/availability",
            max_attempts=settings.AVAILABILITY_MAX_ATTEMPTS,
            window_seconds=settings.AVAILABILITY_WINDOW_SECONDS,
            message="Too many availability checks. Please slow down.",
            prefix_match=True,
        ),
        RateRule(
            name="order_create",
            method="POST",
            path="/orders",
            max_attempts=settings.ORDER_CREATE_MAX_ATTEMPTS,
            window_seconds=settings.ORDER_CREATE_WINDOW_SECONDS,
            message="Too many orders placed. Please try again later.",
        ),
    )


def _tracking_key(request: Request) -> tuple[str, bool]:
    """Return (key, is_admin) for the caller."""
    claims = getattr(request.state, "user", None)
    if claims and claims.get("sub"):
        return f"account:{claims['sub']}", bool(claims.get("is_admin", False))
    host = request.client.host if request.client else "unknown"
    return f"ip:{host}", False


class SlidingWindowRateLimiter(BaseHTTPMiddleware):
    """
    Applies sliding-window limits to the routes listed in `rules`.
    Must run inside JWTAuthMiddleware so request.state.user is already set.
    """

    def __init__(self, app, rules: tuple[RateRule, ...] | None = None, enabled: bool | None = None):
        super().__init__(app)
        self.rules = rules if rules is not None else default_rules()
        self.enabled = settings.RATE_LIMIT_ENABLED if enabled is None else enabled

    async def dispatch(self, request: Request, call_next) -> Response:
        if not self.enabled:
            return await call_next(request)

        rule = next((r for r in self.rules if r.matches(request.method, request.url.path)), None)
        if rule is None:
            return await call_next(request)

        tracking_key, is_admin = _tracking_key(request)
        if rule.admin_exempt and is_admin:
            return await call_next(request)

        redis = get_redis()
        key = f"{RATE_LIMIT_PREFIX}{rule.name}:{tracking_key}"
        now = time.time()
        window_start = now - rule.window_seconds

        pipe = redis.pipeline()
        # Remove entries outside the window
        pipe.zremrangebyscore(key, "-inf", window_start)
        pipe.zcard(key)
        # Unique member so two hits in the same microsecond both count
        pipe.zadd(key, {f"{now}:{uuid.uuid4().hex[:8]}": now})
        pipe.expire(key, rule.window_seconds + 1)
        results = await pipe.execute()

        attempt_count = results[1]  # count before this attempt

        if attempt_count >= rule.max_attempts:
            return JSONResponse(
                status_code=429,
                content={"detail": rule.message, "retry_after_seconds": rule.window_seconds},
                headers={"Retry-After": str(rule.window_seconds)},
            )

        return await call_next(request)
