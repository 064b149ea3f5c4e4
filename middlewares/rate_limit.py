# middlewares/rate_limit.py
import time
import logging
from typing import Optional
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
import redis.asyncio as redis

logger = logging.getLogger("uvicorn.error")

EXEMPT_PATHS = ("/robots.txt", "/healthz", "/favicon.ico")
EXEMPT_PREFIXES = ("/static/", "/docs", "/redoc", "/openapi.json")


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Global fixed-window limit per bearer token and per client IP.
    Counters live in Redis when REDIS_URL is set, otherwise in this process.
    """

    def __init__(self, app, rate_per_min: int, window: int, redis_url: Optional[str]):
        super().__init__(app)
        self.rate_per_min = rate_per_min
        self.window = window
        self.redis_url = redis_url
        self.redis = None
        self.local_counts = {}

    async def _hit_local(self, key: str) -> int:
        now_bucket = int(time.time() // self.window)
        k = (key, now_bucket)
        self.local_counts[k] = self.local_counts.get(k, 0) + 1
        if len(self.local_counts) > 5000:
            for kk in [kk for kk in self.local_counts if kk[1] < now_bucket]:
                self.local_counts.pop(kk, None)
        return self.local_counts[k]

    async def _hit_redis(self, key: str) -> int:
        if self.redis is None:
            self.redis = redis.from_url(self.redis_url, encoding="utf-8", decode_responses=True)
        bucket = f"{key}:{int(time.time() // self.window)}"
        n = await self.redis.incr(bucket)
        if n == 1:
            await self.redis.expire(bucket, self.window)
        return n

    async def hit(self, key: str) -> int:
        if self.redis_url:
            return await self._hit_redis(key)
        return await self._hit_local(key)

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path in EXEMPT_PATHS or path.startswith(EXEMPT_PREFIXES):
            return await call_next(request)

        authz = request.headers.get("authorization") or ""
        parts = authz.split()
        token = parts[1] if (len(parts) == 2 and parts[0].lower() == "bearer") else None
        ip = request.client.host if request.client else "unknown"

        try:
            # anonymous callers are only limited per IP
            n_user = await self.hit(f"rl:u:{token}") if token else 0
            n_ip = await self.hit(f"rl:ip:{ip}")
        except redis.RedisError as e:
            # counters unavailable: let the request through
            logger.warning("Rate limit store unavailable: %s", e)
            return await call_next(request)

        if n_user > self.rate_per_min or n_ip > self.rate_per_min:
            return JSONResponse({"error": "rate limit"}, status_code=429)

        return await call_next(request)
