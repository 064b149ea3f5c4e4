# utils/throttle.py
import time
import asyncio
from functools import wraps
from fastapi import Request, HTTPException


def _client_ip(args, kwargs) -> str:
    request = kwargs.get("request")
    if not isinstance(request, Request):
        request = next((a for a in args if isinstance(a, Request)), None)
    if request is None or request.client is None:
        return "unknown"
    return request.client.host


def throttle(limit: int, window: int = 60):
    """
    Per-endpoint, per-IP fixed-window limiter kept in process memory.
    The decorated endpoint must take a `request: Request` parameter.
    """
    buckets = {}
    lock = asyncio.Lock()

    def decorator(fn):
        @wraps(fn)
        async def wrapper(*args, **kwargs):
            now_bucket = int(time.time() // window)
            key = (_client_ip(args, kwargs), now_bucket)
            async with lock:
                # drop counters from finished windows
                for stale in [k for k in buckets if k[1] < now_bucket]:
                    buckets.pop(stale, None)
                buckets[key] = buckets.get(key, 0) + 1
                if buckets[key] > limit:
                    raise HTTPException(
                        status_code=429,
                        detail="Too many requests",
                        headers={"Retry-After": str(window)},
                    )
            return await fn(*args, **kwargs)
        wrapper.buckets = buckets
        return wrapper
    return decorator
