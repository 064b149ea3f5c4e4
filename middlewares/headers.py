# middlewares/headers.py
from fastapi import Request, Response

# search results depend on the viewer's position, never share them
NO_STORE_PREFIXES = ("/products", "/api/products", "/users/", "/api/users/")


async def security_and_cache_headers(request: Request, call_next):
    resp: Response = await call_next(request)
    path = request.url.path

    if path.startswith("/static/"):
        resp.headers.setdefault("Cache-Control", "public, max-age=31536000, immutable")
    elif path.startswith(NO_STORE_PREFIXES):
        resp.headers.setdefault("Cache-Control", "no-store")
    resp.headers.setdefault("X-Frame-Options", "DENY")
    resp.headers.setdefault("X-Content-Type-Options", "nosniff")
    resp.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    return resp
