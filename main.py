# main.py
import os
import sys
import logging
import asyncpg
import traceback
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

# Ensure app root on path
APP_ROOT = os.path.dirname(os.path.abspath(__file__))
if APP_ROOT not in sys.path:
    sys.path.insert(0, APP_ROOT)

from settings import (
    ENABLE_DOCS, STATIC_DIR,
    ALLOW_ORIGINS, DATABASE_URL, DB_CONNECT_TIMEOUT,
    LOG_REQUESTS, RATE_PER_MIN, REDIS_URL, WINDOW,
)

from middlewares.headers import security_and_cache_headers
from middlewares.rate_limit import RateLimitMiddleware

# Routers
from products import router as products_router
from app.routers.sellers import router as sellers_router

logger = logging.getLogger("uvicorn.error")
os.makedirs(STATIC_DIR, exist_ok=True)

app = FastAPI(
    title="Marketplace",
    version="1.0.0",
    description="Browse, search and locate marketplace listings",
    docs_url="/docs" if ENABLE_DOCS else None,
    redoc_url="/redoc" if ENABLE_DOCS else None,
    openapi_url="/openapi.json" if ENABLE_DOCS else None,
)

# ---- log full tracebacks so 500s aren’t silent ----
class TraceLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        try:
            return await call_next(request)
        except Exception:
            logger.error("\n===== UNCAUGHT EXCEPTION =====")
            logger.error("Path: %s %s", request.method, request.url.path)
            logger.error(traceback.format_exc())
            logger.error("===== END TRACE =====\n")
            raise
app.add_middleware(TraceLogMiddleware)
# --------------------------------------------------------

# Errors leave the API as {"error": "..."}, same as the handlers' own responses
@app.exception_handler(StarletteHTTPException)
async def http_error(request, exc: StarletteHTTPException):
    return JSONResponse(
        {"error": str(exc.detail)},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )

# Static (site stylesheet is registered here once, not per page) + security headers
app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")
app.middleware("http")(security_and_cache_headers)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "OPTIONS", "HEAD"],
    allow_headers=["Authorization", "Content-Type"],
)

# Rate limit
app.add_middleware(
    RateLimitMiddleware,
    rate_per_min=RATE_PER_MIN,
    window=WINDOW,
    redis_url=REDIS_URL,
)

# DB pool
@app.on_event("startup")
async def startup():
    try:
        app.state.db = await asyncpg.create_pool(DATABASE_URL, timeout=DB_CONNECT_TIMEOUT)
        logger.info("✅ DB pool created")
    except Exception as e:
        app.state.db = None
        logger.error(f"⚠️ Failed to connect to DB at startup: {e}")

@app.on_event("shutdown")
async def shutdown():
    try:
        if getattr(app.state, "db", None):
            await app.state.db.close()
            logger.info("🔌 DB pool closed")
    except Exception as e:
        logger.error(f"Shutdown error: {e}")

# -------- Router mounts (root) --------
app.include_router(products_router)          # /products, /products/map, /products/{id}
app.include_router(sellers_router)           # /users/{id}/products

# -------- Duplicate mounts under /api --------
# The web client calls /api/products, /api/products/map, ...
app.include_router(products_router, prefix="/api")
app.include_router(sellers_router, prefix="/api")

# robots + health
@app.get("/robots.txt", response_class=PlainTextResponse)
async def robots():
    return (
        "User-agent: *\n"
        "Disallow: /products\n"
        "Disallow: /users\n"
        "Disallow: /api/\n"
    )

@app.get("/healthz", response_class=PlainTextResponse)
async def healthz():
    return "ok"

# Optional request logging
if LOG_REQUESTS:
    @app.middleware("http")
    async def _req_logger(request, call_next):
        logger.info(f"➡ {request.method} {request.url.path} from {request.client.host if request.client else 'unknown'}")
        resp = await call_next(request)
        logger.info(f"⬅ {request.method} {request.url.path} -> {resp.status_code}")
        return resp

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True,
        log_level="debug",
    )
