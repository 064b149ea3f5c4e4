# settings.py
import os
from dotenv import load_dotenv
from fastapi import Request, HTTPException
import asyncpg

load_dotenv()

# -----------------------------------------------------------------------------
# Core app settings
# -----------------------------------------------------------------------------
ENV = (os.getenv("ENV") or "development").lower()
ENABLE_DOCS = ENV != "production"

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
STATIC_DIR = os.getenv("STATIC_DIR", os.path.join(BASE_DIR, "static"))

APP_WEB_ORIGIN = (os.getenv("APP_WEB_ORIGIN") or "").strip()
ALLOW_ORIGINS = [o.strip() for o in APP_WEB_ORIGIN.split(",") if o.strip()] or ["*"]

DATABASE_URL = os.getenv("DATABASE_URL")
DB_CONNECT_TIMEOUT = float(os.getenv("DB_CONNECT_TIMEOUT", "8"))

LOG_REQUESTS = (os.getenv("LOG_REQUESTS") or "").lower() in {"1", "true", "yes"}

RATE_PER_MIN = int(os.getenv("RATE_LIMIT_PER_MINUTE", "300"))
REDIS_URL = os.getenv("REDIS_URL")
WINDOW = 60

# -----------------------------------------------------------------------------
# Search defaults
# -----------------------------------------------------------------------------
# page size is not capped
DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = int(os.getenv("DEFAULT_PAGE_SIZE", "10"))

# Label shown on the map for listings saved without a location text
MISSING_LOCATION_LABEL = os.getenv("MISSING_LOCATION_LABEL", "Location not specified")

# -----------------------------------------------------------------------------
# Helper for accessing DB pool in routes
# -----------------------------------------------------------------------------
def get_db_pool(request: Request) -> asyncpg.pool.Pool:
    """
    Dependency to fetch the asyncpg pool from app.state.
    Raises HTTPException if the pool is missing (e.g., before startup).
    """
    pool = getattr(request.app.state, "db", None)
    if pool is None:
        raise HTTPException(status_code=500, detail="DB pool not initialized")
    return pool
