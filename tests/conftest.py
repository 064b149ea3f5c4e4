"""
Pytest configuration and fixtures.

Provides:
- listing/image row factories shaped like the asyncpg rows the services read
- an in-memory stand-in for the asyncpg pool that applies the search
  predicate to fixture rows
- a TestClient wired to that pool through dependency overrides
"""
import re
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from main import app
from settings import get_db_pool
from services.search_service import ORDER_BY, SortMode

BASE_TIME = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_listing(
    id,
    price,
    category="vehicles",
    condition="GOOD",
    title=None,
    description="",
    latitude=None,
    longitude=None,
    is_active=True,
    is_sold=False,
    seller_id=1,
    created_at=None,
    favorites_count=0,
    location="Paris",
):
    return {
        "id": id,
        "title": title or f"Listing {id}",
        "description": description,
        "price": Decimal(str(price)),
        "category": category,
        "condition": condition,
        "location": location,
        "latitude": latitude,
        "longitude": longitude,
        "is_active": is_active,
        "is_sold": is_sold,
        "created_at": created_at or BASE_TIME + timedelta(minutes=id),
        "seller_id": seller_id,
        "seller_username": f"seller{seller_id}",
        "seller_first_name": "Ada",
        "seller_last_name": "Lovelace",
        "seller_profile_image": None,
        "seller_city": "Paris",
        "seller_is_verified": True,
        "favorites_count": favorites_count,
    }


def make_image(id, product_id, url=None, is_primary=False):
    return {
        "id": id,
        "product_id": product_id,
        "image_url": url or f"https://cdn.example.com/{product_id}/{id}.jpg",
        "is_primary": is_primary,
    }


def _unescape_like(pattern):
    return re.sub(r"\\(.)", r"\1", pattern[1:-1]).lower()


def _search_match(row, args):
    category, condition, min_price, max_price, like, seller_id = args
    if not row["is_active"] or row["is_sold"]:
        return False
    if category is not None and row["category"] != category:
        return False
    if condition is not None and row["condition"] != condition:
        return False
    if min_price is not None and row["price"] < min_price:
        return False
    if max_price is not None and row["price"] > max_price:
        return False
    if like is not None:
        needle = _unescape_like(like)
        if needle not in (row["title"] or "").lower() and needle not in (row["description"] or "").lower():
            return False
    if seller_id is not None and row["seller_id"] != seller_id:
        return False
    return True


def _seller_match(row, args):
    seller_id, include_inactive, include_sold = args
    return (
        row["seller_id"] == seller_id
        and (include_inactive or row["is_active"])
        and (include_sold or not row["is_sold"])
    )


_SORT_KEYS = {
    SortMode.PRICE_ASC: (lambda r: (r["price"], r["id"]), False),
    SortMode.PRICE_DESC: (lambda r: (r["price"], r["id"]), True),
    SortMode.DATE_ASC: (lambda r: (r["created_at"], r["id"]), False),
    SortMode.DATE_DESC: (lambda r: (r["created_at"], r["id"]), True),
}


def _order(rows, sql):
    for mode, (key, reverse) in _SORT_KEYS.items():
        if f"ORDER BY {ORDER_BY[mode]}" in sql:
            return sorted(rows, key=key, reverse=reverse)
    return rows


class FakeConnection:
    """Answers the handful of queries services/search_service.py issues."""

    def __init__(self, listings, images, error=None):
        self.listings = listings
        self.images = images
        self.error = error
        self.queries = []
        self.seller_stats = {"rating": None, "reviews_count": 0, "products_count": 0, "successful_sales": 0}

    def _check(self, sql, args):
        self.queries.append((sql, args))
        if self.error is not None:
            raise self.error

    def _filter(self, sql, args):
        if "p.seller_id = $1" in sql:
            return [r for r in self.listings if _seller_match(r, args[:3])]
        return [r for r in self.listings if _search_match(r, args[:6])]

    async def fetchval(self, sql, *args):
        self._check(sql, args)
        return len(self._filter(sql, args))

    async def fetchrow(self, sql, *args):
        self._check(sql, args)
        if "FROM user_reviews" in sql:
            return self.seller_stats
        return next((r for r in self.listings if r["id"] == args[0]), None)

    async def fetch(self, sql, *args):
        self._check(sql, args)
        if "FROM product_images" in sql:
            ids = set(args[0])
            rows = [i for i in self.images if i["product_id"] in ids]
            return sorted(rows, key=lambda i: (i["product_id"], i["id"]))

        rows = _order(self._filter(sql, args), sql)
        if "OFFSET" in sql:
            offset, limit = args[-2], args[-1]
            rows = rows[offset: offset + limit]
        return rows


class FakePool:
    def __init__(self, listings=(), images=(), error=None):
        self.conn = FakeConnection(list(listings), list(images), error)

    @asynccontextmanager
    async def acquire(self):
        yield self.conn


@pytest.fixture
def store():
    """Mutable store; tests fill listings/images before calling the API."""
    return FakePool()


@pytest.fixture
def client(store):
    app.dependency_overrides[get_db_pool] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()
