# services/search_service.py
from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

import asyncpg

from settings import DEFAULT_PAGE, DEFAULT_PAGE_SIZE
from utils.geo import viewer_position


class SortMode(str, Enum):
    PRICE_ASC = "price_asc"
    PRICE_DESC = "price_desc"
    DATE_ASC = "date_asc"
    DATE_DESC = "date_desc"
    DISTANCE = "distance"


# Whitelisted ORDER BY fragments. DISTANCE is re-sorted in services/ranking.py
# once distances are known, so the store order only has to be deterministic.
ORDER_BY = {
    SortMode.PRICE_ASC: "p.price ASC, p.id ASC",
    SortMode.PRICE_DESC: "p.price DESC, p.id DESC",
    SortMode.DATE_ASC: "p.created_at ASC, p.id ASC",
    SortMode.DATE_DESC: "p.created_at DESC, p.id DESC",
    SortMode.DISTANCE: "p.created_at DESC, p.id DESC",
}


# ---------------- permissive parsing ----------------
#
# Every parser returns None for anything it can't make sense of.
# A bad query parameter means "no constraint", never a 4xx.
#


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def parse_float(value: Any) -> Optional[float]:
    s = _clean(value)
    if s is None:
        return None
    try:
        x = float(s)
    except ValueError:
        return None
    return x if math.isfinite(x) else None


# asyncpg binds OFFSET/LIMIT as int8 and id columns as int4
INT4_MIN, INT4_MAX = -(2 ** 31), 2 ** 31 - 1
INT8_MAX = 2 ** 63 - 1


def parse_int(value: Any) -> Optional[int]:
    s = _clean(value)
    if s is None:
        return None
    try:
        return int(s)
    except ValueError:
        return None


def parse_bool(value: Any) -> bool:
    # only the literal "true" switches a flag on
    return _clean(value) == "true"


def parse_sort(value: Any) -> SortMode:
    try:
        return SortMode((_clean(value) or "").lower())
    except ValueError:
        return SortMode.DATE_DESC


def parse_id(value: Any) -> Optional[int]:
    """Row id; anything outside the int4 column range is None."""
    n = parse_int(value)
    return n if n is not None and INT4_MIN <= n <= INT4_MAX else None


def parse_page(value: Any) -> int:
    n = parse_int(value)
    return n if n is not None and 1 <= n <= INT8_MAX else DEFAULT_PAGE


def parse_limit(value: Any) -> int:
    n = parse_int(value)
    return n if n is not None and 1 <= n <= INT8_MAX else DEFAULT_PAGE_SIZE


def page_window(page: int, limit: int) -> Tuple[int, int]:
    """
    (page, limit) whose OFFSET still fits the int8 the store binds it as.
    A page too far out falls back to the first one.
    """
    if (page - 1) * limit > INT8_MAX:
        return DEFAULT_PAGE, limit
    return page, limit


def like_pattern(term: Optional[str]) -> Optional[str]:
    """Substring ILIKE pattern with the user's own wildcards escaped."""
    if not term:
        return None
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _decimal(x: Optional[float]) -> Optional[Decimal]:
    return Decimal(str(x)) if x is not None else None


@dataclass
class ProductFilters:
    category: Optional[str] = None
    condition: Optional[str] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    search: Optional[str] = None
    seller_id: Optional[int] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    distance: Optional[float] = None
    sort_by: SortMode = SortMode.DATE_DESC
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_PAGE_SIZE

    @property
    def viewer(self) -> Optional[Tuple[float, float]]:
        return viewer_position(self.latitude, self.longitude)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    @property
    def order_by(self) -> str:
        return ORDER_BY[self.sort_by]

    def where_args(self) -> List[Any]:
        """Positional args $1..$6 for SEARCH_WHERE."""
        return [
            self.category,
            self.condition,
            _decimal(self.min_price),
            _decimal(self.max_price),
            like_pattern(self.search),
            self.seller_id,
        ]


def parse_filters(params: Mapping[str, Any]) -> ProductFilters:
    """
    Build ProductFilters from raw query parameters (camelCase keys, as the
    web client sends them). Missing or malformed values fall back to
    "no constraint" / defaults.
    """
    page, limit = page_window(parse_page(params.get("page")), parse_limit(params.get("limit")))
    return ProductFilters(
        category=_clean(params.get("category")),
        condition=_clean(params.get("condition")),
        min_price=parse_float(params.get("minPrice")),
        max_price=parse_float(params.get("maxPrice")),
        search=_clean(params.get("search")),
        seller_id=parse_id(params.get("sellerId")),
        latitude=parse_float(params.get("latitude")),
        longitude=parse_float(params.get("longitude")),
        distance=parse_float(params.get("distance")),
        sort_by=parse_sort(params.get("sortBy")),
        page=page,
        limit=limit,
    )


# ---------------- SQL ----------------

PRODUCT_COLUMNS = """
  p.id,
  p.title,
  p.description,
  p.price,
  p.category::text                      AS category,
  p.condition::text                     AS condition,
  p.location,
  p.latitude,
  p.longitude,
  p.is_active,
  p.is_sold,
  p.created_at,
  p.seller_id,
  u.username                            AS seller_username,
  u.first_name                          AS seller_first_name,
  u.last_name                           AS seller_last_name,
  u.profile_image                       AS seller_profile_image,
  u.city                                AS seller_city,
  COALESCE(u.is_verified, FALSE)        AS seller_is_verified,
  (SELECT COUNT(*) FROM favorite_products f WHERE f.product_id = p.id) AS favorites_count
"""

# each optional filter is ignored when its parameter is NULL
SEARCH_WHERE = """
  WHERE p.is_active = TRUE
    AND p.is_sold = FALSE
    AND ($1::text IS NULL OR p.category::text = $1)
    AND ($2::text IS NULL OR p.condition::text = $2)
    AND ($3::numeric IS NULL OR p.price >= $3)
    AND ($4::numeric IS NULL OR p.price <= $4)
    AND (
          $5::text IS NULL
       OR p.title ILIKE $5
       OR p.description ILIKE $5
    )
    AND ($6::int IS NULL OR p.seller_id = $6)
"""

SQL_SEARCH_COUNT = f"SELECT COUNT(*) FROM products p {SEARCH_WHERE}"

SQL_IMAGES = """
  SELECT id, product_id, image_url, is_primary
  FROM product_images
  WHERE product_id = ANY($1::int[])
  ORDER BY product_id, id
"""

SQL_PRODUCT_BY_ID = f"""
  SELECT {PRODUCT_COLUMNS}
  FROM products p
  JOIN users u ON u.id = p.seller_id
  WHERE p.id = $1
"""

# read-only aggregates shown with the seller on the product page
SQL_SELLER_STATS = """
  SELECT
    (SELECT AVG(r.rating)::float8 FROM user_reviews r WHERE r.user_id = $1)  AS rating,
    (SELECT COUNT(r.rating) FROM user_reviews r WHERE r.user_id = $1)        AS reviews_count,
    (SELECT COUNT(*) FROM products p WHERE p.seller_id = $1)                 AS products_count,
    (SELECT COUNT(*) FROM transactions t
      WHERE t.seller_id = $1 AND t.status::text = 'COMPLETED')                AS successful_sales
"""

SELLER_WHERE = """
  WHERE p.seller_id = $1
    AND ($2::bool OR p.is_active = TRUE)
    AND ($3::bool OR p.is_sold = FALSE)
"""


def _search_page_sql(order_by: str, paginate: bool) -> str:
    sql = f"""
      SELECT {PRODUCT_COLUMNS}
      FROM products p
      JOIN users u ON u.id = p.seller_id
      {SEARCH_WHERE}
      ORDER BY {order_by}
    """
    if paginate:
        sql += """
      OFFSET $7
      LIMIT  $8
    """
    return sql


async def _attach_images(
    conn: asyncpg.Connection,
    rows: List[asyncpg.Record],
) -> List[Dict[str, Any]]:
    """
    Turn product rows into plain dicts and attach each one's images
    (insertion order) in a single extra round-trip.
    """
    listings = [dict(r) for r in rows]
    if not listings:
        return listings

    image_rows = await conn.fetch(SQL_IMAGES, [item["id"] for item in listings])
    by_product: Dict[int, List[Dict[str, Any]]] = {}
    for r in image_rows:
        by_product.setdefault(r["product_id"], []).append(dict(r))

    for item in listings:
        item["images"] = by_product.get(item["id"], [])
    return listings


# ---------------- queries ----------------


async def search_products(
    pool: asyncpg.pool.Pool,
    filters: ProductFilters,
) -> Tuple[int, List[Dict[str, Any]]]:
    """
    One page of active, unsold listings matching the filters, plus the
    total match count for the same predicate.
    """
    args = filters.where_args()
    sql_page = _search_page_sql(filters.order_by, paginate=True)

    async with pool.acquire() as conn:
        total = await conn.fetchval(SQL_SEARCH_COUNT, *args) or 0
        rows = await conn.fetch(sql_page, *args, filters.offset, filters.limit)
        listings = await _attach_images(conn, rows)
    return int(total), listings


async def fetch_map_products(
    pool: asyncpg.pool.Pool,
    filters: ProductFilters,
) -> List[Dict[str, Any]]:
    """Every matching listing, unpaginated. Radius filtering happens later."""
    sql = _search_page_sql(filters.order_by, paginate=False)
    async with pool.acquire() as conn:
        rows = await conn.fetch(sql, *filters.where_args())
        return await _attach_images(conn, rows)


async def fetch_product(
    pool: asyncpg.pool.Pool,
    product_id: int,
) -> Optional[Dict[str, Any]]:
    async with pool.acquire() as conn:
        row = await conn.fetchrow(SQL_PRODUCT_BY_ID, product_id)
        if row is None:
            return None
        listings = await _attach_images(conn, [row])
        stats = await conn.fetchrow(SQL_SELLER_STATS, row["seller_id"])
    listing = listings[0]
    listing["seller_stats"] = dict(stats) if stats is not None else {}
    return listing


async def fetch_seller_products(
    pool: asyncpg.pool.Pool,
    seller_id: int,
    page: int,
    limit: int,
    include_inactive: bool = False,
    include_sold: bool = False,
) -> Tuple[int, List[Dict[str, Any]]]:
    """A seller's own listings, newest first."""
    args = [seller_id, include_inactive, include_sold]
    sql_count = f"SELECT COUNT(*) FROM products p {SELLER_WHERE}"
    sql_page = f"""
      SELECT {PRODUCT_COLUMNS}
      FROM products p
      JOIN users u ON u.id = p.seller_id
      {SELLER_WHERE}
      ORDER BY {ORDER_BY[SortMode.DATE_DESC]}
      OFFSET $4
      LIMIT  $5
    """

    async with pool.acquire() as conn:
        total = await conn.fetchval(sql_count, *args) or 0
        rows = await conn.fetch(sql_page, *args, (page - 1) * limit, limit)
        listings = await _attach_images(conn, rows)
    return int(total), listings
