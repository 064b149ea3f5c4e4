import logging
from typing import Optional

import asyncpg
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from settings import get_db_pool
from services.formatter import build_pagination, format_map_product, format_product
from services.ranking import annotate_distances, rank
from services.search_service import (
    ProductFilters,
    fetch_map_products,
    fetch_product,
    parse_filters,
    parse_float,
    parse_id,
    search_products,
)
from utils.geo import viewer_position
from utils.throttle import throttle

logger = logging.getLogger("uvicorn.error")

router = APIRouter()


def product_filters(
    category: Optional[str] = Query(None, description="Category token, e.g. 'vehicles'."),
    condition: Optional[str] = Query(None, description="Condition token, e.g. 'LIKE_NEW'."),
    min_price: Optional[str] = Query(None, alias="minPrice", description="Inclusive lower price bound."),
    max_price: Optional[str] = Query(None, alias="maxPrice", description="Inclusive upper price bound."),
    search: Optional[str] = Query(None, description="Case-insensitive match on title or description."),
    seller_id: Optional[str] = Query(None, alias="sellerId"),
    latitude: Optional[str] = Query(None, description="Viewer latitude (degrees)."),
    longitude: Optional[str] = Query(None, description="Viewer longitude (degrees)."),
    distance: Optional[str] = Query(None, description="Max distance from the viewer in km (map only)."),
    sort_by: Optional[str] = Query(
        None,
        alias="sortBy",
        description="price_asc | price_desc | date_asc | date_desc | distance (default date_desc).",
    ),
    page: Optional[str] = Query(None, description="1-based page number (default 1)."),
    limit: Optional[str] = Query(None, description="Page size (default 10)."),
) -> ProductFilters:
    """
    All parameters are taken as raw strings so that malformed values
    degrade to "no constraint" instead of a 422.
    """
    return parse_filters({
        "category": category,
        "condition": condition,
        "minPrice": min_price,
        "maxPrice": max_price,
        "search": search,
        "sellerId": seller_id,
        "latitude": latitude,
        "longitude": longitude,
        "distance": distance,
        "sortBy": sort_by,
        "page": page,
        "limit": limit,
    })


# ----------------------------- MARKETPLACE (paged) -----------------------------
@router.get("/products")
@throttle(limit=120, window=60)
async def list_products(
    request: Request,
    filters: ProductFilters = Depends(product_filters),
    pool: asyncpg.pool.Pool = Depends(get_db_pool),
):
    """
    Active, unsold listings matching the filters, one page at a time.

    `distance` is attached to each product when the viewer's coordinates are
    given. The distance radius is NOT applied here: `pagination` counts every
    listing that matches the SQL filters.
    """
    try:
        total, listings = await search_products(pool, filters)
    except Exception:
        logger.exception("Error fetching products")
        return JSONResponse({"error": "Failed to fetch products"}, status_code=500)

    listings = rank(listings, filters, apply_radius=False)
    return {
        "products": [format_product(item) for item in listings],
        "pagination": build_pagination(total, filters.page, filters.limit),
    }


# ----------------------------- MAP (unpaged) -----------------------------
@router.get("/products/map")
@throttle(limit=60, window=60)
async def map_products(
    request: Request,
    filters: ProductFilters = Depends(product_filters),
    pool: asyncpg.pool.Pool = Depends(get_db_pool),
):
    """
    Every matching listing as a map marker. With viewer coordinates and
    `distance`, listings without coordinates or farther than `distance` km
    are dropped. `page`/`limit` are ignored; `sellerId` narrows the map to one
    seller, as on /products.
    """
    try:
        listings = await fetch_map_products(pool, filters)
    except Exception:
        logger.exception("Error fetching map products")
        return JSONResponse({"error": "Failed to fetch map products"}, status_code=500)

    listings = rank(listings, filters, apply_radius=True)
    return [format_map_product(item) for item in listings]


# ----------------------------- DETAIL -----------------------------
@router.get("/products/{product_id}")
@throttle(limit=120, window=60)
async def get_product(
    request: Request,
    product_id: str,
    latitude: Optional[str] = Query(None),
    longitude: Optional[str] = Query(None),
    pool: asyncpg.pool.Pool = Depends(get_db_pool),
):
    pid = parse_id(product_id)
    if pid is None:
        return JSONResponse({"error": "Product not found"}, status_code=404)

    try:
        listing = await fetch_product(pool, pid)
    except Exception:
        logger.exception("Error fetching product %s", pid)
        return JSONResponse({"error": "Failed to fetch product"}, status_code=500)

    if listing is None:
        return JSONResponse({"error": "Product not found"}, status_code=404)

    annotate_distances([listing], viewer_position(parse_float(latitude), parse_float(longitude)))
    return format_product(listing)
