# app/routers/sellers.py
import logging
from typing import Optional

import asyncpg
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from settings import get_db_pool
from services.formatter import build_pagination, format_product
from services.search_service import (
    fetch_seller_products,
    parse_bool,
    parse_id,
    parse_limit,
    parse_page,
    page_window,
)
from utils.throttle import throttle

logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/users", tags=["sellers"])


@router.get("/{user_id}/products")
@throttle(limit=60, window=60)
async def seller_products(
    request: Request,
    user_id: str,
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    include_inactive: Optional[str] = Query(None, alias="includeInactive"),
    include_sold: Optional[str] = Query(None, alias="includeSold"),
    pool: asyncpg.pool.Pool = Depends(get_db_pool),
):
    """
    A seller's listings, newest first. Hidden (inactive) and sold listings
    are left out unless includeInactive / includeSold is "true".
    """
    seller_id = parse_id(user_id)
    if seller_id is None:
        return JSONResponse({"error": "User not found"}, status_code=404)

    page_n, limit_n = page_window(parse_page(page), parse_limit(limit))
    try:
        total, listings = await fetch_seller_products(
            pool,
            seller_id,
            page_n,
            limit_n,
            include_inactive=parse_bool(include_inactive),
            include_sold=parse_bool(include_sold),
        )
    except Exception:
        logger.exception("Error fetching products for seller %s", seller_id)
        return JSONResponse({"error": "Failed to fetch user products"}, status_code=500)

    return {
        "products": [format_product(item) for item in listings],
        "pagination": build_pagination(total, page_n, limit_n),
    }
