# services/formatter.py
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from settings import MISSING_LOCATION_LABEL


def primary_image_url(images: List[Dict[str, Any]]) -> Optional[str]:
    """
    First image flagged primary; otherwise the first image in insertion
    order; None for a listing without images.
    """
    for img in images:
        if img.get("is_primary"):
            return img.get("image_url")
    return images[0].get("image_url") if images else None


def _iso(ts: Optional[datetime]) -> Optional[str]:
    if ts is None:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _num(x: Any) -> Optional[float]:
    return float(x) if x is not None else None


def _coords(item: Dict[str, Any]):
    lat, lng = item.get("latitude"), item.get("longitude")
    if lat is None or lng is None:
        return None, None
    return float(lat), float(lng)


def format_product(item: Dict[str, Any]) -> Dict[str, Any]:
    """Marketplace / detail shape. `distance` only appears when computed."""
    images = item.get("images") or []
    lat, lng = _coords(item)
    out = {
        "id": item["id"],
        "title": item.get("title"),
        "description": item.get("description") or "",
        "price": _num(item.get("price")),
        "category": item.get("category"),
        "condition": item.get("condition"),
        "location": item.get("location") or "",
        "latitude": lat,
        "longitude": lng,
        "isActive": bool(item.get("is_active")),
        "isSold": bool(item.get("is_sold")),
        "createdAt": _iso(item.get("created_at")),
        "sellerId": item.get("seller_id"),
        "seller": {
            "id": item.get("seller_id"),
            "username": item.get("seller_username"),
            "firstName": item.get("seller_first_name"),
            "lastName": item.get("seller_last_name"),
            "profileImage": item.get("seller_profile_image"),
            "city": item.get("seller_city"),
            "isVerified": bool(item.get("seller_is_verified")),
        },
        "images": [
            {"id": img.get("id"), "imageUrl": img.get("image_url"), "isPrimary": bool(img.get("is_primary"))}
            for img in images
        ],
        "primaryImage": primary_image_url(images),
        "favoritesCount": int(item.get("favorites_count") or 0),
    }
    if item.get("distance") is not None:
        out["distance"] = item["distance"]

    # detail page only
    stats = item.get("seller_stats")
    if stats is not None:
        out["seller"].update({
            "rating": float(stats.get("rating") or 0),
            "reviewsCount": int(stats.get("reviews_count") or 0),
            "productsCount": int(stats.get("products_count") or 0),
            "successfulSales": int(stats.get("successful_sales") or 0),
        })
    return out


def format_map_product(item: Dict[str, Any]) -> Dict[str, Any]:
    """
    Map marker shape. Listings without coordinates are placed at [0, 0];
    clients can't tell those apart from a real (0, 0) listing.
    """
    lat, lng = _coords(item)
    return {
        "id": item["id"],
        "title": item.get("title"),
        "price": _num(item.get("price")),
        "location": item.get("location") or MISSING_LOCATION_LABEL,
        "category": item.get("category"),
        "primaryImage": primary_image_url(item.get("images") or []),
        "latitude": lat,
        "longitude": lng,
        "coordinates": [lat or 0, lng or 0],
        "distance": item.get("distance"),
        "seller": {
            "id": item.get("seller_id"),
            "username": item.get("seller_username"),
            "profileImage": item.get("seller_profile_image"),
        },
        "createdAt": _iso(item.get("created_at")),
    }


def build_pagination(total: int, page: int, limit: int) -> Dict[str, int]:
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "pages": math.ceil(total / limit) if limit else 0,
    }
