# services/ranking.py
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from services.search_service import ProductFilters, SortMode
from utils.geo import distance_km, viewer_position

Listing = Dict[str, Any]


def annotate_distances(
    listings: List[Listing],
    viewer: Optional[Tuple[float, float]],
) -> List[Listing]:
    """
    Set listing["distance"] (km) for every listing. None unless both the
    viewer and the listing have coordinates.
    """
    for item in listings:
        coords = viewer_position(item.get("latitude"), item.get("longitude"))
        if viewer is not None and coords is not None:
            item["distance"] = distance_km(viewer[0], viewer[1], coords[0], coords[1])
        else:
            item["distance"] = None
    return listings


def sort_by_distance(listings: List[Listing]) -> List[Listing]:
    # stable: unknown distances keep their store order at the end
    return sorted(
        listings,
        key=lambda item: (item.get("distance") is None, item.get("distance") or 0.0),
    )


def filter_by_radius(listings: List[Listing], radius_km: float) -> List[Listing]:
    return [
        item for item in listings
        if item.get("distance") is not None and item["distance"] <= radius_km
    ]


def rank(
    listings: List[Listing],
    filters: ProductFilters,
    apply_radius: bool = False,
) -> List[Listing]:
    """
    Annotate, then (with viewer coordinates only) sort by distance when asked
    and drop listings outside the radius when apply_radius is set.

    The paginated search passes apply_radius=False: its total/pages come from
    the SQL count, which knows nothing about distances.
    """
    viewer = filters.viewer
    annotate_distances(listings, viewer)
    if viewer is None:
        return listings

    if filters.sort_by is SortMode.DISTANCE:
        listings = sort_by_distance(listings)
    if apply_radius and filters.distance is not None:
        listings = filter_by_radius(listings, filters.distance)
    return listings
