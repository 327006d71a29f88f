"""
Geographic helpers for comp selection.

Distance between resolved coordinates and market-polygon membership.
Coordinates must already be geocoded; nothing here performs lookups.
"""

import logging
import math
from dataclasses import replace
from typing import List, Optional

from shapely.geometry import Point, shape

from .models import CompProperty, LatLng, SubjectProperty


logger = logging.getLogger(__name__)

# Earth radius in miles
EARTH_RADIUS_MILES = 3959.0


def haversine_distance(
    lat1: float, lon1: float,
    lat2: float, lon2: float,
) -> float:
    """
    Calculate distance between two points in miles using Haversine formula.

    Args:
        lat1, lon1: First point coordinates (degrees)
        lat2, lon2: Second point coordinates (degrees)

    Returns:
        Distance in miles
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    )
    c = 2 * math.asin(math.sqrt(a))

    return EARTH_RADIUS_MILES * c


def distance_miles(origin: LatLng, target: LatLng) -> float:
    """Distance in miles between two resolved points."""
    return haversine_distance(origin.lat, origin.lng, target.lat, target.lng)


def is_inside_polygon(point: LatLng, polygon: dict) -> bool:
    """
    Check whether a point falls inside a GeoJSON polygon.

    Args:
        point: Resolved coordinates
        polygon: GeoJSON Feature or bare Polygon geometry

    Returns:
        True when the point is inside or on the boundary
    """
    geometry = polygon.get("geometry", polygon)
    return bool(shape(geometry).intersects(Point(point.lng, point.lat)))


def annotate_geography(
    comps: List[CompProperty],
    subject: SubjectProperty,
    polygon: Optional[dict] = None,
) -> List[CompProperty]:
    """
    Fill distance and polygon membership on comp copies.

    Distance is recomputed only when both subject and comp carry coordinates;
    imported distances are kept otherwise. Without a polygon, comps keep an
    imported membership flag and are otherwise treated as inside.

    Args:
        comps: Candidate pool
        subject: Subject property
        polygon: Optional market-area GeoJSON polygon

    Returns:
        New list of comp copies; inputs are not modified
    """
    annotated = []
    for comp in comps:
        changes = {}
        if subject.latlng and comp.latlng:
            changes["distance_miles"] = round(
                distance_miles(subject.latlng, comp.latlng), 3
            )
        if polygon is None:
            if comp.is_inside_polygon is None:
                changes["is_inside_polygon"] = True
        elif comp.latlng is None:
            logger.warning("Comp %s has no coordinates; treated as outside polygon", comp.id)
            changes["is_inside_polygon"] = False
        else:
            changes["is_inside_polygon"] = is_inside_polygon(comp.latlng, polygon)
        annotated.append(replace(comp, **changes))
    return annotated
