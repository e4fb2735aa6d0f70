"""
Geometry helpers shared by correlation scoring, topology inference and
discovery projection.

Camera-frame coordinates are normalized 0-100 (bbox, zones) or 0-1
(sighting positions).  Floor-plan coordinates are pixels with y pointing
down, and bearings follow the compass: 0 = up, 90 = right.
"""

import math
from typing import Optional, Sequence, Tuple

import numpy as np


def point_in_polygon(x: float, y: float, polygon: Sequence[Sequence[float]]) -> bool:
    """Ray-casting point-in-polygon test."""
    n = len(polygon)
    if n < 3:
        return False
    inside = False
    j = n - 1
    for i in range(n):
        xi, yi = polygon[i]
        xj, yj = polygon[j]
        if ((yi > y) != (yj > y)) and (x < (xj - xi) * (y - yi) / (yj - yi + 1e-10) + xi):
            inside = not inside
        j = i
    return inside


def point_near_polygon(
    x: float, y: float, polygon: Sequence[Sequence[float]], tolerance: float = 20.0,
) -> bool:
    """Inside the polygon, or within ``tolerance`` of one of its vertices on both axes."""
    if len(polygon) < 3:
        return False
    if point_in_polygon(x, y, polygon):
        return True
    pts = np.asarray(polygon, dtype=np.float64)
    near = (np.abs(pts[:, 0] - x) < tolerance) & (np.abs(pts[:, 1] - y) < tolerance)
    return bool(near.any())


def bbox_center(bbox: Sequence[float]) -> Tuple[float, float]:
    """Center of an ``(x, y, w, h)`` bbox, normalized from 0-100 to 0-1."""
    x, y, w, h = bbox
    return ((x + w / 2) / 100.0, (y + h / 2) / 100.0)


def is_near_frame_edge(position: Optional[Tuple[float, float]], margin: float = 0.1) -> bool:
    """True when a 0-1 position lies within ``margin`` of the frame border."""
    if position is None:
        return True
    x, y = position
    return x < margin or x > 1 - margin or y < margin or y > 1 - margin


def bearing_deg(origin: Tuple[float, float], target: Tuple[float, float]) -> float:
    """Compass bearing from origin to target on the floor plan (0 = up)."""
    dx = target[0] - origin[0]
    dy = target[1] - origin[1]
    return math.degrees(math.atan2(dx, -dy)) % 360.0


def angle_diff(a: float, b: float) -> float:
    """Smallest absolute difference between two bearings."""
    d = abs(a - b) % 360.0
    return 360.0 - d if d > 180.0 else d


def project(origin: Tuple[float, float], bearing: float, distance: float) -> Tuple[float, float]:
    """Point at ``distance`` pixels along ``bearing`` from origin."""
    rad = math.radians(bearing)
    return (origin[0] + math.sin(rad) * distance, origin[1] - math.cos(rad) * distance)


def arc_points(
    origin: Tuple[float, float],
    radius: float,
    start_bearing: float,
    end_bearing: float,
    samples: int,
) -> np.ndarray:
    """``samples`` points along an arc, start to end bearing inclusive."""
    bearings = np.radians(np.linspace(start_bearing, end_bearing, samples))
    xs = origin[0] + np.sin(bearings) * radius
    ys = origin[1] - np.cos(bearings) * radius
    return np.stack([xs, ys], axis=1)


def polygon_centroid(polygon: Sequence[Sequence[float]]) -> Tuple[float, float]:
    pts = np.asarray(polygon, dtype=np.float64)
    cx, cy = pts.mean(axis=0)
    return float(cx), float(cy)


def distance(a: Tuple[float, float], b: Tuple[float, float]) -> float:
    return math.hypot(b[0] - a[0], b[1] - a[1])
