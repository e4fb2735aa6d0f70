"""
Floor-plan projection of discovery suggestions.

Scene analysis only says *what* a camera sees and roughly how far away it
is.  These functions turn that into floor-plan pixels:

* a landmark is placed ``distance_feet × scale`` pixels from its camera,
  along the camera's facing direction, rotated within the FOV by the
  horizontal center of its bounding box;
* a zone becomes an annular wedge (inner/outer radius around the estimated
  distance, angular span from the bounding box) stored as the outline of a
  ``zone`` landmark;
* without a bounding box, successive suggestions from the same camera are
  fanned out by ``index mod 5``;
* when the camera has no floor-plan position or FOV, suggestions go on a
  grid.

All of it is deterministic.
"""

import logging
from typing import List, Optional, Sequence, Tuple

from ..topology.models import Camera, Point, Topology
from ..utils.geometry import arc_points, project

logger = logging.getLogger(__name__)

DISTANCE_FEET = {
    'close': 10.0,
    'near': 20.0,
    'medium': 40.0,
    'far': 80.0,
    'distant': 150.0,
}
DEFAULT_LANDMARK_FEET = 50.0

ZONE_DEFAULT_FEET = {
    'patio': 10.0, 'walkway': 10.0,
    'driveway': 25.0, 'parking': 25.0,
    'yard': 40.0, 'garden': 40.0, 'pool': 40.0,
    'street': 100.0,
}
DEFAULT_ZONE_FEET = 50.0

SPREAD_SLOTS = 5
ARC_SAMPLES = 8
MIN_ZONE_DEPTH = 0.2  # fraction of distance
DEFAULT_ZONE_DEPTH = 0.5
DEFAULT_ZONE_SPAN = 0.5  # fraction of FOV angle

GRID_ORIGIN = (50.0, 50.0)
GRID_SPACING = 60.0
GRID_COLUMNS = 5


def distance_to_feet(distance: Optional[str], default: float = DEFAULT_LANDMARK_FEET) -> float:
    """Map a distance word (close/near/medium/far/distant) to feet."""
    if not distance:
        return default
    word = distance.lower()
    if 'distant' in word:
        return DISTANCE_FEET['distant']
    for key in ('close', 'near', 'medium', 'far'):
        if key in word:
            return DISTANCE_FEET[key]
    return DISTANCE_FEET['medium']


def zone_default_feet(zone_type: str) -> float:
    return ZONE_DEFAULT_FEET.get(zone_type, DEFAULT_ZONE_FEET)


def can_project(camera: Optional[Camera]) -> bool:
    return camera is not None and camera.floor_plan_position is not None and camera.fov is not None


def spread_offset(index: int, fov_angle: float) -> float:
    """Bearing offset for the ``index``-th suggestion without a bbox: -2..2 slots across the FOV."""
    slot = index % SPREAD_SLOTS - SPREAD_SLOTS // 2
    return slot * fov_angle / SPREAD_SLOTS


def bbox_offset(bbox: Sequence[float], fov_angle: float) -> float:
    x, _, w, _ = bbox
    return (x + w / 2 - 0.5) * fov_angle


def grid_position(index: int) -> Point:
    col = index % GRID_COLUMNS
    row = index // GRID_COLUMNS
    return Point(x=GRID_ORIGIN[0] + col * GRID_SPACING, y=GRID_ORIGIN[1] + row * GRID_SPACING)


def existing_landmark_count(topology: Topology, camera_id: Optional[str]) -> int:
    if camera_id is None:
        return len(topology.landmarks)
    return sum(1 for lm in topology.landmarks if camera_id in lm.visible_from_cameras)


def place_landmark(
    topology: Topology,
    camera: Optional[Camera],
    distance_feet: float,
    bbox: Optional[Sequence[float]] = None,
    index: int = 0,
) -> Point:
    """Floor-plan point for a landmark seen by ``camera``."""
    if not can_project(camera):
        return grid_position(index)

    origin = (camera.floor_plan_position.x, camera.floor_plan_position.y)
    fov = camera.fov
    if bbox is not None:
        offset = bbox_offset(bbox, fov.angle)
    else:
        offset = spread_offset(index, fov.angle)
    x, y = project(origin, fov.direction + offset, distance_feet * topology.scale)
    return Point(x=round(x, 1), y=round(y, 1))


def zone_wedge(
    topology: Topology,
    camera: Optional[Camera],
    distance_feet: float,
    bbox: Optional[Sequence[float]] = None,
    index: int = 0,
) -> Tuple[Point, Optional[List[Tuple[float, float]]]]:
    """
    Annular wedge for a zone seen by ``camera``.

    Returns the wedge's center point and its outline (outer arc, then inner
    arc reversed).  Without a projectable camera the outline is None and the
    point comes from the grid.
    """
    if not can_project(camera):
        return grid_position(index), None

    origin = (camera.floor_plan_position.x, camera.floor_plan_position.y)
    fov = camera.fov
    center_px = distance_feet * topology.scale

    if bbox is not None:
        x, _, w, h = bbox
        start = fov.direction + (x - 0.5) * fov.angle
        end = fov.direction + (x + w - 0.5) * fov.angle
        depth = max(MIN_ZONE_DEPTH, h)
    else:
        mid = fov.direction + spread_offset(index, fov.angle)
        half_span = fov.angle * DEFAULT_ZONE_SPAN / 2
        start, end = mid - half_span, mid + half_span
        depth = DEFAULT_ZONE_DEPTH

    inner = max(0.0, center_px * (1 - depth / 2))
    outer = center_px * (1 + depth / 2)

    outer_arc = arc_points(origin, outer, start, end, ARC_SAMPLES)
    inner_arc = arc_points(origin, inner, end, start, ARC_SAMPLES)
    outline = [(round(float(px), 1), round(float(py), 1)) for px, py in outer_arc]
    outline += [(round(float(px), 1), round(float(py), 1)) for px, py in inner_arc]

    cx, cy = project(origin, (start + end) / 2, center_px)
    return Point(x=round(cx, 1), y=round(cy, 1)), outline
