"""
Camera topology graph.
Answers adjacency and transit-window queries over a validated Topology, and
infers candidate connections from floor-plan geometry.
"""

import logging
from typing import Dict, List, Optional, Set, Tuple

from .models import Camera, Connection, Topology, TransitTime, SpatialRelationship
from ..utils.geometry import angle_diff, bearing_deg, distance

logger = logging.getLogger(__name__)


class TopologyGraph:
    """
    Read-only view of a Topology indexed for the correlation engine.
    Rebuilt whenever the topology is replaced.
    """

    def __init__(self, topology: Topology):
        self.topology = topology
        self.cameras: Dict[str, Camera] = {c.device_id: c for c in topology.cameras}
        self.connections: Dict[str, Connection] = {c.id: c for c in topology.connections}
        self._outgoing: Dict[str, List[Connection]] = {c: [] for c in self.cameras}
        self._adjacency: Dict[str, Set[str]] = {c: set() for c in self.cameras}

        for conn in topology.connections:
            self._outgoing.setdefault(conn.from_camera_id, []).append(conn)
            self._adjacency.setdefault(conn.from_camera_id, set()).add(conn.to_camera_id)
            if conn.bidirectional:
                self._outgoing.setdefault(conn.to_camera_id, []).append(conn)
                self._adjacency.setdefault(conn.to_camera_id, set()).add(conn.from_camera_id)

        logger.debug(
            "TopologyGraph: %d cameras, %d connections",
            len(self.cameras), len(topology.connections),
        )

    def get_camera(self, camera_id: str) -> Optional[Camera]:
        return self.cameras.get(camera_id)

    def get_connection(self, connection_id: str) -> Optional[Connection]:
        return self.connections.get(connection_id)

    def camera_name(self, camera_id: str) -> str:
        cam = self.cameras.get(camera_id)
        return cam.name if cam else camera_id

    def resolve_camera(self, ref: str) -> Optional[Camera]:
        """Resolve a camera by device id, then name, then case-insensitively."""
        return resolve_camera(self.topology, ref)

    def neighbors(self, camera_id: str) -> List[Connection]:
        """Every connection leaving ``camera_id`` (bidirectional ones included)."""
        return list(self._outgoing.get(camera_id, []))

    def reachable_from(self, camera_id: str) -> Dict[str, Connection]:
        """Map of target camera → connection for every outgoing edge."""
        reachable: Dict[str, Connection] = {}
        for conn in self._outgoing.get(camera_id, []):
            target = conn.other_end(camera_id)
            if target is not None and target != camera_id and target not in reachable:
                reachable[target] = conn
        return reachable

    def find_connection(self, from_camera: str, to_camera: str) -> Optional[Connection]:
        """Connection from → to, honoring the implicit reverse of bidirectional edges."""
        for conn in self.topology.connections:
            if conn.from_camera_id == from_camera and conn.to_camera_id == to_camera:
                return conn
        for conn in self.topology.connections:
            if (conn.bidirectional and conn.from_camera_id == to_camera
                    and conn.to_camera_id == from_camera):
                return conn
        return None

    def can_transition(self, from_camera: str, to_camera: str) -> bool:
        return to_camera in self._adjacency.get(from_camera, set())

    def has_outgoing(self, camera_id: str) -> bool:
        return bool(self._adjacency.get(camera_id))


def resolve_camera(topology: Topology, ref: str) -> Optional[Camera]:
    if not ref:
        return None
    for cam in topology.cameras:
        if cam.device_id == ref:
            return cam
    for cam in topology.cameras:
        if cam.name == ref:
            return cam
    lowered = ref.strip().lower()
    for cam in topology.cameras:
        if cam.device_id.lower() == lowered or cam.name.lower() == lowered:
            return cam
    return None


def find_connection(topology: Topology, from_camera: str, to_camera: str) -> Optional[Connection]:
    return TopologyGraph(topology).find_connection(from_camera, to_camera)


# ── Inference ────────────────────────────────────────────────────────────────

def camera_distance_feet(topology: Topology, a: Camera, b: Camera) -> Optional[float]:
    """Floor-plan distance in feet, or None when either position is unknown."""
    if a.floor_plan_position is None or b.floor_plan_position is None:
        return None
    pa = (a.floor_plan_position.x, a.floor_plan_position.y)
    pb = (b.floor_plan_position.x, b.floor_plan_position.y)
    return distance(pa, pb) / topology.scale


def faces_toward(camera: Camera, target: Tuple[float, float], tolerance_deg: float = 30.0) -> bool:
    """True when the target lies inside the camera's FOV wedge (plus tolerance)."""
    if camera.fov is None or camera.floor_plan_position is None:
        return True
    origin = (camera.floor_plan_position.x, camera.floor_plan_position.y)
    bearing = bearing_deg(origin, target)
    return angle_diff(bearing, camera.fov.direction) <= camera.fov.angle / 2 + tolerance_deg


def fov_compatible(a: Camera, b: Camera, tolerance_deg: float = 30.0) -> bool:
    """Each camera looks toward the other. A camera without a FOV faces every way."""
    pa = (a.floor_plan_position.x, a.floor_plan_position.y)
    pb = (b.floor_plan_position.x, b.floor_plan_position.y)
    return faces_toward(a, pb, tolerance_deg) and faces_toward(b, pa, tolerance_deg)


def infer_relationships(
    topology: Topology,
    proximity_feet: float = 60.0,
    walking_speed_fps: float = 4.0,
    fov_tolerance_deg: float = 30.0,
) -> List[Connection]:
    """
    Propose candidate connections for camera pairs lacking an edge.

    Pairs must both have floor-plan positions, lie within ``proximity_feet``
    and pass the FOV compatibility check.  Transit bounds are derived from
    walking speed: typical = distance / speed, min = 50% of it, max = 200%.
    The topology is not modified.
    """
    graph = TopologyGraph(topology)
    positioned = [c for c in topology.cameras if c.floor_plan_position is not None]
    candidates: List[Connection] = []

    for i, a in enumerate(positioned):
        for b in positioned[i + 1:]:
            if graph.find_connection(a.device_id, b.device_id) or \
                    graph.find_connection(b.device_id, a.device_id):
                continue
            feet = camera_distance_feet(topology, a, b)
            if feet is None or feet > proximity_feet:
                continue
            if not fov_compatible(a, b, fov_tolerance_deg):
                continue

            typical = feet / walking_speed_fps * 1000.0
            candidates.append(Connection(
                id=f"inferred_{a.device_id}_{b.device_id}",
                from_camera_id=a.device_id,
                to_camera_id=b.device_id,
                name=f"{a.name} to {b.name}",
                bidirectional=True,
                transit_time=TransitTime(
                    min=round(typical * 0.5),
                    typical=round(typical),
                    max=round(typical * 2.0),
                ),
            ))

    logger.info("Inferred %d candidate connections", len(candidates))
    return candidates


def infer_spatial_relationships(topology: Topology, threshold: float = 50.0) -> List[SpatialRelationship]:
    """Proximity relationships (floor-plan pixels) among cameras and landmarks."""
    entities: List[Tuple[str, Tuple[float, float]]] = []
    for cam in topology.cameras:
        if cam.floor_plan_position is not None:
            entities.append((cam.device_id, (cam.floor_plan_position.x, cam.floor_plan_position.y)))
    for lm in topology.landmarks:
        entities.append((lm.id, (lm.position.x, lm.position.y)))

    relationships: List[SpatialRelationship] = []
    for i, (id_a, pos_a) in enumerate(entities):
        for id_b, pos_b in entities[i + 1:]:
            d = distance(pos_a, pos_b)
            if d > threshold:
                continue
            relationships.append(SpatialRelationship(
                id=f"rel_{id_a}_{id_b}",
                type="adjacent" if d <= threshold / 2 else "near",
                entity_a=id_a,
                entity_b=id_b,
                auto_inferred=True,
            ))
    return relationships


def describe_topology(topology: Topology) -> str:
    """Plain-text summary of the property layout."""
    lines = ["Property layout:"]
    graph = TopologyGraph(topology)
    for cam in topology.cameras:
        flags = []
        if cam.is_entry_point:
            flags.append("entry")
        if cam.is_exit_point:
            flags.append("exit")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        targets = sorted(graph.camera_name(t) for t in graph.reachable_from(cam.device_id))
        lines.append(f"- {cam.name}{suffix} -> {', '.join(targets) or 'none'}")
    for lm in topology.landmarks:
        lines.append(f"- landmark: {lm.name} ({lm.type})")
    return "\n".join(lines)
