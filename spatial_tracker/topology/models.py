"""
Pydantic models for the camera topology document.

The topology is persisted as a single JSON blob with camelCase keys
(``fromCameraId``, ``transitTime``, ``floorPlanPosition`` ...).  Every load
and replace goes through :meth:`Topology.from_blob`, so a malformed document
never reaches the correlation engine.
"""

from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from ..exceptions import TopologyValidationError


Polygon = List[Tuple[float, float]]

LandmarkType = Literal[
    "structure", "feature", "boundary", "access",
    "vehicle", "neighbor", "zone", "street",
]

GlobalZoneType = Literal["entry", "exit", "dwell", "restricted"]

RelationshipType = Literal[
    "adjacent", "near", "overlooks", "leads_to", "within", "across",
]


class _TopologyModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# --- Geometry ---

class Point(_TopologyModel):
    x: float
    y: float


class FloorPlan(_TopologyModel):
    width: float = 800.0
    height: float = 600.0
    scale: float = Field(5.0, gt=0)  # pixels per foot
    rotation: float = 0.0


class FieldOfView(_TopologyModel):
    """Simple wedge FOV. ``direction`` 0 = up (north), 90 = right (east)."""
    mode: Literal["simple"] = "simple"
    direction: float = 0.0
    angle: float = Field(90.0, gt=0, le=360)
    range: float = Field(80.0, gt=0)  # feet


# --- Cameras & connections ---

class Camera(_TopologyModel):
    device_id: str = Field(min_length=1)
    name: str
    native_id: Optional[str] = None
    floor_plan_position: Optional[Point] = None
    fov: Optional[FieldOfView] = None
    is_entry_point: bool = False
    is_exit_point: bool = False
    track_classes: List[str] = Field(default_factory=list)

    def tracks_class(self, class_name: str) -> bool:
        return not self.track_classes or class_name in self.track_classes


class TransitTime(_TopologyModel):
    """Transit time bounds in milliseconds."""
    min: float = Field(ge=0)
    typical: float = Field(ge=0)
    max: float = Field(ge=0)

    @model_validator(mode="after")
    def _check_order(self) -> 'TransitTime':
        if not (self.min <= self.typical <= self.max):
            raise ValueError(
                f"transit time must satisfy min <= typical <= max "
                f"(got {self.min}, {self.typical}, {self.max})"
            )
        return self


class Connection(_TopologyModel):
    """Directed edge between two cameras; bidirectional doubles as the reverse edge."""
    id: str
    from_camera_id: str
    to_camera_id: str
    name: str = ""
    bidirectional: bool = True
    transit_time: TransitTime
    exit_zone: Polygon = Field(default_factory=list)
    entry_zone: Polygon = Field(default_factory=list)

    def other_end(self, camera_id: str) -> Optional[str]:
        if camera_id == self.from_camera_id:
            return self.to_camera_id
        if self.bidirectional and camera_id == self.to_camera_id:
            return self.from_camera_id
        return None


# --- Landmarks, zones, relationships ---

class Landmark(_TopologyModel):
    id: str
    name: str
    type: LandmarkType
    position: Point
    outline: Optional[Polygon] = None
    description: str = ""
    is_entry_point: bool = False
    is_exit_point: bool = False
    visible_from_cameras: List[str] = Field(default_factory=list)
    ai_suggested: bool = False
    ai_confidence: Optional[float] = Field(None, ge=0, le=1)


class CameraZone(_TopologyModel):
    camera_id: str
    zone: Polygon


class GlobalZone(_TopologyModel):
    id: str
    name: str
    type: GlobalZoneType
    camera_zones: List[CameraZone] = Field(default_factory=list)


class SpatialRelationship(_TopologyModel):
    id: str
    type: RelationshipType
    entity_a: str
    entity_b: str
    description: str = ""
    auto_inferred: bool = False


# --- Root aggregate ---

class Topology(_TopologyModel):
    """Root aggregate: cameras, connections, landmarks, zones."""
    version: str = "2.0"
    cameras: List[Camera] = Field(default_factory=list)
    connections: List[Connection] = Field(default_factory=list)
    landmarks: List[Landmark] = Field(default_factory=list)
    global_zones: List[GlobalZone] = Field(default_factory=list)
    relationships: List[SpatialRelationship] = Field(default_factory=list)
    floor_plan: Optional[FloorPlan] = None

    @model_validator(mode="after")
    def _check_references(self) -> 'Topology':
        ids = [c.device_id for c in self.cameras]
        if len(ids) != len(set(ids)):
            raise ValueError("camera device ids must be unique")
        known = set(ids)
        for conn in self.connections:
            for end in (conn.from_camera_id, conn.to_camera_id):
                if end not in known:
                    raise ValueError(
                        f"connection {conn.id!r} references unknown camera {end!r}"
                    )
        return self

    @property
    def scale(self) -> float:
        return self.floor_plan.scale if self.floor_plan else 5.0

    def get_camera(self, device_id: str) -> Optional[Camera]:
        for cam in self.cameras:
            if cam.device_id == device_id:
                return cam
        return None

    def to_blob(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_blob(cls, blob: Any) -> 'Topology':
        """Validate a raw document (dict or Topology)."""
        if isinstance(blob, Topology):
            blob = blob.to_blob()
        try:
            return cls.model_validate(blob)
        except ValidationError as e:
            raise TopologyValidationError(
                f"invalid topology: {e.error_count()} error(s)", errors=e.errors()
            ) from e


def empty_topology() -> Topology:
    return Topology()
