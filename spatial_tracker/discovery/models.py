"""
Scene-analysis documents and the discovery suggestions built from them.

A :class:`~spatial_tracker.capabilities.SceneAnalyzer` returns one
``SceneAnalysis`` per camera (camelCase JSON).  Bounding boxes here are
``[x, y, w, h]`` normalized to 0-1, unlike detection bboxes (0-100).
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ..learning.suggestions import SuggestionStatus
from ..topology.models import LandmarkType

ZONE_TYPES = (
    "yard", "driveway", "street", "patio", "walkway",
    "parking", "garden", "pool", "unknown",
)
DiscoveredZoneType = Literal[
    "yard", "driveway", "street", "patio", "walkway",
    "parking", "garden", "pool", "unknown",
]
LANDMARK_TYPES = (
    "structure", "feature", "boundary", "access",
    "vehicle", "neighbor", "zone", "street",
)

BBox = Tuple[float, float, float, float]


def _landmark_type(value) -> str:
    value = str(value or "").lower()
    return value if value in LANDMARK_TYPES else "feature"


class _SceneModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class DiscoveredLandmark(_SceneModel):
    name: str = Field(min_length=1)
    type: LandmarkType = "feature"
    confidence: float = Field(0.0, ge=0, le=1)
    bounding_box: Optional[BBox] = None
    description: str = ""
    distance: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def _known_type(cls, v):
        return _landmark_type(v)


class DiscoveredZone(_SceneModel):
    name: str = Field(min_length=1)
    type: DiscoveredZoneType = "unknown"
    coverage: float = Field(0.0, ge=0, le=1)
    description: str = ""
    bounding_box: Optional[BBox] = None
    distance: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def _known_type(cls, v):
        v = str(v or "").lower()
        return v if v in ZONE_TYPES else "unknown"


class EdgeAnalysis(_SceneModel):
    top: str = ""
    left: str = ""
    right: str = ""
    bottom: str = ""


class SceneAnalysis(_SceneModel):
    camera_id: str
    camera_name: str = ""
    timestamp: float = 0.0
    landmarks: List[DiscoveredLandmark] = Field(default_factory=list)
    zones: List[DiscoveredZone] = Field(default_factory=list)
    edges: EdgeAnalysis = Field(default_factory=EdgeAnalysis)
    orientation: str = "unknown"
    potential_overlaps: List[str] = Field(default_factory=list)
    is_valid: bool = True
    error: Optional[str] = None


class SharedLandmark(_SceneModel):
    name: str = Field(min_length=1)
    type: LandmarkType = "feature"
    seen_by_cameras: List[str] = Field(default_factory=list)
    confidence: float = Field(0.0, ge=0, le=1)
    description: str = ""

    @field_validator("type", mode="before")
    @classmethod
    def _known_type(cls, v):
        return _landmark_type(v)


class SuggestedConnection(_SceneModel):
    from_camera_id: str
    to_camera_id: str
    transit_seconds: float = Field(gt=0)
    via: str = ""
    confidence: float = Field(0.0, ge=0, le=1)
    bidirectional: bool = True


class TopologyCorrelation(_SceneModel):
    shared_landmarks: List[SharedLandmark] = Field(default_factory=list)
    suggested_connections: List[SuggestedConnection] = Field(default_factory=list)
    layout_description: str = ""
    timestamp: float = 0.0


@dataclass
class DiscoverySuggestion:
    """A landmark, zone or connection proposed by scene analysis."""
    id: str
    type: str  # landmark | zone | connection
    timestamp: float
    source_cameras: List[str]
    confidence: float
    status: SuggestionStatus = SuggestionStatus.PENDING
    landmark: Optional[DiscoveredLandmark] = None
    zone: Optional[DiscoveredZone] = None
    connection: Optional[SuggestedConnection] = None
    distance_feet: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = None
        for item in (self.landmark, self.zone, self.connection):
            if item is not None:
                payload = item.model_dump(mode="json", by_alias=True)
        return {
            'id': self.id,
            'type': self.type,
            'timestamp': self.timestamp,
            'source_cameras': list(self.source_cameras),
            'confidence': round(self.confidence, 3),
            'status': self.status.value,
            'distance_feet': self.distance_feet,
            self.type: payload,
        }
