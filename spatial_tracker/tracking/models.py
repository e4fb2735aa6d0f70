"""
Tracked object data model.
A TrackedObject is one physical object followed across cameras; its journey
is the ordered list of camera-to-camera segments it has completed.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from ..utils.geometry import bbox_center

MAX_SIGHTINGS = 500


class ObjectState(str, Enum):
    """Lifecycle of a tracked object."""
    DETECTED = "detected"
    IN_TRANSIT = "in_transit"
    LOST = "lost"
    EXITED = "exited"

    @property
    def is_active(self) -> bool:
        return self in (ObjectState.DETECTED, ObjectState.IN_TRANSIT)


@dataclass
class Sighting:
    """One detection of an object on one camera."""
    camera_id: str
    timestamp: float  # epoch ms
    class_name: str
    score: float
    bbox: Optional[Tuple[float, float, float, float]] = None  # 0-100 normalized
    label: Optional[str] = None
    embedding: Optional[np.ndarray] = None
    track_id: Optional[str] = None
    camera_name: str = ""

    @property
    def position(self) -> Optional[Tuple[float, float]]:
        """Bbox center normalized to 0-1."""
        if self.bbox is None:
            return None
        return bbox_center(self.bbox)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'camera_id': self.camera_id,
            'camera_name': self.camera_name,
            'timestamp': self.timestamp,
            'class_name': self.class_name,
            'label': self.label,
            'score': round(self.score, 3),
            'bbox': list(self.bbox) if self.bbox is not None else None,
            'has_embedding': self.embedding is not None,
        }


@dataclass
class JourneySegment:
    """A completed camera-to-camera transit."""
    from_camera_id: str
    from_camera_name: str
    to_camera_id: str
    to_camera_name: str
    exit_time: float
    entry_time: float
    transit_duration: float
    correlation_confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'from_camera_id': self.from_camera_id,
            'from_camera_name': self.from_camera_name,
            'to_camera_id': self.to_camera_id,
            'to_camera_name': self.to_camera_name,
            'exit_time': self.exit_time,
            'entry_time': self.entry_time,
            'transit_duration': self.transit_duration,
            'correlation_confidence': round(self.correlation_confidence, 3),
        }


@dataclass
class TrackedObject:
    """A globally tracked object."""
    global_id: str
    class_name: str
    first_seen: float
    last_seen: float
    current_camera_id: str
    camera_entered_at: float
    entry_camera: str
    label: Optional[str] = None
    state: ObjectState = ObjectState.DETECTED
    state_changed_at: float = 0.0
    sightings: List[Sighting] = field(default_factory=list)
    journey: List[JourneySegment] = field(default_factory=list)
    visual_descriptor: Optional[np.ndarray] = None
    exit_camera: Optional[str] = None

    # Per-object alert cooldown bookkeeping: alert kind → last fired (ms)
    alerted_at: Dict[str, float] = field(default_factory=dict)

    def add_sighting(self, sighting: Sighting, ema_alpha: float = 0.7):
        """Append a sighting; EMA-update the visual descriptor."""
        if sighting.camera_id != self.current_camera_id:
            self.current_camera_id = sighting.camera_id
            self.camera_entered_at = sighting.timestamp
        self.last_seen = max(self.last_seen, sighting.timestamp)
        if self.label is None and sighting.label:
            self.label = sighting.label

        self.sightings.append(sighting)
        if len(self.sightings) > MAX_SIGHTINGS:
            del self.sightings[0]

        if sighting.embedding is not None:
            emb = np.asarray(sighting.embedding, dtype=np.float32)
            if self.visual_descriptor is None or self.visual_descriptor.shape != emb.shape:
                descriptor = emb.copy()
            else:
                descriptor = ema_alpha * self.visual_descriptor + (1 - ema_alpha) * emb
            norm = np.linalg.norm(descriptor)
            if norm > 1e-6:
                descriptor = descriptor / norm
            self.visual_descriptor = descriptor

    @property
    def last_sighting(self) -> Optional[Sighting]:
        return self.sightings[-1] if self.sightings else None

    @property
    def dwell_time(self) -> float:
        """Time spent on the current camera (ms)."""
        return self.last_seen - self.camera_entered_at

    @property
    def cameras_visited(self) -> List[str]:
        seen: List[str] = []
        for s in self.sightings:
            if s.camera_id not in seen:
                seen.append(s.camera_id)
        return seen

    def to_dict(self) -> Dict[str, Any]:
        """Convert to serializable dict."""
        return {
            'global_id': self.global_id,
            'class_name': self.class_name,
            'label': self.label,
            'state': self.state.value,
            'first_seen': self.first_seen,
            'last_seen': self.last_seen,
            'current_camera_id': self.current_camera_id,
            'entry_camera': self.entry_camera,
            'exit_camera': self.exit_camera,
            'cameras_visited': self.cameras_visited,
            'sighting_count': len(self.sightings),
            'journey': [seg.to_dict() for seg in self.journey],
            'has_visual_descriptor': self.visual_descriptor is not None,
        }
