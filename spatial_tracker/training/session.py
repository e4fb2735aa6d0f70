"""
Guided training sessions.

A person walks the property while the detection stream is recorded as a
sequence of camera visits.  Consecutive visits on different cameras give
observed transit times; visits on two cameras at once reveal overlapping
fields of view.  When the walk is over the results can be merged into the
topology.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from itertools import combinations
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

from ..config import TrainingConfig
from ..events import DetectionEvent
from ..exceptions import TrainingSessionError
from ..learning.transit_learner import TransitTimeLearner
from ..topology.graph import TopologyGraph
from ..topology.models import (
    CameraZone, Connection, GlobalZone, Landmark, Point, Topology, TransitTime,
)
from ..topology.repository import TopologyRepository

logger = logging.getLogger(__name__)

MIN_CONNECTION_MAX_MS = 1000.0
FULL_FRAME = [(0.0, 0.0), (100.0, 0.0), (100.0, 100.0), (0.0, 100.0)]

# Names a trainer may use for a landmark → stored landmark type
LANDMARK_TYPES = {
    'mailbox': 'feature', 'tree': 'feature', 'garden': 'feature',
    'pool': 'feature', 'deck': 'feature', 'patio': 'feature',
    'garage': 'structure', 'shed': 'structure',
    'gate': 'access', 'door': 'access',
    'driveway': 'zone', 'pathway': 'zone',
}
STORED_TYPES = {
    'structure', 'feature', 'boundary', 'access',
    'vehicle', 'neighbor', 'zone', 'street',
}


class TrainingState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


@dataclass
class CameraVisit:
    """Continuous presence of the trainer on one camera."""
    camera_id: str
    camera_name: str
    arrived_at: float
    departed_at: float
    detection_confidence: float
    bbox: Optional[Tuple[float, float, float, float]] = None

    def overlaps(self, other: 'CameraVisit') -> bool:
        return self.arrived_at <= other.departed_at and other.arrived_at <= self.departed_at

    def to_dict(self) -> dict:
        return {
            'camera_id': self.camera_id,
            'camera_name': self.camera_name,
            'arrived_at': self.arrived_at,
            'departed_at': self.departed_at,
            'detection_confidence': round(self.detection_confidence, 3),
        }


@dataclass
class TrainingTransit:
    from_camera_id: str
    to_camera_id: str
    start_time: float
    end_time: float

    @property
    def duration(self) -> float:
        """Gap between leaving one camera and arriving at the next (ms, ≥ 0)."""
        return max(0.0, self.end_time - self.start_time)


@dataclass
class TrainingLandmark:
    id: str
    name: str
    type: str
    position: Point
    visible_from_cameras: List[str]
    marked_at: float
    description: str = ""


@dataclass
class TrainingStats:
    total_duration: float = 0.0  # ms
    cameras_visited: int = 0
    transits_recorded: int = 0
    landmarks_marked: int = 0
    overlaps_detected: int = 0
    average_transit_time: float = 0.0  # seconds
    coverage_percentage: float = 0.0

    def to_dict(self) -> dict:
        return {
            'total_duration': self.total_duration,
            'cameras_visited': self.cameras_visited,
            'transits_recorded': self.transits_recorded,
            'landmarks_marked': self.landmarks_marked,
            'overlaps_detected': self.overlaps_detected,
            'average_transit_time': self.average_transit_time,
            'coverage_percentage': self.coverage_percentage,
        }


@dataclass
class TrainingSession:
    id: str
    state: TrainingState
    started_at: float
    updated_at: float
    trainer_name: Optional[str] = None
    completed_at: Optional[float] = None
    visits: List[CameraVisit] = field(default_factory=list)
    landmarks: List[TrainingLandmark] = field(default_factory=list)
    stats: TrainingStats = field(default_factory=TrainingStats)
    last_action: Optional[Dict[str, Any]] = None

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'state': self.state.value,
            'trainer_name': self.trainer_name,
            'started_at': self.started_at,
            'updated_at': self.updated_at,
            'completed_at': self.completed_at,
            'visits': [v.to_dict() for v in self.visits],
            'landmarks': [
                {'id': lm.id, 'name': lm.name, 'type': lm.type,
                 'position': lm.position.model_dump(),
                 'visible_from_cameras': list(lm.visible_from_cameras)}
                for lm in self.landmarks
            ],
            'stats': self.stats.to_dict(),
        }


@dataclass
class TrainingApplyResult:
    connections_created: int = 0
    connections_updated: int = 0
    landmarks_added: int = 0
    zones_created: int = 0
    warnings: List[str] = field(default_factory=list)
    success: bool = False

    def to_dict(self) -> dict:
        return {
            'connections_created': self.connections_created,
            'connections_updated': self.connections_updated,
            'landmarks_added': self.landmarks_added,
            'zones_created': self.zones_created,
            'warnings': list(self.warnings),
            'success': self.success,
        }


# ── Derived facts ────────────────────────────────────────────────────────────

def derive_transits(visits: List[CameraVisit]) -> List[TrainingTransit]:
    """Consecutive visits (by arrival) on different cameras."""
    ordered = sorted(visits, key=lambda v: v.arrived_at)
    transits = []
    for prev, nxt in zip(ordered, ordered[1:]):
        if prev.camera_id != nxt.camera_id:
            transits.append(TrainingTransit(
                prev.camera_id, nxt.camera_id, prev.departed_at, nxt.arrived_at,
            ))
    return transits


def derive_overlaps(visits: List[CameraVisit]) -> List[Tuple[CameraVisit, CameraVisit]]:
    """Visit pairs on different cameras whose time spans intersect."""
    return [
        (a, b) for a, b in combinations(visits, 2)
        if a.camera_id != b.camera_id and a.overlaps(b)
    ]


def calculate_stats(session: TrainingSession, total_cameras: int, now: float) -> TrainingStats:
    cameras = {v.camera_id for v in session.visits}
    transits = derive_transits(session.visits)
    gaps = [t.duration / 1000.0 for t in transits]
    coverage = len(cameras) / total_cameras * 100.0 if total_cameras > 0 else 0.0
    return TrainingStats(
        total_duration=(session.completed_at or now) - session.started_at,
        cameras_visited=len(cameras),
        transits_recorded=len(transits),
        landmarks_marked=len(session.landmarks),
        overlaps_detected=len(derive_overlaps(session.visits)),
        average_transit_time=round(float(np.mean(gaps)), 1) if gaps else 0.0,
        coverage_percentage=round(min(100.0, max(0.0, coverage)), 1),
    )


# ── Manager ──────────────────────────────────────────────────────────────────

class TrainingSessionManager:
    """
    Owns the (single) training session.

    States: idle → active ⇄ paused → completed → reset → idle.
    """

    def __init__(
        self,
        repository: TopologyRepository,
        config: Optional[TrainingConfig] = None,
        learner: Optional[TransitTimeLearner] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.repository = repository
        self.config = config or TrainingConfig()
        self.learner = learner or TransitTimeLearner()
        self.clock = clock or (lambda: time.time() * 1000.0)
        self.session: Optional[TrainingSession] = None
        self._lock = threading.Lock()

    @property
    def state(self) -> TrainingState:
        return self.session.state if self.session else TrainingState.IDLE

    def _now(self) -> float:
        return self.clock()

    # ── lifecycle ──

    def start(self, trainer_name: Optional[str] = None,
              config: Optional[Dict[str, Any]] = None) -> TrainingSession:
        with self._lock:
            if self.state in (TrainingState.ACTIVE, TrainingState.PAUSED):
                raise TrainingSessionError(f"training session {self.session.id} already in progress")
            if config:
                self.config = TrainingConfig.from_dict({
                    **self._config_as_sec(), **config,
                })
            now = self._now()
            self.session = TrainingSession(
                id=f"training-{int(now)}-{uuid.uuid4().hex[:9]}",
                state=TrainingState.ACTIVE,
                started_at=now,
                updated_at=now,
                trainer_name=trainer_name,
            )
            logger.info("Training session %s started (trainer=%s)", self.session.id, trainer_name)
            return self.session

    def pause(self) -> TrainingSession:
        with self._lock:
            self._require(TrainingState.ACTIVE)
            self.session.state = TrainingState.PAUSED
            self.session.updated_at = self._now()
            logger.info("Training session %s paused", self.session.id)
            return self.session

    def resume(self) -> TrainingSession:
        with self._lock:
            self._require(TrainingState.PAUSED)
            self.session.state = TrainingState.ACTIVE
            self.session.updated_at = self._now()
            logger.info("Training session %s resumed", self.session.id)
            return self.session

    def end(self) -> TrainingSession:
        """Finish the walk and compute final stats."""
        with self._lock:
            self._require(TrainingState.ACTIVE, TrainingState.PAUSED)
            session = self.session
            now = self._now()
            session.state = TrainingState.COMPLETED
            session.completed_at = now
            session.updated_at = now
            session.stats = calculate_stats(session, len(self.repository.topology.cameras), now)
            logger.info(
                "Training session %s completed: %d cameras, %d transits, %d overlaps, %.0f%% coverage",
                session.id, session.stats.cameras_visited, session.stats.transits_recorded,
                session.stats.overlaps_detected, session.stats.coverage_percentage,
            )
            return session

    def reset(self):
        with self._lock:
            if self.session is not None:
                logger.info("Training session %s discarded", self.session.id)
            self.session = None

    # ── recording ──

    def record_detection(self, event: DetectionEvent) -> bool:
        """Record trainer sightings from one event. Returns True if a visit changed."""
        with self._lock:
            if self.state != TrainingState.ACTIVE:
                return False
            best = None
            for det in event.objects:
                if det.class_name != self.config.trainer_class:
                    continue
                if det.score < self.config.min_detection_confidence:
                    continue
                if best is None or det.score > best.score:
                    best = det
            if best is None:
                return False

            session = self.session
            now = event.timestamp
            visit = self._last_visit(event.camera_id)
            if visit is not None and now - visit.departed_at <= self.config.visit_gap_ms:
                visit.departed_at = max(visit.departed_at, now)
                visit.detection_confidence = max(visit.detection_confidence, best.score)
                if best.bbox is not None:
                    visit.bbox = best.bbox
            else:
                camera = self.repository.topology.get_camera(event.camera_id)
                name = camera.name if camera else event.camera_id
                session.visits.append(CameraVisit(
                    camera_id=event.camera_id,
                    camera_name=name,
                    arrived_at=now,
                    departed_at=now,
                    detection_confidence=best.score,
                    bbox=best.bbox,
                ))
                session.last_action = {
                    'type': 'camera_visit',
                    'description': f"Arrived at {name}",
                    'timestamp': now,
                }
                logger.info("Training: trainer arrived at %s", name)

            session.updated_at = max(session.updated_at, now)
            session.stats = calculate_stats(session, len(self.repository.topology.cameras), now)
            return True

    def mark_landmark(self, data: Dict[str, Any]) -> TrainingLandmark:
        """Record a landmark the trainer points out."""
        with self._lock:
            self._require(TrainingState.ACTIVE, TrainingState.PAUSED)
            session = self.session
            name = str(data.get('name') or '').strip()
            if not name:
                raise TrainingSessionError("landmark name is required")

            cameras = list(data.get('visible_from_cameras') or data.get('visibleFromCameras') or [])
            if not cameras:
                current = self._current_camera()
                if current is not None:
                    cameras = [current.camera_id]
            position = data.get('position') or {}

            now = self._now()
            landmark = TrainingLandmark(
                id=f"training-landmark-{int(now)}-{uuid.uuid4().hex[:6]}",
                name=name,
                type=str(data.get('type') or 'other'),
                position=Point(x=float(position.get('x', 0)), y=float(position.get('y', 0))),
                visible_from_cameras=cameras,
                marked_at=now,
                description=str(data.get('description') or ''),
            )
            session.landmarks.append(landmark)
            session.last_action = {
                'type': 'mark_landmark',
                'description': f"Marked {name}",
                'timestamp': now,
            }
            session.stats.landmarks_marked = len(session.landmarks)
            logger.info("Training: landmark %s (%s) marked", name, landmark.type)
            return landmark

    # ── status ──

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            if self.session is None:
                return {'state': TrainingState.IDLE.value, 'session_id': None}

            session = self.session
            now = self._now()
            topology = self.repository.topology
            status: Dict[str, Any] = {
                'session_id': session.id,
                'state': session.state.value,
                'trainer_name': session.trainer_name,
                'stats': session.stats.to_dict(),
                'last_action': session.last_action,
                'current_camera': None,
                'active_transit': None,
            }

            visit = self._current_camera()
            if visit is not None and now - visit.departed_at <= self.config.visit_gap_ms:
                status['current_camera'] = {
                    'id': visit.camera_id,
                    'name': visit.camera_name,
                    'detected_at': visit.arrived_at,
                    'confidence': round(visit.detection_confidence, 3),
                }
            elif visit is not None and session.state == TrainingState.ACTIVE:
                status['active_transit'] = {
                    'from_camera_id': visit.camera_id,
                    'from_camera_name': visit.camera_name,
                    'start_time': visit.departed_at,
                    'elapsed_seconds': round((now - visit.departed_at) / 1000.0, 1),
                }

            suggestions = []
            visited = {v.camera_id for v in session.visits}
            for cam in topology.cameras:
                if cam.device_id not in visited:
                    suggestions.append(f"Walk to {cam.name}")
            transit = status['active_transit']
            if transit is not None and (now - transit['start_time']) > self.config.max_transit_wait_ms:
                suggestions.insert(0, f"No camera has seen you since {transit['from_camera_name']}")
            status['suggestions'] = suggestions
            return status

    # ── merge into topology ──

    def apply_to_topology(self) -> TrainingApplyResult:
        """
        Merge the session into the topology in one commit.

        New connections only for consecutively observed pairs without an
        edge; existing ones have their transit time refined.  Nothing is
        written when there is no session.
        """
        with self._lock:
            result = TrainingApplyResult()
            if self.session is None:
                result.warnings.append("no training session")
                return result
            session = self.session
            if session.state != TrainingState.COMPLETED:
                result.warnings.append(f"session is still {session.state.value}")

            with self.repository.mutate() as working:
                self._merge_connections(working, derive_transits(session.visits), result)
                self._merge_landmarks(working, session.landmarks, result)
                if self.config.auto_detect_overlaps:
                    self._merge_overlap_zones(working, derive_overlaps(session.visits), result)
            result.success = True
            logger.info(
                "Training applied: %d connections created, %d updated, %d landmarks, %d zones",
                result.connections_created, result.connections_updated,
                result.landmarks_added, result.zones_created,
            )
            return result

    def _merge_connections(self, topology: Topology, transits: List[TrainingTransit],
                           result: TrainingApplyResult):
        graph = TopologyGraph(topology)
        new_pairs: Dict[frozenset, List[TrainingTransit]] = {}
        updated = set()

        for transit in transits:
            if topology.get_camera(transit.from_camera_id) is None or \
                    topology.get_camera(transit.to_camera_id) is None:
                result.warnings.append(
                    f"transit {transit.from_camera_id} -> {transit.to_camera_id} "
                    f"references a camera not in the topology"
                )
                continue
            conn = graph.find_connection(transit.from_camera_id, transit.to_camera_id)
            if conn is not None:
                conn.transit_time = self.learner.refine(conn.transit_time, transit.duration)
                updated.add(conn.id)
            else:
                new_pairs.setdefault(
                    frozenset((transit.from_camera_id, transit.to_camera_id)), []
                ).append(transit)

        for observed in new_pairs.values():
            first = observed[0]
            durations = [t.duration for t in observed]
            from_cam = topology.get_camera(first.from_camera_id)
            to_cam = topology.get_camera(first.to_camera_id)
            topology.connections.append(Connection(
                id=f"training-{from_cam.device_id}-{to_cam.device_id}-{uuid.uuid4().hex[:6]}",
                from_camera_id=from_cam.device_id,
                to_camera_id=to_cam.device_id,
                name=f"{from_cam.name} to {to_cam.name}",
                bidirectional=True,
                transit_time=TransitTime(
                    min=round(min(durations) * 0.5),
                    typical=round(float(np.mean(durations))),
                    max=round(max(max(durations) * 2.0, MIN_CONNECTION_MAX_MS)),
                ),
            ))
            result.connections_created += 1

        result.connections_updated = len(updated)

    def _merge_landmarks(self, topology: Topology, landmarks: List[TrainingLandmark],
                         result: TrainingApplyResult):
        for lm in landmarks:
            if self._landmark_exists(topology, lm):
                result.warnings.append(f"landmark {lm.name!r} already exists")
                continue
            stored_type = lm.type if lm.type in STORED_TYPES else LANDMARK_TYPES.get(lm.type, 'feature')
            topology.landmarks.append(Landmark(
                id=lm.id,
                name=lm.name,
                type=stored_type,
                position=lm.position,
                description=lm.description,
                visible_from_cameras=list(lm.visible_from_cameras),
            ))
            result.landmarks_added += 1

    @staticmethod
    def _landmark_exists(topology: Topology, lm: TrainingLandmark) -> bool:
        name = lm.name.lower()
        for existing in topology.landmarks:
            if existing.name.lower() != name:
                continue
            if not lm.visible_from_cameras or not existing.visible_from_cameras:
                return True
            if set(lm.visible_from_cameras) & set(existing.visible_from_cameras):
                return True
        return False

    def _merge_overlap_zones(self, topology: Topology,
                             overlaps: List[Tuple[CameraVisit, CameraVisit]],
                             result: TrainingApplyResult):
        seen = set()
        for a, b in overlaps:
            pair = tuple(sorted((a.camera_id, b.camera_id)))
            if pair in seen:
                continue
            seen.add(pair)
            cam_a, cam_b = topology.get_camera(pair[0]), topology.get_camera(pair[1])
            if cam_a is None or cam_b is None:
                continue
            name = f"{cam_a.name} / {cam_b.name} overlap"
            if any(z.name == name for z in topology.global_zones):
                continue
            topology.global_zones.append(GlobalZone(
                id=f"zone-overlap-{pair[0]}-{pair[1]}",
                name=name,
                type="dwell",
                camera_zones=[
                    CameraZone(camera_id=pair[0], zone=list(FULL_FRAME)),
                    CameraZone(camera_id=pair[1], zone=list(FULL_FRAME)),
                ],
            ))
            result.zones_created += 1

    # ── helpers ──

    def _require(self, *states: TrainingState):
        if self.state not in states:
            wanted = " or ".join(s.value for s in states)
            raise TrainingSessionError(f"no {wanted} training session (state: {self.state.value})")

    def _last_visit(self, camera_id: str) -> Optional[CameraVisit]:
        for visit in reversed(self.session.visits):
            if visit.camera_id == camera_id:
                return visit
        return None

    def _current_camera(self) -> Optional[CameraVisit]:
        if not self.session or not self.session.visits:
            return None
        return max(self.session.visits, key=lambda v: v.departed_at)

    def _config_as_sec(self) -> Dict[str, Any]:
        return {
            'min_detection_confidence': self.config.min_detection_confidence,
            'trainer_class': self.config.trainer_class,
            'visit_gap_sec': self.config.visit_gap_ms / 1000.0,
            'max_transit_wait_sec': self.config.max_transit_wait_ms / 1000.0,
            'auto_detect_overlaps': self.config.auto_detect_overlaps,
        }
