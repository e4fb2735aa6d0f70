"""
Topology discovery.

Turns scene analyses (per camera) and cross-camera correlations into
pending suggestions, and commits accepted ones to the topology after
projecting them onto the floor plan.  Scene analysis itself is an external
capability; it runs on the bounded capability pool, never on the detection
path.
"""

import logging
import threading
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from ..capabilities import CapabilityRunner, SceneAnalyzer
from ..config import DiscoveryConfig
from ..exceptions import CameraNotFoundError
from ..learning.suggestions import SuggestionBook, SuggestionStatus
from ..topology.graph import TopologyGraph, resolve_camera
from ..topology.models import Connection, Landmark, Topology, TransitTime
from ..topology.repository import TopologyRepository
from .models import (
    DiscoveredLandmark, DiscoverySuggestion, SceneAnalysis, TopologyCorrelation,
)
from .projection import (
    distance_to_feet, existing_landmark_count, place_landmark, zone_default_feet, zone_wedge,
)

logger = logging.getLogger(__name__)

MIN_ZONE_COVERAGE = 0.1
MAX_ZONE_CONFIDENCE = 0.9


class DiscoveryService:
    """Scene-analysis driven suggestions for landmarks, zones and connections."""

    def __init__(
        self,
        repository: TopologyRepository,
        config: Optional[DiscoveryConfig] = None,
        analyzer: Optional[SceneAnalyzer] = None,
        runner: Optional[CapabilityRunner] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.repository = repository
        self.config = config or DiscoveryConfig()
        self.analyzer = analyzer
        self.runner = runner
        self.clock = clock or (lambda: time.time() * 1000.0)
        self.book: SuggestionBook[DiscoverySuggestion] = SuggestionBook()
        self._lock = threading.Lock()

        self.is_scanning = False
        self.last_scan_time: Optional[float] = None
        self.cameras_analyzed = 0
        self.last_error: Optional[str] = None

    # ── ingestion ──

    def ingest_analysis(self, analysis: Union[SceneAnalysis, Dict[str, Any]]) -> List[DiscoverySuggestion]:
        """Create suggestions from one camera's scene analysis."""
        if not isinstance(analysis, SceneAnalysis):
            analysis = SceneAnalysis.model_validate(analysis)
        if not analysis.is_valid:
            logger.warning("Skipping invalid analysis for %s: %s", analysis.camera_id, analysis.error)
            return []

        now = self.clock()
        created = []
        with self._lock:
            for lm in analysis.landmarks:
                if lm.confidence < self.config.min_landmark_confidence:
                    continue
                created.append(self._add(DiscoverySuggestion(
                    id=self._new_id("landmark", now),
                    type="landmark",
                    timestamp=now,
                    source_cameras=[analysis.camera_id],
                    confidence=lm.confidence,
                    landmark=lm,
                    distance_feet=distance_to_feet(lm.distance),
                )))
            for zone in analysis.zones:
                if zone.coverage < MIN_ZONE_COVERAGE:
                    continue
                feet = distance_to_feet(zone.distance, default=zone_default_feet(zone.type))
                created.append(self._add(DiscoverySuggestion(
                    id=self._new_id("zone", now),
                    type="zone",
                    timestamp=now,
                    source_cameras=[analysis.camera_id],
                    confidence=min(MAX_ZONE_CONFIDENCE, 0.5 + zone.coverage),
                    zone=zone,
                    distance_feet=feet,
                )))
        logger.info(
            "Discovery: %d suggestion(s) from %s (%d landmarks, %d zones analyzed)",
            len(created), analysis.camera_name or analysis.camera_id,
            len(analysis.landmarks), len(analysis.zones),
        )
        return created

    def ingest_correlation(
        self, correlation: Union[TopologyCorrelation, Dict[str, Any]],
    ) -> List[DiscoverySuggestion]:
        """Create suggestions from a multi-camera correlation."""
        if not isinstance(correlation, TopologyCorrelation):
            correlation = TopologyCorrelation.model_validate(correlation)
        now = self.clock()
        created = []
        with self._lock:
            for shared in correlation.shared_landmarks:
                created.append(self._add(DiscoverySuggestion(
                    id=self._new_id("shared", now),
                    type="landmark",
                    timestamp=now,
                    source_cameras=list(shared.seen_by_cameras),
                    confidence=shared.confidence,
                    landmark=DiscoveredLandmark(
                        name=shared.name,
                        type=shared.type,
                        confidence=shared.confidence,
                        description=shared.description,
                    ),
                    distance_feet=distance_to_feet(None),
                )))
            for conn in correlation.suggested_connections:
                if conn.confidence < self.config.min_connection_confidence:
                    continue
                created.append(self._add(DiscoverySuggestion(
                    id=self._new_id("conn", now),
                    type="connection",
                    timestamp=now,
                    source_cameras=[conn.from_camera_id, conn.to_camera_id],
                    confidence=conn.confidence,
                    connection=conn,
                )))
        return created

    def run_discovery(self) -> Dict[str, Any]:
        """Analyze every camera through the capability pool."""
        if self.analyzer is None or self.runner is None:
            logger.warning("Discovery requested but no scene analyzer is configured")
            return {'cameras_analyzed': 0, 'suggestions_created': 0, 'errors': ['no scene analyzer']}

        with self._lock:
            if self.is_scanning:
                return {'cameras_analyzed': 0, 'suggestions_created': 0,
                        'errors': ['discovery already running']}
            self.is_scanning = True

        analyzed = 0
        created = 0
        errors: List[str] = []
        try:
            for camera in self.repository.topology.cameras:
                try:
                    raw = self.runner.run(self.analyzer.analyze_scene, camera.device_id, camera.name)
                    created += len(self.ingest_analysis(raw))
                    analyzed += 1
                except ValidationError as e:
                    errors.append(f"{camera.name}: malformed analysis ({e.error_count()} errors)")
                    logger.warning("Malformed scene analysis for %s", camera.name)
                except Exception as e:
                    errors.append(f"{camera.name}: {e}")
                    logger.warning("Scene analysis failed for %s: %s", camera.name, e)
        finally:
            with self._lock:
                self.is_scanning = False
                self.last_scan_time = self.clock()
                self.cameras_analyzed = analyzed
                self.last_error = errors[-1] if errors else None

        logger.info("Discovery complete: %d cameras, %d suggestions", analyzed, created)
        return {'cameras_analyzed': analyzed, 'suggestions_created': created, 'errors': errors}

    # ── review ──

    def get_suggestions(self) -> List[DiscoverySuggestion]:
        with self._lock:
            return sorted(self.book.pending(), key=lambda s: s.confidence, reverse=True)

    def accept(self, suggestion_id: str) -> Optional[Union[Landmark, Connection]]:
        """
        Project and commit a pending suggestion.

        Raises SuggestionNotFoundError when it is not pending, and
        CameraNotFoundError (suggestion stays pending, topology untouched)
        when a referenced camera cannot be resolved.  A connection that
        already exists is accepted without a change and returns None.
        """
        with self._lock:
            suggestion = self.book.require_pending(suggestion_id)
            with self.repository.mutate() as working:
                if suggestion.type == "connection":
                    item = self._build_connection(working, suggestion)
                    if item is not None:
                        working.connections.append(item)
                else:
                    item = self._build_landmark(working, suggestion)
                    working.landmarks.append(item)
            if item is not None:
                logger.info("Discovery suggestion %s accepted as %s", suggestion_id, item.name)
            self.book.resolve(suggestion_id, SuggestionStatus.ACCEPTED)
            return item

    def reject(self, suggestion_id: str) -> DiscoverySuggestion:
        with self._lock:
            return self.book.resolve(suggestion_id, SuggestionStatus.REJECTED)

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'is_scanning': self.is_scanning,
                'last_scan_time': self.last_scan_time,
                'cameras_analyzed': self.cameras_analyzed,
                'pending_suggestions': len(self.book.pending()),
                'last_error': self.last_error,
            }

    def clear(self):
        with self._lock:
            self.book = SuggestionBook()
            self.cameras_analyzed = 0

    # ── helpers ──

    def _add(self, suggestion: DiscoverySuggestion) -> DiscoverySuggestion:
        self.book.put(suggestion)
        return suggestion

    @staticmethod
    def _new_id(prefix: str, now: float) -> str:
        return f"{prefix}_{int(now)}_{uuid.uuid4().hex[:6]}"

    @staticmethod
    def _resolve(topology: Topology, ref: str):
        camera = resolve_camera(topology, ref)
        if camera is None:
            raise CameraNotFoundError(f"camera {ref!r} not in topology")
        return camera

    def _build_landmark(self, topology: Topology, suggestion: DiscoverySuggestion) -> Landmark:
        cameras = [self._resolve(topology, ref) for ref in suggestion.source_cameras]
        primary = cameras[0] if cameras else None
        camera_ids = [c.device_id for c in cameras]
        index = existing_landmark_count(topology, primary.device_id if primary else None)
        feet = suggestion.distance_feet or distance_to_feet(None)

        if suggestion.type == "zone":
            zone = suggestion.zone
            position, outline = zone_wedge(topology, primary, feet, zone.bounding_box, index)
            return Landmark(
                id=f"zone_{uuid.uuid4().hex[:8]}",
                name=zone.name,
                type="zone",
                position=position,
                outline=outline,
                description=zone.description,
                visible_from_cameras=camera_ids,
                ai_suggested=True,
                ai_confidence=suggestion.confidence,
            )

        lm = suggestion.landmark
        position = place_landmark(topology, primary, feet, lm.bounding_box, index)
        return Landmark(
            id=f"landmark_{uuid.uuid4().hex[:8]}",
            name=lm.name,
            type=lm.type,
            position=position,
            description=lm.description,
            visible_from_cameras=camera_ids,
            ai_suggested=True,
            ai_confidence=suggestion.confidence,
        )

    def _build_connection(self, topology: Topology, suggestion: DiscoverySuggestion) -> Optional[Connection]:
        conn = suggestion.connection
        from_cam = self._resolve(topology, conn.from_camera_id)
        to_cam = self._resolve(topology, conn.to_camera_id)
        if TopologyGraph(topology).find_connection(from_cam.device_id, to_cam.device_id) is not None:
            logger.info("Connection %s -> %s already exists", from_cam.name, to_cam.name)
            return None
        typical = conn.transit_seconds * 1000.0
        name = f"{from_cam.name} to {to_cam.name}"
        if conn.via:
            name = f"{name} via {conn.via}"
        return Connection(
            id=f"conn-{int(self.clock())}-{uuid.uuid4().hex[:6]}",
            from_camera_id=from_cam.device_id,
            to_camera_id=to_cam.device_id,
            name=name,
            bidirectional=conn.bidirectional,
            transit_time=TransitTime(
                min=round(typical * 0.5), typical=round(typical), max=round(typical * 2.0),
            ),
        )
