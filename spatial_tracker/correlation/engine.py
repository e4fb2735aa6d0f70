"""
Correlation Engine
==================

Stitches per-camera detection streams into cross-camera journeys.

Object lifecycle
----------------
``detected(camera)``  live sightings on one camera.  A detection on the same
                      camera continues the object: by camera-local track id
                      when the adapter provides one, otherwise by Hungarian
                      assignment on bbox-center distance within a class.
``in_transit``        no sighting for ``departure_grace``.  An open transit
                      candidate is created with one arrival window per
                      outgoing connection:
                      ``[departure + min, departure + min(max, correlation_window)]``.
``detected(other)``   an unmatched detection whose camera and time fall inside
                      a candidate window and scores ≥ ``correlation_threshold``
                      is absorbed by the best candidate.  Otherwise it becomes
                      a new object.
``lost``              no match by ``departure + lost_timeout``.  Terminal.
``exited``            departure from an exit-point camera at the frame edge,
                      not re-acquired within ``correlation_window``.  Terminal.

Concurrency
-----------
Single writer: every event and timer callback runs under one re-entrant lock.
Alerts and AI capability calls are collected while the lock is held and run
after it is released.  Timers that were superseded while waiting for the lock
are recognised by handle identity and ignored.
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np
from scipy.optimize import linear_sum_assignment

from ..alerts.manager import AlertManager, AlertType
from ..capabilities import CapabilityRunner, DescriptionService, LandmarkAdvisor, MovementContext
from ..config import TrackingConfig
from ..events import DetectionEvent, parse_detection_event
from ..exceptions import CameraNotFoundError, EngineStateError
from ..learning.suggestions import (
    ConnectionSuggestion, LandmarkSuggestion, LandmarkSuggestionTracker,
)
from ..learning.transit_learner import ConnectionSuggestionGenerator, TransitTimeLearner
from ..topology.graph import TopologyGraph, describe_topology
from ..topology.models import Connection, Landmark, Point, Topology, TransitTime
from ..topology.repository import TopologyRepository
from ..tracking.models import JourneySegment, ObjectState, Sighting, TrackedObject
from ..tracking.registry import TrackingRegistry
from ..utils.geometry import is_near_frame_edge
from .scoring import (
    CorrelationFactors, class_score, decode_embedding,
    spatial_score, timing_score, visual_score,
)
from .timers import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

CONTINUATION_MAX_DISTANCE = 0.5  # normalized frame units
CLEANUP_INTERVAL_MS = 60_000.0
_BLOCKED = 1e6


# ── Open transit candidate ───────────────────────────────────────────────────

class ArrivalWindow:
    """When and where a departed object may reappear."""

    __slots__ = ["camera_id", "start", "end", "connection"]

    def __init__(self, camera_id: str, start: float, end: float, connection: Connection):
        self.camera_id = camera_id
        self.start = start
        self.end = end
        self.connection = connection

    def contains(self, timestamp: float) -> bool:
        return self.start <= timestamp <= self.end


class TransitCandidate:
    """An object that left its camera and may reappear on a neighbour."""

    __slots__ = [
        "global_id", "from_camera_id", "departure_time",
        "windows", "deadline", "resolution", "timer",
    ]

    def __init__(
        self,
        global_id: str,
        from_camera_id: str,
        departure_time: float,
        windows: Dict[str, ArrivalWindow],
        deadline: float,
        resolution: ObjectState,
    ):
        self.global_id = global_id
        self.from_camera_id = from_camera_id
        self.departure_time = departure_time
        self.windows = windows
        self.deadline = deadline
        self.resolution = resolution
        self.timer: Optional[TimerHandle] = None


# ── Engine ───────────────────────────────────────────────────────────────────

class CorrelationEngine:
    """
    Real-time cross-camera correlation.

    Collaborators are injected; only ``topology``, ``config``, ``registry``
    and ``scheduler`` are required.  With a ``repository`` every learned or
    accepted topology change is committed through it; without one the engine
    keeps a private copy.
    """

    def __init__(
        self,
        topology: Topology,
        config: TrackingConfig,
        registry: TrackingRegistry,
        scheduler: Scheduler,
        alert_manager: Optional[AlertManager] = None,
        learner: Optional[TransitTimeLearner] = None,
        suggester: Optional[ConnectionSuggestionGenerator] = None,
        landmarks: Optional[LandmarkSuggestionTracker] = None,
        repository: Optional[TopologyRepository] = None,
        descriptions: Optional[DescriptionService] = None,
        landmark_advisor: Optional[LandmarkAdvisor] = None,
        runner: Optional[CapabilityRunner] = None,
    ):
        self.config = config
        self.registry = registry
        self.scheduler = scheduler
        self.alert_manager = alert_manager
        self.learner = learner or TransitTimeLearner(
            config.transit_learning_rate, enabled=config.enable_transit_time_learning,
        )
        self.suggester = suggester or ConnectionSuggestionGenerator(
            min_observations=config.min_observations_for_suggestion,
            enabled=config.enable_connection_suggestions,
        )
        self.landmarks = landmarks or LandmarkSuggestionTracker(
            confidence_threshold=config.landmark_confidence_threshold,
            enabled=config.enable_landmark_learning,
        )
        self.repository = repository
        self.descriptions = descriptions
        self.landmark_advisor = landmark_advisor
        self.runner = runner

        self._graph = TopologyGraph(topology)
        self._lock = threading.RLock()
        self._running = False

        self._candidates: Dict[str, TransitCandidate] = {}
        self._departure_timers: Dict[str, TimerHandle] = {}
        self._last_cleanup: Optional[float] = None

        # Stats
        self.events_processed = 0
        self.events_dropped = 0
        self.cross_camera_matches = 0

        logger.info(
            "CorrelationEngine: window=%.0fs threshold=%.2f lost=%.0fs grace=%.1fs "
            "visual=%s cameras=%d connections=%d",
            config.correlation_window_ms / 1000, config.correlation_threshold,
            config.lost_timeout_ms / 1000, config.departure_grace_ms / 1000,
            config.use_visual_matching, len(topology.cameras), len(topology.connections),
        )

    # ── lifecycle ────────────────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def topology(self) -> Topology:
        return self._graph.topology

    def start(self):
        """Start processing and re-arm timers for objects already in the registry."""
        with self._lock:
            if self._running:
                raise EngineStateError("engine already running")
            self._running = True
            deferred = self._rearm_impl(self.scheduler.now())
        self._run_deferred(deferred)
        logger.info("Correlation engine started (%d tracked objects)", len(self.registry))

    def stop(self):
        """Stop processing; all timers are cancelled. Later events are rejected."""
        with self._lock:
            self._running = False
            for handle in self._departure_timers.values():
                handle.cancel()
            self._departure_timers.clear()
            for cand in self._candidates.values():
                if cand.timer is not None:
                    cand.timer.cancel()
            self._candidates.clear()
        logger.info("Correlation engine stopped")

    # ── public API ───────────────────────────────────────────────────────

    def process_event(self, raw: Any) -> List[str]:
        """Process one detection event. Returns the global id per accepted detection."""
        event = parse_detection_event(raw)
        if event is None:
            self.events_dropped += 1
            return []

        with self._lock:
            if not self._running:
                logger.debug("Engine stopped; dropping event from %s", event.camera_id)
                self.events_dropped += 1
                return []
            gids, deferred = self._process_impl(event)
        self._run_deferred(deferred)
        return gids

    def get_tracked_object(self, global_id: str) -> Optional[TrackedObject]:
        with self._lock:
            return self.registry.get(global_id)

    def get_open_transits(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                {
                    'global_id': c.global_id,
                    'from_camera_id': c.from_camera_id,
                    'departure_time': c.departure_time,
                    'deadline': c.deadline,
                    'windows': {
                        cam: {'start': w.start, 'end': w.end, 'connection_id': w.connection.id}
                        for cam, w in c.windows.items()
                    },
                }
                for c in self._candidates.values()
            ]

    def get_live_tracking_state(self) -> Dict[str, Any]:
        """Active objects with their last camera and its floor-plan position."""
        with self._lock:
            objects = []
            for obj in self.registry.get_active():
                camera = self._graph.get_camera(obj.current_camera_id)
                position = None
                if camera is not None and camera.floor_plan_position is not None:
                    position = camera.floor_plan_position.model_dump()
                objects.append({
                    'global_id': obj.global_id,
                    'class_name': obj.class_name,
                    'label': obj.label,
                    'last_camera_id': obj.current_camera_id,
                    'last_camera_name': self._graph.camera_name(obj.current_camera_id),
                    'last_seen': obj.last_seen,
                    'state': obj.state.value,
                    'camera_position': position,
                })
            return {'objects': objects, 'timestamp': self.scheduler.now()}

    def get_journey_path(self, global_id: str) -> Optional[Dict[str, Any]]:
        """Journey segments with camera positions; None for unknown ids."""
        with self._lock:
            obj = self.registry.get(global_id)
            if obj is None:
                return None
            segments = []
            for seg in obj.journey:
                segments.append({
                    'from_camera_id': seg.from_camera_id,
                    'from_camera_name': seg.from_camera_name,
                    'from_position': self._camera_position(seg.from_camera_id),
                    'to_camera_id': seg.to_camera_id,
                    'to_camera_name': seg.to_camera_name,
                    'to_position': self._camera_position(seg.to_camera_id),
                    'transit_time': seg.transit_duration,
                    'confidence': round(seg.correlation_confidence, 3),
                    'timestamp': seg.entry_time,
                })
            current = None
            if obj.state.is_active:
                current = {
                    'camera_id': obj.current_camera_id,
                    'camera_name': self._graph.camera_name(obj.current_camera_id),
                    'position': self._camera_position(obj.current_camera_id),
                }
            return {
                'global_id': obj.global_id,
                'state': obj.state.value,
                'segments': segments,
                'current_location': current,
            }

    # ── suggestions ──

    def get_connection_suggestions(self) -> List[ConnectionSuggestion]:
        with self._lock:
            return self.suggester.get_suggestions()

    def accept_connection_suggestion(self, suggestion_id: str) -> Connection:
        """Add the suggested connection to the topology. One-shot."""
        with self._lock:
            return self._accept_connection_impl(self.suggester.book.require_pending(suggestion_id))

    def reject_connection_suggestion(self, suggestion_id: str) -> ConnectionSuggestion:
        with self._lock:
            return self.suggester.reject(suggestion_id)

    def get_pending_landmark_suggestions(self) -> List[LandmarkSuggestion]:
        with self._lock:
            return self.landmarks.get_pending()

    def submit_landmark_suggestion(
        self,
        name: str,
        landmark_type: str,
        camera_id: str,
        position: Optional[Point] = None,
        description: str = "",
        confidence: float = 0.7,
    ) -> Optional[LandmarkSuggestion]:
        """Record a landmark proposal; auto-accepts above the threshold."""
        with self._lock:
            if position is None:
                camera = self._graph.get_camera(camera_id)
                position = camera.floor_plan_position if camera and camera.floor_plan_position \
                    else Point(x=0, y=0)
            suggestion = self.landmarks.submit(
                name, landmark_type, camera_id, position, self.scheduler.now(),
                description=description, confidence=confidence,
            )
            if suggestion is not None and self.landmarks.should_auto_accept(suggestion):
                self.landmarks.accept(suggestion.id, self._add_landmark)
                logger.info("Auto-accepted landmark %s", suggestion.landmark.name)
            return suggestion

    def accept_landmark_suggestion(self, suggestion_id: str) -> Landmark:
        with self._lock:
            return self.landmarks.accept(suggestion_id, self._add_landmark)

    def reject_landmark_suggestion(self, suggestion_id: str) -> LandmarkSuggestion:
        with self._lock:
            return self.landmarks.reject(suggestion_id)

    def get_stats(self) -> dict:
        with self._lock:
            return {
                'running': self._running,
                'events_processed': self.events_processed,
                'events_dropped': self.events_dropped,
                'cross_camera_matches': self.cross_camera_matches,
                'open_transits': len(self._candidates),
                'pending_departures': len(self._departure_timers),
                'registry': self.registry.get_stats(),
            }

    # ── event processing ─────────────────────────────────────────────────

    def _process_impl(self, event: DetectionEvent) -> Tuple[List[str], List[Callable[[], None]]]:
        now = event.timestamp
        deferred: List[Callable[[], None]] = []
        self.events_processed += 1

        self._expire_due(now, deferred)
        self._maybe_cleanup(now)

        camera = self._graph.get_camera(event.camera_id)
        if camera is None:
            logger.debug("Ignoring event from camera %s not in topology", event.camera_id)
            return [], deferred

        sightings: List[Sighting] = []
        for det in event.objects:
            if det.score < self.config.min_detection_score:
                continue
            if not camera.tracks_class(det.class_name):
                continue
            sightings.append(Sighting(
                camera_id=camera.device_id,
                camera_name=camera.name,
                timestamp=now,
                class_name=det.class_name,
                label=det.label,
                score=det.score,
                bbox=det.bbox,
                embedding=decode_embedding(det.embedding),
                track_id=det.id,
            ))
        if not sightings:
            return [], deferred

        assigned: Dict[int, str] = {}
        claimed: set = set()

        # ── Phase 1: continuing camera-local tracks ─────────────────────
        for i, s in enumerate(sightings):
            obj = self.registry.lookup_track(s.camera_id, s.track_id)
            if obj is not None and obj.state == ObjectState.DETECTED \
                    and obj.current_camera_id == s.camera_id and obj.global_id not in claimed:
                self._extend(obj, s, deferred)
                assigned[i] = obj.global_id
                claimed.add(obj.global_id)

        # ── Phase 2: same-camera continuation by position ───────────────
        remaining = [i for i in range(len(sightings)) if i not in assigned]
        present = [o for o in self.registry.get_on_camera(camera.device_id)
                   if o.state == ObjectState.DETECTED and o.global_id not in claimed]
        if remaining and present:
            for i, obj in self._assign_on_camera([sightings[i] for i in remaining], remaining, present):
                self._extend(obj, sightings[i], deferred)
                assigned[i] = obj.global_id
                claimed.add(obj.global_id)

        # ── Phase 3: cross-camera correlation or new object ─────────────
        for i, s in enumerate(sightings):
            if i in assigned:
                continue
            best = self._best_candidate(s, now)
            if best is not None:
                cand, window, factors = best
                self._complete_transit(cand, window, s, factors, deferred)
                assigned[i] = cand.global_id
            else:
                obj = self._create_object(s, camera.is_entry_point, deferred)
                assigned[i] = obj.global_id

        return [assigned[i] for i in sorted(assigned)], deferred

    def _assign_on_camera(
        self, sightings: List[Sighting], indices: List[int], present: List[TrackedObject],
    ) -> List[Tuple[int, TrackedObject]]:
        cost = np.full((len(sightings), len(present)), _BLOCKED)
        for r, s in enumerate(sightings):
            for c, obj in enumerate(present):
                if class_score(obj.class_name, obj.label, s.class_name, s.label) == 0.0:
                    continue
                last = obj.last_sighting
                if last is not None and last.track_id and s.track_id and last.track_id != s.track_id:
                    continue
                if last is None or last.position is None or s.position is None:
                    cost[r, c] = CONTINUATION_MAX_DISTANCE
                else:
                    cost[r, c] = float(np.hypot(last.position[0] - s.position[0],
                                                last.position[1] - s.position[1]))
        rows, cols = linear_sum_assignment(cost)
        return [
            (indices[r], present[c]) for r, c in zip(rows, cols)
            if cost[r, c] <= CONTINUATION_MAX_DISTANCE
        ]

    def _extend(self, obj: TrackedObject, sighting: Sighting, deferred: list):
        self.registry.add_sighting(obj.global_id, sighting)
        self._schedule_departure(obj)

        if obj.dwell_time >= self.config.loitering_threshold_ms \
                and self._cooldown_elapsed(obj, 'loitering', sighting.timestamp):
            details = {
                'camera_id': sighting.camera_id,
                'camera_name': sighting.camera_name,
                'dwell_time_ms': obj.dwell_time,
            }
            deferred.append(self._alert_task(AlertType.DWELL_TIME, obj, details, sighting.timestamp))

    def _best_candidate(
        self, sighting: Sighting, now: float,
    ) -> Optional[Tuple[TransitCandidate, ArrivalWindow, CorrelationFactors]]:
        best = None
        best_conf = self.config.correlation_threshold
        for cand in self._candidates.values():
            window = cand.windows.get(sighting.camera_id)
            if window is None or not window.contains(now):
                continue
            obj = self.registry.get(cand.global_id)
            if obj is None:
                continue

            dep = cand.departure_time
            connection = self._current_connection(window)
            transit = connection.transit_time
            last = obj.last_sighting
            factors = CorrelationFactors(
                timing=timing_score(now - dep, window.start - dep, transit.typical, window.end - dep),
                visual=visual_score(obj.visual_descriptor, sighting.embedding,
                                    self.config.use_visual_matching),
                spatial=spatial_score(
                    last.position if last else None, sighting.position, connection,
                    reverse=connection.from_camera_id != cand.from_camera_id,
                ),
                class_match=class_score(obj.class_name, obj.label, sighting.class_name, sighting.label),
            )
            conf = factors.confidence
            logger.debug(
                "Candidate %s %s->%s: %s", cand.global_id, cand.from_camera_id,
                sighting.camera_id, factors.to_dict(),
            )
            if conf >= best_conf and (best is None or conf > best[2].confidence):
                best = (cand, window, factors)
        return best

    def _complete_transit(
        self,
        cand: TransitCandidate,
        window: ArrivalWindow,
        sighting: Sighting,
        factors: CorrelationFactors,
        deferred: list,
    ):
        now = sighting.timestamp
        self._drop_candidate(cand)
        gid = cand.global_id
        elapsed = now - cand.departure_time

        self.registry.reactivate(gid, now)
        obj = self.registry.add_sighting(gid, sighting)
        from_name = self._graph.camera_name(cand.from_camera_id)
        self.registry.add_journey_segment(gid, JourneySegment(
            from_camera_id=cand.from_camera_id,
            from_camera_name=from_name,
            to_camera_id=sighting.camera_id,
            to_camera_name=sighting.camera_name,
            exit_time=cand.departure_time,
            entry_time=now,
            transit_duration=elapsed,
            correlation_confidence=factors.confidence,
        ))
        self.cross_camera_matches += 1
        logger.info(
            "Matched %s: %s -> %s after %.1fs (confidence %.2f)",
            gid, from_name, sighting.camera_name, elapsed / 1000, factors.confidence,
        )

        if self.learner.enabled:
            self.learner.record(cand.from_camera_id, sighting.camera_id, elapsed)
            connection = self._current_connection(window)
            refined = self.learner.refine(connection.transit_time, elapsed)
            if refined != connection.transit_time:
                self._set_transit_time(connection.id, refined)

        self._schedule_departure(obj)

        if self._cooldown_elapsed(obj, 'movement', now):
            details = {
                'camera_id': sighting.camera_id,
                'camera_name': sighting.camera_name,
                'from_camera_id': cand.from_camera_id,
                'from_camera_name': from_name,
                'transit_time_ms': elapsed,
                'confidence': round(factors.confidence, 3),
            }
            ctx = MovementContext(
                global_id=gid,
                class_name=obj.class_name,
                label=obj.label,
                from_camera_id=cand.from_camera_id,
                from_camera_name=from_name,
                to_camera_id=sighting.camera_id,
                to_camera_name=sighting.camera_name,
                transit_ms=elapsed,
                topology_summary=describe_topology(self._graph.topology),
            )
            deferred.append(self._movement_task(obj, details, ctx, now))
            if self.landmark_advisor is not None and self.landmarks.enabled and self.runner is not None:
                deferred.append(self._landmark_task(sighting))

    def _create_object(self, sighting: Sighting, entry_point: bool, deferred: list) -> TrackedObject:
        obj = self.registry.create(sighting)
        logger.info("New object %s (%s) on %s", obj.global_id, obj.class_name, sighting.camera_name)
        self._schedule_departure(obj)

        if entry_point:
            details = {'camera_id': sighting.camera_id, 'camera_name': sighting.camera_name}
            deferred.append(self._alert_task(AlertType.PROPERTY_ENTRY, obj, details, sighting.timestamp))

        if self.suggester.enabled:
            self._observe_unexplained(sighting)
        return obj

    def _observe_unexplained(self, sighting: Sighting):
        """Feed departures without an edge to this camera into the suggestion generator."""
        now = sighting.timestamp
        latest: Dict[str, TransitCandidate] = {}
        for cand in self._candidates.values():
            if cand.from_camera_id == sighting.camera_id:
                continue
            elapsed = now - cand.departure_time
            if elapsed <= 0 or elapsed > self.config.correlation_window_ms:
                continue
            if self._graph.find_connection(cand.from_camera_id, sighting.camera_id) is not None:
                continue
            obj = self.registry.get(cand.global_id)
            if obj is None or obj.class_name != sighting.class_name:
                continue
            prev = latest.get(cand.from_camera_id)
            if prev is None or cand.departure_time > prev.departure_time:
                latest[cand.from_camera_id] = cand

        for from_camera, cand in latest.items():
            suggestion = self.suggester.observe(
                from_camera, self._graph.camera_name(from_camera),
                sighting.camera_id, sighting.camera_name,
                now - cand.departure_time, now,
            )
            if suggestion is not None and self.suggester.should_auto_accept(suggestion):
                self._accept_connection_impl(suggestion)
                logger.info("Auto-accepted connection %s", suggestion.id)

    # ── departures & transit resolution ──────────────────────────────────

    def _schedule_departure(self, obj: TrackedObject):
        gid = obj.global_id
        old = self._departure_timers.pop(gid, None)
        if old is not None:
            old.cancel()
        when = obj.last_seen + self.config.departure_grace_ms
        slot: List[TimerHandle] = []
        handle = self.scheduler.call_at(when, lambda: self._on_departure_timer(gid, slot))
        slot.append(handle)
        self._departure_timers[gid] = handle

    def _on_departure_timer(self, gid: str, slot: List[TimerHandle]):
        # Timers are armed under the lock, so the slot is filled once it is acquired
        with self._lock:
            if not self._running or not slot or self._departure_timers.get(gid) is not slot[0]:
                return
            deferred: List[Callable[[], None]] = []
            self._fire_departure(gid, self.scheduler.now(), deferred)
        self._run_deferred(deferred)

    def _fire_departure(self, gid: str, now: float, deferred: list):
        self._departure_timers.pop(gid, None)
        obj = self.registry.get(gid)
        if obj is None or obj.state != ObjectState.DETECTED:
            return
        self.registry.mark_in_transit(gid, obj.last_seen + self.config.departure_grace_ms)
        self._open_candidate(obj, now, deferred)

    def _open_candidate(self, obj: TrackedObject, now: float, deferred: list):
        departure = obj.last_seen
        from_camera = obj.current_camera_id
        windows: Dict[str, ArrivalWindow] = {}
        for target, conn in self._graph.reachable_from(from_camera).items():
            start = departure + conn.transit_time.min
            end = departure + min(conn.transit_time.max, self.config.correlation_window_ms)
            if end >= start:
                windows[target] = ArrivalWindow(target, start, end, conn)

        camera = self._graph.get_camera(from_camera)
        last = obj.last_sighting
        if camera is not None and camera.is_exit_point and \
                is_near_frame_edge(last.position if last else None):
            deadline = departure + self.config.correlation_window_ms
            resolution = ObjectState.EXITED
        else:
            deadline = departure + self.config.lost_timeout_ms
            resolution = ObjectState.LOST

        cand = TransitCandidate(obj.global_id, from_camera, departure, windows, deadline, resolution)
        self._candidates[obj.global_id] = cand
        logger.debug(
            "%s departed %s; %d arrival window(s), resolves %s at %.0f",
            obj.global_id, from_camera, len(windows), resolution.value, deadline,
        )

        if deadline <= now:
            self._resolve_candidate(cand, deferred)
            return
        slot: List[TimerHandle] = []
        cand.timer = self.scheduler.call_at(
            deadline, lambda: self._on_candidate_timer(obj.global_id, slot),
        )
        slot.append(cand.timer)

    def _on_candidate_timer(self, gid: str, slot: List[TimerHandle]):
        with self._lock:
            cand = self._candidates.get(gid)
            if not self._running or cand is None or not slot or cand.timer is not slot[0]:
                return
            deferred: List[Callable[[], None]] = []
            self._resolve_candidate(cand, deferred)
        self._run_deferred(deferred)

    def _resolve_candidate(self, cand: TransitCandidate, deferred: list):
        self._drop_candidate(cand)
        obj = self.registry.get(cand.global_id)
        if obj is None or obj.state != ObjectState.IN_TRANSIT:
            return
        camera_name = self._graph.camera_name(cand.from_camera_id)
        details = {'camera_id': cand.from_camera_id, 'camera_name': camera_name}
        if cand.resolution == ObjectState.EXITED:
            self.registry.mark_exited(obj.global_id, cand.deadline)
            logger.info("%s exited via %s", obj.global_id, camera_name)
            deferred.append(self._alert_task(AlertType.PROPERTY_EXIT, obj, details, cand.deadline))
        else:
            self.registry.mark_lost(obj.global_id, cand.deadline)
            logger.info("%s lost after %s", obj.global_id, camera_name)
            deferred.append(self._alert_task(AlertType.LOST_TRACKING, obj, details, cand.deadline))

    def _drop_candidate(self, cand: TransitCandidate):
        if self._candidates.get(cand.global_id) is cand:
            del self._candidates[cand.global_id]
        if cand.timer is not None:
            cand.timer.cancel()

    def _expire_due(self, now: float, deferred: list):
        """Apply departures and resolutions that are due but whose timers have not run yet."""
        for gid, handle in list(self._departure_timers.items()):
            if handle.when <= now:
                handle.cancel()
                self._fire_departure(gid, now, deferred)
        for cand in list(self._candidates.values()):
            if cand.deadline <= now:
                self._resolve_candidate(cand, deferred)

    def _rearm_impl(self, now: float) -> List[Callable[[], None]]:
        deferred: List[Callable[[], None]] = []
        for obj in self.registry.get_by_state(ObjectState.DETECTED):
            self._schedule_departure(obj)
        for obj in self.registry.get_by_state(ObjectState.IN_TRANSIT):
            self._open_candidate(obj, now, deferred)
        return deferred

    def _maybe_cleanup(self, now: float):
        if self._last_cleanup is None or now - self._last_cleanup >= CLEANUP_INTERVAL_MS:
            self._last_cleanup = now
            self.registry.cleanup(now)

    # ── topology changes ─────────────────────────────────────────────────

    def _commit(self, edit: Callable[[Topology], None]):
        if self.repository is not None:
            with self.repository.mutate() as working:
                edit(working)
            topology = self.repository.topology
        else:
            working = self._graph.topology.model_copy(deep=True)
            edit(working)
            topology = Topology.from_blob(working)
        self._graph = TopologyGraph(topology)

    def _set_transit_time(self, connection_id: str, transit: TransitTime):
        def edit(topology: Topology):
            for conn in topology.connections:
                if conn.id == connection_id:
                    conn.transit_time = transit
        self._commit(edit)
        logger.debug("Learned transit for %s: %s", connection_id, transit.model_dump())

    def _accept_connection_impl(self, suggestion: ConnectionSuggestion) -> Connection:
        from_cam = self._graph.get_camera(suggestion.from_camera_id)
        to_cam = self._graph.get_camera(suggestion.to_camera_id)
        if from_cam is None or to_cam is None:
            missing = suggestion.from_camera_id if from_cam is None else suggestion.to_camera_id
            raise CameraNotFoundError(f"camera {missing!r} not in topology")

        connection = Connection(
            id=f"conn-{int(self.scheduler.now())}-{uuid.uuid4().hex[:6]}",
            from_camera_id=from_cam.device_id,
            to_camera_id=to_cam.device_id,
            name=f"{from_cam.name} to {to_cam.name}",
            bidirectional=True,
            transit_time=suggestion.transit_time,
        )
        self._commit(lambda topology: topology.connections.append(connection))
        self.suggester.accept(suggestion.id)
        logger.info("Connection accepted: %s", connection.name)
        return connection

    def _add_landmark(self, landmark: Landmark):
        self._commit(lambda topology: topology.landmarks.append(landmark))

    # ── deferred work (runs without the lock) ────────────────────────────

    def _cooldown_elapsed(self, obj: TrackedObject, kind: str, now: float) -> bool:
        last = obj.alerted_at.get(kind)
        if last is not None and now - last < self.config.object_alert_cooldown_ms:
            return False
        obj.alerted_at[kind] = now
        return True

    def _alert_task(self, alert_type: AlertType, obj: TrackedObject, details: dict, now: float):
        def task():
            if self.alert_manager is not None:
                self.alert_manager.check_and_alert(alert_type, obj, details, now)
        return task

    def _movement_task(self, obj: TrackedObject, details: dict, ctx: MovementContext, now: float):
        def task():
            if self.descriptions is not None:
                description = self.descriptions.describe(ctx)
                if description is not None:
                    details['description'] = description.text
                    details['used_ai'] = description.used_ai
            if self.alert_manager is not None:
                self.alert_manager.check_and_alert(AlertType.MOVEMENT, obj, details, now)
        if self.runner is not None and self.descriptions is not None and self.descriptions.uses_ai:
            return lambda: self.runner.dispatch(task)
        return task

    def _landmark_task(self, sighting: Sighting):
        camera_id = sighting.camera_id
        position = sighting.position or (0.5, 0.5)

        def task():
            try:
                proposal = self.runner.run(
                    self.landmark_advisor.suggest_landmark,
                    camera_id, sighting.class_name, {'x': position[0], 'y': position[1]},
                )
            except Exception as e:
                logger.warning("Landmark suggestion failed for %s: %s", camera_id, e)
                return
            if not proposal or not proposal.get('name') or not proposal.get('type'):
                return
            if not self._running:
                return
            try:
                self.submit_landmark_suggestion(
                    proposal['name'], proposal['type'], camera_id,
                    description=proposal.get('description', ''),
                    confidence=float(proposal.get('confidence', 0.7)),
                )
            except ValueError as e:
                logger.warning("Discarding invalid landmark proposal %r: %s", proposal, e)
        return lambda: self.runner.dispatch(task)

    def _run_deferred(self, deferred: List[Callable[[], None]]):
        for task in deferred:
            try:
                task()
            except Exception:
                logger.exception("Deferred task failed")

    def _current_connection(self, window: ArrivalWindow) -> Connection:
        """The window's connection as it stands in the current topology."""
        return self._graph.get_connection(window.connection.id) or window.connection

    def _camera_position(self, camera_id: str) -> Optional[Dict[str, float]]:
        camera = self._graph.get_camera(camera_id)
        if camera is None or camera.floor_plan_position is None:
            return None
        return camera.floor_plan_position.model_dump()
