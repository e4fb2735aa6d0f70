"""
Spatial awareness service.

In-process facade used by the transport/UI layer.  Owns the topology
repository, the tracking registry, the learners and the current
:class:`CorrelationEngine`, and restarts the engine atomically whenever
the topology is changed from outside it.
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from .alerts.manager import Alert, AlertManager
from .capabilities import (
    CapabilityRunner, DescriptionService, LandmarkAdvisor, MovementDescriber, SceneAnalyzer,
)
from .config import AppConfig
from .correlation.engine import CorrelationEngine
from .correlation.timers import Scheduler, ThreadingScheduler
from .discovery.service import DiscoveryService
from .events import parse_detection_event
from .exceptions import EngineStateError
from .learning.suggestions import LandmarkSuggestionTracker
from .learning.transit_learner import ConnectionSuggestionGenerator, TransitTimeLearner
from .topology.graph import infer_relationships
from .topology.models import Connection, Topology
from .topology.repository import TopologyRepository
from .tracking.registry import TrackingRegistry
from .training.session import TrainingApplyResult, TrainingSessionManager

logger = logging.getLogger(__name__)


class SpatialAwarenessService:
    """Cross-camera tracking, training and discovery behind one API."""

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        repository: Optional[TopologyRepository] = None,
        scheduler: Optional[Scheduler] = None,
        alert_manager: Optional[AlertManager] = None,
        describer: Optional[MovementDescriber] = None,
        landmark_advisor: Optional[LandmarkAdvisor] = None,
        scene_analyzer: Optional[SceneAnalyzer] = None,
    ):
        self.config = config or AppConfig()
        tracking = self.config.tracking
        discovery = self.config.discovery

        self.repository = repository or TopologyRepository()
        self.scheduler = scheduler or ThreadingScheduler()
        self.registry = TrackingRegistry(retention_ms=tracking.retention_ms)
        self.alert_manager = alert_manager or AlertManager()

        # Learned state survives engine restarts
        self.learner = TransitTimeLearner(
            tracking.transit_learning_rate, enabled=tracking.enable_transit_time_learning,
        )
        self.suggester = ConnectionSuggestionGenerator(
            min_observations=tracking.min_observations_for_suggestion,
            min_confidence=discovery.min_connection_confidence,
            auto_accept_threshold=discovery.auto_accept_threshold,
            enabled=tracking.enable_connection_suggestions,
        )
        self.landmarks = LandmarkSuggestionTracker(
            confidence_threshold=tracking.landmark_confidence_threshold,
            auto_accept_threshold=discovery.auto_accept_threshold,
            enabled=tracking.enable_landmark_learning,
        )

        self.runner = CapabilityRunner(
            max_workers=discovery.max_workers, timeout_ms=tracking.llm_fallback_timeout_ms,
        )
        self.descriptions = DescriptionService(
            describer,
            self.runner,
            clock=self.scheduler.now,
            enabled=tracking.use_llm_descriptions,
            debounce_ms=tracking.llm_debounce_interval_ms,
            fallback_enabled=tracking.llm_fallback_enabled,
            timeout_ms=tracking.llm_fallback_timeout_ms,
        )
        self.landmark_advisor = landmark_advisor

        self.discovery = DiscoveryService(
            self.repository, discovery, scene_analyzer, self.runner, clock=self.scheduler.now,
        )
        self.training = TrainingSessionManager(
            self.repository, self.config.training, self.learner, clock=self.scheduler.now,
        )

        self.engine: Optional[CorrelationEngine] = None
        self._engine_lock = threading.RLock()
        self._topology_change_callback: Optional[Callable[[Topology], None]] = None
        self.repository.subscribe(self._on_topology_committed)

    # ── lifecycle ────────────────────────────────────────────────────────

    def start(self):
        with self._engine_lock:
            if self.engine is not None and self.engine.is_running:
                raise EngineStateError("service already started")
            self.engine = self._build_engine()
            self.engine.start()
        logger.info("Spatial awareness service started")

    def stop(self):
        with self._engine_lock:
            if self.engine is not None:
                self.engine.stop()
        logger.info("Spatial awareness service stopped")

    def close(self):
        self.stop()
        self.runner.shutdown()

    @property
    def is_running(self) -> bool:
        return self.engine is not None and self.engine.is_running

    def _build_engine(self) -> CorrelationEngine:
        return CorrelationEngine(
            self.repository.topology,
            self.config.tracking,
            self.registry,
            self.scheduler,
            alert_manager=self.alert_manager,
            learner=self.learner,
            suggester=self.suggester,
            landmarks=self.landmarks,
            repository=self.repository,
            descriptions=self.descriptions,
            landmark_advisor=self.landmark_advisor,
            runner=self.runner,
        )

    def _restart_engine(self):
        """Stop the running engine, then start one on the current topology."""
        with self._engine_lock:
            if self.engine is None or not self.engine.is_running:
                return
            self.engine.stop()
            self.engine = self._build_engine()
            self.engine.start()
        logger.info("Correlation engine restarted on updated topology")

    def _require_engine(self) -> CorrelationEngine:
        engine = self.engine
        if engine is None:
            raise EngineStateError("service not started")
        return engine

    # ── topology ─────────────────────────────────────────────────────────

    @property
    def topology(self) -> Topology:
        return self.repository.topology

    def update_topology(self, topology: Any) -> Topology:
        """
        Replace the whole topology document.

        Raises TopologyValidationError for a malformed document; the engine
        then keeps running on the previous topology.
        """
        validated = self.repository.replace(topology)
        self._restart_engine()
        return validated

    def set_topology_change_callback(self, callback: Optional[Callable[[Topology], None]]):
        """Called after every committed topology change, including learned ones."""
        self._topology_change_callback = callback

    def subscribe_topology(self, callback: Callable[[Topology], None]) -> Callable[[], None]:
        return self.repository.subscribe(callback)

    def infer_relationships(self) -> List[Connection]:
        """Candidate connections from floor-plan geometry. Nothing is committed."""
        return infer_relationships(
            self.repository.topology,
            proximity_feet=self.config.discovery.proximity_feet,
            walking_speed_fps=self.config.discovery.walking_speed_fps,
        )

    def _on_topology_committed(self, topology: Topology):
        callback = self._topology_change_callback
        if callback is not None:
            callback(topology)

    # ── detections & live state ──────────────────────────────────────────

    def handle_detection_event(self, raw: Any) -> List[str]:
        """Feed one detection event to training and correlation."""
        event = parse_detection_event(raw)
        if event is None:
            return []
        self.training.record_detection(event)
        with self._engine_lock:
            if self.engine is None:
                return []
            return self.engine.process_event(event)

    def get_live_tracking_state(self) -> Dict[str, Any]:
        return self._require_engine().get_live_tracking_state()

    def get_journey_path(self, global_id: str) -> Optional[Dict[str, Any]]:
        return self._require_engine().get_journey_path(global_id)

    def get_recent_alerts(self, limit: Optional[int] = None) -> List[Alert]:
        return self.alert_manager.get_recent_alerts(limit)

    # ── learned suggestions ──────────────────────────────────────────────

    def get_pending_landmark_suggestions(self):
        return self._require_engine().get_pending_landmark_suggestions()

    def accept_landmark_suggestion(self, suggestion_id: str):
        landmark = self._require_engine().accept_landmark_suggestion(suggestion_id)
        self._restart_engine()
        return landmark

    def reject_landmark_suggestion(self, suggestion_id: str):
        return self._require_engine().reject_landmark_suggestion(suggestion_id)

    def get_connection_suggestions(self):
        return self._require_engine().get_connection_suggestions()

    def accept_connection_suggestion(self, suggestion_id: str) -> Connection:
        connection = self._require_engine().accept_connection_suggestion(suggestion_id)
        self._restart_engine()
        return connection

    def reject_connection_suggestion(self, suggestion_id: str):
        return self._require_engine().reject_connection_suggestion(suggestion_id)

    # ── discovery ────────────────────────────────────────────────────────

    def get_discovery_suggestions(self):
        return self.discovery.get_suggestions()

    def accept_discovery_suggestion(self, suggestion_id: str):
        item = self.discovery.accept(suggestion_id)
        if item is not None:
            self._restart_engine()
        return item

    def reject_discovery_suggestion(self, suggestion_id: str):
        return self.discovery.reject(suggestion_id)

    def run_discovery(self) -> Dict[str, Any]:
        return self.discovery.run_discovery()

    def get_discovery_status(self) -> Dict[str, Any]:
        return self.discovery.get_status()

    # ── training ─────────────────────────────────────────────────────────

    def start_training_session(self, trainer_name: Optional[str] = None,
                               config: Optional[Dict[str, Any]] = None):
        return self.training.start(trainer_name, config)

    def pause_training_session(self):
        return self.training.pause()

    def resume_training_session(self):
        return self.training.resume()

    def end_training_session(self):
        return self.training.end()

    def mark_training_landmark(self, data: Dict[str, Any]):
        return self.training.mark_landmark(data)

    def get_training_status(self) -> Dict[str, Any]:
        return self.training.get_status()

    def apply_training_to_topology(self) -> TrainingApplyResult:
        result = self.training.apply_to_topology()
        changed = (result.connections_created + result.connections_updated
                   + result.landmarks_added + result.zones_created)
        if result.success and changed:
            self._restart_engine()
        return result

    def reset_training_session(self):
        self.training.reset()

    # ── stats ────────────────────────────────────────────────────────────

    def get_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {
            'running': self.is_running,
            'alerts': self.alert_manager.alert_count,
            'transit_learning': self.learner.get_stats(),
            'training_state': self.training.state.value,
            'discovery': self.discovery.get_status(),
        }
        if self.engine is not None:
            stats['engine'] = self.engine.get_stats()
        return stats
