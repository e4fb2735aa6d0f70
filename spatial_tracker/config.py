"""
Configuration for the spatial tracker.

YAML files use seconds (``*_sec`` keys); every duration is converted to
milliseconds once, here, because timestamps in detection events and the
persisted topology are epoch milliseconds.

Example ``configs/default.yaml``::

    tracking:
      correlation_window_sec: 30
      correlation_threshold: 0.6
      lost_timeout_sec: 300
    discovery:
      auto_accept_threshold: 0.85
    training:
      min_detection_confidence: 0.7
"""

import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)


def _ms(cfg: Dict[str, Any], key: str, default_sec: float) -> float:
    return float(cfg.get(key, default_sec)) * 1000.0


@dataclass
class TrackingConfig:
    """Correlation engine settings. Durations are milliseconds."""
    correlation_window_ms: float = 30_000.0
    correlation_threshold: float = 0.6
    lost_timeout_ms: float = 300_000.0
    departure_grace_ms: float = 3_000.0
    use_visual_matching: bool = True
    min_detection_score: float = 0.5
    loitering_threshold_ms: float = 3_000.0
    object_alert_cooldown_ms: float = 30_000.0
    enable_transit_time_learning: bool = True
    transit_learning_rate: float = 0.2
    enable_connection_suggestions: bool = True
    min_observations_for_suggestion: int = 2
    enable_landmark_learning: bool = True
    landmark_confidence_threshold: float = 0.7
    use_llm_descriptions: bool = True
    llm_debounce_interval_ms: float = 30_000.0
    llm_fallback_enabled: bool = True
    llm_fallback_timeout_ms: float = 3_000.0
    retention_ms: float = 86_400_000.0

    @classmethod
    def from_dict(cls, cfg: Optional[Dict[str, Any]]) -> 'TrackingConfig':
        cfg = cfg or {}
        return cls(
            correlation_window_ms=_ms(cfg, "correlation_window_sec", 30),
            correlation_threshold=float(cfg.get("correlation_threshold", 0.6)),
            lost_timeout_ms=_ms(cfg, "lost_timeout_sec", 300),
            departure_grace_ms=_ms(cfg, "departure_grace_sec", 3),
            use_visual_matching=bool(cfg.get("use_visual_matching", True)),
            min_detection_score=float(cfg.get("min_detection_score", 0.5)),
            loitering_threshold_ms=_ms(cfg, "loitering_threshold_sec", 3),
            object_alert_cooldown_ms=_ms(cfg, "object_alert_cooldown_sec", 30),
            enable_transit_time_learning=bool(cfg.get("enable_transit_time_learning", True)),
            transit_learning_rate=float(cfg.get("transit_learning_rate", 0.2)),
            enable_connection_suggestions=bool(cfg.get("enable_connection_suggestions", True)),
            min_observations_for_suggestion=int(cfg.get("min_observations_for_suggestion", 2)),
            enable_landmark_learning=bool(cfg.get("enable_landmark_learning", True)),
            landmark_confidence_threshold=float(cfg.get("landmark_confidence_threshold", 0.7)),
            use_llm_descriptions=bool(cfg.get("use_llm_descriptions", True)),
            llm_debounce_interval_ms=_ms(cfg, "llm_debounce_interval_sec", 30),
            llm_fallback_enabled=bool(cfg.get("llm_fallback_enabled", True)),
            llm_fallback_timeout_ms=_ms(cfg, "llm_fallback_timeout_sec", 3),
            retention_ms=_ms(cfg, "retention_sec", 86_400),
        )


@dataclass
class DiscoveryConfig:
    """Discovery and suggestion thresholds."""
    auto_accept_threshold: float = 0.85
    min_landmark_confidence: float = 0.6
    min_connection_confidence: float = 0.5
    max_workers: int = 2
    proximity_feet: float = 60.0
    walking_speed_fps: float = 4.0  # feet per second

    @classmethod
    def from_dict(cls, cfg: Optional[Dict[str, Any]]) -> 'DiscoveryConfig':
        cfg = cfg or {}
        return cls(
            auto_accept_threshold=float(cfg.get("auto_accept_threshold", 0.85)),
            min_landmark_confidence=float(cfg.get("min_landmark_confidence", 0.6)),
            min_connection_confidence=float(cfg.get("min_connection_confidence", 0.5)),
            max_workers=int(cfg.get("max_workers", 2)),
            proximity_feet=float(cfg.get("proximity_feet", 60.0)),
            walking_speed_fps=float(cfg.get("walking_speed_fps", 4.0)),
        )


@dataclass
class TrainingConfig:
    """Guided training session settings."""
    min_detection_confidence: float = 0.7
    trainer_class: str = "person"
    visit_gap_ms: float = 5_000.0
    max_transit_wait_ms: float = 120_000.0
    auto_detect_overlaps: bool = True

    @classmethod
    def from_dict(cls, cfg: Optional[Dict[str, Any]]) -> 'TrainingConfig':
        cfg = cfg or {}
        return cls(
            min_detection_confidence=float(cfg.get("min_detection_confidence", 0.7)),
            trainer_class=str(cfg.get("trainer_class", "person")),
            visit_gap_ms=_ms(cfg, "visit_gap_sec", 5),
            max_transit_wait_ms=_ms(cfg, "max_transit_wait_sec", 120),
            auto_detect_overlaps=bool(cfg.get("auto_detect_overlaps", True)),
        )


@dataclass
class AppConfig:
    """Top-level configuration bundle."""
    tracking: TrackingConfig = field(default_factory=TrackingConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    training: TrainingConfig = field(default_factory=TrainingConfig)

    @classmethod
    def from_dict(cls, cfg: Optional[Dict[str, Any]]) -> 'AppConfig':
        cfg = cfg or {}
        return cls(
            tracking=TrackingConfig.from_dict(cfg.get("tracking")),
            discovery=DiscoveryConfig.from_dict(cfg.get("discovery")),
            training=TrainingConfig.from_dict(cfg.get("training")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration from a YAML file. ``None`` yields defaults."""
    if path is None:
        return AppConfig()
    with open(path, 'r', encoding='utf-8') as f:
        raw = yaml.safe_load(f) or {}
    logger.info("Loaded config from %s (sections: %s)", path, sorted(raw))
    return AppConfig.from_dict(raw)
