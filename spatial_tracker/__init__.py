"""
Spatial tracker.
Cross-camera object correlation over a learned camera topology, with guided
training and scene-analysis discovery.
"""

from .config import AppConfig, TrackingConfig, DiscoveryConfig, TrainingConfig, load_config
from .exceptions import (
    SpatialTrackerError, TopologyValidationError, CameraNotFoundError,
    SuggestionNotFoundError, TrainingSessionError, EngineStateError,
    CapabilityTimeoutError,
)
from .service import SpatialAwarenessService


__version__ = "0.1.0"

__all__ = [
    # Config
    'AppConfig',
    'TrackingConfig',
    'DiscoveryConfig',
    'TrainingConfig',
    'load_config',
    # Errors
    'SpatialTrackerError',
    'TopologyValidationError',
    'CameraNotFoundError',
    'SuggestionNotFoundError',
    'TrainingSessionError',
    'EngineStateError',
    'CapabilityTimeoutError',
    # Service
    'SpatialAwarenessService',
]
