"""
Training module.
Guided walkthrough recording and its merge into the topology.
"""

from .session import (
    TrainingSessionManager, TrainingSession, TrainingState, TrainingStats,
    TrainingApplyResult, CameraVisit, TrainingLandmark, TrainingTransit,
    calculate_stats, derive_transits, derive_overlaps,
)


__all__ = [
    'TrainingSessionManager',
    'TrainingSession',
    'TrainingState',
    'TrainingStats',
    'TrainingApplyResult',
    'CameraVisit',
    'TrainingLandmark',
    'TrainingTransit',
    'calculate_stats',
    'derive_transits',
    'derive_overlaps',
]
