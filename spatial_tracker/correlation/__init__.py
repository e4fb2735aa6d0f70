"""
Cross-camera correlation module.
Transit candidates, multi-factor scoring and the timers that resolve them.
"""

from .engine import CorrelationEngine, ArrivalWindow, TransitCandidate
from .scoring import (
    CorrelationFactors, timing_score, visual_score, spatial_score,
    class_score, cosine_similarity, decode_embedding,
)
from .timers import Scheduler, ThreadingScheduler, VirtualScheduler, TimerHandle


__all__ = [
    # Engine
    'CorrelationEngine',
    'ArrivalWindow',
    'TransitCandidate',
    # Scoring
    'CorrelationFactors',
    'timing_score',
    'visual_score',
    'spatial_score',
    'class_score',
    'cosine_similarity',
    'decode_embedding',
    # Timers
    'Scheduler',
    'ThreadingScheduler',
    'VirtualScheduler',
    'TimerHandle',
]
