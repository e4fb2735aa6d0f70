"""
Tracking state module.
Tracked objects, their journeys and the registry that owns them.
"""

from .models import ObjectState, Sighting, JourneySegment, TrackedObject
from .registry import TrackingRegistry


__all__ = [
    'ObjectState',
    'Sighting',
    'JourneySegment',
    'TrackedObject',
    'TrackingRegistry',
]
