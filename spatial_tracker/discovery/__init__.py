"""
Discovery module.
Scene-analysis suggestions and their projection onto the floor plan.
"""

from .models import (
    SceneAnalysis, DiscoveredLandmark, DiscoveredZone, EdgeAnalysis,
    SharedLandmark, SuggestedConnection, TopologyCorrelation, DiscoverySuggestion,
)
from .projection import (
    distance_to_feet, zone_default_feet, place_landmark, zone_wedge, grid_position,
)
from .service import DiscoveryService


__all__ = [
    # Models
    'SceneAnalysis',
    'DiscoveredLandmark',
    'DiscoveredZone',
    'EdgeAnalysis',
    'SharedLandmark',
    'SuggestedConnection',
    'TopologyCorrelation',
    'DiscoverySuggestion',
    # Projection
    'distance_to_feet',
    'zone_default_feet',
    'place_landmark',
    'zone_wedge',
    'grid_position',
    # Service
    'DiscoveryService',
]
