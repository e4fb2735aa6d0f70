"""
Learning module.
Transit-time refinement and connection / landmark suggestions.
"""

from .suggestions import (
    SuggestionStatus, SuggestionBook,
    ConnectionSuggestion, LandmarkSuggestion, LandmarkSuggestionTracker,
)
from .transit_learner import (
    TransitTimeLearner, ConnectionSuggestionGenerator,
    transit_confidence, percentile_transit,
)


__all__ = [
    # Suggestions
    'SuggestionStatus',
    'SuggestionBook',
    'ConnectionSuggestion',
    'LandmarkSuggestion',
    'LandmarkSuggestionTracker',
    # Learners
    'TransitTimeLearner',
    'ConnectionSuggestionGenerator',
    'transit_confidence',
    'percentile_transit',
]
