"""Custom exceptions for the spatial tracker."""


class SpatialTrackerError(Exception):
    """Base spatial tracker exception."""


class TopologyValidationError(SpatialTrackerError):
    """Raised when a topology document fails validation."""

    def __init__(self, message: str, errors=None):
        super().__init__(message)
        self.errors = errors or []


class CameraNotFoundError(SpatialTrackerError):
    """Raised when a camera reference cannot be resolved in the topology."""


class SuggestionNotFoundError(SpatialTrackerError):
    """Raised when a suggestion does not exist or is no longer pending."""


class TrainingSessionError(SpatialTrackerError):
    """Raised when a training operation is invalid for the session state."""


class EngineStateError(SpatialTrackerError):
    """Raised when the correlation engine is used outside its lifecycle."""


class CapabilityTimeoutError(SpatialTrackerError):
    """Raised when an optional AI capability does not answer in time."""
