"""
Suggestions proposed by the learner for a human (or the auto-accept
threshold) to confirm.

Status is one-way: ``pending`` → ``accepted`` | ``rejected``, set exactly
once.  Resolving a suggestion that is missing or no longer pending raises
:class:`SuggestionNotFoundError`.
"""

import logging
import math
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Generic, List, Optional, TypeVar

from ..exceptions import SuggestionNotFoundError
from ..topology.models import Landmark, Point, TransitTime

logger = logging.getLogger(__name__)

SIMILAR_POSITION_PX = 100.0
CONFIDENCE_STEP = 0.05
CONFIDENCE_CAP = 0.95


class SuggestionStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass
class ConnectionSuggestion:
    """A camera pair observed repeatedly without a topology edge."""
    id: str
    from_camera_id: str
    from_camera_name: str
    to_camera_id: str
    to_camera_name: str
    transit_time: TransitTime
    observation_count: int
    confidence: float
    created_at: float
    updated_at: float
    status: SuggestionStatus = SuggestionStatus.PENDING

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'from_camera_id': self.from_camera_id,
            'from_camera_name': self.from_camera_name,
            'to_camera_id': self.to_camera_id,
            'to_camera_name': self.to_camera_name,
            'transit_time': self.transit_time.model_dump(),
            'observation_count': self.observation_count,
            'confidence': round(self.confidence, 3),
            'status': self.status.value,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }


@dataclass
class LandmarkSuggestion:
    """An AI-proposed landmark awaiting confirmation."""
    id: str
    landmark: Landmark
    detected_by_cameras: List[str]
    created_at: float
    detection_count: int = 1
    status: SuggestionStatus = SuggestionStatus.PENDING

    @property
    def confidence(self) -> float:
        return self.landmark.ai_confidence or 0.0

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'landmark': self.landmark.model_dump(mode="json", by_alias=True),
            'detected_by_cameras': list(self.detected_by_cameras),
            'detection_count': self.detection_count,
            'confidence': round(self.confidence, 3),
            'status': self.status.value,
            'created_at': self.created_at,
        }


S = TypeVar("S")


class SuggestionBook(Generic[S]):
    """Id-keyed store of suggestions with one-shot resolution."""

    def __init__(self):
        self._items: Dict[str, S] = {}

    def get(self, suggestion_id: str) -> Optional[S]:
        return self._items.get(suggestion_id)

    def put(self, suggestion: S):
        self._items[suggestion.id] = suggestion

    def pending(self) -> List[S]:
        return [s for s in self._items.values() if s.status == SuggestionStatus.PENDING]

    def all(self) -> List[S]:
        return list(self._items.values())

    def require_pending(self, suggestion_id: str) -> S:
        suggestion = self._items.get(suggestion_id)
        if suggestion is None or suggestion.status != SuggestionStatus.PENDING:
            raise SuggestionNotFoundError(f"suggestion {suggestion_id!r} not found")
        return suggestion

    def resolve(self, suggestion_id: str, status: SuggestionStatus) -> S:
        suggestion = self.require_pending(suggestion_id)
        suggestion.status = status
        logger.info("Suggestion %s %s", suggestion_id, status.value)
        return suggestion

    def __len__(self) -> int:
        return len(self._items)


class LandmarkSuggestionTracker:
    """
    Collects landmark suggestions, merging repeats of the same landmark.

    A suggestion is similar when one name contains the other and the
    positions lie within 100 floor-plan pixels; a repeat bumps its
    confidence by 0.05 (capped at 0.95).
    """

    def __init__(
        self,
        confidence_threshold: float = 0.7,
        auto_accept_threshold: float = 0.85,
        enabled: bool = True,
    ):
        self.confidence_threshold = confidence_threshold
        self.auto_accept_threshold = auto_accept_threshold
        self.enabled = enabled
        self.book: SuggestionBook[LandmarkSuggestion] = SuggestionBook()

    def submit(
        self,
        name: str,
        landmark_type: str,
        camera_id: str,
        position: Point,
        now: float,
        description: str = "",
        confidence: float = 0.7,
    ) -> Optional[LandmarkSuggestion]:
        """Record a proposed landmark. Returns the new or merged suggestion."""
        if not self.enabled:
            return None

        existing = self._find_similar(name, position)
        if existing is not None:
            existing.detection_count += 1
            existing.landmark.ai_confidence = min(
                CONFIDENCE_CAP, existing.confidence + CONFIDENCE_STEP
            )
            if camera_id not in existing.detected_by_cameras:
                existing.detected_by_cameras.append(camera_id)
            if camera_id not in existing.landmark.visible_from_cameras:
                existing.landmark.visible_from_cameras.append(camera_id)
            return existing

        suffix = uuid.uuid4().hex[:6]
        suggestion = LandmarkSuggestion(
            id=f"suggest_{int(now)}_{suffix}",
            landmark=Landmark(
                id=f"landmark_{int(now)}_{suffix}",
                name=name,
                type=landmark_type,
                position=position,
                description=description,
                visible_from_cameras=[camera_id],
                ai_suggested=True,
                ai_confidence=min(CONFIDENCE_CAP, max(0.0, confidence)),
            ),
            detected_by_cameras=[camera_id],
            created_at=now,
        )
        self.book.put(suggestion)
        logger.info("Landmark suggested: %s (%s) from %s", name, landmark_type, camera_id)
        return suggestion

    def should_auto_accept(self, suggestion: LandmarkSuggestion) -> bool:
        return (suggestion.status == SuggestionStatus.PENDING
                and suggestion.confidence >= self.auto_accept_threshold)

    def get_pending(self) -> List[LandmarkSuggestion]:
        visible = [s for s in self.book.pending() if s.confidence >= self.confidence_threshold]
        return sorted(visible, key=lambda s: s.detection_count, reverse=True)

    def accept(self, suggestion_id: str, commit: Callable[[Landmark], None]) -> Landmark:
        """Commit the landmark, then mark accepted. A failed commit leaves it pending."""
        suggestion = self.book.require_pending(suggestion_id)
        landmark = suggestion.landmark.model_copy(deep=True)
        commit(landmark)
        self.book.resolve(suggestion_id, SuggestionStatus.ACCEPTED)
        return landmark

    def reject(self, suggestion_id: str) -> LandmarkSuggestion:
        return self.book.resolve(suggestion_id, SuggestionStatus.REJECTED)

    def _find_similar(self, name: str, position: Point) -> Optional[LandmarkSuggestion]:
        lowered = name.lower()
        for suggestion in self.book.pending():
            other = suggestion.landmark.name.lower()
            dist = math.hypot(suggestion.landmark.position.x - position.x,
                              suggestion.landmark.position.y - position.y)
            if (other in lowered or lowered in other) and dist < SIMILAR_POSITION_PX:
                return suggestion
        return None
