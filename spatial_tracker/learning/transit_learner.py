"""
Transit-time learning
=====================

Two learners fed by the correlation engine:

* :class:`TransitTimeLearner` refines an existing connection's typical
  transit time after every successful cross-camera match.  The typical
  value follows an exponential moving average and always stays inside
  ``[min, max]``; an observation outside the bounds widens them first.

* :class:`ConnectionSuggestionGenerator` watches departures followed by an
  unmatched arrival on a camera with no topology edge between the two.
  Once a pair recurs often and consistently enough it proposes a new
  connection, with transit bounds taken from the 10th/50th/90th
  percentiles of what was observed.
"""

import logging
from collections import defaultdict, deque
from typing import Deque, Dict, List, Optional, Tuple

import numpy as np

from ..topology.models import TransitTime
from .suggestions import ConnectionSuggestion, SuggestionBook, SuggestionStatus

logger = logging.getLogger(__name__)

MAX_OBSERVATIONS = 100


class TransitTimeLearner:
    """EMA refinement of connection transit times."""

    def __init__(self, learning_rate: float = 0.2, enabled: bool = True):
        self.learning_rate = learning_rate
        self.enabled = enabled
        self._observations: Dict[Tuple[str, str], Deque[float]] = defaultdict(
            lambda: deque(maxlen=MAX_OBSERVATIONS)
        )

    def refine(self, transit: TransitTime, elapsed: float) -> TransitTime:
        """Return transit bounds updated with one observation (ms)."""
        lo = min(transit.min, elapsed)
        hi = max(transit.max, elapsed)
        typical = (1.0 - self.learning_rate) * transit.typical + self.learning_rate * elapsed
        typical = min(max(typical, lo), hi)
        return TransitTime(min=round(lo), typical=round(typical), max=round(hi))

    def record(self, from_camera: str, to_camera: str, elapsed: float):
        self._observations[(from_camera, to_camera)].append(float(elapsed))

    def observations(self, from_camera: str, to_camera: str) -> List[float]:
        return list(self._observations.get((from_camera, to_camera), ()))

    def get_stats(self) -> dict:
        pairs = {}
        for (a, b), obs in self._observations.items():
            if obs:
                pairs[f"{a}->{b}"] = {
                    'count': len(obs),
                    'mean_ms': round(float(np.mean(obs))),
                }
        return {'learning_rate': self.learning_rate, 'pairs': pairs}


def transit_confidence(times: List[float]) -> float:
    """0.6 * count factor + 0.4 * consistency (1 - coefficient of variation)."""
    arr = np.asarray(times, dtype=np.float64)
    mean = float(arr.mean())
    cov = float(arr.std()) / mean if mean > 0 else 1.0
    count_factor = min(len(arr) / 10.0, 1.0)
    consistency = max(0.0, 1.0 - cov)
    return count_factor * 0.6 + consistency * 0.4


def percentile_transit(times: List[float]) -> TransitTime:
    ordered = sorted(times)
    n = len(ordered)
    return TransitTime(
        min=round(ordered[int(n * 0.1)]),
        typical=round(ordered[int(n * 0.5)]),
        max=round(ordered[min(n - 1, int(n * 0.9))]),
    )


class ConnectionSuggestionGenerator:
    """Proposes connections for camera pairs that keep showing up without an edge."""

    def __init__(
        self,
        min_observations: int = 2,
        min_confidence: float = 0.5,
        auto_accept_threshold: float = 0.85,
        enabled: bool = True,
    ):
        self.min_observations = min_observations
        self.min_confidence = min_confidence
        self.auto_accept_threshold = auto_accept_threshold
        self.enabled = enabled
        self.book: SuggestionBook[ConnectionSuggestion] = SuggestionBook()
        self._observations: Dict[Tuple[str, str], Deque[float]] = defaultdict(
            lambda: deque(maxlen=MAX_OBSERVATIONS)
        )

    @staticmethod
    def suggestion_id(from_camera: str, to_camera: str) -> str:
        return f"suggest_{from_camera}->{to_camera}"

    def observe(
        self,
        from_camera: str,
        from_name: str,
        to_camera: str,
        to_name: str,
        elapsed: float,
        now: float,
    ) -> Optional[ConnectionSuggestion]:
        """Record one unexplained transition; returns the pending suggestion if any."""
        if not self.enabled:
            return None

        sid = self.suggestion_id(from_camera, to_camera)
        existing = self.book.get(sid)
        if existing is not None and existing.status == SuggestionStatus.ACCEPTED:
            return None

        obs = self._observations[(from_camera, to_camera)]
        obs.append(float(elapsed))
        if len(obs) < self.min_observations:
            return None

        times = list(obs)
        confidence = transit_confidence(times)
        if confidence < self.min_confidence:
            return None

        if existing is not None and existing.status == SuggestionStatus.PENDING:
            existing.transit_time = percentile_transit(times)
            existing.observation_count = len(times)
            existing.confidence = confidence
            existing.updated_at = now
            return existing

        suggestion = ConnectionSuggestion(
            id=sid,
            from_camera_id=from_camera,
            from_camera_name=from_name,
            to_camera_id=to_camera,
            to_camera_name=to_name,
            transit_time=percentile_transit(times),
            observation_count=len(times),
            confidence=confidence,
            created_at=now,
            updated_at=now,
        )
        self.book.put(suggestion)
        logger.info(
            "New connection suggested: %s -> %s (typical %.0fs, confidence %.0f%%)",
            from_name, to_name, suggestion.transit_time.typical / 1000, confidence * 100,
        )
        return suggestion

    def should_auto_accept(self, suggestion: ConnectionSuggestion) -> bool:
        return (suggestion.status == SuggestionStatus.PENDING
                and suggestion.confidence >= self.auto_accept_threshold)

    def get_suggestions(self) -> List[ConnectionSuggestion]:
        """Pending suggestions above the confidence floor, best first."""
        visible = [s for s in self.book.pending() if s.confidence >= self.min_confidence]
        return sorted(visible, key=lambda s: s.confidence, reverse=True)

    def accept(self, suggestion_id: str) -> ConnectionSuggestion:
        return self.book.resolve(suggestion_id, SuggestionStatus.ACCEPTED)

    def reject(self, suggestion_id: str) -> ConnectionSuggestion:
        suggestion = self.book.resolve(suggestion_id, SuggestionStatus.REJECTED)
        self._observations.pop((suggestion.from_camera_id, suggestion.to_camera_id), None)
        return suggestion
