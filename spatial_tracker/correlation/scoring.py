"""
Correlation scoring.

Each open transit candidate is scored against a new detection on four
factors, combined with fixed weights:

    timing   0.30   raised-cosine around the typical transit time
    visual   0.35   embedding cosine similarity, neutral 0.5 when unavailable
    spatial  0.25   exit-zone → entry-zone coherence
    class    0.10   class/label equality

A timing or class factor of 0 vetoes the candidate outright.
"""

import base64
import binascii
import logging
import math
from dataclasses import dataclass
from typing import Any, Optional, Tuple

import numpy as np

from ..topology.models import Connection
from ..utils.geometry import point_near_polygon

logger = logging.getLogger(__name__)

TIMING_WEIGHT = 0.30
VISUAL_WEIGHT = 0.35
SPATIAL_WEIGHT = 0.25
CLASS_WEIGHT = 0.10

NEUTRAL_VISUAL = 0.5
ZONE_TOLERANCE = 20.0  # percent of frame


@dataclass
class CorrelationFactors:
    timing: float
    visual: float
    spatial: float
    class_match: float

    @property
    def vetoed(self) -> bool:
        return self.timing <= 0.0 or self.class_match <= 0.0

    @property
    def confidence(self) -> float:
        """Weighted confidence in [0, 1]."""
        if self.vetoed:
            return 0.0
        return (
            self.timing * TIMING_WEIGHT
            + self.visual * VISUAL_WEIGHT
            + self.spatial * SPATIAL_WEIGHT
            + self.class_match * CLASS_WEIGHT
        )

    def to_dict(self) -> dict:
        return {
            'timing': round(self.timing, 3),
            'visual': round(self.visual, 3),
            'spatial': round(self.spatial, 3),
            'class': round(self.class_match, 3),
            'confidence': round(self.confidence, 3),
        }


def timing_score(elapsed: float, window_min: float, typical: float, window_max: float) -> float:
    """
    Temporal plausibility of ``elapsed`` (ms) for a window.

    1.0 at ``typical``, raised-cosine decay to 0 at either window edge,
    0 outside the window.
    """
    if elapsed < window_min or elapsed > window_max:
        return 0.0
    typical = min(max(typical, window_min), window_max)
    if elapsed <= typical:
        span = typical - window_min
    else:
        span = window_max - typical
    if span <= 0:
        return 1.0
    d = abs(elapsed - typical) / span
    return 0.5 * (1.0 + math.cos(math.pi * d))


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> Optional[float]:
    if a is None or b is None or a.shape != b.shape:
        return None
    na = np.linalg.norm(a)
    nb = np.linalg.norm(b)
    if na < 1e-6 or nb < 1e-6:
        return None
    return float(np.dot(a, b) / (na * nb))


def visual_score(
    descriptor: Optional[np.ndarray],
    embedding: Optional[np.ndarray],
    enabled: bool = True,
) -> float:
    """Cosine similarity mapped to [0, 1]; neutral when either side is missing."""
    if not enabled:
        return NEUTRAL_VISUAL
    sim = cosine_similarity(descriptor, embedding)
    if sim is None:
        return NEUTRAL_VISUAL
    return (sim + 1.0) / 2.0


def spatial_score(
    exit_position: Optional[Tuple[float, float]],
    entry_position: Optional[Tuple[float, float]],
    connection: Optional[Connection],
    reverse: bool = False,
) -> float:
    """
    Exit/entry zone coherence; partial credit where position or zone is unknown.

    ``reverse`` marks traversal of a bidirectional connection from its ``to``
    end, in which case the entry zone is where the object left and the exit
    zone is where it arrives.
    """
    if connection is None:
        return 0.3

    exit_zone, entry_zone = connection.exit_zone, connection.entry_zone
    if reverse:
        exit_zone, entry_zone = entry_zone, exit_zone

    score = 0.0
    if exit_position is not None and exit_zone:
        if point_near_polygon(exit_position[0] * 100, exit_position[1] * 100,
                              exit_zone, ZONE_TOLERANCE):
            score += 0.5
    else:
        score += 0.25

    if entry_position is not None and entry_zone:
        if point_near_polygon(entry_position[0] * 100, entry_position[1] * 100,
                              entry_zone, ZONE_TOLERANCE):
            score += 0.5
    else:
        score += 0.25
    return score


def class_score(
    tracked_class: str,
    tracked_label: Optional[str],
    class_name: str,
    label: Optional[str],
) -> float:
    """Hard filter: classes must match, and labels too when both are known."""
    if tracked_class != class_name:
        return 0.0
    if tracked_label and label and tracked_label.lower() != label.lower():
        return 0.0
    return 1.0


def decode_embedding(value: Any) -> Optional[np.ndarray]:
    """Accept a float list or a base64-encoded little-endian float32 buffer."""
    if value is None:
        return None
    if isinstance(value, np.ndarray):
        emb = value.astype(np.float32)
    elif isinstance(value, str):
        try:
            raw = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            logger.warning("Ignoring undecodable embedding")
            return None
        if len(raw) == 0 or len(raw) % 4:
            logger.warning("Ignoring embedding with %d bytes", len(raw))
            return None
        emb = np.frombuffer(raw, dtype='<f4').astype(np.float32)
    else:
        try:
            emb = np.asarray(value, dtype=np.float32)
        except (ValueError, TypeError) as e:
            logger.warning("Ignoring non-numeric embedding: %s", e)
            return None
    if emb.ndim != 1 or emb.size == 0 or not np.all(np.isfinite(emb)):
        return None
    return emb
