"""
Pydantic schemas for inbound detection events.

Camera adapters deliver already-computed detections::

    {"cameraId": "cam-front", "timestamp": 1718000000000,
     "objects": [{"className": "person", "score": 0.91,
                  "bbox": [40, 20, 10, 30], "embedding": [...]}]}

``bbox`` is ``[x, y, w, h]`` normalized to 0-100.
"""

import logging
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class _EventModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class DetectedObject(_EventModel):
    class_name: str = Field(min_length=1)
    score: float = Field(ge=0, le=1)
    bbox: Optional[Tuple[float, float, float, float]] = None
    label: Optional[str] = None
    embedding: Optional[Any] = None
    id: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, v):
        return None if v is None else str(v)


class DetectionEvent(_EventModel):
    camera_id: str = Field(min_length=1)
    timestamp: float = Field(ge=0)  # epoch ms
    objects: List[DetectedObject] = Field(default_factory=list)


def parse_detection_event(raw: Any) -> Optional[DetectionEvent]:
    """Validate a raw event; malformed events are logged and dropped."""
    if isinstance(raw, DetectionEvent):
        return raw
    try:
        return DetectionEvent.model_validate(raw)
    except ValidationError as e:
        logger.warning("Dropping malformed detection event: %d error(s)", e.error_count())
        return None
