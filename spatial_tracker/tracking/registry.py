"""
Tracking state registry.
Owns every TrackedObject and the indexes used by the correlation engine.
Only the engine writes to it; all calls happen under the engine lock.
"""

import logging
import uuid
from collections import defaultdict
from typing import Callable, Dict, List, Optional, Set, Tuple

from .models import JourneySegment, ObjectState, Sighting, TrackedObject

logger = logging.getLogger(__name__)

StateChangeCallback = Callable[[TrackedObject, ObjectState, ObjectState], None]


class TrackingRegistry:
    """
    Registry of globally tracked objects.
    Maintains object lifecycle, per-camera indexes and camera-local track bindings.
    """

    def __init__(self, retention_ms: float = 86_400_000.0, max_objects: int = 1000):
        """
        Initialize registry.

        Args:
            retention_ms: How long lost/exited objects remain queryable
            max_objects: Cap on retained objects; oldest inactive are pruned first
        """
        self.retention_ms = retention_ms
        self.max_objects = max_objects

        self.objects: Dict[str, TrackedObject] = {}

        # Lookup indices
        self._camera_to_gids: Dict[str, Set[str]] = defaultdict(set)
        self._track_to_gid: Dict[Tuple[str, str], str] = {}

        self._callbacks: List[StateChangeCallback] = []

        self.stats = {
            'total_created': 0,
            'total_removed': 0,
            'handoffs': 0,
            'lost': 0,
            'exited': 0,
        }

    # ── creation & updates ──

    def generate_id(self, timestamp: float) -> str:
        while True:
            gid = f"{int(timestamp)}-{uuid.uuid4().hex[:9]}"
            if gid not in self.objects:
                return gid

    def create(self, sighting: Sighting) -> TrackedObject:
        """Create a new tracked object from its first sighting."""
        gid = self.generate_id(sighting.timestamp)
        obj = TrackedObject(
            global_id=gid,
            class_name=sighting.class_name,
            label=sighting.label,
            first_seen=sighting.timestamp,
            last_seen=sighting.timestamp,
            current_camera_id=sighting.camera_id,
            camera_entered_at=sighting.timestamp,
            entry_camera=sighting.camera_id,
            state_changed_at=sighting.timestamp,
        )
        obj.add_sighting(sighting)
        self.objects[gid] = obj
        self._camera_to_gids[sighting.camera_id].add(gid)
        self._bind(sighting, gid)
        self.stats['total_created'] += 1

        if len(self.objects) > self.max_objects:
            self._prune_inactive(len(self.objects) - self.max_objects)

        logger.debug("Created %s (%s) on %s", gid, sighting.class_name, sighting.camera_id)
        return obj

    def add_sighting(self, global_id: str, sighting: Sighting, ema_alpha: float = 0.7) -> TrackedObject:
        obj = self.objects[global_id]
        previous_camera = obj.current_camera_id
        obj.add_sighting(sighting, ema_alpha)
        if previous_camera != sighting.camera_id:
            self._camera_to_gids[previous_camera].discard(global_id)
        self._camera_to_gids[sighting.camera_id].add(global_id)
        self._bind(sighting, global_id)
        return obj

    def add_journey_segment(self, global_id: str, segment: JourneySegment):
        self.objects[global_id].journey.append(segment)
        self.stats['handoffs'] += 1

    def _bind(self, sighting: Sighting, gid: str):
        if sighting.track_id is not None:
            self._track_to_gid[(sighting.camera_id, sighting.track_id)] = gid

    # ── state transitions ──

    def set_state(self, global_id: str, state: ObjectState, timestamp: float) -> TrackedObject:
        obj = self.objects[global_id]
        old = obj.state
        if old == state:
            return obj
        obj.state = state
        obj.state_changed_at = timestamp

        if state != ObjectState.DETECTED:
            self._camera_to_gids[obj.current_camera_id].discard(global_id)
            self._unbind_object(global_id)
        else:
            self._camera_to_gids[obj.current_camera_id].add(global_id)

        if state == ObjectState.LOST:
            self.stats['lost'] += 1
        elif state == ObjectState.EXITED:
            self.stats['exited'] += 1
            obj.exit_camera = obj.current_camera_id

        for callback in self._callbacks:
            try:
                callback(obj, old, state)
            except Exception as e:
                logger.error("State change callback error: %s", e)
        return obj

    def mark_in_transit(self, global_id: str, timestamp: float) -> TrackedObject:
        return self.set_state(global_id, ObjectState.IN_TRANSIT, timestamp)

    def mark_lost(self, global_id: str, timestamp: float) -> TrackedObject:
        return self.set_state(global_id, ObjectState.LOST, timestamp)

    def mark_exited(self, global_id: str, timestamp: float) -> TrackedObject:
        return self.set_state(global_id, ObjectState.EXITED, timestamp)

    def reactivate(self, global_id: str, timestamp: float) -> TrackedObject:
        return self.set_state(global_id, ObjectState.DETECTED, timestamp)

    def on_state_change(self, callback: StateChangeCallback):
        """Register a callback fired on every state transition."""
        self._callbacks.append(callback)

    def _unbind_object(self, gid: str):
        for key in [k for k, v in self._track_to_gid.items() if v == gid]:
            del self._track_to_gid[key]

    # ── queries ──

    def get(self, global_id: str) -> Optional[TrackedObject]:
        return self.objects.get(global_id)

    def lookup_track(self, camera_id: str, track_id: Optional[str]) -> Optional[TrackedObject]:
        """Object currently bound to a camera-local track id."""
        if track_id is None:
            return None
        gid = self._track_to_gid.get((camera_id, track_id))
        return self.objects.get(gid) if gid else None

    def get_on_camera(self, camera_id: str) -> List[TrackedObject]:
        """Objects currently detected on a camera."""
        return [self.objects[g] for g in self._camera_to_gids.get(camera_id, ()) if g in self.objects]

    def get_by_state(self, state: ObjectState) -> List[TrackedObject]:
        return [o for o in self.objects.values() if o.state == state]

    def get_active(self) -> List[TrackedObject]:
        return [o for o in self.objects.values() if o.state.is_active]

    def all(self) -> List[TrackedObject]:
        return list(self.objects.values())

    def __len__(self) -> int:
        return len(self.objects)

    # ── maintenance ──

    def cleanup(self, now: float) -> int:
        """Remove lost/exited objects older than the retention window."""
        to_remove = [
            gid for gid, obj in self.objects.items()
            if not obj.state.is_active and now - obj.last_seen > self.retention_ms
        ]
        for gid in to_remove:
            self._remove(gid)
        if to_remove:
            logger.info("Removed %d expired tracked objects", len(to_remove))
        return len(to_remove)

    def _prune_inactive(self, excess: int):
        inactive = sorted(
            (o for o in self.objects.values() if not o.state.is_active),
            key=lambda o: o.last_seen,
        )
        for obj in inactive[:excess]:
            self._remove(obj.global_id)

    def _remove(self, gid: str):
        obj = self.objects.pop(gid)
        self._camera_to_gids[obj.current_camera_id].discard(gid)
        self._unbind_object(gid)
        self.stats['total_removed'] += 1

    def get_stats(self) -> Dict:
        by_state = {s.value: 0 for s in ObjectState}
        for obj in self.objects.values():
            by_state[obj.state.value] += 1
        return {
            **self.stats,
            'tracked': len(self.objects),
            'active': by_state['detected'] + by_state['in_transit'],
            'by_state': by_state,
        }

    def reset(self):
        self.objects.clear()
        self._camera_to_gids.clear()
        self._track_to_gid.clear()
        logger.info("Tracking registry reset")
