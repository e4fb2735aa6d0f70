"""
Tests for tracking registry module.
"""

import numpy as np

from spatial_tracker.tracking.models import JourneySegment, ObjectState, Sighting
from spatial_tracker.tracking.registry import TrackingRegistry


def sighting(camera_id='cam-a', ts=0.0, track_id=None, embedding=None, label=None):
    return Sighting(
        camera_id=camera_id,
        timestamp=ts,
        class_name='person',
        score=0.9,
        bbox=(45, 40, 10, 20),
        label=label,
        embedding=embedding,
        track_id=track_id,
    )


class TestTrackedObject:
    """Tests for TrackedObject."""

    def test_dwell_time_resets_on_camera_change(self):
        registry = TrackingRegistry()
        obj = registry.create(sighting('cam-a', 0))
        registry.add_sighting(obj.global_id, sighting('cam-a', 4000))
        assert obj.dwell_time == 4000
        registry.add_sighting(obj.global_id, sighting('cam-b', 9000))
        assert obj.dwell_time == 0
        assert obj.cameras_visited == ['cam-a', 'cam-b']

    def test_descriptor_is_normalized_ema(self):
        registry = TrackingRegistry()
        obj = registry.create(sighting(embedding=np.array([2.0, 0.0], dtype=np.float32)))
        assert np.allclose(obj.visual_descriptor, [1.0, 0.0])
        registry.add_sighting(obj.global_id, sighting(ts=100, embedding=np.array([0.0, 1.0])))
        assert np.isclose(np.linalg.norm(obj.visual_descriptor), 1.0)
        assert obj.visual_descriptor[0] > obj.visual_descriptor[1]

    def test_label_taken_from_first_labelled_sighting(self):
        registry = TrackingRegistry()
        obj = registry.create(sighting())
        registry.add_sighting(obj.global_id, sighting(ts=10, label='Alice'))
        registry.add_sighting(obj.global_id, sighting(ts=20, label='Bob'))
        assert obj.label == 'Alice'

    def test_to_dict(self):
        registry = TrackingRegistry()
        obj = registry.create(sighting())
        d = obj.to_dict()
        assert d['global_id'] == obj.global_id
        assert d['state'] == 'detected'
        assert d['journey'] == []


class TestTrackingRegistry:
    """Tests for TrackingRegistry."""

    def test_create_assigns_unique_ids(self):
        registry = TrackingRegistry()
        a = registry.create(sighting(ts=1000))
        b = registry.create(sighting(ts=1000))
        assert a.global_id != b.global_id
        assert a.global_id.startswith('1000-')
        assert len(registry) == 2

    def test_camera_index_follows_state(self):
        registry = TrackingRegistry()
        obj = registry.create(sighting('cam-a'))
        assert registry.get_on_camera('cam-a') == [obj]
        registry.mark_in_transit(obj.global_id, 3000)
        assert registry.get_on_camera('cam-a') == []
        registry.reactivate(obj.global_id, 9000)
        registry.add_sighting(obj.global_id, sighting('cam-b', 9000))
        assert registry.get_on_camera('cam-a') == []
        assert registry.get_on_camera('cam-b') == [obj]

    def test_track_binding(self):
        registry = TrackingRegistry()
        obj = registry.create(sighting(track_id='7'))
        assert registry.lookup_track('cam-a', '7') is obj
        assert registry.lookup_track('cam-b', '7') is None
        assert registry.lookup_track('cam-a', None) is None

    def test_leaving_detected_unbinds_tracks(self):
        registry = TrackingRegistry()
        obj = registry.create(sighting(track_id='7'))
        registry.mark_in_transit(obj.global_id, 3000)
        assert registry.lookup_track('cam-a', '7') is None

    def test_exited_records_exit_camera(self):
        registry = TrackingRegistry()
        obj = registry.create(sighting('cam-c'))
        registry.mark_exited(obj.global_id, 5000)
        assert obj.state == ObjectState.EXITED
        assert obj.exit_camera == 'cam-c'
        assert obj.state_changed_at == 5000
        assert registry.stats['exited'] == 1

    def test_state_change_callback(self):
        registry = TrackingRegistry()
        changes = []
        registry.on_state_change(lambda obj, old, new: changes.append((old, new)))
        obj = registry.create(sighting())
        registry.mark_in_transit(obj.global_id, 3000)
        registry.mark_in_transit(obj.global_id, 4000)
        registry.mark_lost(obj.global_id, 300000)
        assert changes == [
            (ObjectState.DETECTED, ObjectState.IN_TRANSIT),
            (ObjectState.IN_TRANSIT, ObjectState.LOST),
        ]

    def test_journey_segment_counts_handoff(self):
        registry = TrackingRegistry()
        obj = registry.create(sighting())
        registry.add_journey_segment(obj.global_id, JourneySegment(
            'cam-a', 'Front Door', 'cam-b', 'Driveway', 0, 10000, 10000, 0.7,
        ))
        assert len(obj.journey) == 1
        assert registry.stats['handoffs'] == 1

    def test_cleanup_removes_only_expired_inactive(self):
        registry = TrackingRegistry(retention_ms=1000)
        lost = registry.create(sighting(ts=0))
        registry.mark_lost(lost.global_id, 0)
        active = registry.create(sighting(ts=0))
        assert registry.cleanup(5000) == 1
        assert registry.get(lost.global_id) is None
        assert registry.get(active.global_id) is active

    def test_max_objects_prunes_oldest_inactive(self):
        registry = TrackingRegistry(max_objects=2)
        old = registry.create(sighting(ts=0))
        registry.mark_lost(old.global_id, 0)
        registry.create(sighting(ts=10))
        registry.create(sighting(ts=20))
        assert len(registry) == 2
        assert registry.get(old.global_id) is None

    def test_get_stats(self):
        registry = TrackingRegistry()
        obj = registry.create(sighting())
        registry.mark_in_transit(obj.global_id, 3000)
        stats = registry.get_stats()
        assert stats['total_created'] == 1
        assert stats['active'] == 1
        assert stats['by_state']['in_transit'] == 1
