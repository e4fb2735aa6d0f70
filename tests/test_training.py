"""
Tests for training session module.
"""

import pytest

from spatial_tracker.config import TrainingConfig
from spatial_tracker.events import parse_detection_event
from spatial_tracker.exceptions import TrainingSessionError
from spatial_tracker.training.session import (
    CameraVisit, TrainingSessionManager, TrainingState, derive_overlaps, derive_transits,
)

from fakes import det, event


class Clock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def manager(repository, clock):
    return TrainingSessionManager(repository, TrainingConfig(), clock=clock)


def seen(manager, clock, camera_id, ts, *objects):
    clock.now = ts
    return manager.record_detection(parse_detection_event(event(camera_id, ts, *(objects or (det(),)))))


def walk(manager, clock):
    """Front Door → Driveway → Garage with 6 s between cameras."""
    seen(manager, clock, 'cam-a', 1000)
    seen(manager, clock, 'cam-a', 2000)
    seen(manager, clock, 'cam-b', 8000)
    seen(manager, clock, 'cam-b', 9000)
    seen(manager, clock, 'cam-d', 15000)


class TestSessionLifecycle:
    """Tests for the training state machine."""

    def test_start(self, manager):
        session = manager.start('Sam')
        assert session.state == TrainingState.ACTIVE
        assert session.id.startswith('training-0-')
        assert session.trainer_name == 'Sam'

    def test_cannot_start_twice(self, manager):
        manager.start()
        with pytest.raises(TrainingSessionError):
            manager.start()
        manager.pause()
        with pytest.raises(TrainingSessionError):
            manager.start()

    def test_pause_resume(self, manager):
        manager.start()
        with pytest.raises(TrainingSessionError):
            manager.resume()
        assert manager.pause().state == TrainingState.PAUSED
        with pytest.raises(TrainingSessionError):
            manager.pause()
        assert manager.resume().state == TrainingState.ACTIVE

    def test_end_requires_session(self, manager):
        with pytest.raises(TrainingSessionError):
            manager.end()

    def test_end_from_paused(self, manager, clock):
        manager.start()
        manager.pause()
        clock.now = 60000
        session = manager.end()
        assert session.state == TrainingState.COMPLETED
        assert session.completed_at == 60000
        assert session.stats.total_duration == 60000

    def test_restart_after_completion(self, manager):
        manager.start()
        manager.end()
        assert manager.start().state == TrainingState.ACTIVE

    def test_reset(self, manager):
        manager.start()
        manager.reset()
        assert manager.state == TrainingState.IDLE
        assert manager.get_status() == {'state': 'idle', 'session_id': None}

    def test_session_config_overrides(self, manager):
        manager.start(config={'min_detection_confidence': 0.95, 'visit_gap_sec': 1})
        assert manager.config.min_detection_confidence == 0.95
        assert manager.config.visit_gap_ms == 1000
        assert manager.config.trainer_class == 'person'


class TestRecording:
    """Tests for visit recording."""

    def test_ignored_unless_active(self, manager, clock):
        assert not seen(manager, clock, 'cam-a', 1000)
        manager.start()
        manager.pause()
        assert not seen(manager, clock, 'cam-a', 2000)
        assert manager.session.visits == []

    def test_filters_class_and_confidence(self, manager, clock):
        manager.start()
        assert not seen(manager, clock, 'cam-a', 1000, det('car'))
        assert not seen(manager, clock, 'cam-a', 1000, det(score=0.6))
        assert seen(manager, clock, 'cam-a', 1000, det(score=0.6), det(score=0.8))
        assert manager.session.visits[0].detection_confidence == 0.8

    def test_visits_extend_within_gap(self, manager, clock):
        manager.start()
        seen(manager, clock, 'cam-a', 1000)
        seen(manager, clock, 'cam-a', 5000)
        seen(manager, clock, 'cam-a', 20000)
        visits = manager.session.visits
        assert [(v.arrived_at, v.departed_at) for v in visits] == [(1000, 5000), (20000, 20000)]

    def test_walk_stats(self, manager, clock):
        manager.start()
        walk(manager, clock)
        clock.now = 20000
        session = manager.end()
        stats = session.stats
        assert stats.cameras_visited == 3
        assert stats.transits_recorded == 2
        assert stats.average_transit_time == 6.0
        assert stats.coverage_percentage == 75.0
        assert stats.overlaps_detected == 0
        assert session.last_action['description'] == "Arrived at Garage"

    def test_overlap_detected(self, manager, clock):
        manager.start()
        seen(manager, clock, 'cam-a', 20000)
        seen(manager, clock, 'cam-b', 20500)
        seen(manager, clock, 'cam-a', 21000)
        seen(manager, clock, 'cam-b', 21500)
        assert manager.session.stats.overlaps_detected == 1


class TestDerivedFacts:
    """Tests for transit and overlap derivation."""

    def test_transit_duration_never_negative(self):
        visits = [
            CameraVisit('cam-a', 'A', 0, 5000, 0.9),
            CameraVisit('cam-b', 'B', 3000, 6000, 0.9),
        ]
        [transit] = derive_transits(visits)
        assert transit.duration == 0
        assert len(derive_overlaps(visits)) == 1

    def test_same_camera_revisit_is_not_a_transit(self):
        visits = [
            CameraVisit('cam-a', 'A', 0, 1000, 0.9),
            CameraVisit('cam-a', 'A', 9000, 9000, 0.9),
        ]
        assert derive_transits(visits) == []


class TestLandmarks:
    """Tests for landmark marking."""

    def test_mark_defaults_to_current_camera(self, manager, clock):
        manager.start()
        seen(manager, clock, 'cam-b', 1000)
        landmark = manager.mark_landmark({'name': 'Mailbox', 'type': 'mailbox',
                                          'position': {'x': 210, 'y': 140}})
        assert landmark.visible_from_cameras == ['cam-b']
        assert manager.session.stats.landmarks_marked == 1

    def test_mark_while_paused(self, manager):
        manager.start()
        manager.pause()
        assert manager.mark_landmark({'name': 'Shed'}).type == 'other'

    def test_mark_requires_name(self, manager):
        manager.start()
        with pytest.raises(TrainingSessionError):
            manager.mark_landmark({'name': '  '})

    def test_mark_requires_session(self, manager):
        with pytest.raises(TrainingSessionError):
            manager.mark_landmark({'name': 'Shed'})


class TestStatus:
    """Tests for live session status."""

    def test_current_camera_and_suggestions(self, manager, clock):
        manager.start('Sam')
        seen(manager, clock, 'cam-a', 1000)
        clock.now = 2000
        status = manager.get_status()
        assert status['current_camera']['id'] == 'cam-a'
        assert status['active_transit'] is None
        assert status['suggestions'] == ["Walk to Driveway", "Walk to Back Gate", "Walk to Garage"]

    def test_active_transit(self, manager, clock):
        manager.start()
        seen(manager, clock, 'cam-a', 1000)
        clock.now = 11000
        status = manager.get_status()
        assert status['current_camera'] is None
        assert status['active_transit']['from_camera_id'] == 'cam-a'
        assert status['active_transit']['elapsed_seconds'] == 10.0

    def test_long_transit_warning(self, manager, clock):
        manager.start()
        seen(manager, clock, 'cam-a', 1000)
        clock.now = 200000
        assert manager.get_status()['suggestions'][0] == "No camera has seen you since Front Door"


class TestApplyToTopology:
    """Tests for merging a session into the topology."""

    def test_no_session_writes_nothing(self, manager, repository, store):
        before = repository.topology.to_blob()
        result = manager.apply_to_topology()
        assert not result.success
        assert result.warnings == ["no training session"]
        assert repository.topology.to_blob() == before
        assert store.save_count == 0

    def test_walk_creates_and_refines_connections(self, manager, clock, repository, store):
        manager.start()
        walk(manager, clock)
        manager.end()
        result = manager.apply_to_topology()

        assert result.success
        assert result.connections_created == 1
        assert result.connections_updated == 1
        assert result.warnings == []
        assert store.save_count == 1

        topology = repository.topology
        conn_ab = next(c for c in topology.connections if c.id == 'conn-ab')
        assert conn_ab.transit_time.typical == 9200
        created = next(c for c in topology.connections if c.id.startswith('training-'))
        assert {created.from_camera_id, created.to_camera_id} == {'cam-b', 'cam-d'}
        assert created.bidirectional
        assert created.transit_time.min == 3000
        assert created.transit_time.typical == 6000
        assert created.transit_time.max == 12000

    def test_short_transit_gets_minimum_max(self, manager, clock, repository):
        manager.start()
        seen(manager, clock, 'cam-c', 1000)
        seen(manager, clock, 'cam-d', 1200)
        manager.end()
        manager.apply_to_topology()
        created = next(c for c in repository.topology.connections if c.id.startswith('training-'))
        assert created.transit_time.max == 1000

    def test_landmarks_and_overlap_zones(self, manager, clock, repository):
        manager.start()
        seen(manager, clock, 'cam-a', 20000)
        seen(manager, clock, 'cam-b', 20500)
        seen(manager, clock, 'cam-a', 21000)
        seen(manager, clock, 'cam-b', 21500)
        manager.mark_landmark({'name': 'Mailbox', 'type': 'mailbox'})
        manager.end()
        result = manager.apply_to_topology()

        assert result.landmarks_added == 1
        assert result.zones_created == 1
        [landmark] = repository.topology.landmarks
        assert landmark.type == 'feature'
        [zone] = repository.topology.global_zones
        assert zone.name == "Front Door / Driveway overlap"
        assert zone.type == 'dwell'
        assert [cz.camera_id for cz in zone.camera_zones] == ['cam-a', 'cam-b']

    def test_duplicate_landmark_skipped(self, manager, clock, repository):
        manager.start()
        seen(manager, clock, 'cam-a', 1000)
        manager.mark_landmark({'name': 'Mailbox'})
        manager.end()
        manager.apply_to_topology()
        result = manager.apply_to_topology()
        assert result.landmarks_added == 0
        assert result.warnings == ["landmark 'Mailbox' already exists"]
        assert len(repository.topology.landmarks) == 1

    def test_apply_before_end_warns(self, manager, clock, repository):
        manager.start()
        walk(manager, clock)
        result = manager.apply_to_topology()
        assert result.success
        assert result.warnings == ["session is still active"]

    def test_unknown_camera_warns(self, manager, clock):
        manager.start()
        seen(manager, clock, 'cam-a', 1000)
        seen(manager, clock, 'cam-x', 3000)
        manager.end()
        result = manager.apply_to_topology()
        assert result.connections_created == 0
        assert len(result.warnings) == 1
