"""
Tests for the spatial awareness service facade.
"""

import copy

import pytest

from spatial_tracker.alerts.manager import AlertType
from spatial_tracker.config import AppConfig
from spatial_tracker.exceptions import EngineStateError, TopologyValidationError
from spatial_tracker.service import SpatialAwarenessService
from spatial_tracker.tracking.models import ObjectState

from fakes import BlockingDescriber, CannedSceneAnalyzer, at, det


@pytest.fixture
def service(repository, scheduler):
    svc = SpatialAwarenessService(AppConfig(), repository=repository, scheduler=scheduler)
    svc.start()
    yield svc
    svc.close()


class TestServiceLifecycle:
    """Tests for service start/stop."""

    def test_not_started(self, repository, scheduler):
        svc = SpatialAwarenessService(repository=repository, scheduler=scheduler)
        assert svc.handle_detection_event({'cameraId': 'cam-a', 'timestamp': 0, 'objects': []}) == []
        with pytest.raises(EngineStateError):
            svc.get_live_tracking_state()
        svc.close()

    def test_double_start(self, service):
        with pytest.raises(EngineStateError):
            service.start()

    def test_stop_rejects_events(self, service, scheduler):
        service.stop()
        assert not service.is_running
        assert at(scheduler, service, 'cam-a', 0, det()) == []

    def test_stats(self, service, scheduler):
        at(scheduler, service, 'cam-a', 0, det())
        stats = service.get_stats()
        assert stats['running']
        assert stats['engine']['events_processed'] == 1
        assert stats['training_state'] == 'idle'
        assert stats['alerts'] == 1


class TestServiceTracking:
    """Tests for tracking through the service."""

    def test_journey_through_service(self, service, scheduler):
        [gid] = at(scheduler, service, 'cam-a', 0, det())
        assert at(scheduler, service, 'cam-b', 10000, det()) == [gid]
        path = service.get_journey_path(gid)
        assert [s['to_camera_id'] for s in path['segments']] == ['cam-b']
        [state] = service.get_live_tracking_state()['objects']
        assert state['last_camera_id'] == 'cam-b'

    def test_movement_alert_has_basic_description(self, service, scheduler):
        at(scheduler, service, 'cam-a', 0, det())
        at(scheduler, service, 'cam-b', 10000, det())
        movement = [a for a in service.get_recent_alerts() if a.type == AlertType.MOVEMENT]
        assert movement[0].message == "Person moved from Front Door to Driveway (10s)"

    def test_slow_describer_does_not_block_detections(self, repository, scheduler):
        describer = BlockingDescriber()
        svc = SpatialAwarenessService(repository=repository, scheduler=scheduler, describer=describer)
        svc.start()
        try:
            [gid] = at(scheduler, svc, 'cam-a', 0, det())
            assert at(scheduler, svc, 'cam-b', 10000, det()) == [gid]
            assert describer.started.wait(2.0)
            assert len(at(scheduler, svc, 'cam-a', 10500, det(id='other'))) == 1
            assert not [a for a in svc.get_recent_alerts() if a.type == AlertType.MOVEMENT]
            describer.release.set()
            assert svc.runner.join(2000)
            movement = [a for a in svc.get_recent_alerts() if a.type == AlertType.MOVEMENT]
            assert movement[0].message == "AI: person reached Driveway"
        finally:
            describer.release.set()
            svc.close()

    def test_infer_relationships(self, service):
        [candidate] = service.infer_relationships()
        assert {candidate.from_camera_id, candidate.to_camera_id} == {'cam-a', 'cam-c'}
        assert len(service.topology.connections) == 2


class TestTopologyUpdates:
    """Tests for topology replacement and engine restarts."""

    def test_update_restarts_engine_and_keeps_tracking(self, service, scheduler, topology_blob):
        [gid] = at(scheduler, service, 'cam-a', 0, det())
        scheduler.advance_to(3000)
        old_engine = service.engine

        blob = copy.deepcopy(topology_blob)
        blob['cameras'].append({'deviceId': 'cam-e', 'name': 'Side Yard'})
        service.update_topology(blob)

        assert service.engine is not old_engine
        assert not old_engine.is_running
        assert service.engine.topology.get_camera('cam-e') is not None
        assert at(scheduler, service, 'cam-b', 10000, det()) == [gid]

    def test_invalid_update_keeps_engine(self, service, topology_blob):
        old_engine = service.engine
        blob = copy.deepcopy(topology_blob)
        blob['connections'][0]['transitTime'] = {'min': 10, 'typical': 5, 'max': 20}
        with pytest.raises(TopologyValidationError):
            service.update_topology(blob)
        assert service.engine is old_engine
        assert service.is_running

    def test_change_callback_sees_learned_transit(self, service, scheduler):
        seen = []
        service.set_topology_change_callback(seen.append)
        at(scheduler, service, 'cam-a', 0, det())
        at(scheduler, service, 'cam-b', 12000, det())
        assert len(seen) == 1
        assert seen[0].connections[0].transit_time.typical == 10400

    def test_accepted_connection_restarts_engine(self, service, scheduler):
        at(scheduler, service, 'cam-a', 0, det())
        at(scheduler, service, 'cam-d', 8000, det())
        at(scheduler, service, 'cam-a', 20000, det())
        at(scheduler, service, 'cam-d', 28000, det())
        [suggestion] = service.get_connection_suggestions()
        old_engine = service.engine

        connection = service.accept_connection_suggestion(suggestion.id)
        assert service.engine is not old_engine
        assert service.engine.topology.connections[-1].id == connection.id
        assert service.get_connection_suggestions() == []

    def test_landmark_suggestion_roundtrip(self, service):
        suggestion = service.engine.submit_landmark_suggestion('Gate', 'access', 'cam-c', confidence=0.75)
        [pending] = service.get_pending_landmark_suggestions()
        assert pending is suggestion
        landmark = service.accept_landmark_suggestion(suggestion.id)
        assert service.topology.landmarks[0].id == landmark.id


class TestServiceTraining:
    """Tests for training through the service."""

    def test_training_walk_applied(self, service, scheduler, repository):
        service.start_training_session('Sam')
        at(scheduler, service, 'cam-b', 1000, det())
        at(scheduler, service, 'cam-d', 7000, det())
        assert service.get_training_status()['current_camera']['id'] == 'cam-d'
        service.end_training_session()
        old_engine = service.engine

        result = service.apply_training_to_topology()
        assert result.success
        assert result.connections_created == 1
        assert service.engine is not old_engine
        assert service.engine.topology.get_camera('cam-d') is not None
        assert any(c.id.startswith('training-') for c in repository.topology.connections)

    def test_idle_apply_changes_nothing(self, service, repository, store):
        before = repository.topology.to_blob()
        old_engine = service.engine
        result = service.apply_training_to_topology()
        assert not result.success
        assert repository.topology.to_blob() == before
        assert store.save_count == 0
        assert service.engine is old_engine

    def test_training_state_transitions(self, service):
        service.start_training_session()
        service.pause_training_session()
        service.mark_training_landmark({'name': 'Shed', 'type': 'shed'})
        service.resume_training_session()
        session = service.end_training_session()
        assert session.stats.landmarks_marked == 1
        service.reset_training_session()
        assert service.get_training_status()['state'] == 'idle'

    def test_training_does_not_disturb_tracking(self, service, scheduler):
        service.start_training_session()
        [gid] = at(scheduler, service, 'cam-a', 0, det())
        assert service.engine.get_tracked_object(gid).state == ObjectState.DETECTED


class TestServiceDiscovery:
    """Tests for discovery through the service."""

    def test_discovery_accept_restarts_engine(self, repository, scheduler):
        analyzer = CannedSceneAnalyzer({
            'cam-a': {'cameraId': 'cam-a', 'landmarks': [
                {'name': 'Mailbox', 'confidence': 0.8, 'distance': 'close'},
            ]},
        })
        svc = SpatialAwarenessService(repository=repository, scheduler=scheduler, scene_analyzer=analyzer)
        svc.start()
        try:
            result = svc.run_discovery()
            assert result['suggestions_created'] == 1
            [suggestion] = svc.get_discovery_suggestions()
            old_engine = svc.engine
            landmark = svc.accept_discovery_suggestion(suggestion.id)
            assert landmark.name == 'Mailbox'
            assert svc.engine is not old_engine
            assert svc.get_discovery_status()['pending_suggestions'] == 0
        finally:
            svc.close()

    def test_discovery_reject(self, service):
        [suggestion] = service.discovery.ingest_analysis({
            'cameraId': 'cam-b', 'zones': [{'name': 'Drive', 'type': 'driveway', 'coverage': 0.5}],
        })
        service.reject_discovery_suggestion(suggestion.id)
        assert service.get_discovery_suggestions() == []
