"""
Tests for discovery module.
"""

import math

import pytest

from spatial_tracker.capabilities import CapabilityRunner
from spatial_tracker.config import DiscoveryConfig
from spatial_tracker.discovery.models import SceneAnalysis
from spatial_tracker.discovery.projection import (
    distance_to_feet, grid_position, place_landmark, spread_offset, zone_default_feet, zone_wedge,
)
from spatial_tracker.discovery.service import DiscoveryService
from spatial_tracker.exceptions import CameraNotFoundError, SuggestionNotFoundError
from spatial_tracker.learning.suggestions import SuggestionStatus

from fakes import CannedSceneAnalyzer


FRONT_DOOR_ANALYSIS = {
    'cameraId': 'cam-a',
    'cameraName': 'Front Door',
    'landmarks': [
        {'name': 'Mailbox', 'type': 'feature', 'confidence': 0.8,
         'distance': 'near', 'boundingBox': [0.4, 0.5, 0.2, 0.2]},
        {'name': 'Blurry thing', 'confidence': 0.3},
    ],
    'zones': [
        {'name': 'Front lawn', 'type': 'yard', 'coverage': 0.3,
         'boundingBox': [0.25, 0.5, 0.5, 0.4]},
        {'name': 'Sliver', 'type': 'walkway', 'coverage': 0.05},
    ],
    'orientation': 'east',
}


@pytest.fixture
def discovery(repository):
    return DiscoveryService(repository, DiscoveryConfig(), clock=lambda: 1000.0)


class TestProjection:
    """Tests for floor-plan projection."""

    def test_distance_words(self):
        assert distance_to_feet('close') == 10
        assert distance_to_feet('nearby') == 20
        assert distance_to_feet('Medium') == 40
        assert distance_to_feet('far away') == 80
        assert distance_to_feet('very distant') == 150
        assert distance_to_feet('somewhere') == 40
        assert distance_to_feet(None) == 50
        assert distance_to_feet('', default=25) == 25

    def test_zone_defaults(self):
        assert zone_default_feet('patio') == 10
        assert zone_default_feet('driveway') == 25
        assert zone_default_feet('street') == 100
        assert zone_default_feet('unknown') == 50

    def test_spread_offsets_cycle(self):
        offsets = [spread_offset(i, 90) for i in range(6)]
        assert offsets[:5] == [-36, -18, 0, 18, 36]
        assert offsets[5] == offsets[0]

    def test_landmark_along_facing_direction(self, topology):
        camera = topology.get_camera('cam-a')
        point = place_landmark(topology, camera, 20, bbox=(0.4, 0.5, 0.2, 0.2))
        # 20 ft at 5 px/ft, straight east of (100, 100)
        assert (point.x, point.y) == (200.0, 100.0)

    def test_landmark_bbox_rotates_within_fov(self, topology):
        camera = topology.get_camera('cam-a')
        left = place_landmark(topology, camera, 20, bbox=(0.0, 0.5, 0.2, 0.2))
        right = place_landmark(topology, camera, 20, bbox=(0.8, 0.5, 0.2, 0.2))
        # Facing east: the left of the frame is north (smaller y)
        assert left.y < 100 < right.y

    def test_landmark_without_bbox_is_spread(self, topology):
        camera = topology.get_camera('cam-a')
        points = {(p.x, p.y) for p in (place_landmark(topology, camera, 20, index=i) for i in range(5))}
        assert len(points) == 5

    def test_projection_is_deterministic(self, topology):
        camera = topology.get_camera('cam-a')
        assert place_landmark(topology, camera, 40, index=3) == place_landmark(topology, camera, 40, index=3)

    def test_grid_fallback(self, topology):
        camera = topology.get_camera('cam-d')
        assert place_landmark(topology, camera, 20, index=0) == grid_position(0)
        assert grid_position(6).x == 110 and grid_position(6).y == 110

    def test_zone_wedge(self, topology):
        camera = topology.get_camera('cam-a')
        center, outline = zone_wedge(topology, camera, 10, bbox=(0.25, 0.5, 0.5, 0.4))
        assert (center.x, center.y) == (150.0, 100.0)
        assert len(outline) == 16
        for x, y in outline:
            assert 39.5 <= math.hypot(x - 100, y - 100) <= 60.5

    def test_zone_wedge_grid_fallback(self, topology):
        center, outline = zone_wedge(topology, topology.get_camera('cam-d'), 10, index=2)
        assert outline is None
        assert center == grid_position(2)


class TestSceneModels:
    """Tests for scene analysis parsing."""

    def test_unknown_types_normalized(self):
        analysis = SceneAnalysis.model_validate({
            'cameraId': 'cam-a',
            'landmarks': [{'name': 'Fountain', 'type': 'Fountain'}],
            'zones': [{'name': 'Lawn', 'type': 'lawn'}],
        })
        assert analysis.landmarks[0].type == 'feature'
        assert analysis.zones[0].type == 'unknown'
        assert analysis.is_valid


class TestDiscoveryIngest:
    """Tests for suggestion creation."""

    def test_ingest_analysis_filters(self, discovery):
        created = discovery.ingest_analysis(FRONT_DOOR_ANALYSIS)
        assert [s.type for s in created] == ['landmark', 'zone']
        landmark, zone = created
        assert landmark.distance_feet == 20
        assert landmark.source_cameras == ['cam-a']
        assert landmark.id.startswith('landmark_1000_')
        assert zone.confidence == pytest.approx(0.8)
        assert zone.distance_feet == 40
        assert discovery.get_status()['pending_suggestions'] == 2

    def test_invalid_analysis_ignored(self, discovery):
        assert discovery.ingest_analysis({'cameraId': 'cam-a', 'isValid': False, 'error': 'dark'}) == []

    def test_zone_confidence_capped(self, discovery):
        [zone] = discovery.ingest_analysis({
            'cameraId': 'cam-a', 'zones': [{'name': 'Street', 'type': 'street', 'coverage': 0.7}],
        })
        assert zone.confidence == 0.9
        assert zone.distance_feet == 100

    def test_ingest_correlation(self, discovery):
        created = discovery.ingest_correlation({
            'sharedLandmarks': [{'name': 'Oak', 'seenByCameras': ['Front Door', 'cam-b'],
                                 'confidence': 0.7}],
            'suggestedConnections': [
                {'fromCameraId': 'Front Door', 'toCameraId': 'Garage', 'transitSeconds': 12,
                 'via': 'side path', 'confidence': 0.8},
                {'fromCameraId': 'cam-a', 'toCameraId': 'cam-b', 'transitSeconds': 5,
                 'confidence': 0.3},
            ],
        })
        assert [s.type for s in created] == ['landmark', 'connection']

    def test_to_dict(self, discovery):
        [landmark, _] = discovery.ingest_analysis(FRONT_DOOR_ANALYSIS)
        d = landmark.to_dict()
        assert d['status'] == 'pending'
        assert d['landmark']['boundingBox'] == [0.4, 0.5, 0.2, 0.2]


class TestDiscoveryAccept:
    """Tests for accepting and rejecting suggestions."""

    def test_accept_landmark(self, discovery, repository):
        landmark, _ = discovery.ingest_analysis(FRONT_DOOR_ANALYSIS)
        item = discovery.accept(landmark.id)
        assert item.name == 'Mailbox'
        assert (item.position.x, item.position.y) == (200.0, 100.0)
        assert item.ai_suggested
        assert item.visible_from_cameras == ['cam-a']
        assert repository.topology.landmarks == [item]
        assert landmark.status == SuggestionStatus.ACCEPTED
        with pytest.raises(SuggestionNotFoundError):
            discovery.accept(landmark.id)

    def test_accept_zone(self, discovery, repository):
        _, zone = discovery.ingest_analysis(FRONT_DOOR_ANALYSIS)
        item = discovery.accept(zone.id)
        assert item.type == 'zone'
        assert len(item.outline) == 16
        # 40 ft yard default, straight ahead of the camera
        assert (item.position.x, item.position.y) == (300.0, 100.0)

    def test_accept_connection_resolves_names(self, discovery, repository):
        [_, conn] = discovery.ingest_correlation({
            'sharedLandmarks': [{'name': 'Oak', 'seenByCameras': ['cam-a'], 'confidence': 0.7}],
            'suggestedConnections': [
                {'fromCameraId': 'Front Door', 'toCameraId': 'garage', 'transitSeconds': 12,
                 'via': 'side path', 'confidence': 0.8},
            ],
        })
        item = discovery.accept(conn.id)
        assert item.from_camera_id == 'cam-a'
        assert item.to_camera_id == 'cam-d'
        assert item.name == "Front Door to Garage via side path"
        assert (item.transit_time.min, item.transit_time.typical, item.transit_time.max) == \
            (6000, 12000, 24000)
        assert repository.topology.connections[-1].id == item.id

    def test_existing_connection_is_noop(self, discovery, store):
        [conn] = discovery.ingest_correlation({'suggestedConnections': [
            {'fromCameraId': 'cam-b', 'toCameraId': 'cam-a', 'transitSeconds': 9, 'confidence': 0.9},
        ]})
        assert discovery.accept(conn.id) is None
        assert conn.status == SuggestionStatus.ACCEPTED
        assert store.save_count == 0

    def test_unknown_camera_keeps_suggestion_pending(self, discovery, repository, store):
        [conn] = discovery.ingest_correlation({'suggestedConnections': [
            {'fromCameraId': 'Pool house', 'toCameraId': 'cam-a', 'transitSeconds': 9, 'confidence': 0.9},
        ]})
        before = repository.topology.to_blob()
        with pytest.raises(CameraNotFoundError):
            discovery.accept(conn.id)
        assert conn.status == SuggestionStatus.PENDING
        assert repository.topology.to_blob() == before
        assert store.save_count == 0

    def test_camera_without_position_uses_grid(self, discovery, repository):
        [landmark] = discovery.ingest_analysis({
            'cameraId': 'cam-d', 'landmarks': [{'name': 'Bike rack', 'confidence': 0.9}],
        })
        item = discovery.accept(landmark.id)
        assert item.position == grid_position(0)

    def test_reject(self, discovery):
        landmark, _ = discovery.ingest_analysis(FRONT_DOOR_ANALYSIS)
        discovery.reject(landmark.id)
        assert [s.type for s in discovery.get_suggestions()] == ['zone']
        with pytest.raises(SuggestionNotFoundError):
            discovery.reject(landmark.id)

    def test_clear(self, discovery):
        discovery.ingest_analysis(FRONT_DOOR_ANALYSIS)
        discovery.clear()
        assert discovery.get_suggestions() == []


class TestRunDiscovery:
    """Tests for analyzing all cameras."""

    @pytest.fixture
    def runner(self):
        runner = CapabilityRunner(max_workers=2, timeout_ms=2000)
        yield runner
        runner.shutdown()

    def test_run_discovery(self, repository, runner):
        analyzer = CannedSceneAnalyzer({
            'cam-a': FRONT_DOOR_ANALYSIS,
            'cam-b': {'cameraId': 'cam-b', 'landmarks': [{'name': ''}]},
        })
        discovery = DiscoveryService(repository, analyzer=analyzer, runner=runner, clock=lambda: 5000.0)
        result = discovery.run_discovery()

        assert result['cameras_analyzed'] == 1
        assert result['suggestions_created'] == 2
        assert len(result['errors']) == 3
        assert "Driveway: malformed analysis" in result['errors'][0]
        assert analyzer.calls == ['cam-a', 'cam-b', 'cam-c', 'cam-d']

        status = discovery.get_status()
        assert status['is_scanning'] is False
        assert status['last_scan_time'] == 5000.0
        assert status['last_error'] == "Garage: no frame for cam-d"

    def test_without_analyzer(self, discovery):
        result = discovery.run_discovery()
        assert result['cameras_analyzed'] == 0
        assert result['errors'] == ['no scene analyzer']
