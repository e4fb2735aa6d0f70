"""
Pytest configuration and fixtures.
"""

import pytest
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from spatial_tracker.alerts.manager import AlertManager
from spatial_tracker.config import TrackingConfig
from spatial_tracker.correlation.engine import CorrelationEngine
from spatial_tracker.correlation.timers import VirtualScheduler
from spatial_tracker.topology.models import Topology
from spatial_tracker.topology.repository import MemoryTopologyStore, TopologyRepository
from spatial_tracker.tracking.registry import TrackingRegistry


@pytest.fixture
def topology_blob():
    """
    Four cameras: Front Door → Driveway → Back Gate, and an unconnected Garage.
    Front Door is an entry point, Back Gate an exit point.
    """
    return {
        'version': '2.0',
        'floorPlan': {'width': 800, 'height': 600, 'scale': 5},
        'cameras': [
            {'deviceId': 'cam-a', 'name': 'Front Door', 'isEntryPoint': True,
             'floorPlanPosition': {'x': 100, 'y': 100},
             'fov': {'mode': 'simple', 'direction': 90, 'angle': 90, 'range': 80}},
            {'deviceId': 'cam-b', 'name': 'Driveway',
             'floorPlanPosition': {'x': 200, 'y': 100},
             'fov': {'mode': 'simple', 'direction': 90, 'angle': 90, 'range': 80}},
            {'deviceId': 'cam-c', 'name': 'Back Gate', 'isExitPoint': True,
             'floorPlanPosition': {'x': 300, 'y': 100},
             'fov': {'mode': 'simple', 'direction': 270, 'angle': 90, 'range': 80}},
            {'deviceId': 'cam-d', 'name': 'Garage',
             'floorPlanPosition': {'x': 600, 'y': 500}},
        ],
        'connections': [
            {'id': 'conn-ab', 'fromCameraId': 'cam-a', 'toCameraId': 'cam-b',
             'name': 'Front Door to Driveway', 'bidirectional': True,
             'transitTime': {'min': 5000, 'typical': 10000, 'max': 20000}},
            {'id': 'conn-bc', 'fromCameraId': 'cam-b', 'toCameraId': 'cam-c',
             'name': 'Driveway to Back Gate', 'bidirectional': True,
             'transitTime': {'min': 3000, 'typical': 8000, 'max': 15000}},
        ],
        'landmarks': [],
        'globalZones': [],
    }


@pytest.fixture
def topology(topology_blob):
    return Topology.from_blob(topology_blob)


@pytest.fixture
def store(topology_blob):
    return MemoryTopologyStore(topology_blob)


@pytest.fixture
def repository(store):
    repo = TopologyRepository(store)
    repo.load()
    return repo


@pytest.fixture
def tracking_config():
    return TrackingConfig()


@pytest.fixture
def scheduler():
    return VirtualScheduler(start=0)


@pytest.fixture
def registry():
    return TrackingRegistry()


@pytest.fixture
def alert_manager():
    return AlertManager()


@pytest.fixture
def engine(repository, tracking_config, registry, scheduler, alert_manager):
    """Started engine on the sample topology with a virtual clock."""
    eng = CorrelationEngine(
        repository.topology, tracking_config, registry, scheduler,
        alert_manager=alert_manager, repository=repository,
    )
    eng.start()
    yield eng
    eng.stop()
