"""
Camera topology module.
Validated topology documents, graph queries and the authoritative repository.
"""

from .models import (
    Topology, Camera, Connection, TransitTime, FieldOfView, FloorPlan,
    Point, Landmark, GlobalZone, CameraZone, SpatialRelationship,
)
from .graph import (
    TopologyGraph, resolve_camera, find_connection,
    infer_relationships, infer_spatial_relationships, describe_topology,
)
from .repository import (
    TopologyRepository, TopologyStore, MemoryTopologyStore, JsonFileTopologyStore,
)


__all__ = [
    # Models
    'Topology',
    'Camera',
    'Connection',
    'TransitTime',
    'FieldOfView',
    'FloorPlan',
    'Point',
    'Landmark',
    'GlobalZone',
    'CameraZone',
    'SpatialRelationship',
    # Graph
    'TopologyGraph',
    'resolve_camera',
    'find_connection',
    'infer_relationships',
    'infer_spatial_relationships',
    'describe_topology',
    # Repository
    'TopologyRepository',
    'TopologyStore',
    'MemoryTopologyStore',
    'JsonFileTopologyStore',
]
