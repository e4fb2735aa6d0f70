"""
Topology repository: the single authoritative topology instance.

Every mutation is validated, saved to the configured store and then
announced to subscribers (the service restarts the correlation engine from
one of them).  Mutations are all-or-nothing: a failed validation leaves the
previous topology in place.
"""

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional

from .models import Topology

logger = logging.getLogger(__name__)

TopologyCallback = Callable[[Topology], None]


# ── Storage collaborators ────────────────────────────────────────────────────

class TopologyStore(ABC):
    """Persistence for the topology blob."""

    @abstractmethod
    def load(self) -> Optional[Dict[str, Any]]:
        """Return the stored blob, or None when nothing was stored yet."""

    @abstractmethod
    def save(self, blob: Dict[str, Any]) -> None:
        """Persist the blob."""


class MemoryTopologyStore(TopologyStore):
    def __init__(self, blob: Optional[Dict[str, Any]] = None):
        self.blob = blob
        self.save_count = 0

    def load(self) -> Optional[Dict[str, Any]]:
        return self.blob

    def save(self, blob: Dict[str, Any]) -> None:
        self.blob = blob
        self.save_count += 1


class JsonFileTopologyStore(TopologyStore):
    """Stores the topology as one JSON document on disk."""

    def __init__(self, path: str):
        self.path = path

    def load(self) -> Optional[Dict[str, Any]]:
        if not os.path.exists(self.path):
            return None
        with open(self.path, 'r', encoding='utf-8') as f:
            return json.load(f)

    def save(self, blob: Dict[str, Any]) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = self.path + ".tmp"
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(blob, f, indent=2)
        os.replace(tmp_path, self.path)
        logger.debug("Saved topology to %s", self.path)


# ── Repository ───────────────────────────────────────────────────────────────

class TopologyRepository:
    """Holds the current topology; validates, saves and notifies on change."""

    def __init__(self, store: Optional[TopologyStore] = None, topology: Optional[Topology] = None):
        self.store = store or MemoryTopologyStore()
        self._lock = threading.RLock()
        self._subscribers: List[TopologyCallback] = []
        self._topology = topology or Topology()
        self._working: Optional[Topology] = None

    @property
    def topology(self) -> Topology:
        with self._lock:
            return self._topology

    def load(self) -> Topology:
        """Load from the store. A missing blob keeps the current topology."""
        blob = self.store.load()
        if blob is None:
            logger.info("No stored topology; starting empty")
            return self.topology
        topology = Topology.from_blob(blob)
        with self._lock:
            self._topology = topology
        logger.info(
            "Loaded topology: %d cameras, %d connections, %d landmarks",
            len(topology.cameras), len(topology.connections), len(topology.landmarks),
        )
        return topology

    def replace(self, topology: Any) -> Topology:
        """Validate and install a whole new topology document."""
        validated = Topology.from_blob(topology)
        with self._lock:
            subscribers = self._install(validated)
        self._notify(validated, subscribers)
        return validated

    @contextmanager
    def mutate(self) -> Iterator[Topology]:
        """
        Edit a working copy; it is validated and committed on clean exit.

        The lock is held from copy to commit, so concurrent mutations are
        applied one after the other.  A mutation opened inside another one
        on the same thread edits the same working copy and is committed with
        it.  An unchanged working copy commits nothing.
        """
        with self._lock:
            if self._working is not None:
                yield self._working
                return
            working = self._topology.model_copy(deep=True)
            self._working = working
            try:
                yield working
                if working == self._topology:
                    return
                topology = Topology.from_blob(working.to_blob())
                subscribers = self._install(topology)
            finally:
                self._working = None
        self._notify(topology, subscribers)

    def subscribe(self, callback: TopologyCallback) -> Callable[[], None]:
        """Register a change observer. Returns an unsubscribe function."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)
        return unsubscribe

    def _install(self, topology: Topology) -> List[TopologyCallback]:
        self._topology = topology
        self.store.save(topology.to_blob())
        logger.info(
            "Topology updated: %d cameras, %d connections, %d landmarks, %d zones",
            len(topology.cameras), len(topology.connections),
            len(topology.landmarks), len(topology.global_zones),
        )
        return list(self._subscribers)

    def _notify(self, topology: Topology, subscribers: List[TopologyCallback]):
        for callback in subscribers:
            try:
                callback(topology)
            except Exception as e:
                logger.error("Topology subscriber error: %s", e)
