"""
Optional AI capabilities.

Natural-language descriptions, landmark proposals and scene analysis are
provided by external collaborators.  They are reached only through the
interfaces below and always through a :class:`CapabilityRunner`, which
bounds concurrency and enforces a timeout.  Callers fall back to a basic
(non-AI) result, or skip the feature, when a capability fails or is slow;
the correlation engine never waits on one while holding its lock.
"""

import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout, wait
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Set

from .exceptions import CapabilityTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class MovementContext:
    global_id: str
    class_name: str
    label: Optional[str]
    from_camera_id: str
    from_camera_name: str
    to_camera_id: str
    to_camera_name: str
    transit_ms: float
    topology_summary: str = ""


@dataclass
class Description:
    text: str
    used_ai: bool


class MovementDescriber(ABC):
    """Produces a natural-language description of a cross-camera movement."""

    @abstractmethod
    def describe_movement(self, context: MovementContext) -> str:
        ...


class LandmarkAdvisor(ABC):
    """Proposes a landmark near where an object was seen."""

    @abstractmethod
    def suggest_landmark(
        self, camera_id: str, class_name: str, position: Dict[str, float],
    ) -> Optional[Dict[str, Any]]:
        """Return ``{"name", "type", "description"}`` or None."""


class SceneAnalyzer(ABC):
    """Analyzes a camera's scene into landmarks, zones and edges."""

    @abstractmethod
    def analyze_scene(self, camera_id: str, camera_name: str) -> Dict[str, Any]:
        """Return a scene analysis document (see discovery.models.SceneAnalysis)."""


class CapabilityRunner:
    """
    Bounded worker pool with a per-call timeout.

    ``dispatch`` runs follow-up work (a description, then its alert) on a
    single background thread, in submission order, so that detection
    handling never waits on a capability.
    """

    def __init__(self, max_workers: int = 2, timeout_ms: float = 3000.0):
        self.timeout_ms = timeout_ms
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="capability")
        self._background = ThreadPoolExecutor(max_workers=1, thread_name_prefix="capability-dispatch")
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()

    def submit(self, fn: Callable, *args, **kwargs) -> Future:
        return self._executor.submit(fn, *args, **kwargs)

    def dispatch(self, fn: Callable, *args, **kwargs) -> Future:
        """Run ``fn`` in the background; its exceptions are logged."""
        future = self._background.submit(self._guarded, fn, *args, **kwargs)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def join(self, timeout_ms: Optional[float] = None) -> bool:
        """Wait for dispatched work. Returns False if some is still running."""
        with self._lock:
            pending = list(self._pending)
        timeout = None if timeout_ms is None else timeout_ms / 1000.0
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def run(self, fn: Callable, *args, timeout_ms: Optional[float] = None, **kwargs):
        """Run on the pool and wait at most ``timeout_ms``."""
        timeout = (timeout_ms if timeout_ms is not None else self.timeout_ms) / 1000.0
        future = self._executor.submit(fn, *args, **kwargs)
        try:
            return future.result(timeout=timeout)
        except FutureTimeout as e:
            future.cancel()
            raise CapabilityTimeoutError(
                f"{getattr(fn, '__name__', 'capability')} timed out after {timeout:.1f}s"
            ) from e

    def shutdown(self):
        self._background.shutdown(wait=False, cancel_futures=True)
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _forget(self, future: Future):
        with self._lock:
            self._pending.discard(future)

    @staticmethod
    def _guarded(fn: Callable, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except Exception:
            logger.exception("Background capability task failed")
            return None


def basic_description(ctx: MovementContext) -> str:
    what = ctx.label or ctx.class_name.capitalize()
    seconds = round(ctx.transit_ms / 1000)
    return f"{what} moved from {ctx.from_camera_name} to {ctx.to_camera_name} ({seconds}s)"


class DescriptionService:
    """Movement descriptions with debounce, timeout and basic fallback."""

    def __init__(
        self,
        describer: Optional[MovementDescriber],
        runner: CapabilityRunner,
        clock: Callable[[], float],
        enabled: bool = True,
        debounce_ms: float = 30_000.0,
        fallback_enabled: bool = True,
        timeout_ms: float = 3000.0,
    ):
        self.describer = describer
        self.runner = runner
        self.clock = clock
        self.enabled = enabled
        self.debounce_ms = debounce_ms
        self.fallback_enabled = fallback_enabled
        self.timeout_ms = timeout_ms
        self._last_call: Optional[float] = None
        self._lock = threading.Lock()

        self.ai_calls = 0
        self.fallbacks = 0

    @property
    def uses_ai(self) -> bool:
        return self.describer is not None and self.enabled

    def describe(self, ctx: MovementContext) -> Optional[Description]:
        """Return an AI description, the basic one, or None when skipped."""
        basic = Description(basic_description(ctx), used_ai=False)
        if self.describer is None or not self.enabled:
            return basic

        with self._lock:
            now = self.clock()
            if self._last_call is not None and now - self._last_call < self.debounce_ms:
                return basic
            self._last_call = now

        try:
            text = self.runner.run(self.describer.describe_movement, ctx, timeout_ms=self.timeout_ms)
            self.ai_calls += 1
            return Description(text, used_ai=True)
        except Exception as e:
            logger.warning("Movement description failed for %s: %s", ctx.global_id, e)
            if not self.fallback_enabled:
                return None
            self.fallbacks += 1
            return basic
