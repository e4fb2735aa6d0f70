"""
Alert Manager
=============

Turns tracking events into alerts according to configurable rules.

Each rule applies to one alert type and may be narrowed to object classes
and cameras.  A per ``(rule, object)`` cooldown suppresses repeats.  Movement
alerts for an object that already has an active alert update that alert in
place instead of creating a new one.  Delivery (notifiers, MQTT) is not done
here: callbacks registered with :meth:`AlertManager.add_alert_callback`
receive each new alert.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import deque
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..tracking.models import TrackedObject

logger = logging.getLogger(__name__)


class AlertType(str, Enum):
    PROPERTY_ENTRY = "property_entry"
    PROPERTY_EXIT = "property_exit"
    MOVEMENT = "movement"
    DWELL_TIME = "dwell_time"
    LOST_TRACKING = "lost_tracking"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class AlertRule:
    id: str
    name: str
    type: AlertType
    enabled: bool = True
    severity: AlertSeverity = AlertSeverity.INFO
    object_classes: List[str] = field(default_factory=list)
    camera_ids: List[str] = field(default_factory=list)
    cooldown_ms: float = 60_000.0

    def applies_to(self, class_name: str, camera_id: Optional[str]) -> bool:
        if self.object_classes and class_name not in self.object_classes:
            return False
        if self.camera_ids and camera_id and camera_id not in self.camera_ids:
            return False
        return True

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'AlertRule':
        return cls(
            id=d['id'],
            name=d.get('name', d['id']),
            type=AlertType(d['type']),
            enabled=bool(d.get('enabled', True)),
            severity=AlertSeverity(d.get('severity', 'info')),
            object_classes=list(d.get('object_classes', [])),
            camera_ids=list(d.get('camera_ids', [])),
            cooldown_ms=float(d.get('cooldown_sec', 60)) * 1000.0,
        )


@dataclass
class Alert:
    id: str
    type: AlertType
    severity: AlertSeverity
    timestamp: float
    global_id: str
    rule_id: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        d = asdict(self)
        d['type'] = self.type.value
        d['severity'] = self.severity.value
        return d


def create_default_rules() -> List[AlertRule]:
    return [
        AlertRule('property-entry', 'Property Entry', AlertType.PROPERTY_ENTRY,
                  severity=AlertSeverity.INFO, cooldown_ms=300_000),
        AlertRule('property-exit', 'Property Exit', AlertType.PROPERTY_EXIT,
                  severity=AlertSeverity.INFO, cooldown_ms=300_000),
        AlertRule('movement', 'Movement Between Cameras', AlertType.MOVEMENT,
                  severity=AlertSeverity.INFO, cooldown_ms=60_000),
        AlertRule('loitering', 'Loitering', AlertType.DWELL_TIME,
                  severity=AlertSeverity.WARNING, cooldown_ms=0),
        AlertRule('lost-tracking', 'Lost Tracking', AlertType.LOST_TRACKING,
                  enabled=False, severity=AlertSeverity.INFO, cooldown_ms=300_000),
    ]


def generate_alert_message(alert_type: AlertType, details: Dict[str, Any]) -> str:
    what = details.get('object_label') or details.get('object_class') or 'Object'
    camera = details.get('camera_name') or details.get('camera_id') or 'unknown camera'
    if alert_type == AlertType.PROPERTY_ENTRY:
        return f"{what} entered the property at {camera}"
    if alert_type == AlertType.PROPERTY_EXIT:
        return f"{what} left the property via {camera}"
    if alert_type == AlertType.MOVEMENT:
        if details.get('description'):
            return details['description']
        src = details.get('from_camera_name') or details.get('from_camera_id')
        return f"{what} moved from {src} to {camera}"
    if alert_type == AlertType.DWELL_TIME:
        seconds = int(details.get('dwell_time_ms', 0) / 1000)
        return f"{what} lingering at {camera} for {seconds}s"
    if alert_type == AlertType.LOST_TRACKING:
        return f"Lost track of {what} after {camera}"
    return f"{what}: {alert_type.value}"


def get_active_alert_key(alert_type: AlertType, rule_id: str, global_id: str) -> str:
    return f"{alert_type.value}:{rule_id}:{global_id}"


def should_send_update_notification(
    enabled: bool, last_notified: float, now: float, cooldown_ms: float,
) -> bool:
    if not enabled:
        return False
    if cooldown_ms <= 0:
        return True
    return now - last_notified >= cooldown_ms


class AlertManager:
    """Evaluates alert rules with per-object cooldowns."""

    def __init__(
        self,
        rules: Optional[List[AlertRule]] = None,
        max_alerts: int = 100,
        active_alert_ttl_ms: float = 600_000.0,
        notify_on_updates: bool = False,
        update_cooldown_ms: float = 60_000.0,
    ):
        self.rules: List[AlertRule] = rules if rules is not None else create_default_rules()
        self.active_alert_ttl_ms = active_alert_ttl_ms
        self.notify_on_updates = notify_on_updates
        self.update_cooldown_ms = update_cooldown_ms

        self._recent: deque = deque(maxlen=max_alerts)
        self._cooldowns: Dict[str, float] = {}
        self._active: Dict[str, Dict[str, Any]] = {}
        self._callbacks: List[Callable[[Alert], None]] = []
        self._lock = threading.Lock()

        self.alert_count = 0

    def add_alert_callback(self, callback: Callable[[Alert], None]):
        """Register a callback for new (and re-notified) alerts."""
        self._callbacks.append(callback)

    def get_rule(self, alert_type: AlertType) -> Optional[AlertRule]:
        return next((r for r in self.rules if r.type == alert_type and r.enabled), None)

    def check_and_alert(
        self,
        alert_type: AlertType,
        tracked: TrackedObject,
        details: Dict[str, Any],
        now: float,
    ) -> Optional[Alert]:
        """Create an alert if a rule matches and cooldown allows. Returns it or None."""
        with self._lock:
            alert, notify = self._check_impl(alert_type, tracked, details, now)

        if alert is not None and notify:
            for callback in self._callbacks:
                try:
                    callback(alert)
                except Exception as e:
                    logger.error("Alert callback error: %s", e)
        return alert

    def get_recent_alerts(self, limit: Optional[int] = None) -> List[Alert]:
        with self._lock:
            alerts = list(self._recent)
        return alerts[:limit] if limit else alerts

    def clear(self):
        with self._lock:
            self._recent.clear()
            self._cooldowns.clear()
            self._active.clear()

    # ── internal implementation ──────────────────────────────────────────

    def _check_impl(self, alert_type, tracked, details, now):
        rule = self.get_rule(alert_type)
        if rule is None:
            return None, False
        if not rule.applies_to(tracked.class_name, details.get('camera_id')):
            return None, False

        self._expire_active(now)

        full_details = dict(details)
        full_details['object_class'] = tracked.class_name
        full_details.setdefault('object_label', tracked.label)

        if alert_type == AlertType.MOVEMENT:
            key = get_active_alert_key(alert_type, rule.id, tracked.global_id)
            active = self._active.get(key)
            if active is not None:
                alert: Alert = active['alert']
                alert.details.update(full_details)
                alert.message = generate_alert_message(alert_type, alert.details)
                active['last_update'] = now
                notify = should_send_update_notification(
                    self.notify_on_updates, active['last_notified'], now, self.update_cooldown_ms,
                )
                if notify:
                    active['last_notified'] = now
                return alert, notify

        cooldown_key = f"{rule.id}:{tracked.global_id}"
        last = self._cooldowns.get(cooldown_key)
        if rule.cooldown_ms > 0 and last is not None and now - last < rule.cooldown_ms:
            return None, False

        alert = Alert(
            id=f"alert-{uuid.uuid4().hex[:12]}",
            type=alert_type,
            severity=rule.severity,
            timestamp=now,
            global_id=tracked.global_id,
            rule_id=rule.id,
            message=generate_alert_message(alert_type, full_details),
            details=full_details,
        )
        self._recent.appendleft(alert)
        self._cooldowns[cooldown_key] = now
        if alert_type == AlertType.MOVEMENT:
            key = get_active_alert_key(alert_type, rule.id, tracked.global_id)
            self._active[key] = {'alert': alert, 'last_update': now, 'last_notified': now}

        self.alert_count += 1
        logger.info("Alert generated: [%s] %s", alert.severity.value, alert.message)
        return alert, True

    def _expire_active(self, now: float):
        stale = [k for k, v in self._active.items() if now - v['last_update'] > self.active_alert_ttl_ms]
        for k in stale:
            del self._active[k]
