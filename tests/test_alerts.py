"""
Tests for alert manager module.
"""

from spatial_tracker.alerts.manager import (
    AlertManager, AlertRule, AlertSeverity, AlertType,
    generate_alert_message, should_send_update_notification,
)
from spatial_tracker.tracking.models import Sighting
from spatial_tracker.tracking.registry import TrackingRegistry


def tracked(label=None, class_name='person'):
    registry = TrackingRegistry()
    return registry.create(Sighting(
        camera_id='cam-a', timestamp=0, class_name=class_name, score=0.9, label=label,
    ))


class TestAlertRule:
    """Tests for AlertRule."""

    def test_from_dict(self):
        rule = AlertRule.from_dict({
            'id': 'night-entry', 'type': 'property_entry', 'severity': 'critical',
            'object_classes': ['person'], 'cooldown_sec': 10,
        })
        assert rule.type == AlertType.PROPERTY_ENTRY
        assert rule.severity == AlertSeverity.CRITICAL
        assert rule.cooldown_ms == 10000
        assert rule.name == 'night-entry'

    def test_applies_to(self):
        rule = AlertRule('r', 'r', AlertType.MOVEMENT, object_classes=['person'], camera_ids=['cam-a'])
        assert rule.applies_to('person', 'cam-a')
        assert not rule.applies_to('car', 'cam-a')
        assert not rule.applies_to('person', 'cam-b')


class TestAlertMessages:
    """Tests for alert message generation."""

    def test_messages(self):
        details = {'object_class': 'person', 'camera_name': 'Front Door'}
        assert generate_alert_message(AlertType.PROPERTY_ENTRY, details) == \
            "person entered the property at Front Door"
        assert generate_alert_message(AlertType.DWELL_TIME, {**details, 'dwell_time_ms': 45500}) == \
            "person lingering at Front Door for 45s"
        assert generate_alert_message(AlertType.LOST_TRACKING, {'object_label': 'Alice'}) == \
            "Lost track of Alice after unknown camera"

    def test_movement_prefers_description(self):
        details = {'object_class': 'person', 'camera_name': 'Driveway',
                   'from_camera_name': 'Front Door'}
        assert generate_alert_message(AlertType.MOVEMENT, details) == \
            "person moved from Front Door to Driveway"
        details['description'] = "Someone walked down the driveway"
        assert generate_alert_message(AlertType.MOVEMENT, details) == \
            "Someone walked down the driveway"

    def test_update_notification(self):
        assert not should_send_update_notification(False, 0, 100000, 0)
        assert should_send_update_notification(True, 0, 1, 0)
        assert not should_send_update_notification(True, 0, 30000, 60000)
        assert should_send_update_notification(True, 0, 60000, 60000)


class TestAlertManager:
    """Tests for AlertManager."""

    def test_rule_cooldown_per_object(self):
        manager = AlertManager()
        obj = tracked()
        details = {'camera_id': 'cam-a', 'camera_name': 'Front Door'}
        assert manager.check_and_alert(AlertType.PROPERTY_ENTRY, obj, details, 0) is not None
        assert manager.check_and_alert(AlertType.PROPERTY_ENTRY, obj, details, 1000) is None
        assert manager.check_and_alert(AlertType.PROPERTY_ENTRY, tracked(), details, 1000) is not None
        assert manager.check_and_alert(AlertType.PROPERTY_ENTRY, obj, details, 300000) is not None
        assert manager.alert_count == 3

    def test_disabled_rule(self):
        manager = AlertManager()
        assert manager.check_and_alert(AlertType.LOST_TRACKING, tracked(), {}, 0) is None

    def test_movement_updates_active_alert(self):
        manager = AlertManager()
        obj = tracked()
        first = manager.check_and_alert(
            AlertType.MOVEMENT, obj, {'camera_name': 'Driveway', 'from_camera_name': 'Front Door'}, 0,
        )
        second = manager.check_and_alert(
            AlertType.MOVEMENT, obj, {'camera_name': 'Back Gate', 'from_camera_name': 'Driveway'}, 10000,
        )
        assert second is first
        assert first.message == "person moved from Driveway to Back Gate"
        assert len(manager.get_recent_alerts()) == 1

    def test_active_movement_alert_expires(self):
        manager = AlertManager(active_alert_ttl_ms=1000)
        obj = tracked()
        details = {'camera_name': 'Driveway', 'from_camera_name': 'Front Door'}
        first = manager.check_and_alert(AlertType.MOVEMENT, obj, details, 0)
        second = manager.check_and_alert(AlertType.MOVEMENT, obj, details, 70000)
        assert second is not first

    def test_callbacks_and_errors(self):
        manager = AlertManager()
        received = []

        def broken(_alert):
            raise RuntimeError("notifier down")

        manager.add_alert_callback(broken)
        manager.add_alert_callback(received.append)
        alert = manager.check_and_alert(AlertType.PROPERTY_ENTRY, tracked(), {}, 0)
        assert received == [alert]

    def test_label_in_message(self):
        manager = AlertManager()
        alert = manager.check_and_alert(
            AlertType.PROPERTY_EXIT, tracked(label='Alice'), {'camera_name': 'Back Gate'}, 0,
        )
        assert alert.message == "Alice left the property via Back Gate"
        assert alert.to_dict()['type'] == 'property_exit'

    def test_recent_limit_and_clear(self):
        manager = AlertManager(max_alerts=2)
        for _ in range(3):
            manager.check_and_alert(AlertType.DWELL_TIME, tracked(), {'dwell_time_ms': 5000}, 0)
        assert len(manager.get_recent_alerts()) == 2
        assert len(manager.get_recent_alerts(limit=1)) == 1
        manager.clear()
        assert manager.get_recent_alerts() == []
