"""
Alerting module.
Rule evaluation, cooldowns and the recent-alert log.
"""

from .manager import (
    AlertManager, Alert, AlertRule, AlertType, AlertSeverity,
    create_default_rules, generate_alert_message,
    get_active_alert_key, should_send_update_notification,
)


__all__ = [
    'AlertManager',
    'Alert',
    'AlertRule',
    'AlertType',
    'AlertSeverity',
    'create_default_rules',
    'generate_alert_message',
    'get_active_alert_key',
    'should_send_update_notification',
]
