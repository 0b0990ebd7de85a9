"""Security monitor and alert pipeline."""

from keyward.monitor.alerts import (
    AlertChannel,
    AlertDispatcher,
    AlertResult,
    ChannelKind,
    ConsoleAlert,
    ConsoleChannelConfig,
    EmailAlert,
    EmailChannelConfig,
    WebhookAlert,
    WebhookChannelConfig,
    create_channel,
)
from keyward.monitor.models import (
    EventQuery,
    SecurityEvent,
    SecurityEventCreate,
    SecurityEventType,
    SecurityStats,
    Severity,
)
from keyward.monitor.monitor import SecurityMonitor

__all__ = [
    "AlertChannel",
    "AlertDispatcher",
    "AlertResult",
    "ChannelKind",
    "ConsoleAlert",
    "ConsoleChannelConfig",
    "EmailAlert",
    "EmailChannelConfig",
    "EventQuery",
    "SecurityEvent",
    "SecurityEventCreate",
    "SecurityEventType",
    "SecurityMonitor",
    "SecurityStats",
    "Severity",
    "WebhookAlert",
    "WebhookChannelConfig",
    "create_channel",
]
