"""Notification channels, routing and dispatch."""

from study_alerts.notifications.channels import NotificationChannel
from study_alerts.notifications.dashboard_channel import DashboardChannel
from study_alerts.notifications.dispatcher import ChannelResult, Dispatcher, DispatchResult
from study_alerts.notifications.formatting import AlertPayload, build_payload
from study_alerts.notifications.history import (
    InMemoryNotificationHistory,
    NotificationHistory,
    NotificationRecord,
    SQLiteNotificationHistory,
)
from study_alerts.notifications.router import NotificationRouter

__all__ = [
    "AlertPayload",
    "ChannelResult",
    "DashboardChannel",
    "DispatchResult",
    "Dispatcher",
    "InMemoryNotificationHistory",
    "NotificationChannel",
    "NotificationHistory",
    "NotificationRecord",
    "NotificationRouter",
    "SQLiteNotificationHistory",
    "build_payload",
]
