"""Alerting layer - notifications for mapped signals."""

from market_signals.alerter.formatter import (
    build_notification_key,
    format_body,
    format_signal_type,
    format_title,
)
from market_signals.alerter.publisher import NotificationPublisher, PublishSummary

__all__ = [
    "NotificationPublisher",
    "PublishSummary",
    "build_notification_key",
    "format_body",
    "format_signal_type",
    "format_title",
]
