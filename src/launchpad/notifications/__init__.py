"""Outbound notification of job update events."""

from launchpad.notifications.webhook import WebhookNotifier

__all__ = ["WebhookNotifier"]
