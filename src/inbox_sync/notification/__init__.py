"""Outbound notification sinks."""

from .service import WebhookNotifier

__all__ = ["WebhookNotifier"]
