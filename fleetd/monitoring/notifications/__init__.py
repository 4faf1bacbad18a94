"""
Notifier sinks for new alerts.

Each notifier owns its own severity policy and may silently skip alerts
below its configured minimum severity.
"""

from .base import LogNotifier, Notifier
from .telegram_notification import TelegramNotifier

__all__ = [
    'LogNotifier',
    'Notifier',
    'TelegramNotifier'
]
