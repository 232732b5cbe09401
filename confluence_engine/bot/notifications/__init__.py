"""Signal notification delivery."""

from confluence_engine.bot.notifications.notification_manager import (
    NotificationDispatcher,
    NotificationEvent,
    NotificationStatus,
)
from confluence_engine.bot.notifications.telegram import TelegramNotifier

__all__ = ['NotificationDispatcher', 'NotificationEvent', 'NotificationStatus', 'TelegramNotifier']
