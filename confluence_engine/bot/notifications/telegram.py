"""
Telegram delivery through the Bot API.
"""

from typing import Sequence
import logging

import requests

from confluence_engine.bot.notifications.notification_manager import format_signal_body, format_signal_title
from confluence_engine.contracts.notification_contract import Notifier
from confluence_engine.shared.models.signals import EmittedSignal

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"
MAX_MESSAGE_LENGTH = 4096


class TelegramNotifier(Notifier):
    """Posts plain-text signal messages to a Telegram chat."""

    def __init__(self, bot_token: str, chat_id: str, timeout: float = 10.0,
                 session: requests.Session = None):
        if not bot_token or not chat_id:
            raise ValueError("bot_token and chat_id are required")
        self.chat_id = chat_id
        self.timeout = timeout
        self._url = f"{TELEGRAM_API}/bot{bot_token}/sendMessage"
        self._session = session or requests.Session()

    def send(self, signal: EmittedSignal, reasoning: Sequence[str]) -> bool:
        text = f"{format_signal_title(signal)}\n{format_signal_body(signal, reasoning)}"
        try:
            response = self._session.post(
                self._url,
                json={'chat_id': self.chat_id, 'text': text[:MAX_MESSAGE_LENGTH]},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error("Telegram send failed for %s: %s", signal.id, e)
            return False

        logger.debug("Telegram message sent for %s", signal.id)
        return True
