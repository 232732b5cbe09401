"""
Notification delivery contract.
"""

from abc import ABC, abstractmethod
from typing import Sequence

from confluence_engine.shared.models.signals import EmittedSignal


class Notifier(ABC):
    """Delivers finished signals to humans (chat bot, e-mail, ...)."""

    @abstractmethod
    def send(self, signal: EmittedSignal, reasoning: Sequence[str]) -> bool:
        """
        Deliver a signal.

        Returns:
            True on success, False on a handled delivery failure
        """
