"""
Collaborator contracts.

Abstract interfaces for the engine's external collaborators: market data,
fundamental intelligence, notification delivery and persistence.
"""

from .data_contract import MarketDataProvider, FundamentalProvider
from .notification_contract import Notifier
from .store_contract import SignalStore

__all__ = [
    'MarketDataProvider',
    'FundamentalProvider',
    'Notifier',
    'SignalStore',
]
