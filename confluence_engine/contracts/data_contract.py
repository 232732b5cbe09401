"""
Market data and fundamental intelligence contracts.

Implementations must raise DataUnavailable when live data cannot be
obtained. Returning cached, estimated or synthetic values is not allowed.
"""

from abc import ABC, abstractmethod
from typing import List

from confluence_engine.shared.models.data import OHLCV, VolumePoint


class MarketDataProvider(ABC):
    """Abstract interface for price and volume series."""

    @abstractmethod
    def get_price_series(self, symbol: str, timeframe: str, limit: int) -> List[OHLCV]:
        """
        Fetch the most recent candles, oldest first.

        Args:
            symbol: Trading pair (e.g., 'BTC/USDT')
            timeframe: Timeframe string ('1m' ... '1d')
            limit: Maximum number of candles

        Raises:
            DataUnavailable: If the fetch fails
        """

    @abstractmethod
    def get_volume_series(self, symbol: str) -> List[VolumePoint]:
        """
        Fetch the recent traded-volume series, oldest first.

        Raises:
            DataUnavailable: If the fetch fails
        """


class FundamentalProvider(ABC):
    """Abstract interface for fundamental / sentiment input."""

    @abstractmethod
    def get_confidence_boost(self, symbol: str) -> float:
        """Confidence points to add for fundamental catalysts (may be negative)."""

    @abstractmethod
    def get_sentiment_score(self, symbol: str) -> float:
        """Market sentiment, 0 (max bearish) to 100 (max bullish)."""
