"""
Data models for OHLCV candles and volume points.

Defines the raw market-data records supplied by market-data collaborators
and the conversion helpers used by detectors, which operate on DataFrames.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence
import pandas as pd


@dataclass(frozen=True)
class OHLCV:
    """
    Single OHLCV (Open, High, Low, Close, Volume) candlestick data point.

    Attributes:
        timestamp: Candle open time
        open: Opening price
        high: Highest price during period
        low: Lowest price during period
        close: Closing price
        volume: Trading volume
    """
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float

    def __post_init__(self):
        """Validate OHLCV relationships."""
        if self.high < self.low:
            raise ValueError(f"High ({self.high}) cannot be less than Low ({self.low})")
        if self.high < self.close or self.high < self.open:
            raise ValueError(f"High ({self.high}) must be >= Open ({self.open}) and Close ({self.close})")
        if self.low > self.close or self.low > self.open:
            raise ValueError(f"Low ({self.low}) must be <= Open ({self.open}) and Close ({self.close})")
        if self.volume < 0:
            raise ValueError(f"Volume cannot be negative, got {self.volume}")


@dataclass(frozen=True)
class VolumePoint:
    """Traded volume at a point in time."""
    timestamp: datetime
    value: float

    def __post_init__(self):
        if self.value < 0:
            raise ValueError(f"Volume cannot be negative, got {self.value}")


OHLCV_COLUMNS = ['open', 'high', 'low', 'close', 'volume']


def candles_to_dataframe(
    candles: Sequence[OHLCV],
    volumes: Optional[Sequence[VolumePoint]] = None,
) -> pd.DataFrame:
    """
    Convert candles to a timestamp-indexed OHLCV DataFrame.

    When ``volumes`` has the same length as ``candles`` its values replace
    the candle volumes (the dedicated volume feed is authoritative).
    """
    if not candles:
        return pd.DataFrame(columns=OHLCV_COLUMNS)

    df = pd.DataFrame(
        {
            'open': [c.open for c in candles],
            'high': [c.high for c in candles],
            'low': [c.low for c in candles],
            'close': [c.close for c in candles],
            'volume': [c.volume for c in candles],
        },
        index=pd.Index([c.timestamp for c in candles], name='timestamp'),
    )
    if volumes is not None and len(volumes) == len(candles):
        df['volume'] = [v.value for v in volumes]
    return df.astype(float)


def volume_points_from_candles(candles: Sequence[OHLCV]) -> List[VolumePoint]:
    """Extract a volume series from candles."""
    return [VolumePoint(timestamp=c.timestamp, value=c.volume) for c in candles]
