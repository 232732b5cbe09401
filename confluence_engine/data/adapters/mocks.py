"""
Deterministic market-data and fundamentals providers.

Synthetic series are generated from a seed so every run (and every test)
sees the same candles. Used for dry runs and tests only; live adapters never
fall back to these.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
import zlib

import numpy as np

from confluence_engine.contracts.data_contract import FundamentalProvider, MarketDataProvider
from confluence_engine.shared.models.data import OHLCV, VolumePoint
from confluence_engine.shared.utils.error_policy import DataUnavailable

REGIMES = ('uptrend', 'downtrend', 'ranging', 'volatile')

TIMEFRAME_MINUTES = {
    '1m': 1,
    '5m': 5,
    '15m': 15,
    '1h': 60,
    '4h': 240,
    '1d': 1440,
}

DEFAULT_START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def generate_mock_ohlcv(
    regime: str,
    bars: int = 200,
    seed: int = 42,
    base_price: float = 100.0,
    interval: timedelta = timedelta(hours=1),
    start: datetime = DEFAULT_START,
) -> List[OHLCV]:
    """
    Generate mock OHLCV data for a market regime.

    Args:
        regime: 'uptrend', 'downtrend', 'ranging' or 'volatile'
        bars: Number of bars to generate
        seed: Random seed for reproducibility
        base_price: Starting (or mean, for ranging) price
        interval: Bar spacing
        start: Timestamp of the first bar

    Returns:
        List of OHLCV instances, oldest first
    """
    if regime not in REGIMES:
        raise ValueError(f"Unknown regime: {regime}. Use one of {', '.join(REGIMES)}")
    if bars < 1:
        raise ValueError(f"bars must be >= 1, got {bars}")

    rng = np.random.RandomState(seed)
    drift, volatility = {
        'uptrend': (0.004, 0.004),
        'downtrend': (-0.004, 0.004),
        'ranging': (0.0, 0.003),
        'volatile': (0.0, 0.02),
    }[regime]

    candles = []
    price = base_price
    for i in range(bars):
        if regime == 'ranging':
            target = base_price * (1 + 0.03 * np.sin(i * 0.2))
            price = target * (1 + rng.normal(0, volatility))
        open_price = price
        close_price = open_price * (1 + drift + rng.normal(0, volatility))
        close_price = max(close_price, base_price * 0.01)
        wick = abs(rng.normal(0, volatility * 0.5))
        high_price = max(open_price, close_price) * (1 + wick)
        low_price = min(open_price, close_price) * (1 - wick)
        volume = rng.uniform(800, 1200)

        candles.append(OHLCV(
            timestamp=start + interval * i,
            open=round(open_price, 6),
            high=round(high_price, 6),
            low=round(low_price, 6),
            close=round(close_price, 6),
            volume=round(volume, 2),
        ))
        price = close_price

    return candles


def _stable_seed(*parts: str) -> int:
    return zlib.crc32("|".join(parts).encode()) & 0x7FFFFFFF


class MockMarketData(MarketDataProvider):
    """
    Seeded synthetic market data.

    Each (symbol, timeframe) pair gets its own stable seed, so repeated calls
    return identical series. Symbols listed in ``failing_symbols`` raise
    DataUnavailable.
    """

    def __init__(
        self,
        regimes: Optional[Mapping[str, str]] = None,
        default_regime: str = 'ranging',
        bars: int = 200,
        volume_timeframe: str = '15m',
        failing_symbols: Iterable[str] = (),
        seed: int = 42,
    ):
        self.regimes = dict(regimes or {})
        self.default_regime = default_regime
        self.bars = bars
        self.volume_timeframe = volume_timeframe
        self.failing_symbols = set(failing_symbols)
        self.seed = seed
        self._cache: Dict[Tuple[str, str], List[OHLCV]] = {}

    def _series(self, symbol: str, timeframe: str) -> List[OHLCV]:
        key = (symbol, timeframe)
        if key not in self._cache:
            minutes = TIMEFRAME_MINUTES.get(timeframe, 60)
            self._cache[key] = generate_mock_ohlcv(
                self.regimes.get(symbol, self.default_regime),
                bars=self.bars,
                seed=_stable_seed(str(self.seed), symbol, timeframe),
                base_price=100.0 + _stable_seed(symbol) % 900,
                interval=timedelta(minutes=minutes),
            )
        return self._cache[key]

    def get_price_series(self, symbol: str, timeframe: str, limit: int) -> List[OHLCV]:
        if symbol in self.failing_symbols:
            raise DataUnavailable(symbol, "mock feed configured to fail", timeframe)
        return self._series(symbol, timeframe)[-limit:]

    def get_volume_series(self, symbol: str) -> List[VolumePoint]:
        candles = self.get_price_series(symbol, self.volume_timeframe, self.bars)
        return [VolumePoint(timestamp=c.timestamp, value=c.volume) for c in candles]


class StaticMarketData(MarketDataProvider):
    """
    Serves pre-built series.

    ``series`` maps symbol -> timeframe -> candles; ``volumes`` maps symbol ->
    volume points (derived from the ``volume_timeframe`` candles when absent).
    """

    def __init__(
        self,
        series: Mapping[str, Mapping[str, Sequence[OHLCV]]],
        volumes: Optional[Mapping[str, Sequence[VolumePoint]]] = None,
        volume_timeframe: str = '15m',
        failing_symbols: Iterable[str] = (),
    ):
        self.series = {symbol: dict(by_tf) for symbol, by_tf in series.items()}
        self.volumes = dict(volumes or {})
        self.volume_timeframe = volume_timeframe
        self.failing_symbols = set(failing_symbols)
        self.calls: List[Tuple[str, str]] = []

    def set_series(self, symbol: str, timeframe: str, candles: Sequence[OHLCV]):
        self.series.setdefault(symbol, {})[timeframe] = list(candles)

    def get_price_series(self, symbol: str, timeframe: str, limit: int) -> List[OHLCV]:
        self.calls.append((symbol, timeframe))
        if symbol in self.failing_symbols:
            raise DataUnavailable(symbol, "feed unavailable", timeframe)
        candles = self.series.get(symbol, {}).get(timeframe)
        if candles is None:
            raise DataUnavailable(symbol, "no series configured", timeframe)
        return list(candles)[-limit:]

    def get_volume_series(self, symbol: str) -> List[VolumePoint]:
        if symbol in self.failing_symbols:
            raise DataUnavailable(symbol, "feed unavailable")
        if symbol in self.volumes:
            return list(self.volumes[symbol])
        candles = self.series.get(symbol, {}).get(self.volume_timeframe, [])
        return [VolumePoint(timestamp=c.timestamp, value=c.volume) for c in candles]


class NeutralFundamentals(FundamentalProvider):
    """No catalysts, neutral sentiment."""

    def get_confidence_boost(self, symbol: str) -> float:
        return 0.0

    def get_sentiment_score(self, symbol: str) -> float:
        return 50.0


class StaticFundamentals(FundamentalProvider):
    """Fixed per-symbol boosts and sentiment; listed symbols raise."""

    def __init__(
        self,
        boosts: Optional[Mapping[str, float]] = None,
        sentiments: Optional[Mapping[str, float]] = None,
        default_boost: float = 0.0,
        default_sentiment: float = 50.0,
        failing_symbols: Iterable[str] = (),
    ):
        self.boosts = dict(boosts or {})
        self.sentiments = dict(sentiments or {})
        self.default_boost = default_boost
        self.default_sentiment = default_sentiment
        self.failing_symbols = set(failing_symbols)

    def get_confidence_boost(self, symbol: str) -> float:
        if symbol in self.failing_symbols:
            raise RuntimeError(f"fundamentals service error for {symbol}")
        return self.boosts.get(symbol, self.default_boost)

    def get_sentiment_score(self, symbol: str) -> float:
        if symbol in self.failing_symbols:
            raise RuntimeError(f"fundamentals service error for {symbol}")
        return self.sentiments.get(symbol, self.default_sentiment)
