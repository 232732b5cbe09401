"""
Binance market-data adapter.

Fetches candles through ccxt, retrying rate-limit and network errors with
backoff. Any remaining exchange failure surfaces as DataUnavailable; no
cached or synthetic data is ever returned.
"""

from datetime import datetime, timezone
from typing import List, Optional

import ccxt
from loguru import logger

from confluence_engine.contracts.data_contract import MarketDataProvider
from confluence_engine.shared.models.data import OHLCV, VolumePoint
from confluence_engine.shared.utils.error_policy import DataUnavailable
from confluence_engine.shared.utils.retry import retry_on_exception

RETRYABLE_ERRORS = (ccxt.RateLimitExceeded, ccxt.NetworkError)


class BinanceMarketData(MarketDataProvider):
    """
    MarketDataProvider backed by Binance spot markets.

    The volume series comes from the ``volume_timeframe`` candles, so it
    lines up with the pressure-zone price series.
    """

    def __init__(
        self,
        volume_timeframe: str = '15m',
        volume_limit: int = 200,
        testnet: bool = False,
        exchange: Optional[ccxt.Exchange] = None,
    ):
        """
        Initialize Binance exchange connection.

        Args:
            volume_timeframe: Timeframe of the candles backing get_volume_series
            volume_limit: Number of volume points returned
            testnet: If True, use the Binance sandbox
            exchange: Pre-built ccxt exchange (tests)
        """
        self.volume_timeframe = volume_timeframe
        self.volume_limit = volume_limit
        self.exchange = exchange or ccxt.binance({
            'enableRateLimit': True,
            'options': {'adjustForTimeDifference': True},
        })

        if testnet:
            self.exchange.set_sandbox_mode(True)
            logger.info("Binance adapter initialized in TESTNET mode")
        else:
            logger.info("Binance adapter initialized in PRODUCTION mode")

    @retry_on_exception(RETRYABLE_ERRORS, max_retries=3, backoff=1.0)
    def _fetch_raw(self, symbol: str, timeframe: str, limit: int) -> list:
        return self.exchange.fetch_ohlcv(symbol=symbol, timeframe=timeframe, limit=limit)

    def get_price_series(self, symbol: str, timeframe: str, limit: int) -> List[OHLCV]:
        try:
            logger.debug(f"Fetching {limit} {timeframe} candles for {symbol}")
            rows = self._fetch_raw(symbol, timeframe, limit)
        except ccxt.BaseError as e:
            logger.error(f"Exchange error fetching {symbol} {timeframe}: {e}")
            raise DataUnavailable(symbol, str(e), timeframe) from e

        if not rows:
            raise DataUnavailable(symbol, "exchange returned no candles", timeframe)

        candles = []
        skipped = 0
        for ts, o, h, l, c, v in rows:
            try:
                candles.append(OHLCV(
                    timestamp=datetime.fromtimestamp(ts / 1000, tz=timezone.utc),
                    open=float(o),
                    high=float(h),
                    low=float(l),
                    close=float(c),
                    volume=float(v or 0.0),
                ))
            except (TypeError, ValueError):
                skipped += 1

        if skipped:
            logger.warning(f"Dropped {skipped} invalid OHLCV rows for {symbol} {timeframe}")
        if not candles:
            raise DataUnavailable(symbol, "no valid candles", timeframe)

        logger.debug(f"✓ Fetched {len(candles)} candles for {symbol} {timeframe}")
        return candles

    def get_volume_series(self, symbol: str) -> List[VolumePoint]:
        candles = self.get_price_series(symbol, self.volume_timeframe, self.volume_limit)
        return [VolumePoint(timestamp=c.timestamp, value=c.volume) for c in candles]
