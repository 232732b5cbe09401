"""Market-data and fundamentals adapters."""

from confluence_engine.data.adapters.mocks import (
    MockMarketData,
    NeutralFundamentals,
    StaticFundamentals,
    StaticMarketData,
    generate_mock_ohlcv,
)

__all__ = [
    'MockMarketData', 'NeutralFundamentals', 'StaticFundamentals', 'StaticMarketData',
    'generate_mock_ohlcv',
]
