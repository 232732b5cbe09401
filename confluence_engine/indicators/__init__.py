"""
Technical Indicators Package

Provides:
- Momentum indicators (RSI)
- Volatility indicators (ATR, return volatility)
- Volume indicators (surge / dry-up flags)
- RSI divergence detection
- Data validation utilities

All indicator functions follow consistent patterns:
- Accept pandas DataFrame with OHLCV columns
- Return pandas Series, a scalar, or a small result object
- Raise ValueError for insufficient data or missing columns
"""

from confluence_engine.indicators.momentum import compute_rsi
from confluence_engine.indicators.volatility import compute_atr, compute_return_volatility
from confluence_engine.indicators.volume import (
    is_surge,
    is_dry_up,
)
from confluence_engine.indicators.divergence import (
    DivergenceResult,
    detect_rsi_divergence,
    find_swing_highs,
    find_swing_lows,
)
from confluence_engine.indicators.validation_utils import DataValidationError, validate_ohlcv

__all__ = [
    'compute_rsi',
    'compute_atr',
    'compute_return_volatility',
    'is_surge',
    'is_dry_up',
    'DivergenceResult',
    'detect_rsi_divergence',
    'find_swing_highs',
    'find_swing_lows',
    'DataValidationError',
    'validate_ohlcv',
]
