"""
Volatility measures: ATR for stop/target distances and trend strength,
return volatility for pressure-zone scoring.
"""

import numpy as np
import pandas as pd

from confluence_engine.indicators.validation_utils import validate_ohlcv

PRICE_COLUMNS = ('high', 'low', 'close')


def true_range(df: pd.DataFrame) -> pd.Series:
    """Bar range extended to the previous close when price gapped."""
    prev_close = df['close'].shift()
    ranges = pd.concat(
        [df['high'] - df['low'], (df['high'] - prev_close).abs(), (df['low'] - prev_close).abs()],
        axis=1,
    )
    return ranges.max(axis=1)


def compute_atr(df: pd.DataFrame, period: int = 14, validate_input: bool = True) -> pd.Series:
    """
    Average True Range, EMA-smoothed over ``period`` bars.

    Raises:
        ValueError: On missing price columns or fewer than ``period + 1`` rows
    """
    missing = [col for col in PRICE_COLUMNS if col not in df.columns]
    if missing:
        raise ValueError(f"DataFrame missing required columns: {missing}")
    needed = period + 1
    if len(df) < needed:
        raise ValueError(f"Series too short for ATR({period}): {len(df)} rows, need {needed}")
    if validate_input:
        validate_ohlcv(df, require_volume=False, min_rows=needed, raise_on_error=True)

    return true_range(df).ewm(span=period, adjust=False).mean()


def compute_return_volatility(closes: pd.Series) -> float:
    """Population std of simple returns as a fraction; 0.0 when there is nothing to measure."""
    returns = closes.pct_change().dropna()
    if returns.empty:
        return 0.0
    return float(np.std(returns.to_numpy()))
