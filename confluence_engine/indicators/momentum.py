"""
Momentum indicators used by the divergence detector.
"""

import pandas as pd

from confluence_engine.indicators.validation_utils import validate_ohlcv


def compute_rsi(df: pd.DataFrame, period: int = 14, validate_input: bool = True) -> pd.Series:
    """
    Relative Strength Index over the ``close`` column, EMA-smoothed.

    The first ``period`` values are warm-up and should not be read as signals.
    A window with gains but no losses saturates at 100.

    Raises:
        ValueError: If ``close`` is absent or fewer than ``period + 1`` rows are given
    """
    if 'close' not in df.columns:
        raise ValueError("DataFrame must contain 'close' column")
    needed = period + 1
    if len(df) < needed:
        raise ValueError(f"Series too short for RSI({period}): {len(df)} rows, need {needed}")
    if validate_input:
        validate_ohlcv(df, require_volume=False, min_rows=needed, raise_on_error=True)

    change = df['close'].diff()
    up = change.where(change > 0, 0.0).ewm(span=period, adjust=False).mean()
    down = (-change).where(change < 0, 0.0).ewm(span=period, adjust=False).mean()

    return (100 - 100 / (1 + up / down)).fillna(100)
