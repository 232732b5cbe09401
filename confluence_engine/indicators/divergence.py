"""
Divergence Detection Module

Detects regular price/RSI divergences on confirmed swing points:
- Regular Bullish Divergence: Price lower low + RSI higher low (reversal signal)
- Regular Bearish Divergence: Price higher high + RSI lower high (reversal signal)
"""

from dataclasses import dataclass
from typing import List, Optional
import pandas as pd
from loguru import logger

from confluence_engine.indicators.momentum import compute_rsi


@dataclass(frozen=True)
class DivergenceResult:
    """Container for divergence detection results"""
    divergence_type: str  # 'regular_bullish' or 'regular_bearish'
    price_pivot_1: int
    price_pivot_2: int
    price_value_1: float
    price_value_2: float
    indicator_value_1: float
    indicator_value_2: float
    strength: float  # 0-100

    @property
    def direction(self) -> str:
        return 'bullish' if 'bullish' in self.divergence_type else 'bearish'


def find_swing_highs(series: pd.Series, lookback: int = 5) -> List[int]:
    """
    Find swing highs (local peaks) in a series.

    Args:
        series: Price or indicator series
        lookback: Number of bars to look left/right for peak detection

    Returns:
        List of positional indices where swing highs occur
    """
    swing_highs = []

    for i in range(lookback, len(series) - lookback):
        is_peak = True
        current_value = series.iloc[i]

        for j in range(1, lookback + 1):
            if (series.iloc[i - j] >= current_value or
                    series.iloc[i + j] >= current_value):
                is_peak = False
                break

        if is_peak:
            swing_highs.append(i)

    return swing_highs


def find_swing_lows(series: pd.Series, lookback: int = 5) -> List[int]:
    """
    Find swing lows (local troughs) in a series.

    Args:
        series: Price or indicator series
        lookback: Number of bars to look left/right for trough detection

    Returns:
        List of positional indices where swing lows occur
    """
    swing_lows = []

    for i in range(lookback, len(series) - lookback):
        is_trough = True
        current_value = series.iloc[i]

        for j in range(1, lookback + 1):
            if (series.iloc[i - j] <= current_value or
                    series.iloc[i + j] <= current_value):
                is_trough = False
                break

        if is_trough:
            swing_lows.append(i)

    return swing_lows


def detect_rsi_divergence(
    df: pd.DataFrame,
    rsi_period: int = 14,
    lookback: int = 40,
    pivot_lookback: int = 3,
) -> Optional[DivergenceResult]:
    """
    Detect the most recent regular RSI divergence within ``lookback`` bars.

    Compares the last two confirmed swing lows (bullish) and the last two
    confirmed swing highs (bearish). When both exist the one whose second
    pivot is more recent wins.

    Returns:
        DivergenceResult or None
    """
    if len(df) < max(lookback, rsi_period + 1):
        return None

    rsi = compute_rsi(df, period=rsi_period, validate_input=False)
    window = df.iloc[-lookback:]
    rsi_window = rsi.iloc[-lookback:]
    offset = len(df) - lookback

    candidates = []

    lows = find_swing_lows(window['low'], pivot_lookback)
    if len(lows) >= 2:
        i1, i2 = lows[-2], lows[-1]
        p1, p2 = window['low'].iloc[i1], window['low'].iloc[i2]
        r1, r2 = rsi_window.iloc[i1], rsi_window.iloc[i2]
        if p2 < p1 and r2 > r1:
            candidates.append(('regular_bullish', i1, i2, p1, p2, r1, r2))

    highs = find_swing_highs(window['high'], pivot_lookback)
    if len(highs) >= 2:
        i1, i2 = highs[-2], highs[-1]
        p1, p2 = window['high'].iloc[i1], window['high'].iloc[i2]
        r1, r2 = rsi_window.iloc[i1], rsi_window.iloc[i2]
        if p2 > p1 and r2 < r1:
            candidates.append(('regular_bearish', i1, i2, p1, p2, r1, r2))

    if not candidates:
        return None

    div_type, i1, i2, p1, p2, r1, r2 = max(candidates, key=lambda c: c[2])
    strength = min(abs(r2 - r1) * 5.0, 100.0)
    logger.debug(f"RSI divergence {div_type} between bars {offset + i1} and {offset + i2} (strength {strength:.1f})")

    return DivergenceResult(
        divergence_type=div_type,
        price_pivot_1=offset + i1,
        price_pivot_2=offset + i2,
        price_value_1=float(p1),
        price_value_2=float(p2),
        indicator_value_1=float(r1),
        indicator_value_2=float(r2),
        strength=float(strength),
    )
