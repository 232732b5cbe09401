"""
Market structure detection.

Implements two Smart Money Concept events:
- Break of Structure (BOS): a recent close beyond the last confirmed swing
  high (bullish) or swing low (bearish)
- Order block retest: price returning into the last opposite candle that
  preceded a displacement move of at least ``displacement_atr`` × ATR

BOS takes precedence over an order block retest.
"""

from dataclasses import dataclass
from typing import Optional
import pandas as pd

from confluence_engine.indicators.divergence import find_swing_highs, find_swing_lows
from confluence_engine.indicators.volatility import compute_atr


BREAK_OF_STRUCTURE = 'break-of-structure'
ORDER_BLOCK = 'order-block'


@dataclass(frozen=True)
class StructureEvent:
    structure_type: str
    direction: str
    level: float
    index: int  # positional index of the triggering candle


def _detect_break_of_structure(df: pd.DataFrame, swing_lookback: int, recent_bars: int) -> Optional[StructureEvent]:
    closes = df['close']
    n = len(df)
    events = []

    highs = find_swing_highs(df['high'], swing_lookback)
    if highs:
        pivot = highs[-1]
        level = float(df['high'].iloc[pivot])
        for i in range(max(pivot + swing_lookback + 1, n - recent_bars), n):
            if closes.iloc[i] > level and closes.iloc[i - 1] <= level:
                events.append(StructureEvent(BREAK_OF_STRUCTURE, 'bullish', level, i))

    lows = find_swing_lows(df['low'], swing_lookback)
    if lows:
        pivot = lows[-1]
        level = float(df['low'].iloc[pivot])
        for i in range(max(pivot + swing_lookback + 1, n - recent_bars), n):
            if closes.iloc[i] < level and closes.iloc[i - 1] >= level:
                events.append(StructureEvent(BREAK_OF_STRUCTURE, 'bearish', level, i))

    if not events:
        return None
    return max(events, key=lambda e: e.index)


def _detect_order_block_retest(
    df: pd.DataFrame,
    atr: float,
    search_bars: int,
    displacement_atr: float,
) -> Optional[StructureEvent]:
    n = len(df)
    last = df.iloc[-1]
    start = max(1, n - search_bars)

    # Walk backwards so the most recent block wins
    for i in range(n - 4, start - 1, -1):
        candle = df.iloc[i]
        follow_close = df['close'].iloc[i + 3]

        if candle['close'] < candle['open'] and follow_close - candle['high'] >= displacement_atr * atr:
            if last['low'] <= candle['high'] and last['close'] >= candle['low']:
                return StructureEvent(ORDER_BLOCK, 'bullish', float(candle['high']), i)

        if candle['close'] > candle['open'] and candle['low'] - follow_close >= displacement_atr * atr:
            if last['high'] >= candle['low'] and last['close'] <= candle['high']:
                return StructureEvent(ORDER_BLOCK, 'bearish', float(candle['low']), i)

    return None


def detect_structure(
    df: pd.DataFrame,
    swing_lookback: int = 3,
    recent_bars: int = 5,
    search_bars: int = 30,
    displacement_atr: float = 1.5,
    atr: Optional[float] = None,
) -> Optional[StructureEvent]:
    """
    Detect the most relevant structure event on the series.

    Args:
        df: DataFrame with OHLC columns
        swing_lookback: Candles on each side that confirm a swing point
        recent_bars: A BOS must have happened within this many candles
        search_bars: How far back to search for order blocks
        displacement_atr: Minimum displacement after an order block, in ATR
        atr: Precomputed ATR; computed from ``df`` when omitted

    Returns:
        StructureEvent or None
    """
    if len(df) < max(2 * swing_lookback + 2, 20):
        return None

    bos = _detect_break_of_structure(df, swing_lookback, recent_bars)
    if bos is not None:
        return bos

    if atr is None:
        atr = float(compute_atr(df, validate_input=False).iloc[-1])
    if not atr or atr <= 0:
        return None

    return _detect_order_block_retest(df, atr, search_bars, displacement_atr)
