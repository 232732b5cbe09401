"""
Wyckoff phase classification.

Classifies the recent window into one of the four Wyckoff phases:
- Markup / Markdown: the regression line explains most of the window range
- Accumulation: ranging, price in the lower half, up-bar volume dominates
- Distribution: ranging, price in the upper half, down-bar volume dominates

Ranging windows that fit neither accumulation nor distribution are left
unclassified.
"""

from dataclasses import dataclass
from typing import Optional
import numpy as np
import pandas as pd


PHASE_DIRECTION = {
    'accumulation': 'bullish',
    'markup': 'bullish',
    'distribution': 'bearish',
    'markdown': 'bearish',
}


@dataclass(frozen=True)
class WyckoffPhase:
    phase: str
    trend_ratio: float  # signed regression move / window range
    range_position: float  # 0 = window low, 1 = window high
    volume_bias: float  # (up volume - down volume) / total volume

    @property
    def direction(self) -> str:
        return PHASE_DIRECTION[self.phase]


def classify_wyckoff_phase(
    df: pd.DataFrame,
    lookback: int = 50,
    trend_ratio_threshold: float = 0.5,
) -> Optional[WyckoffPhase]:
    """
    Classify the Wyckoff phase of the last ``lookback`` candles.

    Args:
        df: DataFrame with open/high/low/close/volume columns
        lookback: Window size
        trend_ratio_threshold: |regression move| / range above which the
            window is trending

    Returns:
        WyckoffPhase or None if the window is too short, flat, or ambiguous
    """
    if len(df) < lookback:
        return None

    window = df.iloc[-lookback:]
    closes = window['close'].to_numpy(dtype=float)
    high = float(window['high'].max())
    low = float(window['low'].min())
    price_range = high - low
    if price_range <= 0:
        return None

    slope = np.polyfit(np.arange(len(closes)), closes, 1)[0]
    trend_ratio = float(slope * (len(closes) - 1) / price_range)
    range_position = float((closes[-1] - low) / price_range)

    up_bars = window['close'] > window['open']
    down_bars = window['close'] < window['open']
    up_volume = float(window.loc[up_bars, 'volume'].sum())
    down_volume = float(window.loc[down_bars, 'volume'].sum())
    total = up_volume + down_volume
    volume_bias = (up_volume - down_volume) / total if total > 0 else 0.0

    if trend_ratio >= trend_ratio_threshold:
        phase = 'markup'
    elif trend_ratio <= -trend_ratio_threshold:
        phase = 'markdown'
    elif range_position <= 0.5 and volume_bias >= 0:
        phase = 'accumulation'
    elif range_position >= 0.5 and volume_bias <= 0:
        phase = 'distribution'
    else:
        return None

    return WyckoffPhase(
        phase=phase,
        trend_ratio=trend_ratio,
        range_position=range_position,
        volume_bias=volume_bias,
    )
