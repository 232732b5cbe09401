"""
Fibonacci retracements of the dominant swing in a window.

Only the deep ratios (61.8% and 78.6%) count as a confluence; the shallow
ones are still computed so the nearest level can be found.
"""

from dataclasses import dataclass
from typing import List, Literal, Optional
import pandas as pd

FIB_RATIOS = {
    "fib_236": 0.236,
    "fib_382": 0.382,
    "fib_500": 0.500,
    "fib_618": 0.618,
    "fib_786": 0.786,
}

# Deep retracements that count as a confluence
MONITORED_RATIOS = ["fib_618", "fib_786"]


@dataclass(frozen=True)
class FibLevel:
    price: float
    ratio: float
    ratio_name: str
    swing_high: float
    swing_low: float
    trend_direction: Literal["bullish", "bearish"]

    @property
    def is_monitored(self) -> bool:
        return self.ratio_name in MONITORED_RATIOS

    @property
    def display_ratio(self) -> str:
        """Human-readable ratio string like '61.8%'."""
        return f"{self.ratio * 100:.1f}%"


def calculate_fib_levels(
    swing_high: float,
    swing_low: float,
    trend_direction: Literal["bullish", "bearish"],
    ratios: Optional[dict] = None,
) -> List[FibLevel]:
    """
    Retracement levels of the move from ``swing_low`` to ``swing_high``.

    A bullish move retraces down from the high, a bearish one up from the
    low, so levels are ordered shallowest first in both cases.
    """
    if swing_high <= swing_low:
        return []

    span = swing_high - swing_low
    anchor, step = (swing_high, -span) if trend_direction == "bullish" else (swing_low, span)
    levels = [
        FibLevel(anchor + step * ratio, ratio, name, swing_high, swing_low, trend_direction)
        for name, ratio in (ratios or FIB_RATIOS).items()
    ]
    return sorted(levels, key=lambda level: level.ratio)


def find_nearest_fib(current_price: float, fib_levels: List[FibLevel]) -> Optional[FibLevel]:
    if not fib_levels:
        return None
    return min(fib_levels, key=lambda level: abs(level.price - current_price))


def is_price_at_fib(current_price: float, fib_level: FibLevel, tolerance_pct: float = 1.0) -> bool:
    if current_price <= 0:
        return False
    distance_pct = abs(current_price - fib_level.price) / current_price * 100
    return distance_pct <= tolerance_pct


def detect_fib_retracement(
    df: pd.DataFrame,
    lookback: int = 50,
    tolerance_pct: float = 1.0,
) -> Optional[FibLevel]:
    """
    Return the monitored Fib level price is currently sitting on, if any.

    The measured move is the window's extreme high and low; its direction is
    bullish when the high came after the low.
    """
    if len(df) < lookback:
        return None

    window = df.iloc[-lookback:]
    high_pos = int(window['high'].to_numpy().argmax())
    low_pos = int(window['low'].to_numpy().argmin())
    swing_high = float(window['high'].iloc[high_pos])
    swing_low = float(window['low'].iloc[low_pos])
    if swing_high <= swing_low:
        return None

    direction = "bullish" if high_pos > low_pos else "bearish"
    current_price = float(window['close'].iloc[-1])
    nearest = find_nearest_fib(current_price, calculate_fib_levels(swing_high, swing_low, direction))

    if nearest is None or not nearest.is_monitored:
        return None
    if not is_price_at_fib(current_price, nearest, tolerance_pct):
        return None
    return nearest
