"""
Volume Profile Analysis

Distributes candle volume across price bins to find the point of control
(POC) and the strength of the volume node at the current price.

- POC: price bin with the most traded volume
- Value Area: bins around the POC holding 70% of the volume
- Node strength: volume of the current bin relative to the POC bin (0-100)
"""

from dataclasses import dataclass
from typing import Optional
import numpy as np
import pandas as pd


@dataclass(frozen=True, eq=False)
class VolumeProfile:
    bin_edges: np.ndarray
    volume_by_bin: np.ndarray
    poc_price: float
    value_area_high: float
    value_area_low: float

    def bin_index(self, price: float) -> int:
        idx = int(np.searchsorted(self.bin_edges, price, side='right')) - 1
        return min(max(idx, 0), len(self.volume_by_bin) - 1)

    def node_strength(self, price: float) -> float:
        """Volume at ``price``'s bin relative to the POC bin, 0-100."""
        peak = self.volume_by_bin.max()
        if peak <= 0:
            return 0.0
        return float(self.volume_by_bin[self.bin_index(price)] / peak * 100)


@dataclass(frozen=True)
class VolumeNodeSignal:
    strength: float
    poc_price: float
    direction: str


def calculate_volume_profile(df: pd.DataFrame, num_bins: int = 24, value_area_pct: float = 70.0) -> VolumeProfile:
    """
    Calculate a volume profile from OHLCV data.

    Each candle's volume is spread equally over the bins its high-low range
    touches.

    Raises:
        ValueError: If required columns are missing, data is too short, the
            price range is degenerate or total volume is zero
    """
    required_cols = ['high', 'low', 'close', 'volume']
    missing = [col for col in required_cols if col not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {missing}")

    if len(df) < 10:
        raise ValueError(f"Insufficient data for volume profile: {len(df)} rows")

    price_low = float(df['low'].min())
    price_high = float(df['high'].max())
    if price_low >= price_high:
        raise ValueError(f"Invalid price range: {price_low} to {price_high}")

    bin_edges = np.linspace(price_low, price_high, num_bins + 1)
    volume_by_bin = np.zeros(num_bins)

    lows = df['low'].to_numpy(dtype=float)
    highs = df['high'].to_numpy(dtype=float)
    volumes = df['volume'].to_numpy(dtype=float)
    for candle_low, candle_high, candle_volume in zip(lows, highs, volumes):
        touched = (bin_edges[1:] >= candle_low) & (bin_edges[:-1] <= candle_high)
        count = int(touched.sum())
        if count:
            volume_by_bin[touched] += candle_volume / count

    total_volume = volume_by_bin.sum()
    if total_volume == 0:
        raise ValueError("Total volume is zero - cannot calculate profile")

    poc_idx = int(volume_by_bin.argmax())
    poc_price = float((bin_edges[poc_idx] + bin_edges[poc_idx + 1]) / 2)

    # Expand from POC towards the heavier neighbour until the value area is covered
    target = total_volume * value_area_pct / 100
    lo = hi = poc_idx
    covered = volume_by_bin[poc_idx]
    while covered < target and (lo > 0 or hi < num_bins - 1):
        below = volume_by_bin[lo - 1] if lo > 0 else -1.0
        above = volume_by_bin[hi + 1] if hi < num_bins - 1 else -1.0
        if above >= below:
            hi += 1
            covered += volume_by_bin[hi]
        else:
            lo -= 1
            covered += volume_by_bin[lo]

    return VolumeProfile(
        bin_edges=bin_edges,
        volume_by_bin=volume_by_bin,
        poc_price=poc_price,
        value_area_high=float(bin_edges[hi + 1]),
        value_area_low=float(bin_edges[lo]),
    )


def detect_volume_node(
    df: pd.DataFrame,
    lookback: int = 100,
    num_bins: int = 24,
    threshold: float = 80.0,
) -> Optional[VolumeNodeSignal]:
    """
    Report a high-volume node at the current price.

    Direction is bullish when price holds at or above the POC, bearish below.
    Returns None below ``threshold`` or when the profile cannot be built.
    """
    window = df.iloc[-lookback:]
    try:
        profile = calculate_volume_profile(window, num_bins=num_bins)
    except ValueError:
        return None

    price = float(window['close'].iloc[-1])
    strength = profile.node_strength(price)
    if strength <= threshold:
        return None

    direction = 'bullish' if price >= profile.poc_price else 'bearish'
    return VolumeNodeSignal(strength=strength, poc_price=profile.poc_price, direction=direction)
