"""
Emotional pressure zone detection.

Measures how much "pressure" builds around the nearest psychological
(round-number) price level from four ingredients:
- Proximity of price to the level
- Recent return volatility
- Volume anomalies: surge, dry-up and absorption
- How reliably the level has rejected or supported price

The latest candle is also classified (doji, engulfing, hammer, ...) and
attached to the zone. All calculations are deterministic.
"""

import math
from typing import List, Optional, Sequence, Tuple
import numpy as np
from loguru import logger

from confluence_engine.indicators.volatility import compute_return_volatility
from confluence_engine.indicators.volume import is_dry_up, is_surge
from confluence_engine.shared.config.defaults import GlobalThresholds, DEFAULT_THRESHOLDS
from confluence_engine.shared.models.data import OHLCV, VolumePoint, candles_to_dataframe
from confluence_engine.shared.models.scoring import CandleBehavior, PressureZone, VolumeContext


PSYCHOLOGICAL_LADDER = (1, 1.5, 2, 2.5, 3, 4, 5, 6, 7, 8, 9, 10)

# Score component weights
PROXIMITY_WEIGHT = 30.0
VOLATILITY_CAP = 25.0
SURGE_POINTS = 20.0
DRY_UP_POINTS = 15.0
ABSORPTION_POINTS = 25.0
LEVEL_STRENGTH_WEIGHT = 0.2

LEVEL_TOUCH_TOLERANCE = 0.005  # 0.5%


def find_nearest_psychological_level(price: float) -> float:
    """Snap ``price`` to the nearest rung of the 1-1.5-2-2.5-3-4-...-10 ladder of its magnitude."""
    if price <= 0:
        raise ValueError(f"price must be positive, got {price}")
    magnitude = 10 ** math.floor(math.log10(price))
    return min((m * magnitude for m in PSYCHOLOGICAL_LADDER), key=lambda level: abs(price - level))


def bucket_pressure_level(score: float) -> str:
    if score >= 80:
        return 'extreme'
    if score >= 65:
        return 'high'
    if score >= 40:
        return 'medium'
    return 'low'


def calculate_level_strength(candles: Sequence[OHLCV], level: float) -> Tuple[float, float]:
    """
    Resistance and support strength of ``level`` (each 0-100).

    A touch is a candle whose high (resistance) or low (support) comes within
    0.5% of the level. Strength is the share of touches that closed on the
    defended side, discounted until there are three touches.
    """
    tolerance = level * LEVEL_TOUCH_TOLERANCE

    resistance_touches = [c for c in candles if abs(c.high - level) <= tolerance]
    rejections = sum(1 for c in resistance_touches if c.close < level)

    support_touches = [c for c in candles if abs(c.low - level) <= tolerance]
    bounces = sum(1 for c in support_touches if c.close > level)

    def strength(hits: int, touches: int) -> float:
        if touches == 0:
            return 0.0
        return hits / touches * 100.0 * min(1.0, touches / 3.0)

    return strength(rejections, len(resistance_touches)), strength(bounces, len(support_touches))


def detect_absorption(
    candles: Sequence[OHLCV],
    volumes: Sequence[float],
    volume_multiplier: float = 2.0,
    range_ratio: float = 0.7,
    last_n: int = 5,
) -> bool:
    """High volume in the last ``last_n`` points while their combined range stays compressed."""
    if len(candles) < last_n or len(volumes) < last_n:
        return False
    avg_volume = float(np.mean(volumes))
    avg_range = float(np.mean([c.high - c.low for c in candles]))
    if avg_volume <= 0 or avg_range <= 0:
        return False

    recent = candles[-last_n:]
    recent_range = max(c.high for c in recent) - min(c.low for c in recent)
    heavy = any(v > avg_volume * volume_multiplier for v in volumes[-last_n:])
    return heavy and recent_range < avg_range * range_ratio


def analyze_candle_behavior(
    candles: Sequence[OHLCV],
    volumes: Sequence[float],
    confirmation_multiplier: float = 1.3,
) -> Optional[CandleBehavior]:
    """Classify the last candle's shape and whether volume confirms it."""
    if len(candles) < 2:
        return None

    current, previous = candles[-1], candles[-2]
    candle_range = current.high - current.low
    if candle_range <= 0:
        return CandleBehavior(
            pattern='doji', body_ratio=0.0, upper_wick_ratio=0.0, lower_wick_ratio=0.0,
            volume_confirmation=False, rejection_signal=False,
            indecision_signal=True, momentum_signal=False,
        )

    body = abs(current.close - current.open)
    body_ratio = body / candle_range
    upper_wick = (current.high - max(current.open, current.close)) / candle_range
    lower_wick = (min(current.open, current.close) - current.low) / candle_range

    current_bull = current.close > current.open
    previous_bull = previous.close > previous.open
    engulfs = (
        current_bull != previous_bull
        and max(current.open, current.close) >= max(previous.open, previous.close)
        and min(current.open, current.close) <= min(previous.open, previous.close)
        and body > abs(previous.close - previous.open)
    )

    if engulfs:
        pattern = 'engulfing'
    elif body_ratio < 0.1:
        pattern = 'doji'
    elif lower_wick >= 0.6 and body_ratio <= 0.3 and upper_wick <= 0.1:
        pattern = 'hammer'
    elif upper_wick >= 0.6 and body_ratio <= 0.3 and lower_wick <= 0.1:
        pattern = 'shooting_star'
    elif body_ratio < 0.3 and upper_wick > 0.3 and lower_wick > 0.3:
        pattern = 'spinning_top'
    elif body_ratio > 0.9:
        pattern = 'marubozu'
    else:
        pattern = None

    prior = list(volumes[-11:-1])
    avg_volume = float(np.mean(prior)) if prior else 0.0
    volume_confirmation = avg_volume > 0 and volumes[-1] > avg_volume * confirmation_multiplier

    return CandleBehavior(
        pattern=pattern,
        body_ratio=float(body_ratio),
        upper_wick_ratio=float(upper_wick),
        lower_wick_ratio=float(lower_wick),
        volume_confirmation=bool(volume_confirmation),
        rejection_signal=upper_wick > 0.4 or lower_wick > 0.4,
        indecision_signal=pattern in ('doji', 'spinning_top'),
        momentum_signal=body_ratio > 0.7 and bool(volume_confirmation),
    )


class PressureZoneDetector:
    """
    Detects emotional pressure around psychological levels for one symbol.

    Independent of timeframe granularity: it only looks at the last
    ``window`` points of whatever series it is given.
    """

    def __init__(self, window: int = 20, thresholds: Optional[GlobalThresholds] = None):
        if window < 5:
            raise ValueError(f"window must be >= 5, got {window}")
        self.window = window
        self.thresholds = thresholds or DEFAULT_THRESHOLDS

    def detect(
        self,
        symbol: str,
        price_series: Sequence[OHLCV],
        volume_series: Optional[Sequence[VolumePoint]] = None,
    ) -> PressureZone:
        """
        Score pressure for ``symbol``.

        ``volume_series`` is aligned to the tail of ``price_series``; when it
        is missing or shorter than the window, candle volumes are used.
        """
        if len(price_series) < self.window:
            logger.debug(f"[{symbol}] Pressure window needs {self.window} points, got {len(price_series)}")
            last_price = price_series[-1].close if price_series else 0.0
            level = find_nearest_psychological_level(last_price) if last_price > 0 else 0.0
            return PressureZone(
                symbol=symbol,
                pressure_level='low',
                score=0.0,
                psychological_level=level,
                insufficient_data=True,
            )

        candles: List[OHLCV] = list(price_series[-self.window:])
        if volume_series is not None and len(volume_series) >= self.window:
            volumes = [v.value for v in volume_series[-self.window:]]
        else:
            volumes = [c.volume for c in candles]

        t = self.thresholds
        price = candles[-1].close
        level = find_nearest_psychological_level(price)
        distance = abs(price - level) / price

        avg_volume = float(np.mean(volumes))
        context = VolumeContext(
            surge=is_surge(volumes, avg_volume, t.volume_surge_multiplier),
            dry_up=is_dry_up(volumes, avg_volume, t.volume_dry_up_multiplier),
            absorption=detect_absorption(
                candles, volumes, t.volume_absorption_multiplier, t.absorption_range_ratio
            ),
        )
        resistance, support = calculate_level_strength(candles, level)

        df = candles_to_dataframe(candles)
        volatility = compute_return_volatility(df['close'])

        score = max(0.0, 1.0 - distance * 100) * PROXIMITY_WEIGHT
        score += min(volatility * 100, VOLATILITY_CAP)
        if context.surge:
            score += SURGE_POINTS
        if context.dry_up:
            score += DRY_UP_POINTS
        if context.absorption:
            score += ABSORPTION_POINTS
        score += (resistance + support) / 2 * LEVEL_STRENGTH_WEIGHT
        score = float(min(max(score, 0.0), 100.0))

        candle = analyze_candle_behavior(candles, volumes, t.volume_confirmation_multiplier)

        zone = PressureZone(
            symbol=symbol,
            pressure_level=bucket_pressure_level(score),
            score=score,
            psychological_level=float(level),
            resistance_strength=float(resistance),
            support_strength=float(support),
            volume_context=context,
            candle=candle,
        )
        logger.debug(
            f"[{symbol}] Pressure {zone.pressure_level} ({score:.1f}) at {level} "
            f"surge={context.surge} dry_up={context.dry_up} absorption={context.absorption}"
        )
        return zone
