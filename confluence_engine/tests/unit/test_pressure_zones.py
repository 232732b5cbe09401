"""
Unit tests for emotional pressure zone detection.
"""

import pytest

from confluence_engine.analysis.pressure_zones import (
    PressureZoneDetector,
    analyze_candle_behavior,
    bucket_pressure_level,
    calculate_level_strength,
    find_nearest_psychological_level,
)
from confluence_engine.shared.models.data import VolumePoint
from confluence_engine.tests.fixtures.market_data import doji_candles, make_candles


@pytest.mark.parametrize("price,expected", [
    (104.0, 100.0),
    (1234.0, 1000.0),
    (2600.0, 2500.0),
    (7.4, 7.0),
])
def test_nearest_psychological_level(price, expected):
    assert find_nearest_psychological_level(price) == pytest.approx(expected)


def test_psychological_level_of_small_price():
    assert find_nearest_psychological_level(0.0123) == pytest.approx(0.01)


def test_psychological_level_requires_positive_price():
    with pytest.raises(ValueError, match="positive"):
        find_nearest_psychological_level(0.0)


def test_pressure_level_buckets():
    assert bucket_pressure_level(80) == 'extreme'
    assert bucket_pressure_level(65) == 'high'
    assert bucket_pressure_level(40) == 'medium'
    assert bucket_pressure_level(39.9) == 'low'


def test_level_strength_counts_bounces():
    candles = doji_candles([100.2] * 4)

    resistance, support = calculate_level_strength(candles, 100.0)

    assert resistance == 0.0
    assert support == 100.0


def test_level_strength_discounted_below_three_touches():
    candles = doji_candles([100.2, 105.0, 105.0])

    _, support = calculate_level_strength(candles, 100.0)

    assert support == pytest.approx(100.0 / 3)


def test_volume_surge_at_round_number():
    """Price holding just above 100 with a volume spike on the last candle."""
    candles = doji_candles([100.2] * 20, volumes=[1000.0] * 19 + [5000.0])

    zone = PressureZoneDetector().detect('BTC/USDT', candles)

    assert zone.insufficient_data is False
    assert zone.psychological_level == 100.0
    assert zone.volume_context.surge is True
    assert zone.volume_context.dry_up is False
    assert zone.volume_context.absorption is False
    assert zone.support_strength == 100.0
    assert zone.resistance_strength == 0.0
    assert zone.bias == 'bullish'
    assert zone.score == pytest.approx(54.0)
    assert zone.pressure_level == 'medium'
    assert zone.candle.pattern == 'doji'
    assert zone.candle.volume_confirmation is True
    assert zone.candle.rejection_signal is True


def test_volume_dry_up():
    candles = doji_candles([100.2] * 20, volumes=[1000.0] * 15 + [100.0] * 5)

    zone = PressureZoneDetector().detect('BTC/USDT', candles)

    assert zone.volume_context.dry_up is True
    assert zone.volume_context.surge is False
    assert zone.score == pytest.approx(49.0)


def test_separate_volume_series_overrides_candle_volume():
    candles = doji_candles([100.2] * 20)
    volumes = [VolumePoint(timestamp=c.timestamp, value=1000.0) for c in candles[:-1]]
    volumes.append(VolumePoint(timestamp=candles[-1].timestamp, value=5000.0))

    zone = PressureZoneDetector().detect('BTC/USDT', candles, volumes)

    assert zone.volume_context.surge is True


def test_short_series_is_insufficient():
    zone = PressureZoneDetector(window=20).detect('BTC/USDT', doji_candles([100.2] * 10))

    assert zone.insufficient_data is True
    assert zone.score == 0.0
    assert zone.pressure_level == 'low'
    assert zone.psychological_level == 100.0


def test_window_validation():
    with pytest.raises(ValueError, match="window"):
        PressureZoneDetector(window=4)


def test_engulfing_candle():
    candles = make_candles([100.0, 99.0, 101.0])

    behavior = analyze_candle_behavior(candles, [1000.0, 1000.0, 1000.0])

    assert behavior.pattern == 'engulfing'
    assert behavior.volume_confirmation is False


def test_candle_behavior_needs_two_candles():
    assert analyze_candle_behavior(make_candles([100.0]), [1000.0]) is None
