"""
Unit tests for the detector battery: Wyckoff phases, market structure,
Fibonacci retracements and volume profile.
"""

from datetime import timedelta

import pandas as pd
import pytest

from confluence_engine.analysis.fibonacci import (
    calculate_fib_levels,
    detect_fib_retracement,
    find_nearest_fib,
    is_price_at_fib,
)
from confluence_engine.analysis.structure import BREAK_OF_STRUCTURE, ORDER_BLOCK, detect_structure
from confluence_engine.analysis.volume_profile import calculate_volume_profile, detect_volume_node
from confluence_engine.analysis.wyckoff import classify_wyckoff_phase
from confluence_engine.shared.models.data import candles_to_dataframe
from confluence_engine.tests.fixtures.market_data import (
    START,
    alternating_closes,
    doji_candles,
    flat_candles,
    linear_candles,
    make_candles,
)


def frame(closes, spread=0.5, volumes=None):
    return candles_to_dataframe(doji_candles(closes, spread=spread, volumes=volumes))


def ranging_frame(end_high: bool, heavy_up: bool):
    """Alternating closes with volume concentrated on up or down bars."""
    closes = alternating_closes(50, 98.0, 102.0, end_high=end_high)
    candles = make_candles(closes)
    volumes = [
        2000.0 if (c.close > c.open) == heavy_up and c.close != c.open else 1000.0
        for c in candles
    ]
    return candles_to_dataframe(make_candles(closes, volumes=volumes))


# ---------------------------------------------------------------------------
# Wyckoff
# ---------------------------------------------------------------------------

def test_wyckoff_markup_on_uptrend():
    phase = classify_wyckoff_phase(candles_to_dataframe(linear_candles(60)))

    assert phase.phase == 'markup'
    assert phase.direction == 'bullish'
    assert phase.trend_ratio > 0.5


def test_wyckoff_markdown_on_downtrend():
    phase = classify_wyckoff_phase(candles_to_dataframe(linear_candles(60, 200.0, -1.0)))

    assert phase.phase == 'markdown'
    assert phase.direction == 'bearish'


def test_wyckoff_accumulation_in_lower_range_with_buying_volume():
    phase = classify_wyckoff_phase(ranging_frame(end_high=False, heavy_up=True))

    assert phase.phase == 'accumulation'
    assert phase.range_position <= 0.5
    assert phase.volume_bias > 0


def test_wyckoff_distribution_in_upper_range_with_selling_volume():
    phase = classify_wyckoff_phase(ranging_frame(end_high=True, heavy_up=False))

    assert phase.phase == 'distribution'
    assert phase.direction == 'bearish'


def test_wyckoff_unclassified_on_flat_or_short_series():
    assert classify_wyckoff_phase(candles_to_dataframe(flat_candles(60))) is None
    assert classify_wyckoff_phase(candles_to_dataframe(linear_candles(30))) is None


# ---------------------------------------------------------------------------
# Market structure
# ---------------------------------------------------------------------------

BOS_CLOSES = [90, 92, 94, 96, 98, 100, 102, 104, 106, 108, 110,
              108, 106, 104, 102, 100, 102, 104, 106, 108, 109, 111]


def test_bullish_break_of_structure():
    event = detect_structure(frame(BOS_CLOSES))

    assert event.structure_type == BREAK_OF_STRUCTURE
    assert event.direction == 'bullish'
    assert event.level == pytest.approx(110.5)
    assert event.index == len(BOS_CLOSES) - 1


def test_bearish_break_of_structure():
    event = detect_structure(frame([200 - c for c in BOS_CLOSES]))

    assert event.structure_type == BREAK_OF_STRUCTURE
    assert event.direction == 'bearish'
    assert event.level == pytest.approx(89.5)


def test_bullish_order_block_retest():
    rows = [(100.0, 100.5, 99.5, 100.0)] * 20
    rows += [
        (100.5, 100.8, 99.2, 99.5),    # last down candle before the move
        (99.5, 101.3, 99.2, 101.0),
        (101.0, 102.3, 100.7, 102.0),
        (102.0, 103.3, 101.7, 103.0),
        (103.0, 103.2, 100.4, 100.5),  # back into the block
    ]
    df = pd.DataFrame(
        [{'open': o, 'high': h, 'low': l, 'close': c, 'volume': 1000.0} for o, h, l, c in rows],
        index=[START + timedelta(hours=i) for i in range(len(rows))],
    )

    event = detect_structure(df, atr=1.0)

    assert event.structure_type == ORDER_BLOCK
    assert event.direction == 'bullish'
    assert event.level == pytest.approx(100.8)
    assert event.index == 20


def test_no_structure_on_straight_trend_or_short_series():
    assert detect_structure(candles_to_dataframe(linear_candles(60))) is None
    assert detect_structure(frame(BOS_CLOSES[:10])) is None


# ---------------------------------------------------------------------------
# Fibonacci
# ---------------------------------------------------------------------------

def test_fib_levels_for_bullish_swing():
    levels = calculate_fib_levels(200.0, 100.0, 'bullish')

    by_name = {level.ratio_name: level.price for level in levels}
    assert by_name['fib_618'] == pytest.approx(138.2)
    assert by_name['fib_236'] == pytest.approx(176.4)
    assert [level.price for level in levels] == sorted(by_name.values(), reverse=True)


def test_fib_levels_for_bearish_swing():
    by_name = {level.ratio_name: level.price for level in calculate_fib_levels(200.0, 100.0, 'bearish')}

    assert by_name['fib_618'] == pytest.approx(161.8)


def test_fib_degenerate_range():
    assert calculate_fib_levels(100.0, 100.0, 'bullish') == []
    assert find_nearest_fib(100.0, []) is None


def test_price_at_fib_tolerance():
    level = calculate_fib_levels(200.0, 100.0, 'bullish')[3]

    assert level.ratio_name == 'fib_618'
    assert level.display_ratio == '61.8%'
    assert is_price_at_fib(138.0, level) is True
    assert is_price_at_fib(145.0, level) is False


def retracement_closes(last_close):
    rise = [100.0 + 5 * i for i in range(21)]       # 100 -> 200
    pullback = [195.0 - 5 * i for i in range(12)]  # 195 -> 140
    return [100.0] * 17 + rise + pullback + [last_close]


def test_fib_retracement_detected_at_golden_ratio():
    fib = detect_fib_retracement(frame(retracement_closes(138.1)))

    assert fib is not None
    assert fib.ratio_name == 'fib_618'
    assert fib.trend_direction == 'bullish'


def test_fib_retracement_ignores_shallow_levels():
    assert detect_fib_retracement(frame(retracement_closes(170.0))) is None


# ---------------------------------------------------------------------------
# Volume profile
# ---------------------------------------------------------------------------

def test_volume_profile_poc_at_heavy_price():
    closes = [100.0] * 30 + [100.0 + i for i in range(1, 21)]
    volumes = [5000.0] * 30 + [100.0] * 20
    profile = calculate_volume_profile(frame(closes, volumes=volumes))

    assert 99.5 <= profile.poc_price <= 101.5
    assert profile.value_area_low <= profile.poc_price <= profile.value_area_high
    assert profile.node_strength(100.0) > 80
    assert profile.node_strength(119.0) < 20


def test_volume_node_reported_at_heavy_price():
    closes = [100.0 + i for i in range(1, 21)] + [100.0] * 30
    volumes = [100.0] * 20 + [5000.0] * 30

    node = detect_volume_node(frame(closes, volumes=volumes))

    assert node is not None
    assert node.strength > 80


def test_volume_profile_rejects_degenerate_input():
    with pytest.raises(ValueError, match="Invalid price range"):
        calculate_volume_profile(candles_to_dataframe(flat_candles(20)))
    with pytest.raises(ValueError, match="Insufficient data"):
        calculate_volume_profile(frame([100.0] * 5))
    with pytest.raises(ValueError, match="Total volume is zero"):
        calculate_volume_profile(frame([100.0 + i for i in range(20)], volumes=[0.0] * 20))

    assert detect_volume_node(candles_to_dataframe(flat_candles(20))) is None
