"""
Unit tests for indicator edge cases.

Tests:
- RSI / ATR bounds and short-series handling
- Data validation (NaN, non-positive prices, inverted candles)
- Volume surge / dry-up flags
- RSI divergence on swing points
"""

import numpy as np
import pandas as pd
import pytest

from confluence_engine.indicators import (
    DataValidationError,
    compute_atr,
    compute_return_volatility,
    compute_rsi,
    detect_rsi_divergence,
    find_swing_highs,
    find_swing_lows,
    is_dry_up,
    is_surge,
    validate_ohlcv,
)
from confluence_engine.shared.models.data import candles_to_dataframe
from confluence_engine.tests.fixtures.market_data import doji_candles, flat_candles, linear_candles


def frame(closes, spread=0.5):
    return candles_to_dataframe(doji_candles(closes, spread=spread))


def test_rsi_stays_in_range():
    df = candles_to_dataframe(linear_candles(60, 100.0, 1.0))

    rsi = compute_rsi(df)

    assert rsi.between(0, 100).all()
    assert rsi.iloc[-1] == pytest.approx(100.0)


def test_rsi_falls_on_downtrend():
    df = candles_to_dataframe(linear_candles(60, 200.0, -1.0))

    assert compute_rsi(df).iloc[-1] < 5


def test_rsi_requires_enough_rows():
    df = candles_to_dataframe(linear_candles(10))

    with pytest.raises(ValueError, match="too short"):
        compute_rsi(df, period=14)


def test_atr_of_linear_trend():
    """One point of drift plus half-point wicks each side: true range is 2."""
    df = candles_to_dataframe(linear_candles(60, 100.0, 1.0))

    atr = compute_atr(df)

    assert atr.iloc[-1] == pytest.approx(2.0, abs=1e-3)


def test_atr_is_zero_on_flat_candles():
    df = candles_to_dataframe(flat_candles(30))

    assert compute_atr(df).iloc[-1] == 0.0


def test_atr_missing_columns():
    df = pd.DataFrame({'close': [1.0] * 20})

    with pytest.raises(ValueError, match="missing required columns"):
        compute_atr(df)


def test_validation_rejects_nan_prices():
    df = frame([100.0] * 20)
    df.iloc[5, df.columns.get_loc('close')] = np.nan

    with pytest.raises(DataValidationError, match="NaN"):
        validate_ohlcv(df)


def test_validation_rejects_inverted_candles():
    df = frame([100.0] * 20)
    df.iloc[3, df.columns.get_loc('high')] = 90.0

    result = validate_ohlcv(df, raise_on_error=False)

    assert result['valid'] is False
    assert any("high < low" in e for e in result['errors'])


def test_validation_rejects_non_positive_prices():
    df = frame([100.0] * 20)
    df.iloc[0, df.columns.get_loc('low')] = 0.0

    with pytest.raises(DataValidationError, match="Non-positive"):
        validate_ohlcv(df)


def test_validation_warns_on_all_zero_volume():
    df = frame([100.0] * 20)
    df['volume'] = 0.0

    result = validate_ohlcv(df)

    assert result['valid'] is True
    assert result['warnings'] == ["All volume values are zero"]


def test_surge_and_dry_up_flags():
    assert is_surge([1000, 1000, 1000, 3000], 1000.0) is True
    assert is_surge([1000, 1000, 1000, 2000], 1000.0) is False
    assert is_dry_up([500, 500, 500, 500, 500], 1000.0) is True
    assert is_dry_up([500, 500, 500, 500, 700], 1000.0) is False
    assert is_surge([5000], 1000.0) is False
    assert is_dry_up([0, 0, 0, 0, 0], 0.0) is False


def test_return_volatility():
    assert compute_return_volatility(pd.Series([100.0])) == 0.0
    assert compute_return_volatility(pd.Series([100.0, 100.0, 100.0])) == 0.0
    assert compute_return_volatility(pd.Series([100.0, 110.0, 99.0])) == pytest.approx(0.1)


def test_swing_points_are_strict():
    series = pd.Series([1, 2, 3, 4, 3, 2, 1, 2, 3, 3, 2, 1])

    assert find_swing_highs(series, lookback=2) == [3]
    assert find_swing_lows(series, lookback=2) == [6]


def test_no_divergence_on_straight_trend():
    df = candles_to_dataframe(linear_candles(80))

    assert detect_rsi_divergence(df) is None


def test_bullish_divergence_on_lower_low_with_higher_rsi(monkeypatch):
    closes = [110, 108, 106, 104, 102, 100, 102, 104, 106, 108,
              110, 108, 106, 104, 102, 99, 101, 103, 105, 107]
    df = frame(closes)
    rsi_values = [50.0] * len(closes)
    rsi_values[5] = 20.0
    rsi_values[15] = 30.0

    monkeypatch.setattr(
        "confluence_engine.indicators.divergence.compute_rsi",
        lambda df, period=14, validate_input=True: pd.Series(rsi_values, index=df.index),
    )

    result = detect_rsi_divergence(df, rsi_period=14, lookback=20)

    assert result is not None
    assert result.divergence_type == 'regular_bullish'
    assert result.direction == 'bullish'
    assert (result.price_pivot_1, result.price_pivot_2) == (5, 15)
    assert result.price_value_2 < result.price_value_1
    assert result.strength == pytest.approx(50.0)


def test_bearish_divergence_on_higher_high_with_lower_rsi(monkeypatch):
    closes = [90, 92, 94, 96, 98, 100, 98, 96, 94, 92,
              90, 92, 94, 96, 98, 101, 99, 97, 95, 93]
    df = frame(closes)
    rsi_values = [50.0] * len(closes)
    rsi_values[5] = 80.0
    rsi_values[15] = 70.0

    monkeypatch.setattr(
        "confluence_engine.indicators.divergence.compute_rsi",
        lambda df, period=14, validate_input=True: pd.Series(rsi_values, index=df.index),
    )

    result = detect_rsi_divergence(df, rsi_period=14, lookback=20)

    assert result.divergence_type == 'regular_bearish'
    assert result.direction == 'bearish'
