"""
Tests for the per-timeframe analyzer.
"""

import logging

import pytest

from confluence_engine.services.timeframe_analyzer import TimeframeAnalyzer
from confluence_engine.shared.models.scoring import WYCKOFF
from confluence_engine.tests.fixtures.market_data import flat_candles, linear_candles


@pytest.fixture
def analyzer():
    return TimeframeAnalyzer()


def methods_of(score):
    return {s.method for s in score.method_signals}


def test_uptrend_scores_bullish(analyzer):
    score = analyzer.analyze('BTC/USDT', '1h', linear_candles(80, 100.0, 1.0))

    assert score.trend == 'bullish'
    assert score.confidence > 60
    assert WYCKOFF in methods_of(score)
    assert score.detectors.phase == 'markup'
    assert "Wyckoff markup phase" in score.confluence_tags
    assert score.last_close == 179.0
    assert score.atr == pytest.approx(2.0, abs=1e-3)


def test_downtrend_scores_bearish(analyzer):
    score = analyzer.analyze('BTC/USDT', '1h', linear_candles(80, 200.0, -1.0))

    assert score.trend == 'bearish'
    assert score.confidence < 40
    assert score.detectors.phase == 'markdown'
    assert all(s.direction == 'bearish' for s in score.method_signals)


def test_short_series_has_no_opinion(analyzer):
    score = analyzer.analyze('BTC/USDT', '1h', linear_candles(30))

    assert score.insufficient_data is True
    assert score.confidence == 0.0
    assert score.trend == 'neutral'
    assert score.method_signals == ()
    assert score.last_close == 129.0


def test_flat_series_is_neutral(analyzer):
    score = analyzer.analyze('BTC/USDT', '1h', flat_candles(80))

    assert score.confidence == 50.0
    assert score.trend == 'neutral'
    assert score.confluence_tags == ()


def test_longer_timeframes_weigh_more(analyzer):
    candles = linear_candles(80)

    daily = analyzer.analyze('BTC/USDT', '1d', candles).confidence
    hourly = analyzer.analyze('BTC/USDT', '1h', candles).confidence
    minute = analyzer.analyze('BTC/USDT', '1m', candles).confidence

    assert daily >= hourly > minute > 50


def test_detector_failure_is_logged_and_skipped(analyzer, monkeypatch, caplog):
    def broken(*args, **kwargs):
        raise ValueError("window mismatch")

    monkeypatch.setattr("confluence_engine.services.timeframe_analyzer.classify_wyckoff_phase", broken)

    with caplog.at_level(logging.WARNING):
        score = analyzer.analyze('BTC/USDT', '1h', linear_candles(80))

    assert WYCKOFF not in methods_of(score)
    assert score.detectors.phase is None
    assert "wyckoff detector failed" in caplog.text
