"""
Timeframe Analyzer - runs the detector battery for one symbol/timeframe.

Detectors:
- Wyckoff phase classification
- Market structure (break of structure / order block retest)
- Fibonacci retracement proximity
- Volume node strength
- RSI divergence

Every detector is pure and independent. The analyzer turns their output into
a TimeframeScore: a trend-derived base confidence, a fixed bonus per fired
detector in its direction, scaled around neutral by the timeframe weight.
"""

import logging
from typing import List, Optional, Sequence

import pandas as pd

from confluence_engine.analysis.fibonacci import detect_fib_retracement
from confluence_engine.analysis.structure import detect_structure, BREAK_OF_STRUCTURE
from confluence_engine.analysis.volume_profile import detect_volume_node
from confluence_engine.analysis.wyckoff import classify_wyckoff_phase
from confluence_engine.indicators.divergence import detect_rsi_divergence
from confluence_engine.indicators.volatility import compute_atr
from confluence_engine.shared.config.defaults import (
    GlobalThresholds,
    WindowSizes,
    DEFAULT_THRESHOLDS,
    DEFAULT_WINDOWS,
    timeframe_weight,
)
from confluence_engine.shared.models.data import OHLCV, VolumePoint, candles_to_dataframe
from confluence_engine.shared.models.scoring import (
    DetectorOutputs,
    MethodSignal,
    TimeframeScore,
    WYCKOFF,
    SMC_BREAKOUT,
    FIBONACCI,
    VOLUME_PROFILE,
    RSI_DIVERGENCE,
)
from confluence_engine.shared.utils.error_policy import InsufficientData, enforce_min_points

logger = logging.getLogger(__name__)

NEUTRAL_CONFIDENCE = 50.0
TREND_Z_CAP = 2.5
TREND_Z_POINTS = 10.0


class TimeframeAnalyzer:
    """
    Produces a TimeframeScore for one symbol/timeframe pair.

    Usage:
        analyzer = TimeframeAnalyzer()
        score = analyzer.analyze("BTC/USDT", "1h", candles)
    """

    def __init__(
        self,
        thresholds: Optional[GlobalThresholds] = None,
        windows: Optional[WindowSizes] = None,
    ):
        self.thresholds = thresholds or DEFAULT_THRESHOLDS
        self.windows = windows or DEFAULT_WINDOWS

    def analyze(
        self,
        symbol: str,
        timeframe: str,
        price_series: Sequence[OHLCV],
        volume_series: Optional[Sequence[VolumePoint]] = None,
    ) -> TimeframeScore:
        """
        Analyze one timeframe.

        Series shorter than ``windows.min_points`` produce a zero-confidence
        score flagged ``insufficient_data``; callers treat it as no opinion.
        """
        try:
            enforce_min_points(len(price_series), self.windows.min_points, f"{symbol} {timeframe}")
        except InsufficientData as e:
            logger.debug("%s, no opinion", e)
            return TimeframeScore(
                symbol=symbol,
                timeframe=timeframe,
                confidence=0.0,
                trend='neutral',
                insufficient_data=True,
                last_close=price_series[-1].close if price_series else None,
            )

        df = candles_to_dataframe(price_series, volume_series)
        atr = float(compute_atr(df, period=self.windows.atr_period).iloc[-1])

        detectors, signals = self._run_detectors(symbol, timeframe, df, atr)

        base = self._base_confidence(df, atr)
        bonus = self.thresholds.confluence_tag_bonus
        raw = base + sum(bonus if s.direction == 'bullish' else -bonus for s in signals)
        scaled = NEUTRAL_CONFIDENCE + (raw - NEUTRAL_CONFIDENCE) * timeframe_weight(timeframe)
        confidence = min(max(scaled, 0.0), 100.0)

        tags: List[str] = []
        for s in signals:
            if s.tag not in tags:
                tags.append(s.tag)

        score = TimeframeScore(
            symbol=symbol,
            timeframe=timeframe,
            confidence=round(confidence, 4),
            trend=self._classify_trend(confidence),
            confluence_tags=tuple(tags),
            detectors=detectors,
            method_signals=tuple(signals),
            atr=atr,
            last_close=float(df['close'].iloc[-1]),
        )
        logger.debug(
            "%s %s: confidence=%.1f trend=%s tags=%s",
            symbol, timeframe, score.confidence, score.trend, list(score.confluence_tags),
        )
        return score

    def _classify_trend(self, confidence: float) -> str:
        if confidence > self.thresholds.trend_bullish_threshold:
            return 'bullish'
        if confidence < self.thresholds.trend_bearish_threshold:
            return 'bearish'
        return 'neutral'

    def _base_confidence(self, df: pd.DataFrame, atr: float) -> float:
        """50 +/- up to 25 depending on how far close sits from its SMA, in ATRs."""
        if atr <= 0:
            return NEUTRAL_CONFIDENCE
        sma = df['close'].rolling(self.windows.trend_sma_period).mean().iloc[-1]
        z = (df['close'].iloc[-1] - sma) / atr
        z = min(max(z, -TREND_Z_CAP), TREND_Z_CAP)
        return NEUTRAL_CONFIDENCE + TREND_Z_POINTS * float(z)

    def _run_detectors(self, symbol: str, timeframe: str, df: pd.DataFrame, atr: float):
        w = self.windows
        signals: List[MethodSignal] = []
        phase = structure_type = divergence = None
        fib_ratio = node_strength = None

        try:
            wyckoff = classify_wyckoff_phase(df, lookback=w.wyckoff_lookback)
            if wyckoff is not None:
                phase = wyckoff.phase
                signals.append(MethodSignal(WYCKOFF, wyckoff.direction, f"Wyckoff {wyckoff.phase} phase"))
        except ValueError as e:
            logger.warning("%s %s: wyckoff detector failed: %s", symbol, timeframe, e)

        try:
            event = detect_structure(df, swing_lookback=w.structure_swing_lookback, atr=atr)
            if event is not None:
                structure_type = event.structure_type
                label = "Break of structure" if event.structure_type == BREAK_OF_STRUCTURE else "Order block retest"
                signals.append(MethodSignal(SMC_BREAKOUT, event.direction, f"{label} ({event.direction})"))
        except ValueError as e:
            logger.warning("%s %s: structure detector failed: %s", symbol, timeframe, e)

        fib = detect_fib_retracement(df, lookback=w.fib_lookback, tolerance_pct=self.thresholds.fib_tolerance_pct)
        if fib is not None:
            fib_ratio = fib.ratio
            signals.append(MethodSignal(FIBONACCI, fib.trend_direction, f"Fibonacci {fib.display_ratio} retracement"))

        node = detect_volume_node(df, lookback=w.volume_profile_lookback, num_bins=w.volume_profile_bins, threshold=0.0)
        if node is not None:
            node_strength = round(node.strength, 2)
            if node.strength > self.thresholds.volume_node_threshold:
                signals.append(MethodSignal(
                    VOLUME_PROFILE, node.direction, f"High volume node ({node.strength:.0f}%)"
                ))

        try:
            div = detect_rsi_divergence(df, rsi_period=w.rsi_period, lookback=w.divergence_lookback)
            if div is not None:
                divergence = div.direction
                signals.append(MethodSignal(RSI_DIVERGENCE, div.direction, f"RSI {div.direction} divergence"))
        except ValueError as e:
            logger.warning("%s %s: divergence detector failed: %s", symbol, timeframe, e)

        outputs = DetectorOutputs(
            phase=phase,
            structure_type=structure_type,
            fib_level=fib_ratio,
            volume_profile=node_strength,
            rsi_divergence=divergence,
        )
        return outputs, signals
