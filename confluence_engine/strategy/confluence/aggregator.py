"""
Confluence Aggregator

Merges per-timeframe scores, the pressure zone and external fundamental
input into a single BUY/SELL candidate.

Confluences counted (all must agree with the majority trend):
- Cross-timeframe trend alignment
- High-confidence timeframes
- Same-direction agreement of one detector family across timeframes
- Fundamental catalyst
- High or extreme emotional pressure at a round number, unless its bias
  opposes the trade

Composite confidence is a weighted average of directional timeframe
confidence (timeframe importance x learned method weight) plus the
fundamental boost, a pressure bonus and a per-symbol learning adjustment,
capped below certainty.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from loguru import logger

from confluence_engine.shared.config.defaults import GlobalThresholds, DEFAULT_THRESHOLDS, timeframe_weight
from confluence_engine.shared.models.scoring import (
    FUNDAMENTAL_CATALYST,
    MethodWeight,
    PressureZone,
    TimeframeScore,
)
from confluence_engine.shared.models.signals import (
    Action,
    RejectionReason,
    RejectionRecord,
    SignalCandidate,
)
from confluence_engine.shared.utils.logging_utils import log_rejection


METHOD_LABELS = {
    'wyckoff-accumulation': 'Wyckoff',
    'smc-breakout': 'Market structure',
    'fibonacci-retracement': 'Fibonacci',
    'volume-profile': 'Volume profile',
    'rsi-divergence': 'RSI divergence',
}

CONFIRMING_PRESSURE_LEVELS = ('high', 'extreme')


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AggregationResult:
    """Outcome of one aggregation: exactly one of candidate / rejection is set."""
    candidate: Optional[SignalCandidate] = None
    rejection: Optional[RejectionRecord] = None


class ConfluenceAggregator:
    """
    Builds SignalCandidates from analysis output.

    Stateless apart from configuration; identical inputs always produce
    identical candidates.
    """

    def __init__(
        self,
        min_confluences: int = 3,
        min_elite_confidence: float = 75.0,
        sentiment_conflict_threshold: float = 70.0,
        planning_timeframe: str = '1h',
        thresholds: Optional[GlobalThresholds] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        if min_confluences < 1:
            raise ValueError(f"min_confluences must be >= 1, got {min_confluences}")
        if not 50 < sentiment_conflict_threshold <= 100:
            raise ValueError(
                f"sentiment_conflict_threshold must be in (50, 100], got {sentiment_conflict_threshold}"
            )
        self.min_confluences = min_confluences
        self.min_elite_confidence = min_elite_confidence
        self.sentiment_conflict_threshold = sentiment_conflict_threshold
        self.planning_timeframe = planning_timeframe
        self.thresholds = thresholds or DEFAULT_THRESHOLDS
        self._clock = clock

    def aggregate(
        self,
        scores: Sequence[TimeframeScore],
        pressure: Optional[PressureZone],
        fundamental_boost: float,
        weights: Sequence[MethodWeight],
        sentiment: Optional[float] = None,
        learning_adjustment: float = 0.0,
    ) -> Optional[SignalCandidate]:
        """Return a candidate, or None when the inputs are rejected."""
        return self.evaluate(
            scores, pressure, fundamental_boost, weights,
            sentiment=sentiment, learning_adjustment=learning_adjustment,
        ).candidate

    def evaluate(
        self,
        scores: Sequence[TimeframeScore],
        pressure: Optional[PressureZone],
        fundamental_boost: float,
        weights: Sequence[MethodWeight],
        sentiment: Optional[float] = None,
        learning_adjustment: float = 0.0,
    ) -> AggregationResult:
        """
        Aggregate and explain.

        Returns:
            AggregationResult carrying either the candidate or the
            RejectionRecord describing why there is none.
        """
        if not scores:
            raise ValueError("scores cannot be empty")
        symbol = scores[0].symbol
        if any(s.symbol != symbol for s in scores):
            raise ValueError("all scores must belong to the same symbol")

        t = self.thresholds
        opinions = [s for s in scores if s.has_opinion]
        bullish = [s for s in opinions if s.trend == 'bullish']
        bearish = [s for s in opinions if s.trend == 'bearish']

        if len(bullish) == len(bearish):
            return self._reject(
                symbol, RejectionReason.NO_CLEAR_DIRECTION, float(len(bullish)), None,
                f"{len(bullish)} bullish vs {len(bearish)} bearish of {len(opinions)} timeframes",
            )

        action = Action.BUY if len(bullish) > len(bearish) else Action.SELL
        direction = 'bullish' if action == Action.BUY else 'bearish'
        aligned = bullish if action == Action.BUY else bearish

        confluences, contributing = self._count_confluences(
            action, direction, aligned, opinions, fundamental_boost, pressure
        )

        if len(confluences) < self.min_confluences:
            return self._reject(
                symbol, RejectionReason.INSUFFICIENT_CONFLUENCES,
                float(len(confluences)), float(self.min_confluences),
                "; ".join(confluences) or "no confluences",
            )

        if sentiment is not None and self._sentiment_conflicts(action, sentiment):
            return self._reject(
                symbol, RejectionReason.DIRECTION_CONFLICT, float(sentiment),
                self.sentiment_conflict_threshold,
                f"technical majority {direction} vs sentiment {sentiment:.0f}",
            )

        base = self._weighted_confidence(action, opinions, weights)
        bonus = self._pressure_bonus(pressure)
        composite = base + fundamental_boost + bonus + learning_adjustment
        composite = min(max(composite, 0.0), t.max_composite_confidence)

        if composite < self.min_elite_confidence:
            return self._reject(
                symbol, RejectionReason.LOW_CONFIDENCE, composite, self.min_elite_confidence,
                f"base {base:.1f} + boost {fundamental_boost:.1f} + pressure {bonus:.1f} "
                f"+ learning {learning_adjustment:.1f}",
            )

        entry, atr = self._entry_and_atr(opinions)

        reasoning = [f"{action.value} {symbol}: composite confidence {composite:.1f}"]
        reasoning.extend(confluences)
        for score in aligned:
            for tag in score.confluence_tags:
                line = f"{score.timeframe}: {tag}"
                if line not in reasoning:
                    reasoning.append(line)
        if pressure is not None and not pressure.insufficient_data:
            reasoning.append(
                f"Pressure {pressure.pressure_level} ({pressure.score:.0f}) near {pressure.psychological_level:g}"
            )

        candidate = SignalCandidate(
            symbol=symbol,
            action=action,
            entry=entry,
            composite_confidence=round(composite, 4),
            confluences=tuple(confluences),
            contributing_methods=frozenset(contributing),
            timestamp=self._clock(),
            atr=atr,
            timeframes=tuple(s.timeframe for s in aligned),
            reasoning=tuple(reasoning),
            fundamental_boost=fundamental_boost,
        )
        logger.info(
            f"🎯 [{symbol}] {action.value} candidate: confidence {candidate.composite_confidence:.1f}, "
            f"{len(confluences)} confluences"
        )
        return AggregationResult(candidate=candidate)

    def _count_confluences(
        self,
        action: Action,
        direction: str,
        aligned: List[TimeframeScore],
        opinions: List[TimeframeScore],
        fundamental_boost: float,
        pressure: Optional[PressureZone] = None,
    ) -> Tuple[List[str], List[str]]:
        t = self.thresholds
        confluences: List[str] = []

        if len(aligned) >= t.alignment_min_timeframes:
            confluences.append(f"Trend alignment: {len(aligned)}/{len(opinions)} timeframes {direction}")

        high = [s for s in aligned if s.directional_confidence(action) > t.high_confidence_threshold]
        if len(high) >= t.high_confidence_min_timeframes:
            confluences.append(f"High confidence on {', '.join(s.timeframe for s in high)}")

        # method -> timeframes where it fired in the trade direction, first-seen order
        agreement: Dict[str, List[str]] = {}
        for score in opinions:
            for sig in score.method_signals:
                if sig.direction != direction:
                    continue
                timeframes = agreement.setdefault(sig.method, [])
                if score.timeframe not in timeframes:
                    timeframes.append(score.timeframe)

        contributing = list(agreement)
        for method, timeframes in agreement.items():
            if len(timeframes) >= t.method_agreement_min_timeframes:
                label = METHOD_LABELS.get(method, method)
                confluences.append(f"{label} agreement on {', '.join(timeframes)}")

        if fundamental_boost > t.fundamental_catalyst_threshold:
            confluences.append(f"Fundamental catalyst (+{fundamental_boost:.1f})")
            contributing.append(FUNDAMENTAL_CATALYST)

        if self._pressure_confirms(pressure, direction):
            confluences.append(
                f"Emotional pressure zone ({pressure.pressure_level}) at {pressure.psychological_level:g}"
            )

        return confluences, contributing

    @staticmethod
    def _pressure_confirms(pressure: Optional[PressureZone], direction: str) -> bool:
        if pressure is None or pressure.insufficient_data:
            return False
        if pressure.pressure_level not in CONFIRMING_PRESSURE_LEVELS:
            return False
        opposing = 'bearish' if direction == 'bullish' else 'bullish'
        return pressure.bias != opposing

    def _sentiment_conflicts(self, action: Action, sentiment: float) -> bool:
        threshold = self.sentiment_conflict_threshold
        if action == Action.BUY:
            return sentiment <= 100 - threshold
        return sentiment >= threshold

    def _weighted_confidence(
        self,
        action: Action,
        opinions: List[TimeframeScore],
        weights: Sequence[MethodWeight],
    ) -> float:
        weight_map = {w.method_name: w.weight for w in weights}
        uniform = 100.0 / len(weight_map) if weight_map else 0.0

        def average(use_method_weights: bool) -> Tuple[float, float]:
            numerator = denominator = 0.0
            for score in opinions:
                factor = 1.0
                if use_method_weights and uniform > 0:
                    methods = sorted({s.method for s in score.method_signals if s.method in weight_map})
                    if methods:
                        factor = sum(weight_map[m] / uniform for m in methods) / len(methods)
                w = timeframe_weight(score.timeframe) * factor
                numerator += w * score.directional_confidence(action)
                denominator += w
            return numerator, denominator

        numerator, denominator = average(use_method_weights=True)
        if denominator <= 0:
            numerator, denominator = average(use_method_weights=False)
        return numerator / denominator if denominator > 0 else 0.0

    def _pressure_bonus(self, pressure: Optional[PressureZone]) -> float:
        if pressure is None or pressure.insufficient_data:
            return 0.0
        bonus = self.thresholds.pressure_bonus.get(pressure.pressure_level, 0.0)
        if pressure.candle is not None:
            bonus += pressure.candle.confidence_bonus * self.thresholds.candle_bonus_scale
        return bonus

    def _entry_and_atr(self, opinions: List[TimeframeScore]) -> Tuple[float, Optional[float]]:
        priced = [s for s in opinions if s.last_close is not None and s.last_close > 0]
        if not priced:
            raise ValueError("no timeframe carries a last close price")
        finest = min(priced, key=lambda s: timeframe_weight(s.timeframe))

        atr = None
        for score in opinions:
            if score.timeframe == self.planning_timeframe and score.atr:
                atr = score.atr
                break
        if atr is None:
            atr = next((s.atr for s in opinions if s.atr), None)
        return float(finest.last_close), atr

    def _reject(
        self,
        symbol: str,
        reason: RejectionReason,
        measured: Optional[float],
        threshold: Optional[float],
        detail: str,
    ) -> AggregationResult:
        log_rejection(
            symbol,
            stage="CONFLUENCE",
            reason=reason.value,
            diagnostics={'measured': measured, 'threshold': threshold, 'detail': detail},
        )
        record = RejectionRecord(
            symbol=symbol,
            reason=reason,
            timestamp=self._clock(),
            measured_value=measured,
            threshold=threshold,
            detail=detail,
        )
        return AggregationResult(rejection=record)
