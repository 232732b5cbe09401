"""
Risk Validator

Admission control for signal candidates.

Features:
- Stop/target planning from a pressure-zone level or ATR multiples
- Ordering invariants (BUY: stop < entry < target, SELL mirrored)
- Minimum risk/reward gate

A violated invariant is always a rejection. Levels are never flipped or
nudged into shape.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Optional, Union
import logging
import uuid

from confluence_engine.shared.config.defaults import GlobalThresholds, DEFAULT_THRESHOLDS
from confluence_engine.shared.models.scoring import PressureZone
from confluence_engine.shared.models.signals import (
    Action,
    EmittedSignal,
    RejectionReason,
    RejectionRecord,
    SignalCandidate,
    levels_are_ordered,
    risk_reward,
)
from confluence_engine.shared.utils.error_policy import enforce_positive

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def default_signal_id(symbol: str) -> str:
    return f"SIG-{symbol.replace('/', '')}-{uuid.uuid4().hex[:8]}"


@dataclass(frozen=True)
class LevelPlan:
    """
    Planned protective levels.

    Attributes:
        stop_loss: Invalidation price
        target_price: Take-profit price
        method: 'provided', 'pressure-zone' or 'atr'
    """
    stop_loss: float
    target_price: float
    method: str


class RiskValidator:
    """
    Turns candidates into EmittedSignals or RejectionRecords.

    Usage:
        validator = RiskValidator(min_rr=1.8)
        verdict = validator.validate(candidate, pressure)
        if isinstance(verdict, RejectionRecord):
            ...
    """

    def __init__(
        self,
        min_rr: float = 1.8,
        thresholds: Optional[GlobalThresholds] = None,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[str], str] = default_signal_id,
    ):
        self.min_rr = enforce_positive(min_rr, "min_rr")
        self.thresholds = thresholds or DEFAULT_THRESHOLDS
        self._clock = clock
        self._id_factory = id_factory

    def plan_levels(self, candidate: SignalCandidate, pressure: Optional[PressureZone] = None) -> Optional[LevelPlan]:
        """
        Levels for a candidate.

        Candidate levels win when both are set. Otherwise a high/extreme
        pressure zone whose psychological level sits on the stop side within
        ``pressure_max_stop_atr`` ATR anchors the stop just beyond that level;
        failing that, stop and target are ATR multiples from entry.

        Returns:
            LevelPlan, or None when levels are missing and ATR is unusable
        """
        if candidate.stop_loss is not None and candidate.target_price is not None:
            return LevelPlan(candidate.stop_loss, candidate.target_price, 'provided')

        atr = candidate.atr
        if atr is None or atr <= 0:
            return None

        t = self.thresholds
        entry = candidate.entry
        sign = 1.0 if candidate.action == Action.BUY else -1.0
        target = entry + sign * t.atr_target_multiplier * atr

        if pressure is not None and not pressure.insufficient_data and pressure.pressure_level in ('extreme', 'high'):
            level = pressure.psychological_level
            distance = (entry - level) * sign
            opposing_bias = 'bearish' if candidate.action == Action.BUY else 'bullish'
            if 0 < distance <= t.pressure_max_stop_atr * atr and pressure.bias != opposing_bias:
                stop = level - sign * t.pressure_stop_buffer_atr * atr
                return LevelPlan(stop, target, 'pressure-zone')

        stop = entry - sign * t.atr_stop_multiplier * atr
        return LevelPlan(stop, target, 'atr')

    def validate(
        self,
        candidate: SignalCandidate,
        pressure: Optional[PressureZone] = None,
    ) -> Union[EmittedSignal, RejectionRecord]:
        """
        Validate a candidate.

        Returns:
            EmittedSignal when every invariant holds, otherwise a
            RejectionRecord with the measured value and threshold
        """
        plan = self.plan_levels(candidate, pressure)
        if plan is None:
            return self._reject(
                candidate, RejectionReason.MISSING_VOLATILITY, candidate.atr, None,
                "no stop/target supplied and ATR unavailable",
            )

        if not levels_are_ordered(candidate.action, candidate.entry, plan.stop_loss, plan.target_price):
            return self._reject(
                candidate, RejectionReason.INVALID_ORDERING, None, None,
                f"{candidate.action.value} stop={plan.stop_loss} entry={candidate.entry} "
                f"target={plan.target_price} ({plan.method})",
            )

        rr = risk_reward(candidate.entry, plan.stop_loss, plan.target_price)
        if rr < self.min_rr:
            return self._reject(
                candidate, RejectionReason.POOR_RISK_REWARD, rr, self.min_rr,
                f"R:R {rr:.2f} < {self.min_rr} ({plan.method})",
            )

        planned = replace(
            candidate,
            stop_loss=plan.stop_loss,
            target_price=plan.target_price,
            risk_reward_ratio=rr,
        )
        signal = EmittedSignal.from_candidate(
            planned,
            signal_id=self._id_factory(candidate.symbol),
            emitted_at=self._clock(),
        )
        logger.info(
            "Validated %s %s: entry=%.6g stop=%.6g target=%.6g R:R=%.2f (%s)",
            signal.action.value, signal.symbol, signal.entry, signal.stop_loss,
            signal.target_price, rr, plan.method,
        )
        return signal

    def _reject(
        self,
        candidate: SignalCandidate,
        reason: RejectionReason,
        measured: Optional[float],
        threshold: Optional[float],
        detail: str,
    ) -> RejectionRecord:
        logger.info("Rejected %s %s: %s (%s)", candidate.action.value, candidate.symbol, reason.value, detail)
        return RejectionRecord(
            symbol=candidate.symbol,
            reason=reason,
            timestamp=self._clock(),
            measured_value=measured,
            threshold=threshold,
            detail=detail,
        )
