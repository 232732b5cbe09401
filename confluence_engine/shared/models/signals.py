"""
Decision records: candidates, emitted signals, outcomes and rejections.

A SignalCandidate is produced by the confluence aggregator and is either
turned into an EmittedSignal or a RejectionRecord by the risk validator.
None of these records are mutated; refinements produce new instances.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple

from confluence_engine.shared.utils.error_policy import DirectionConflict, EngineError, ValidationFailed


class Action(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class RejectionReason(str, Enum):
    """Why a candidate did not become a signal."""
    INSUFFICIENT_CONFLUENCES = "insufficient-confluences"
    LOW_CONFIDENCE = "low-confidence"
    DIRECTION_CONFLICT = "direction-conflict"
    NO_CLEAR_DIRECTION = "no-clear-direction"
    POOR_RISK_REWARD = "poor-risk-reward"
    INVALID_ORDERING = "invalid-ordering"
    MISSING_VOLATILITY = "missing-volatility"


class ExitReason(str, Enum):
    TARGET_HIT = "target_hit"
    STOP_LOSS = "stop_loss"
    TIMEOUT = "timeout"
    MANUAL = "manual"


class OutcomeStatus(str, Enum):
    PENDING = "pending"
    WIN = "win"
    LOSS = "loss"


def levels_are_ordered(action: Action, entry: float, stop_loss: float, target_price: float) -> bool:
    """BUY: stop < entry < target. SELL: target < entry < stop."""
    if action == Action.BUY:
        return stop_loss < entry < target_price
    return target_price < entry < stop_loss


def risk_reward(entry: float, stop_loss: float, target_price: float) -> float:
    """Reward distance over risk distance (0 when risk is zero)."""
    risk = abs(entry - stop_loss)
    if risk == 0:
        return 0.0
    return abs(target_price - entry) / risk


def profit_percent(action: Action, entry: float, exit_price: float) -> float:
    """Direction-aware percentage return of a trade."""
    if entry <= 0:
        raise ValueError(f"entry must be positive, got {entry}")
    if action == Action.BUY:
        return (exit_price - entry) / entry * 100.0
    return (entry - exit_price) / entry * 100.0


@dataclass(frozen=True)
class SignalCandidate:
    """
    Composite decision awaiting risk validation.

    stop_loss / target_price / risk_reward_ratio may be left unset by the
    aggregator; the risk validator fills them from ATR or pressure levels.
    """
    symbol: str
    action: Action
    entry: float
    composite_confidence: float
    confluences: Tuple[str, ...]
    contributing_methods: FrozenSet[str]
    timestamp: datetime = field(compare=False)
    stop_loss: Optional[float] = None
    target_price: Optional[float] = None
    risk_reward_ratio: Optional[float] = None
    atr: Optional[float] = None
    timeframes: Tuple[str, ...] = ()
    reasoning: Tuple[str, ...] = ()
    fundamental_boost: float = 0.0

    def __post_init__(self):
        if self.entry <= 0:
            raise ValueError(f"entry must be positive, got {self.entry}")
        if not 0 <= self.composite_confidence <= 100:
            raise ValueError(f"composite_confidence must be 0-100, got {self.composite_confidence}")


@dataclass(frozen=True)
class EmittedSignal:
    """A validated, emitted decision. Levels always satisfy the ordering invariant."""
    id: str
    emitted_at: datetime
    symbol: str
    action: Action
    entry: float
    stop_loss: float
    target_price: float
    risk_reward_ratio: float
    composite_confidence: float
    confluences: Tuple[str, ...] = ()
    contributing_methods: FrozenSet[str] = frozenset()
    timeframes: Tuple[str, ...] = ()
    reasoning: Tuple[str, ...] = ()
    atr: Optional[float] = None
    persisted: bool = True

    def __post_init__(self):
        if not levels_are_ordered(self.action, self.entry, self.stop_loss, self.target_price):
            raise ValueError(
                f"{self.action.value} levels out of order: stop={self.stop_loss} "
                f"entry={self.entry} target={self.target_price}"
            )

    @classmethod
    def from_candidate(cls, candidate: SignalCandidate, signal_id: str, emitted_at: datetime) -> 'EmittedSignal':
        return cls(
            id=signal_id,
            emitted_at=emitted_at,
            symbol=candidate.symbol,
            action=candidate.action,
            entry=candidate.entry,
            stop_loss=candidate.stop_loss,
            target_price=candidate.target_price,
            risk_reward_ratio=candidate.risk_reward_ratio,
            composite_confidence=candidate.composite_confidence,
            confluences=candidate.confluences,
            contributing_methods=candidate.contributing_methods,
            timeframes=candidate.timeframes,
            reasoning=candidate.reasoning,
            atr=candidate.atr,
        )

    def profit_percent(self, exit_price: float) -> float:
        return profit_percent(self.action, self.entry, exit_price)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = asdict(self)
        result['action'] = self.action.value
        result['emitted_at'] = self.emitted_at.isoformat()
        result['confluences'] = list(self.confluences)
        result['contributing_methods'] = sorted(self.contributing_methods)
        result['timeframes'] = list(self.timeframes)
        result['reasoning'] = list(self.reasoning)
        return result


@dataclass(frozen=True)
class SignalOutcome:
    """Lifecycle result of an emitted signal. Pending until closed, then terminal."""
    signal_id: str
    outcome: OutcomeStatus = OutcomeStatus.PENDING
    exit_price: Optional[float] = None
    exit_reason: Optional[ExitReason] = None
    profit_percent: Optional[float] = None
    closed_at: Optional[datetime] = None

    def __post_init__(self):
        closed_fields = (self.exit_price, self.exit_reason, self.profit_percent, self.closed_at)
        if self.outcome == OutcomeStatus.PENDING and any(v is not None for v in closed_fields):
            raise ValueError("pending outcome cannot carry exit fields")
        if self.outcome != OutcomeStatus.PENDING and any(v is None for v in closed_fields):
            raise ValueError(f"{self.outcome.value} outcome requires exit fields")

    @property
    def is_terminal(self) -> bool:
        return self.outcome != OutcomeStatus.PENDING


@dataclass(frozen=True)
class RejectionRecord:
    """Why a symbol's candidate was dropped, with the measured value against its threshold."""
    symbol: str
    reason: RejectionReason
    timestamp: datetime
    measured_value: Optional[float] = None
    threshold: Optional[float] = None
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'symbol': self.symbol,
            'reason': self.reason.value,
            'timestamp': self.timestamp.isoformat(),
            'measured_value': self.measured_value,
            'threshold': self.threshold,
            'detail': self.detail,
        }

    def to_error(self) -> EngineError:
        """Exception equivalent, for callers that fail hard instead of recording."""
        if self.reason == RejectionReason.DIRECTION_CONFLICT:
            return DirectionConflict(f"{self.symbol}: {self.detail or self.reason.value}")
        return ValidationFailed(self.reason.value, self.measured_value, self.threshold)
