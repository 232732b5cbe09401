"""
Per-symbol and per-cycle state passed through the scheduler.

A SymbolContext accumulates the output of each analysis stage for one symbol;
a CycleReport collects the results of every symbol in one cycle.
"""
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from confluence_engine.shared.models.data import OHLCV, VolumePoint
from confluence_engine.shared.models.scoring import MethodWeight, PressureZone, TimeframeScore
from confluence_engine.shared.models.signals import (
    EmittedSignal,
    RejectionRecord,
    SignalCandidate,
    SignalOutcome,
)


@dataclass
class SymbolContext:
    """
    Working state for one symbol in one cycle.

    Pipeline flow:
    1. Data ingestion populates candles and volumes
    2. Timeframe analysis populates scores
    3. Pressure detection populates pressure
    4. Fundamentals populate fundamental_boost and sentiment
    5. Aggregation populates candidate
    """
    symbol: str
    cycle_id: int
    timestamp: datetime

    candles: Dict[str, List[OHLCV]] = field(default_factory=dict)
    volumes: List[VolumePoint] = field(default_factory=list)
    scores: List[TimeframeScore] = field(default_factory=list)
    pressure: Optional[PressureZone] = None
    fundamental_boost: float = 0.0
    sentiment: Optional[float] = None
    weights: List[MethodWeight] = field(default_factory=list)
    learning_adjustment: float = 0.0
    candidate: Optional[SignalCandidate] = None

    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SymbolResult:
    """What happened to one symbol: at most one of the outcome fields is set."""
    symbol: str
    signal: Optional[EmittedSignal] = None
    rejection: Optional[RejectionRecord] = None
    skipped: Optional[str] = None
    error: Optional[str] = None
    data_unavailable: bool = False


@dataclass
class CycleReport:
    """Summary of one analysis cycle."""
    cycle_id: int
    started_at: datetime
    analyzed: List[str] = field(default_factory=list)
    emitted: List[EmittedSignal] = field(default_factory=list)
    rejections: List[RejectionRecord] = field(default_factory=list)
    skipped: Dict[str, str] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    closed_outcomes: List[SignalOutcome] = field(default_factory=list)
    duration_seconds: float = 0.0

    def record(self, result: SymbolResult) -> None:
        if result.skipped is not None:
            self.skipped[result.symbol] = result.skipped
            return
        self.analyzed.append(result.symbol)
        if result.signal is not None:
            self.emitted.append(result.signal)
        elif result.rejection is not None:
            self.rejections.append(result.rejection)
        elif result.error is not None:
            self.errors[result.symbol] = result.error

    def rejection_breakdown(self) -> Dict[str, int]:
        return dict(Counter(r.reason.value for r in self.rejections))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'cycle_id': self.cycle_id,
            'started_at': self.started_at.isoformat(),
            'duration_seconds': round(self.duration_seconds, 3),
            'analyzed': list(self.analyzed),
            'emitted': [s.id for s in self.emitted],
            'rejections': self.rejection_breakdown(),
            'skipped': dict(self.skipped),
            'errors': dict(self.errors),
            'closed_outcomes': [o.signal_id for o in self.closed_outcomes],
        }


@dataclass
class CycleGate:
    """
    Emission gate for one cycle, guarded by the scheduler's emission lock.

    Once ``closed`` the cycle has reported; late workers must not emit.
    ``emitted`` lets a timed-out symbol that did emit be reported as such.
    """
    closed: bool = False
    emitted: Dict[str, EmittedSignal] = field(default_factory=dict)
