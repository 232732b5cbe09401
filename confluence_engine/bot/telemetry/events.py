"""
Telemetry Event Models

Event types and data structures recording engine lifecycle, cycle results,
emissions, rejections and failures.
"""

from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from enum import Enum


class EventType(str, Enum):
    """Telemetry event types."""

    # Engine lifecycle
    ENGINE_STARTED = "engine_started"
    ENGINE_STOPPED = "engine_stopped"
    CYCLE_COMPLETED = "cycle_completed"

    # Signal decisions
    SIGNAL_EMITTED = "signal_emitted"
    SIGNAL_REJECTED = "signal_rejected"
    SYMBOL_SKIPPED = "symbol_skipped"

    # Outcomes
    OUTCOME_RECORDED = "outcome_recorded"

    # Failures
    DATA_UNAVAILABLE = "data_unavailable"
    ERROR = "error"


@dataclass
class TelemetryEvent:
    """
    Base telemetry event structure.

    Event-specific fields live in the flexible `data` dictionary.
    """

    event_type: EventType
    timestamp: datetime
    cycle_id: Optional[int] = None
    symbol: Optional[str] = None
    data: Dict[str, Any] = None

    def __post_init__(self):
        if self.timestamp.tzinfo is None:
            self.timestamp = self.timestamp.replace(tzinfo=timezone.utc)
        if self.data is None:
            self.data = {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for JSON serialization."""
        result = asdict(self)
        result["timestamp"] = self.timestamp.isoformat()
        result["event_type"] = self.event_type.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TelemetryEvent":
        data = data.copy()
        data.pop("id", None)
        data["timestamp"] = datetime.fromisoformat(data["timestamp"])
        data["event_type"] = EventType(data["event_type"])
        return cls(**data)


def _now(timestamp: Optional[datetime]) -> datetime:
    return timestamp or datetime.now(timezone.utc)


def create_engine_started_event(watchlist: list, config: Dict[str, Any],
                                timestamp: Optional[datetime] = None) -> TelemetryEvent:
    return TelemetryEvent(
        event_type=EventType.ENGINE_STARTED,
        timestamp=_now(timestamp),
        data={"watchlist": list(watchlist), "symbol_count": len(watchlist), "config": config},
    )


def create_engine_stopped_event(reason: str = "user_requested",
                                timestamp: Optional[datetime] = None) -> TelemetryEvent:
    return TelemetryEvent(
        event_type=EventType.ENGINE_STOPPED,
        timestamp=_now(timestamp),
        data={"reason": reason},
    )


def create_cycle_completed_event(
    cycle_id: int,
    symbols_analyzed: int,
    signals_emitted: int,
    signals_rejected: int,
    symbols_skipped: int,
    duration_seconds: float,
    timestamp: Optional[datetime] = None,
) -> TelemetryEvent:
    """Create cycle completed event."""
    return TelemetryEvent(
        event_type=EventType.CYCLE_COMPLETED,
        timestamp=_now(timestamp),
        cycle_id=cycle_id,
        data={
            "symbols_analyzed": symbols_analyzed,
            "signals_emitted": signals_emitted,
            "signals_rejected": signals_rejected,
            "symbols_skipped": symbols_skipped,
            "duration_seconds": round(duration_seconds, 2),
        },
    )


def create_signal_emitted_event(
    cycle_id: Optional[int],
    symbol: str,
    signal_id: str,
    action: str,
    confidence: float,
    entry_price: float,
    risk_reward_ratio: float,
    methods: list,
    timestamp: Optional[datetime] = None,
) -> TelemetryEvent:
    """Create signal emitted event."""
    return TelemetryEvent(
        event_type=EventType.SIGNAL_EMITTED,
        timestamp=_now(timestamp),
        cycle_id=cycle_id,
        symbol=symbol,
        data={
            "signal_id": signal_id,
            "action": action,
            "confidence": round(confidence, 2),
            "entry_price": entry_price,
            "risk_reward_ratio": round(risk_reward_ratio, 2),
            "methods": list(methods),
        },
    )


def create_signal_rejected_event(
    cycle_id: Optional[int],
    symbol: str,
    reason: str,
    measured: Optional[float] = None,
    threshold: Optional[float] = None,
    detail: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> TelemetryEvent:
    """Create signal rejected event."""
    data = {"reason": reason}
    if measured is not None:
        data["measured"] = round(measured, 2)
    if threshold is not None:
        data["threshold"] = round(threshold, 2)
    if detail:
        data["detail"] = detail

    return TelemetryEvent(
        event_type=EventType.SIGNAL_REJECTED,
        timestamp=_now(timestamp),
        cycle_id=cycle_id,
        symbol=symbol,
        data=data,
    )


def create_symbol_skipped_event(cycle_id: Optional[int], symbol: str, reason: str,
                                until: Optional[str] = None,
                                timestamp: Optional[datetime] = None) -> TelemetryEvent:
    data = {"reason": reason}
    if until:
        data["until"] = until
    return TelemetryEvent(
        event_type=EventType.SYMBOL_SKIPPED,
        timestamp=_now(timestamp),
        cycle_id=cycle_id,
        symbol=symbol,
        data=data,
    )


def create_data_unavailable_event(cycle_id: Optional[int], symbol: str, message: str,
                                  timestamp: Optional[datetime] = None) -> TelemetryEvent:
    return TelemetryEvent(
        event_type=EventType.DATA_UNAVAILABLE,
        timestamp=_now(timestamp),
        cycle_id=cycle_id,
        symbol=symbol,
        data={"message": message},
    )


def create_outcome_recorded_event(
    symbol: str,
    signal_id: str,
    outcome: str,
    exit_reason: str,
    profit_percent: float,
    timestamp: Optional[datetime] = None,
) -> TelemetryEvent:
    return TelemetryEvent(
        event_type=EventType.OUTCOME_RECORDED,
        timestamp=_now(timestamp),
        symbol=symbol,
        data={
            "signal_id": signal_id,
            "outcome": outcome,
            "exit_reason": exit_reason,
            "profit_percent": round(profit_percent, 4),
        },
    )


def create_error_event(
    error_message: str,
    error_type: str,
    symbol: Optional[str] = None,
    cycle_id: Optional[int] = None,
    traceback: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> TelemetryEvent:
    """Create error event."""
    data = {"error_message": error_message, "error_type": error_type}
    if traceback:
        data["traceback"] = traceback

    return TelemetryEvent(
        event_type=EventType.ERROR,
        timestamp=_now(timestamp),
        cycle_id=cycle_id,
        symbol=symbol,
        data=data,
    )
