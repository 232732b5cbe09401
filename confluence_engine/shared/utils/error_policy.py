"""
Error taxonomy for the engine.

Collaborator boundaries (market data, fundamentals, persistence) raise these
exceptions. Decision-path outcomes (risk/reward, ordering, direction conflict)
are returned as RejectionRecords instead of raised, so every rejection can be
stored and measured; the matching exceptions exist for callers that need to
fail hard on them.
"""

from typing import Optional


class EngineError(Exception):
    """Base class for all engine errors."""


class DataUnavailable(EngineError):
    """Raised when an upstream data fetch fails. The symbol is skipped for the cycle."""

    def __init__(self, symbol: str, message: str, timeframe: Optional[str] = None):
        self.symbol = symbol
        self.timeframe = timeframe
        where = f"{symbol} {timeframe}" if timeframe else symbol
        super().__init__(f"Data unavailable for {where}: {message}")


class InsufficientData(EngineError):
    """Raised when a series is shorter than a detector requires."""

    def __init__(self, required: int, received: int, context: str = ""):
        self.required = required
        self.received = received
        suffix = f" ({context})" if context else ""
        super().__init__(f"Insufficient data: need {required} points, got {received}{suffix}")


class ValidationFailed(EngineError):
    """Raised when a risk/reward or ordering invariant is violated."""

    def __init__(self, reason: str, measured: Optional[float] = None, threshold: Optional[float] = None):
        self.reason = reason
        self.measured = measured
        self.threshold = threshold
        detail = f" (measured={measured}, threshold={threshold})" if measured is not None else ""
        super().__init__(f"Validation failed: {reason}{detail}")


class DirectionConflict(EngineError):
    """Raised when the technical majority contradicts strong external sentiment."""


class QuotaExhausted(EngineError):
    """Daily emission quota used up."""


class CooldownActive(EngineError):
    """A global or per-symbol cooldown blocks emission."""


class PersistenceFailure(EngineError):
    """Raised when a store read or write fails."""


def enforce_min_points(received: int, required: int, context: str = "") -> None:
    """
    Ensure a series has enough points.

    Raises:
        InsufficientData: If received < required
    """
    if received < required:
        raise InsufficientData(required, received, context)


def enforce_positive(value: Optional[float], name: str) -> float:
    """
    Ensure a numeric input is present and strictly positive.

    Raises:
        ValueError: If value is None, NaN or <= 0
    """
    if value is None or value != value or value <= 0:
        raise ValueError(f"{name} must be a positive number, got {value}")
    return value
