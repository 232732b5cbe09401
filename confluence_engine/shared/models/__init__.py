"""Shared data models."""

from .data import OHLCV, VolumePoint, candles_to_dataframe, volume_points_from_candles
from .signals import (
    Action,
    RejectionReason,
    ExitReason,
    OutcomeStatus,
    SignalCandidate,
    EmittedSignal,
    SignalOutcome,
    RejectionRecord,
    levels_are_ordered,
    risk_reward,
    profit_percent,
)
from .scoring import (
    MethodSignal,
    DetectorOutputs,
    TimeframeScore,
    VolumeContext,
    CandleBehavior,
    PressureZone,
    MethodWeight,
    DEFAULT_METHODS,
    uniform_weights,
)

__all__ = [
    'OHLCV',
    'VolumePoint',
    'candles_to_dataframe',
    'volume_points_from_candles',
    'Action',
    'RejectionReason',
    'ExitReason',
    'OutcomeStatus',
    'SignalCandidate',
    'EmittedSignal',
    'SignalOutcome',
    'RejectionRecord',
    'levels_are_ordered',
    'risk_reward',
    'profit_percent',
    'MethodSignal',
    'DetectorOutputs',
    'TimeframeScore',
    'VolumeContext',
    'CandleBehavior',
    'PressureZone',
    'MethodWeight',
    'DEFAULT_METHODS',
    'uniform_weights',
]
