"""Engine configuration."""

from .defaults import (
    EngineConfig,
    GlobalThresholds,
    WindowSizes,
    TIMEFRAME_WEIGHTS,
    DEFAULT_ENGINE_CONFIG,
    DEFAULT_THRESHOLDS,
    DEFAULT_WINDOWS,
    timeframe_weight,
)

__all__ = [
    'EngineConfig',
    'GlobalThresholds',
    'WindowSizes',
    'TIMEFRAME_WEIGHTS',
    'DEFAULT_ENGINE_CONFIG',
    'DEFAULT_THRESHOLDS',
    'DEFAULT_WINDOWS',
    'timeframe_weight',
]
