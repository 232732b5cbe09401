"""
Deterministic pattern detectors.

Each detector takes an OHLCV DataFrame and returns a small result object,
or None when nothing is detected.
"""

from confluence_engine.analysis.wyckoff import WyckoffPhase, classify_wyckoff_phase
from confluence_engine.analysis.structure import StructureEvent, detect_structure
from confluence_engine.analysis.fibonacci import (
    FibLevel,
    calculate_fib_levels,
    find_nearest_fib,
    detect_fib_retracement,
)
from confluence_engine.analysis.volume_profile import (
    VolumeProfile,
    VolumeNodeSignal,
    calculate_volume_profile,
    detect_volume_node,
)
from confluence_engine.analysis.pressure_zones import (
    PressureZoneDetector,
    analyze_candle_behavior,
    find_nearest_psychological_level,
    bucket_pressure_level,
)

__all__ = [
    'WyckoffPhase',
    'classify_wyckoff_phase',
    'StructureEvent',
    'detect_structure',
    'FibLevel',
    'calculate_fib_levels',
    'find_nearest_fib',
    'detect_fib_retracement',
    'VolumeProfile',
    'VolumeNodeSignal',
    'calculate_volume_profile',
    'detect_volume_node',
    'PressureZoneDetector',
    'analyze_candle_behavior',
    'find_nearest_psychological_level',
    'bucket_pressure_level',
]
