"""
Volume anomaly flags over a plain sequence of volumes.
"""

from typing import Sequence


def is_surge(volumes: Sequence[float], average: float, multiplier: float = 2.5, last_n: int = 3) -> bool:
    """Any of the last ``last_n`` volumes at or above ``multiplier`` × average."""
    if average <= 0 or len(volumes) < last_n:
        return False
    return any(v >= average * multiplier for v in volumes[-last_n:])


def is_dry_up(volumes: Sequence[float], average: float, multiplier: float = 0.6, last_n: int = 5) -> bool:
    """All of the last ``last_n`` volumes at or below ``multiplier`` × average."""
    if average <= 0 or len(volumes) < last_n:
        return False
    return all(v <= average * multiplier for v in volumes[-last_n:])
