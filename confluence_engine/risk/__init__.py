"""
Risk package.

Provides stop/target planning and risk/reward admission control.
"""

from .risk_validator import RiskValidator, LevelPlan

__all__ = [
    'RiskValidator',
    'LevelPlan',
]
