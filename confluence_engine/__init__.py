"""
Confluence signal engine.

Multi-timeframe technical analysis, confluence aggregation, risk/reward
validation, rate-limited emission and outcome-driven method weighting.
"""

__version__ = "0.4.0"
