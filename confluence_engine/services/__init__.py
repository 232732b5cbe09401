"""
Analysis services.
"""

from confluence_engine.services.timeframe_analyzer import TimeframeAnalyzer

__all__ = ['TimeframeAnalyzer']
