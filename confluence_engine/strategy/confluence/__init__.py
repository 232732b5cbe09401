"""Confluence aggregation."""

from confluence_engine.strategy.confluence.aggregator import AggregationResult, ConfluenceAggregator

__all__ = ['AggregationResult', 'ConfluenceAggregator']
