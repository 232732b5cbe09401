"""Telemetry events, storage and logger."""

from confluence_engine.bot.telemetry.events import EventType, TelemetryEvent
from confluence_engine.bot.telemetry.logger import TelemetryLogger
from confluence_engine.bot.telemetry.storage import TelemetryStorage

__all__ = ['EventType', 'TelemetryEvent', 'TelemetryLogger', 'TelemetryStorage']
