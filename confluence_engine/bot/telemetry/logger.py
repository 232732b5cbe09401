"""
Telemetry Logger

Emits telemetry events into a bounded in-memory cache and, when configured,
persists them to SQLite.
"""

from collections import deque
from typing import List, Optional, Dict, Any
import logging
from threading import Lock

from confluence_engine.bot.telemetry.events import TelemetryEvent, EventType
from confluence_engine.bot.telemetry.storage import TelemetryStorage

logger = logging.getLogger(__name__)


class TelemetryLogger:
    """
    Telemetry event logger with in-memory cache and optional persistent storage.

    Usage:
        telemetry = TelemetryLogger(storage=TelemetryStorage("data/telemetry.db"))
        telemetry.log_event(create_engine_started_event(...))
        recent = telemetry.get_cached_events()
    """

    def __init__(self, storage: Optional[TelemetryStorage] = None, cache_size: int = 100):
        """
        Initialize telemetry logger.

        Args:
            storage: TelemetryStorage instance (None = cache only)
            cache_size: Number of recent events to keep in memory
        """
        self.storage = storage
        self.cache_size = cache_size
        self._cache: deque = deque(maxlen=cache_size)
        self._lock = Lock()
        self._next_cache_id = 1

    def log_event(self, event: TelemetryEvent) -> bool:
        """
        Log telemetry event.

        Storage failures are logged; the event is still cached.

        Returns:
            True if persisted (or no storage configured), False otherwise
        """
        with self._lock:
            event_dict = event.to_dict()
            persisted = True
            if self.storage is not None:
                try:
                    event_dict["id"] = self.storage.store_event(event)
                except Exception as e:
                    logger.error("Failed to persist telemetry event: %s", e)
                    persisted = False
            if "id" not in event_dict:
                event_dict["id"] = self._next_cache_id
                self._next_cache_id += 1

            self._cache.append(event_dict)
            logger.debug("Logged event: %s (id=%s)", event.event_type.value, event_dict["id"])
            return persisted

    def get_cached_events(self, limit: Optional[int] = None,
                          event_type: Optional[EventType] = None) -> List[Dict[str, Any]]:
        """
        Get recent events from the in-memory cache, newest first.
        """
        with self._lock:
            events = list(reversed(self._cache))
        if event_type is not None:
            events = [e for e in events if e["event_type"] == event_type.value]
        if limit:
            events = events[:limit]
        return events

    def get_events(self, limit: int = 100, event_type: Optional[EventType] = None,
                   symbol: Optional[str] = None) -> List[Dict[str, Any]]:
        """Query persisted events; falls back to the cache without storage."""
        if self.storage is None:
            events = self.get_cached_events(event_type=event_type)
            if symbol:
                events = [e for e in events if e["symbol"] == symbol]
            return events[:limit]
        return [e.to_dict() for e in self.storage.get_events(limit=limit, event_type=event_type, symbol=symbol)]
