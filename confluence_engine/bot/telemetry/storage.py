"""
Telemetry Storage Layer

Engine events in a single SQLite table. Event payloads are stored as JSON;
the columns every query filters on (type, time, cycle, symbol) are stored
alongside and indexed.
"""

import sqlite3
import json
from datetime import datetime, timezone, timedelta
from pathlib import Path
from typing import Any, List, Optional, Tuple
from contextlib import contextmanager
import logging

from confluence_engine.bot.telemetry.events import TelemetryEvent, EventType

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS engine_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_type TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    cycle_id INTEGER,
    symbol TEXT,
    payload TEXT
);
CREATE INDEX IF NOT EXISTS idx_engine_events_type ON engine_events(event_type);
CREATE INDEX IF NOT EXISTS idx_engine_events_ts ON engine_events(timestamp DESC);
CREATE INDEX IF NOT EXISTS idx_engine_events_symbol ON engine_events(symbol);
"""


class TelemetryStorage:
    """SQLite storage for telemetry events. ``db_path`` parent directories are created."""

    def __init__(self, db_path: str):
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.db_path = db_path
        with self._get_connection() as conn:
            conn.executescript(SCHEMA)
        logger.info("Telemetry storage ready at %s", self.db_path)

    @contextmanager
    def _get_connection(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def store_event(self, event: TelemetryEvent) -> int:
        """Insert one event and return its row id."""
        row = (
            event.event_type.value,
            event.timestamp.isoformat(),
            event.cycle_id,
            event.symbol,
            json.dumps(event.data) if event.data else None,
        )
        with self._get_connection() as conn:
            cursor = conn.execute(
                "INSERT INTO engine_events (event_type, timestamp, cycle_id, symbol, payload) "
                "VALUES (?, ?, ?, ?, ?)",
                row,
            )
            return cursor.lastrowid

    @staticmethod
    def _where(
        event_type: Optional[EventType] = None,
        symbol: Optional[str] = None,
        cycle_id: Optional[int] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> Tuple[str, List[Any]]:
        clauses = []
        params: List[Any] = []
        for clause, value in (
            ("event_type = ?", event_type.value if event_type else None),
            ("symbol = ?", symbol),
            ("cycle_id = ?", cycle_id),
            ("timestamp >= ?", start_time.isoformat() if start_time else None),
            ("timestamp <= ?", end_time.isoformat() if end_time else None),
        ):
            if value is not None:
                clauses.append(clause)
                params.append(value)
        sql = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return sql, params

    def get_events(
        self,
        limit: int = 100,
        event_type: Optional[EventType] = None,
        symbol: Optional[str] = None,
        cycle_id: Optional[int] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> List[TelemetryEvent]:
        """Filtered events, newest first."""
        where, params = self._where(event_type, symbol, cycle_id, start_time, end_time)
        sql = f"SELECT * FROM engine_events{where} ORDER BY timestamp DESC, id DESC LIMIT ?"
        with self._get_connection() as conn:
            rows = conn.execute(sql, params + [limit]).fetchall()
        return [self._row_to_event(row) for row in rows]

    def get_event_count(self, event_type: Optional[EventType] = None, symbol: Optional[str] = None) -> int:
        where, params = self._where(event_type, symbol)
        with self._get_connection() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM engine_events{where}", params).fetchone()[0]

    def cleanup_old_events(self, older_than_days: int = 30) -> int:
        """Delete events older than ``older_than_days`` and return how many went."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=older_than_days)
        with self._get_connection() as conn:
            deleted = conn.execute(
                "DELETE FROM engine_events WHERE timestamp < ?", (cutoff.isoformat(),)
            ).rowcount
        logger.info("Removed %d telemetry events older than %d days", deleted, older_than_days)
        return deleted

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> TelemetryEvent:
        return TelemetryEvent(
            event_type=EventType(row["event_type"]),
            timestamp=datetime.fromisoformat(row["timestamp"]),
            cycle_id=row["cycle_id"],
            symbol=row["symbol"],
            data=json.loads(row["payload"]) if row["payload"] else {},
        )
