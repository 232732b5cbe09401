"""
Signal Storage Layer

SQLite persistence for emitted signals (with their outcome columns),
rejection records and learned method weights, plus an in-memory store with
the same interface for tests and dry runs.
"""

import sqlite3
import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from contextlib import contextmanager
import logging

from confluence_engine.contracts.store_contract import SignalStore
from confluence_engine.shared.models.scoring import MethodWeight
from confluence_engine.shared.models.signals import (
    Action,
    EmittedSignal,
    ExitReason,
    OutcomeStatus,
    RejectionReason,
    RejectionRecord,
    SignalOutcome,
)
from confluence_engine.shared.utils.error_policy import PersistenceFailure

logger = logging.getLogger(__name__)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteSignalStore(SignalStore):
    """
    SQLite storage for signals, rejections and method weights.

    Each operation opens its own connection, so the store can be shared
    between the scheduler's worker threads.
    """

    def __init__(self, db_path: str = "data/signals.db"):
        """
        Initialize storage.

        Args:
            db_path: Path to SQLite database file; parent directories are created.
        """
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.db_path = db_path
        self._init_db()
        logger.info(f"Signal storage initialized: {self.db_path}")

    def _init_db(self):
        """Create database schema if it doesn't exist."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS signals (
                    id TEXT PRIMARY KEY,
                    symbol TEXT NOT NULL,
                    action TEXT NOT NULL,
                    entry REAL NOT NULL,
                    stop_loss REAL NOT NULL,
                    target_price REAL NOT NULL,
                    risk_reward_ratio REAL NOT NULL,
                    composite_confidence REAL NOT NULL,
                    confluences_json TEXT,
                    methods_json TEXT,
                    timeframes_json TEXT,
                    reasoning_json TEXT,
                    atr REAL,
                    emitted_at TEXT NOT NULL,
                    outcome TEXT NOT NULL DEFAULT 'pending',
                    exit_price REAL,
                    exit_reason TEXT,
                    profit_percent REAL,
                    closed_at TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS rejections (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    symbol TEXT NOT NULL,
                    reason TEXT NOT NULL,
                    measured_value REAL,
                    threshold REAL,
                    detail TEXT,
                    timestamp TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS method_weights (
                    method_name TEXT PRIMARY KEY,
                    weight REAL NOT NULL,
                    success_rate REAL NOT NULL,
                    total_signals INTEGER NOT NULL,
                    avg_profit REAL NOT NULL,
                    avg_loss REAL NOT NULL,
                    profit_factor REAL NOT NULL,
                    sharpe_ratio REAL NOT NULL,
                    max_drawdown REAL NOT NULL,
                    last_updated TEXT
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_signals_symbol
                ON signals(symbol)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_signals_emitted_at
                ON signals(emitted_at DESC)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_rejections_timestamp
                ON rejections(timestamp DESC)
            """)

            conn.commit()

    @contextmanager
    def _get_connection(self):
        """Get database connection; sqlite errors surface as PersistenceFailure."""
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Cannot open {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except sqlite3.Error as e:
            raise PersistenceFailure(f"SQLite error on {self.db_path}: {e}") from e
        finally:
            conn.close()

    def append_signal(self, signal: EmittedSignal, outcome: SignalOutcome) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO signals
                (id, symbol, action, entry, stop_loss, target_price, risk_reward_ratio,
                 composite_confidence, confluences_json, methods_json, timeframes_json,
                 reasoning_json, atr, emitted_at, outcome, exit_price, exit_reason,
                 profit_percent, closed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    signal.id,
                    signal.symbol,
                    signal.action.value,
                    signal.entry,
                    signal.stop_loss,
                    signal.target_price,
                    signal.risk_reward_ratio,
                    signal.composite_confidence,
                    json.dumps(list(signal.confluences)),
                    json.dumps(sorted(signal.contributing_methods)),
                    json.dumps(list(signal.timeframes)),
                    json.dumps(list(signal.reasoning)),
                    signal.atr,
                    signal.emitted_at.isoformat(),
                    outcome.outcome.value,
                    outcome.exit_price,
                    outcome.exit_reason.value if outcome.exit_reason else None,
                    outcome.profit_percent,
                    _iso(outcome.closed_at),
                ),
            )
            conn.commit()

    def update_outcome(self, outcome: SignalOutcome) -> None:
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE signals
                SET outcome = ?, exit_price = ?, exit_reason = ?, profit_percent = ?, closed_at = ?
                WHERE id = ?
            """,
                (
                    outcome.outcome.value,
                    outcome.exit_price,
                    outcome.exit_reason.value if outcome.exit_reason else None,
                    outcome.profit_percent,
                    _iso(outcome.closed_at),
                    outcome.signal_id,
                ),
            )
            conn.commit()
            if cursor.rowcount == 0:
                raise PersistenceFailure(f"No signal row for {outcome.signal_id}")

    def get_signal(self, signal_id: str) -> Optional[Tuple[EmittedSignal, SignalOutcome]]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM signals WHERE id = ?", (signal_id,)).fetchone()
        return self._row_to_signal(row) if row else None

    def list_signals(self, symbol: Optional[str] = None, limit: Optional[int] = None) -> List[Tuple[EmittedSignal, SignalOutcome]]:
        query = "SELECT * FROM signals"
        params: list = []
        if symbol:
            query += " WHERE symbol = ?"
            params.append(symbol)
        query += " ORDER BY emitted_at DESC"
        if limit:
            query += " LIMIT ?"
            params.append(limit)
        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_signal(row) for row in rows]

    def list_closed(self) -> List[Tuple[EmittedSignal, SignalOutcome]]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM signals WHERE outcome != 'pending' ORDER BY closed_at ASC"
            ).fetchall()
        return [self._row_to_signal(row) for row in rows]

    def append_rejection(self, rejection: RejectionRecord) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO rejections (symbol, reason, measured_value, threshold, detail, timestamp)
                VALUES (?, ?, ?, ?, ?, ?)
            """,
                (
                    rejection.symbol,
                    rejection.reason.value,
                    rejection.measured_value,
                    rejection.threshold,
                    rejection.detail,
                    rejection.timestamp.isoformat(),
                ),
            )
            conn.commit()

    def list_rejections(self, symbol: Optional[str] = None, limit: Optional[int] = None) -> List[RejectionRecord]:
        query = "SELECT * FROM rejections"
        params: list = []
        if symbol:
            query += " WHERE symbol = ?"
            params.append(symbol)
        query += " ORDER BY id DESC"
        if limit:
            query += " LIMIT ?"
            params.append(limit)
        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            RejectionRecord(
                symbol=row['symbol'],
                reason=RejectionReason(row['reason']),
                timestamp=_parse(row['timestamp']),
                measured_value=row['measured_value'],
                threshold=row['threshold'],
                detail=row['detail'] or "",
            )
            for row in rows
        ]

    def upsert_weight(self, weight: MethodWeight) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO method_weights
                (method_name, weight, success_rate, total_signals, avg_profit, avg_loss,
                 profit_factor, sharpe_ratio, max_drawdown, last_updated)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    weight.method_name,
                    weight.weight,
                    weight.success_rate,
                    weight.total_signals,
                    weight.avg_profit,
                    weight.avg_loss,
                    weight.profit_factor,
                    weight.sharpe_ratio,
                    weight.max_drawdown,
                    _iso(weight.last_updated),
                ),
            )
            conn.commit()

    def load_weights(self) -> List[MethodWeight]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT * FROM method_weights ORDER BY method_name").fetchall()
        return [
            MethodWeight(
                method_name=row['method_name'],
                weight=row['weight'],
                success_rate=row['success_rate'],
                total_signals=row['total_signals'],
                avg_profit=row['avg_profit'],
                avg_loss=row['avg_loss'],
                profit_factor=row['profit_factor'],
                sharpe_ratio=row['sharpe_ratio'],
                max_drawdown=row['max_drawdown'],
                last_updated=_parse(row['last_updated']),
            )
            for row in rows
        ]

    @staticmethod
    def _row_to_signal(row: sqlite3.Row) -> Tuple[EmittedSignal, SignalOutcome]:
        signal = EmittedSignal(
            id=row['id'],
            emitted_at=_parse(row['emitted_at']),
            symbol=row['symbol'],
            action=Action(row['action']),
            entry=row['entry'],
            stop_loss=row['stop_loss'],
            target_price=row['target_price'],
            risk_reward_ratio=row['risk_reward_ratio'],
            composite_confidence=row['composite_confidence'],
            confluences=tuple(json.loads(row['confluences_json'] or '[]')),
            contributing_methods=frozenset(json.loads(row['methods_json'] or '[]')),
            timeframes=tuple(json.loads(row['timeframes_json'] or '[]')),
            reasoning=tuple(json.loads(row['reasoning_json'] or '[]')),
            atr=row['atr'],
        )
        outcome = SignalOutcome(
            signal_id=row['id'],
            outcome=OutcomeStatus(row['outcome']),
            exit_price=row['exit_price'],
            exit_reason=ExitReason(row['exit_reason']) if row['exit_reason'] else None,
            profit_percent=row['profit_percent'],
            closed_at=_parse(row['closed_at']),
        )
        return signal, outcome


class InMemorySignalStore(SignalStore):
    """Process-local store with the SQLite store's semantics."""

    def __init__(self):
        self._lock = threading.Lock()
        self._signals: Dict[str, EmittedSignal] = {}
        self._outcomes: Dict[str, SignalOutcome] = {}
        self._rejections: List[RejectionRecord] = []
        self._weights: Dict[str, MethodWeight] = {}

    def append_signal(self, signal: EmittedSignal, outcome: SignalOutcome) -> None:
        with self._lock:
            if signal.id in self._signals:
                raise PersistenceFailure(f"Duplicate signal id {signal.id}")
            self._signals[signal.id] = signal
            self._outcomes[signal.id] = outcome

    def update_outcome(self, outcome: SignalOutcome) -> None:
        with self._lock:
            if outcome.signal_id not in self._signals:
                raise PersistenceFailure(f"No signal row for {outcome.signal_id}")
            self._outcomes[outcome.signal_id] = outcome

    def get_signal(self, signal_id: str) -> Optional[Tuple[EmittedSignal, SignalOutcome]]:
        with self._lock:
            if signal_id not in self._signals:
                return None
            return self._signals[signal_id], self._outcomes[signal_id]

    def list_signals(self, symbol: Optional[str] = None, limit: Optional[int] = None) -> List[Tuple[EmittedSignal, SignalOutcome]]:
        with self._lock:
            rows = [
                (s, self._outcomes[s.id]) for s in self._signals.values()
                if symbol is None or s.symbol == symbol
            ]
        rows.sort(key=lambda r: r[0].emitted_at, reverse=True)
        return rows[:limit] if limit else rows

    def list_closed(self) -> List[Tuple[EmittedSignal, SignalOutcome]]:
        with self._lock:
            rows = [(self._signals[sid], o) for sid, o in self._outcomes.items() if o.is_terminal]
        rows.sort(key=lambda r: r[1].closed_at)
        return rows

    def append_rejection(self, rejection: RejectionRecord) -> None:
        with self._lock:
            self._rejections.append(rejection)

    def list_rejections(self, symbol: Optional[str] = None, limit: Optional[int] = None) -> List[RejectionRecord]:
        with self._lock:
            rows = [r for r in reversed(self._rejections) if symbol is None or r.symbol == symbol]
        return rows[:limit] if limit else rows

    def upsert_weight(self, weight: MethodWeight) -> None:
        with self._lock:
            self._weights[weight.method_name] = weight

    def load_weights(self) -> List[MethodWeight]:
        with self._lock:
            return [self._weights[name] for name in sorted(self._weights)]
