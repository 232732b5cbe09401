"""
Outcome Tracker

Records every emitted signal with its full context and follows it until it
closes: target hit, stop hit, timeout, or a manual close. Closed outcomes are
written back onto the signal row and forwarded to the learning engine.
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional
import logging
import threading
import time

from confluence_engine.contracts.store_contract import SignalStore
from confluence_engine.learning.learning_engine import LearningEngine, close_outcome
from confluence_engine.shared.models.signals import (
    Action,
    EmittedSignal,
    ExitReason,
    OutcomeStatus,
    SignalOutcome,
)
from confluence_engine.shared.utils.error_policy import DataUnavailable, PersistenceFailure
from confluence_engine.shared.utils.retry import call_with_retry

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class OutcomeTracker:
    """
    Lifecycle owner of emitted signals.

    Usage:
        tracker = OutcomeTracker(store, learning_engine)
        signal = tracker.track(signal)          # pending, persisted
        tracker.check_open_signals(price_of)    # closes on target/stop/timeout
    """

    def __init__(
        self,
        store: SignalStore,
        learning_engine: LearningEngine,
        timeout_hours: float = 24.0,
        persistence_retries: int = 3,
        persistence_backoff: float = 0.5,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if timeout_hours <= 0:
            raise ValueError(f"timeout_hours must be positive, got {timeout_hours}")
        self.store = store
        self.learning_engine = learning_engine
        self.timeout = timedelta(hours=timeout_hours)
        self.persistence_retries = persistence_retries
        self.persistence_backoff = persistence_backoff
        self._clock = clock
        self._sleep = sleep

        self._lock = threading.RLock()
        self._open: Dict[str, EmittedSignal] = {}
        self._closed: Dict[str, SignalOutcome] = {}
        learning_engine.bind_closer(self.close)

    def track(self, signal: EmittedSignal) -> EmittedSignal:
        """
        Persist a freshly emitted signal with a pending outcome.

        Returns:
            The signal, flagged ``persisted=False`` if the store kept failing
        """
        try:
            self._with_retry(self.store.append_signal, signal, SignalOutcome(signal_id=signal.id),
                             operation=f"append_signal[{signal.id}]")
        except PersistenceFailure as e:
            logger.error("Signal %s not persisted, tracking in memory only: %s", signal.id, e)
            signal = replace(signal, persisted=False)

        with self._lock:
            self._open[signal.id] = signal
        logger.info("Tracking %s %s %s (entry %.6g)", signal.id, signal.action.value, signal.symbol, signal.entry)
        return signal

    def load_pending(self) -> int:
        """Resume tracking of pending signals found in the store."""
        rows = self.store.list_signals()
        count = 0
        with self._lock:
            for signal, outcome in rows:
                if outcome.outcome == OutcomeStatus.PENDING and signal.id not in self._open:
                    self._open[signal.id] = signal
                    count += 1
        if count:
            logger.info("Resumed tracking of %d pending signals", count)
        return count

    def get_signal(self, signal_id: str) -> Optional[EmittedSignal]:
        with self._lock:
            signal = self._open.get(signal_id)
        if signal is not None:
            return signal
        row = self.store.get_signal(signal_id)
        return row[0] if row else None

    def open_signals(self) -> List[EmittedSignal]:
        with self._lock:
            return sorted(self._open.values(), key=lambda s: s.emitted_at)

    def close(self, signal_id: str, exit_price: float, exit_reason: ExitReason) -> SignalOutcome:
        """
        Close a signal exactly once.

        A second close of the same signal returns the recorded outcome
        unchanged.

        Raises:
            KeyError: If the signal is unknown
        """
        with self._lock:
            if signal_id in self._closed:
                logger.warning("Signal %s already closed", signal_id)
                return self._closed[signal_id]

            signal = self._open.get(signal_id)
            if signal is None:
                row = self.store.get_signal(signal_id)
                if row is None:
                    raise KeyError(f"Unknown signal {signal_id}")
                signal, existing = row
                if existing.is_terminal:
                    self._closed[signal_id] = existing
                    return existing

            outcome = close_outcome(signal, exit_price, exit_reason, self._clock())
            self._open.pop(signal_id, None)
            self._closed[signal_id] = outcome

            try:
                self._with_retry(self.store.update_outcome, outcome, operation=f"update_outcome[{signal_id}]")
            except PersistenceFailure as e:
                logger.error("Outcome for %s not persisted: %s", signal_id, e)

        logger.info(
            "Closed %s %s: %s at %.6g (%s, %+.2f%%)",
            signal.symbol, signal_id, outcome.outcome.value, exit_price,
            outcome.exit_reason.value, outcome.profit_percent,
        )
        self.learning_engine.apply_outcome(signal, outcome)
        return outcome

    def check_open_signals(self, price_lookup: Callable[[str], float]) -> List[SignalOutcome]:
        """
        Close open signals whose target or stop was reached, or that timed out.

        ``price_lookup`` returns the current price of a symbol and may raise
        DataUnavailable; such signals are left open for the next check.
        """
        now = self._clock()
        closed = []
        for signal in self.open_signals():
            try:
                price = price_lookup(signal.symbol)
            except DataUnavailable as e:
                logger.warning("Cannot check %s: %s", signal.id, e)
                continue

            reason = self._exit_reason(signal, price)
            if reason is None and now - signal.emitted_at >= self.timeout:
                reason = ExitReason.TIMEOUT
            if reason is not None:
                closed.append(self.close(signal.id, price, reason))
        return closed

    def stats(self) -> dict:
        """Tracking statistics."""
        with self._lock:
            outcomes = list(self._closed.values())
            open_count = len(self._open)
        wins = sum(1 for o in outcomes if o.outcome == OutcomeStatus.WIN)
        losses = len(outcomes) - wins
        profits = [o.profit_percent for o in outcomes]
        return {
            'total': open_count + len(outcomes),
            'open': open_count,
            'closed': len(outcomes),
            'wins': wins,
            'losses': losses,
            'win_rate': wins / len(outcomes) if outcomes else 0.0,
            'avg_profit_percent': sum(profits) / len(profits) if profits else 0.0,
        }

    @staticmethod
    def _exit_reason(signal: EmittedSignal, price: float) -> Optional[ExitReason]:
        if signal.action == Action.BUY:
            if price >= signal.target_price:
                return ExitReason.TARGET_HIT
            if price <= signal.stop_loss:
                return ExitReason.STOP_LOSS
        else:
            if price <= signal.target_price:
                return ExitReason.TARGET_HIT
            if price >= signal.stop_loss:
                return ExitReason.STOP_LOSS
        return None

    def _with_retry(self, func, *args, operation: str):
        return call_with_retry(
            func,
            *args,
            exceptions=(PersistenceFailure,),
            max_retries=self.persistence_retries,
            backoff=self.persistence_backoff,
            sleep=self._sleep,
            operation=operation,
        )
