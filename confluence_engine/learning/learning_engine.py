"""
Learning Engine

Tracks realized performance per analysis method and turns it into
normalized method weights used by the confluence aggregator.

Per method:
- Success rate, average win, average loss, profit factor
- Sharpe-like ratio (mean / stdev of realized returns)
- Max drawdown of the cumulative return curve

Weights are recomputed synchronously after every outcome:
    score = success_rate * profit_factor * volume_bonus * drawdown_penalty
    blended = 0.7 * score + 0.3 * recency-weighted win rate (last N outcomes)
    weight = blended / sum(blended) * 100

Also tracks per-symbol results to derive a confidence adjustment for future
candidates on the same symbol.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple
import logging
import threading
import time

import numpy as np

from confluence_engine.contracts.store_contract import SignalStore
from confluence_engine.shared.models.scoring import DEFAULT_METHODS, MethodWeight
from confluence_engine.shared.models.signals import (
    EmittedSignal,
    ExitReason,
    OutcomeStatus,
    SignalOutcome,
)
from confluence_engine.shared.utils.error_policy import PersistenceFailure
from confluence_engine.shared.utils.retry import call_with_retry

logger = logging.getLogger(__name__)

PROFIT_FACTOR_CAP = 10.0
PRIOR_SUCCESS_RATE = 0.5
PRIOR_PROFIT_FACTOR = 1.0
PRIOR_RECENT_SCORE = 0.5
SCORE_BLEND = 0.7
VOLUME_BONUS_SIGNALS = 20
VOLUME_BONUS = 1.2
HIGH_VOLUME_BONUS_SIGNALS = 50
HIGH_VOLUME_BONUS = 1.1
DRAWDOWN_PENALTY_THRESHOLD = 20.0
DRAWDOWN_PENALTY = 0.8

SYMBOL_MIN_SIGNALS = 3
SYMBOL_BOOST = 10.0
SYMBOL_PENALTY = -15.0


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def close_outcome(
    signal: EmittedSignal,
    exit_price: float,
    exit_reason: ExitReason,
    closed_at: datetime,
) -> SignalOutcome:
    """Terminal outcome of ``signal`` closed at ``exit_price``. Win iff profit > 0."""
    if exit_price <= 0:
        raise ValueError(f"exit_price must be positive, got {exit_price}")
    profit = signal.profit_percent(exit_price)
    return SignalOutcome(
        signal_id=signal.id,
        outcome=OutcomeStatus.WIN if profit > 0 else OutcomeStatus.LOSS,
        exit_price=exit_price,
        exit_reason=ExitReason(exit_reason),
        profit_percent=profit,
        closed_at=closed_at,
    )


@dataclass
class MethodStats:
    """Running realized-return history of one method."""
    method_name: str
    returns: List[float] = field(default_factory=list)
    wins: List[bool] = field(default_factory=list)
    last_updated: Optional[datetime] = None

    @property
    def total(self) -> int:
        return len(self.returns)

    @property
    def success_rate(self) -> float:
        return sum(self.wins) / self.total if self.total else 0.0

    @property
    def avg_profit(self) -> float:
        gains = [r for r, w in zip(self.returns, self.wins) if w]
        return float(np.mean(gains)) if gains else 0.0

    @property
    def avg_loss(self) -> float:
        losses = [abs(r) for r, w in zip(self.returns, self.wins) if not w]
        return float(np.mean(losses)) if losses else 0.0

    @property
    def profit_factor(self) -> float:
        avg_loss = self.avg_loss
        avg_profit = self.avg_profit
        if avg_loss > 0:
            return min(avg_profit / avg_loss, PROFIT_FACTOR_CAP)
        return PROFIT_FACTOR_CAP if avg_profit > 0 else PRIOR_PROFIT_FACTOR

    @property
    def sharpe_ratio(self) -> float:
        if self.total < 2:
            return 0.0
        std = float(np.std(self.returns))
        if std == 0:
            return 0.0
        return float(np.mean(self.returns)) / std

    @property
    def max_drawdown(self) -> float:
        """Largest peak-to-trough drop of cumulative returns, in percentage points."""
        if not self.returns:
            return 0.0
        equity = np.concatenate(([0.0], np.cumsum(self.returns)))
        peaks = np.maximum.accumulate(equity)
        return float((peaks - equity).max())

    def recent_score(self, window: int) -> float:
        """Win rate over the last ``window`` outcomes, newer outcomes weighted linearly more."""
        recent = self.wins[-window:]
        if not recent:
            return PRIOR_RECENT_SCORE
        weights = np.arange(1, len(recent) + 1, dtype=float)
        return float(np.dot(weights, np.array(recent, dtype=float)) / weights.sum())

    def score(self, window: int) -> float:
        if self.total == 0:
            base = PRIOR_SUCCESS_RATE * PRIOR_PROFIT_FACTOR
        else:
            volume_bonus = 1.0
            if self.total > VOLUME_BONUS_SIGNALS:
                volume_bonus *= VOLUME_BONUS
            if self.total > HIGH_VOLUME_BONUS_SIGNALS:
                volume_bonus *= HIGH_VOLUME_BONUS
            drawdown_penalty = DRAWDOWN_PENALTY if self.max_drawdown > DRAWDOWN_PENALTY_THRESHOLD else 1.0
            base = self.success_rate * self.profit_factor * volume_bonus * drawdown_penalty
        return SCORE_BLEND * base + (1 - SCORE_BLEND) * self.recent_score(window)


@dataclass
class SymbolStats:
    total: int = 0
    wins: int = 0
    confidence_sum: float = 0.0


class LearningEngine:
    """
    Outcome-driven method weighting.

    All state changes and weight reads are serialized by one lock; readers
    receive copies of immutable MethodWeight records. Store writes run after
    that lock is released.
    """

    def __init__(
        self,
        methods: Sequence[str] = DEFAULT_METHODS,
        store: Optional[SignalStore] = None,
        recent_window: int = 20,
        persistence_retries: int = 3,
        persistence_backoff: float = 0.5,
        clock: Callable[[], datetime] = utc_now,
        signal_lookup: Optional[Callable[[str], Optional[EmittedSignal]]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not methods:
            raise ValueError("methods cannot be empty")
        if recent_window < 1:
            raise ValueError(f"recent_window must be >= 1, got {recent_window}")
        self.store = store
        self.recent_window = recent_window
        self.persistence_retries = persistence_retries
        self.persistence_backoff = persistence_backoff
        self._clock = clock
        self._signal_lookup = signal_lookup
        self._sleep = sleep
        self._closer: Optional[Callable[[str, float, ExitReason], SignalOutcome]] = None

        self._lock = threading.RLock()
        # Store writes happen outside _lock; this keeps the newest snapshot landing last.
        self._persist_lock = threading.Lock()
        self._stats: Dict[str, MethodStats] = {m: MethodStats(m) for m in methods}
        self._symbols: Dict[str, SymbolStats] = {}
        self._applied: Set[str] = set()
        self._weights: Tuple[MethodWeight, ...] = self._compute_weights()
        self.weights_persisted = True

    def get_weights(self) -> List[MethodWeight]:
        """Current weights, one per active method, summing to 100."""
        with self._lock:
            return list(self._weights)

    def bind_closer(self, closer: Callable[[str, float, ExitReason], SignalOutcome]):
        """
        Route ``record_outcome`` through the owner of signal lifecycles.

        The closer must persist the outcome and call ``apply_outcome`` itself.
        """
        self._closer = closer

    def record_outcome(self, signal_id: str, exit_price: float, exit_reason: ExitReason) -> SignalOutcome:
        """
        Close ``signal_id`` at ``exit_price`` and learn from it.

        With a bound closer the signal is closed there, so the store, the
        open-signal set and these statistics see the same single transition.

        Raises:
            KeyError: If the signal cannot be found
        """
        if self._closer is not None:
            return self._closer(signal_id, exit_price, exit_reason)
        signal = self._find_signal(signal_id)
        if signal is None:
            raise KeyError(f"Unknown signal {signal_id}")
        outcome = close_outcome(signal, exit_price, exit_reason, self._clock())
        self.apply_outcome(signal, outcome)
        return outcome

    def apply_outcome(self, signal: EmittedSignal, outcome: SignalOutcome) -> bool:
        """
        Fold a terminal outcome into method and symbol statistics and
        recompute weights.

        Returns:
            False if this signal's outcome was already applied
        """
        if not outcome.is_terminal:
            raise ValueError(f"Outcome for {outcome.signal_id} is still pending")
        if outcome.signal_id != signal.id:
            raise ValueError(f"Outcome {outcome.signal_id} does not belong to signal {signal.id}")

        with self._lock:
            if not self._apply_locked(signal, outcome):
                logger.warning("Outcome for %s already applied, ignoring", signal.id)
                return False
            self._weights = self._compute_weights()

        self._persist_current_weights()
        logger.info(
            "Learned from %s %s: %s %.2f%% via %s",
            signal.symbol, signal.id, outcome.outcome.value, outcome.profit_percent,
            ", ".join(sorted(signal.contributing_methods)) or "no methods",
        )
        return True

    def rebuild_from_history(self, persist: bool = True) -> int:
        """
        Replay all closed signals from the store.

        Args:
            persist: Write the rebuilt weights back; read-only callers pass False

        Returns:
            Number of outcomes applied
        """
        if self.store is None:
            return 0
        closed = self.store.list_closed()
        with self._lock:
            applied = sum(1 for signal, outcome in closed if self._apply_locked(signal, outcome))
            self._weights = self._compute_weights()
        if persist:
            self._persist_current_weights()
        logger.info("Rebuilt learning state from %d closed signals", applied)
        return applied

    def symbol_adjustment(self, symbol: str) -> float:
        """Confidence points to add for ``symbol`` based on its track record."""
        with self._lock:
            stats = self._symbols.get(symbol)
            if stats is None or stats.total < SYMBOL_MIN_SIGNALS:
                return 0.0
            success_rate = stats.wins / stats.total
            avg_confidence = stats.confidence_sum / stats.total
        if success_rate > 0.7 and avg_confidence > 60:
            return SYMBOL_BOOST
        if success_rate < 0.3:
            return SYMBOL_PENALTY
        return 0.0

    def performance_report(self) -> dict:
        """Summary of learned performance for status output."""
        with self._lock:
            weights = list(self._weights)
            total = sum(s.total for s in self._symbols.values())
            wins = sum(s.wins for s in self._symbols.values())

        tried = [w for w in weights if w.total_signals > 0]
        return {
            'total_outcomes': total,
            'win_rate': wins / total if total else 0.0,
            'best_method': max(tried, key=lambda w: w.weight).method_name if tried else None,
            'worst_method': min(tried, key=lambda w: w.weight).method_name if tried else None,
            'methods': [
                {
                    'method': w.method_name,
                    'weight': round(w.weight, 2),
                    'success_rate': round(w.success_rate, 3),
                    'total_signals': w.total_signals,
                    'profit_factor': round(w.profit_factor, 2),
                    'max_drawdown': round(w.max_drawdown, 2),
                }
                for w in sorted(weights, key=lambda w: w.weight, reverse=True)
            ],
        }

    def _find_signal(self, signal_id: str) -> Optional[EmittedSignal]:
        if self._signal_lookup is not None:
            signal = self._signal_lookup(signal_id)
            if signal is not None:
                return signal
        if self.store is not None:
            row = self.store.get_signal(signal_id)
            if row is not None:
                return row[0]
        return None

    def _apply_locked(self, signal: EmittedSignal, outcome: SignalOutcome) -> bool:
        if signal.id in self._applied:
            return False
        self._applied.add(signal.id)

        win = outcome.outcome == OutcomeStatus.WIN
        for method in sorted(signal.contributing_methods):
            stats = self._stats.setdefault(method, MethodStats(method))
            stats.returns.append(outcome.profit_percent)
            stats.wins.append(win)
            stats.last_updated = outcome.closed_at

        symbol_stats = self._symbols.setdefault(signal.symbol, SymbolStats())
        symbol_stats.total += 1
        symbol_stats.wins += int(win)
        symbol_stats.confidence_sum += signal.composite_confidence
        return True

    def _compute_weights(self) -> Tuple[MethodWeight, ...]:
        scores = {name: max(stats.score(self.recent_window), 0.0) for name, stats in self._stats.items()}
        total = sum(scores.values())
        count = len(scores)

        weights = []
        for name, stats in self._stats.items():
            weight = scores[name] / total * 100.0 if total > 0 else 100.0 / count
            weights.append(MethodWeight(
                method_name=name,
                weight=weight,
                success_rate=stats.success_rate,
                total_signals=stats.total,
                avg_profit=stats.avg_profit,
                avg_loss=stats.avg_loss,
                profit_factor=stats.profit_factor,
                sharpe_ratio=stats.sharpe_ratio,
                max_drawdown=stats.max_drawdown,
                last_updated=stats.last_updated,
            ))
        return tuple(weights)

    def _persist_current_weights(self) -> None:
        if self.store is None:
            return
        with self._persist_lock:
            with self._lock:
                weights = self._weights
            self._persist_weights(weights)

    def _persist_weights(self, weights: Iterable[MethodWeight]) -> None:
        try:
            for weight in weights:
                call_with_retry(
                    self.store.upsert_weight,
                    weight,
                    exceptions=(PersistenceFailure,),
                    max_retries=self.persistence_retries,
                    backoff=self.persistence_backoff,
                    sleep=self._sleep,
                    operation=f"upsert_weight[{weight.method_name}]",
                )
            self.weights_persisted = True
        except PersistenceFailure as e:
            self.weights_persisted = False
            logger.error("Method weights not persisted, keeping in memory: %s", e)
