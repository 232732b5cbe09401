"""
Scheduler - periodic driver of the analysis pipeline.

Each cycle:
1. Check open signals against current prices (OutcomeTracker)
2. Pre-check the daily quota and per-symbol cooldowns
3. Analyze the remaining symbols in a bounded worker pool
   (timeframe analysis -> pressure zone -> fundamentals -> aggregation)
4. Emit under one lock: cooldown/quota re-check -> risk validation ->
   persistence -> cooldown start
5. Queue notifications outside the lock

A failing symbol never aborts the cycle; its failure is logged and reported.
"""
import concurrent.futures
import logging
import math
import threading
import time
import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from confluence_engine.analysis.pressure_zones import PressureZoneDetector
from confluence_engine.bot.notifications.notification_manager import NotificationDispatcher
from confluence_engine.bot.telemetry.events import (
    create_cycle_completed_event,
    create_data_unavailable_event,
    create_error_event,
    create_outcome_recorded_event,
    create_signal_emitted_event,
    create_signal_rejected_event,
    create_symbol_skipped_event,
)
from confluence_engine.bot.telemetry.logger import TelemetryLogger
from confluence_engine.contracts.data_contract import FundamentalProvider, MarketDataProvider
from confluence_engine.contracts.store_contract import SignalStore
from confluence_engine.engine.context import CycleGate, CycleReport, SymbolContext, SymbolResult
from confluence_engine.engine.cooldown_manager import CooldownManager
from confluence_engine.learning.learning_engine import LearningEngine
from confluence_engine.learning.outcome_tracker import OutcomeTracker
from confluence_engine.risk.risk_validator import RiskValidator
from confluence_engine.services.timeframe_analyzer import TimeframeAnalyzer
from confluence_engine.shared.config.defaults import EngineConfig
from confluence_engine.shared.models.signals import EmittedSignal, RejectionRecord, SignalCandidate
from confluence_engine.shared.models.scoring import PressureZone
from confluence_engine.shared.utils.error_policy import DataUnavailable, PersistenceFailure
from confluence_engine.shared.utils.logging_utils import format_cycle_summary, time_operation
from confluence_engine.shared.utils.retry import call_with_retry
from confluence_engine.strategy.confluence.aggregator import ConfluenceAggregator

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SchedulerState(str, Enum):
    STOPPED = "stopped"
    STABILIZING = "stabilizing"
    RUNNING = "running"


class Scheduler:
    """
    Runs analysis cycles on a background thread.

    ``run_cycle()`` can also be called directly (tests, one-shot CLI runs);
    cycles never overlap.
    """

    def __init__(
        self,
        config: EngineConfig,
        market_data: MarketDataProvider,
        fundamentals: FundamentalProvider,
        analyzer: TimeframeAnalyzer,
        pressure_detector: PressureZoneDetector,
        aggregator: ConfluenceAggregator,
        validator: RiskValidator,
        learning_engine: LearningEngine,
        outcome_tracker: OutcomeTracker,
        cooldowns: CooldownManager,
        store: SignalStore,
        dispatcher: Optional[NotificationDispatcher] = None,
        telemetry: Optional[TelemetryLogger] = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.market_data = market_data
        self.fundamentals = fundamentals
        self.analyzer = analyzer
        self.pressure_detector = pressure_detector
        self.aggregator = aggregator
        self.validator = validator
        self.learning_engine = learning_engine
        self.outcome_tracker = outcome_tracker
        self.cooldowns = cooldowns
        self.store = store
        self.dispatcher = dispatcher
        self.telemetry = telemetry or TelemetryLogger()
        self._clock = clock
        self._sleep = sleep

        self._state = SchedulerState.STOPPED
        self._state_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        # One emission at a time: check -> validate -> persist -> cooldown
        self._emission_lock = threading.Lock()
        self._cycle_lock = threading.Lock()

        self._cycle_id = 0
        self.cycles_completed = 0
        self.last_report: Optional[CycleReport] = None

    @property
    def state(self) -> SchedulerState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: SchedulerState):
        with self._state_lock:
            if self._state != state:
                logger.info("Scheduler state: %s -> %s", self._state.value, state.value)
                self._state = state

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        """
        Start the background loop.

        The loop waits out the stabilization window before the first cycle.

        Raises:
            RuntimeError: If already started
        """
        with self._state_lock:
            if self._state != SchedulerState.STOPPED or (self._thread and self._thread.is_alive()):
                raise RuntimeError(f"Scheduler already {self._state.value}")
            self._state = SchedulerState.STABILIZING
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._run_loop, name="signal-scheduler", daemon=True)
            self._thread.start()
        logger.info(
            "Scheduler started: %d symbols, stabilization %.0fs, period %.0fs",
            len(self.config.watchlist), self.config.stabilization_seconds, self.config.cycle_period_seconds,
        )

    def stop(self, timeout: Optional[float] = None) -> bool:
        """
        Stop the loop, letting an in-flight cycle finish.

        Returns:
            True if the loop thread exited within ``timeout``
        """
        self._stop_event.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("Scheduler thread still running after %ss", timeout)
                return False
            self._thread = None
        self._set_state(SchedulerState.STOPPED)
        return True

    def _run_loop(self):
        try:
            if self._stop_event.wait(self.config.stabilization_seconds):
                return
            self._set_state(SchedulerState.RUNNING)

            while not self._stop_event.is_set():
                try:
                    self.run_cycle()
                except Exception as e:
                    logger.error("Cycle failed: %s", e, exc_info=True)
                    self.telemetry.log_event(create_error_event(
                        error_message=str(e),
                        error_type=type(e).__name__,
                        cycle_id=self._cycle_id,
                        traceback=traceback.format_exc(),
                        timestamp=self._clock(),
                    ))
                if self._stop_event.wait(self.config.cycle_period_seconds):
                    break
        finally:
            self._set_state(SchedulerState.STOPPED)

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def run_cycle(self) -> CycleReport:
        """Run one full analysis cycle and return its report."""
        with self._cycle_lock:
            self._cycle_id += 1
            cycle_id = self._cycle_id
            report = CycleReport(cycle_id=cycle_id, started_at=self._clock())
            started = time.time()

            self._check_outcomes(report)

            now = self._clock()
            if self.cooldowns.quota_exhausted(now):
                logger.info("Daily quota exhausted, skipping all %d symbols", len(self.config.watchlist))
                for symbol in self.config.watchlist:
                    report.skipped[symbol] = "quota-exhausted"
                return self._finish_cycle(report, started)

            eligible = []
            for symbol in self.config.watchlist:
                block = self.cooldowns.check(symbol, now)
                if block is not None:
                    until = block.until.isoformat() if block.until else None
                    logger.info("Skipping %s: %s (%s, until %s)", symbol, block.reason, block.scope, until)
                    report.skipped[symbol] = block.reason
                    self.telemetry.log_event(create_symbol_skipped_event(
                        cycle_id, symbol, block.reason, until=until, timestamp=now,
                    ))
                    continue
                eligible.append(symbol)

            if eligible:
                self._analyze_symbols(eligible, cycle_id, report)

            return self._finish_cycle(report, started)

    def _analyze_symbols(self, symbols: List[str], cycle_id: int, report: CycleReport):
        workers = max(1, min(self.config.max_workers, len(symbols)))
        rounds = math.ceil(len(symbols) / workers)
        deadline = self.config.symbol_timeout_seconds * rounds

        gate = CycleGate()

        def _safe_process(symbol: str) -> SymbolResult:
            try:
                return self._process_symbol(symbol, cycle_id, gate)
            except DataUnavailable as e:
                logger.warning("DataUnavailable for %s, skipping this cycle: %s", symbol, e)
                self.telemetry.log_event(create_data_unavailable_event(
                    cycle_id, symbol, str(e), timestamp=self._clock(),
                ))
                return SymbolResult(symbol=symbol, error=f"DataUnavailable: {e}", data_unavailable=True)
            except Exception as e:
                logger.error("%s: pipeline error - %s", symbol, e, exc_info=True)
                self.telemetry.log_event(create_error_event(
                    error_message=str(e),
                    error_type=type(e).__name__,
                    symbol=symbol,
                    cycle_id=cycle_id,
                    traceback=traceback.format_exc(),
                    timestamp=self._clock(),
                ))
                return SymbolResult(symbol=symbol, error=f"{type(e).__name__}: {e}")

        executor = concurrent.futures.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="analysis")
        future_map = {executor.submit(_safe_process, s): s for s in symbols}
        recorded = set()
        try:
            for future in concurrent.futures.as_completed(future_map, timeout=deadline):
                report.record(future.result())
                recorded.add(future)
        except concurrent.futures.TimeoutError:
            with self._emission_lock:
                gate.closed = True
                emitted = dict(gate.emitted)
            for future, symbol in future_map.items():
                if future in recorded:
                    continue
                if future.done():
                    report.record(future.result())
                elif symbol in emitted:
                    report.record(SymbolResult(symbol=symbol, signal=emitted[symbol]))
                else:
                    logger.error("%s: analysis timed out after %.1fs", symbol, deadline)
                    report.analyzed.append(symbol)
                    report.errors[symbol] = "timeout"
        finally:
            with self._emission_lock:
                gate.closed = True
            executor.shutdown(wait=False, cancel_futures=True)

    def _process_symbol(self, symbol: str, cycle_id: int, gate: CycleGate) -> SymbolResult:
        ctx = SymbolContext(symbol=symbol, cycle_id=cycle_id, timestamp=self._clock())

        for timeframe in self.config.timeframes:
            ctx.candles[timeframe] = self.market_data.get_price_series(symbol, timeframe, self.config.price_limit)
        ctx.volumes = list(self.market_data.get_volume_series(symbol))

        with time_operation("timeframe analysis", symbol):
            ctx.scores = [
                self.analyzer.analyze(symbol, timeframe, ctx.candles[timeframe])
                for timeframe in self.config.timeframes
            ]

        pressure_candles = ctx.candles.get(self.config.pressure_timeframe) or ctx.candles[self.config.timeframes[0]]
        ctx.pressure = self.pressure_detector.detect(symbol, pressure_candles, ctx.volumes)

        ctx.fundamental_boost, ctx.sentiment = self._fetch_fundamentals(symbol)
        ctx.weights = self.learning_engine.get_weights()
        ctx.learning_adjustment = self.learning_engine.symbol_adjustment(symbol)

        result = self.aggregator.evaluate(
            ctx.scores,
            ctx.pressure,
            ctx.fundamental_boost,
            ctx.weights,
            sentiment=ctx.sentiment,
            learning_adjustment=ctx.learning_adjustment,
        )
        if result.rejection is not None:
            self._record_rejection(result.rejection, cycle_id)
            return SymbolResult(symbol=symbol, rejection=result.rejection)

        ctx.candidate = result.candidate
        return self._emit(ctx.candidate, ctx.pressure, cycle_id, gate)

    def _fetch_fundamentals(self, symbol: str):
        try:
            boost = self.fundamentals.get_confidence_boost(symbol)
            sentiment = self.fundamentals.get_sentiment_score(symbol)
        except DataUnavailable:
            raise
        except Exception as e:
            raise DataUnavailable(symbol, f"fundamentals: {e}") from e
        return boost, sentiment

    def _emit(
        self,
        candidate: SignalCandidate,
        pressure: Optional[PressureZone],
        cycle_id: int,
        gate: CycleGate,
    ) -> SymbolResult:
        symbol = candidate.symbol
        with self._emission_lock:
            if gate.closed:
                logger.warning("Cycle %d already reported, dropping late candidate for %s", cycle_id, symbol)
                return SymbolResult(symbol=symbol, error="timeout")

            now = self._clock()
            block = self.cooldowns.check(symbol, now)
            if block is not None:
                logger.info("Candidate for %s dropped at emission: %s (%s)", symbol, block.reason, block.scope)
                return SymbolResult(symbol=symbol, skipped=block.reason)

            verdict = self.validator.validate(candidate, pressure)
            if isinstance(verdict, EmittedSignal):
                signal = self.outcome_tracker.track(verdict)
                self.cooldowns.record_emission(symbol, signal.emitted_at)
                gate.emitted[symbol] = signal
                if self.dispatcher is not None:
                    self.dispatcher.enqueue(signal, signal.reasoning)

        if isinstance(verdict, RejectionRecord):
            self._record_rejection(verdict, cycle_id)
            return SymbolResult(symbol=symbol, rejection=verdict)

        logger.info(
            "🎯 Signal emitted: %s %s @ %.6g (confidence %.1f, %d confluences, R:R %.2f)",
            signal.action.value, symbol, signal.entry, signal.composite_confidence,
            len(signal.confluences), signal.risk_reward_ratio,
        )
        self.telemetry.log_event(create_signal_emitted_event(
            cycle_id, symbol, signal.id, signal.action.value, signal.composite_confidence,
            signal.entry, signal.risk_reward_ratio, signal.contributing_methods, timestamp=signal.emitted_at,
        ))
        return SymbolResult(symbol=symbol, signal=signal)

    def _record_rejection(self, rejection: RejectionRecord, cycle_id: int):
        try:
            call_with_retry(
                self.store.append_rejection,
                rejection,
                exceptions=(PersistenceFailure,),
                max_retries=self.config.persistence_retries,
                backoff=self.config.persistence_backoff,
                sleep=self._sleep,
                operation=f"append_rejection[{rejection.symbol}]",
            )
        except PersistenceFailure as e:
            logger.error("Rejection for %s not persisted: %s", rejection.symbol, e)
        self.telemetry.log_event(create_signal_rejected_event(
            cycle_id, rejection.symbol, rejection.reason.value,
            measured=rejection.measured_value, threshold=rejection.threshold,
            detail=rejection.detail, timestamp=rejection.timestamp,
        ))

    def _check_outcomes(self, report: CycleReport):
        if not self.outcome_tracker.open_signals():
            return
        try:
            closed = self.outcome_tracker.check_open_signals(self._current_price)
        except Exception as e:
            logger.error("Outcome check failed: %s", e, exc_info=True)
            return
        for outcome in closed:
            self.telemetry.log_event(create_outcome_recorded_event(
                symbol=self._symbol_of(outcome.signal_id),
                signal_id=outcome.signal_id,
                outcome=outcome.outcome.value,
                exit_reason=outcome.exit_reason.value,
                profit_percent=outcome.profit_percent,
                timestamp=outcome.closed_at,
            ))
        report.closed_outcomes.extend(closed)

    def _symbol_of(self, signal_id: str) -> Optional[str]:
        signal = self.outcome_tracker.get_signal(signal_id)
        return signal.symbol if signal else None

    def _current_price(self, symbol: str) -> float:
        timeframe = self.config.timeframes[0]
        candles = self.market_data.get_price_series(symbol, timeframe, 1)
        if not candles:
            raise DataUnavailable(symbol, "empty price series", timeframe)
        return candles[-1].close

    def _finish_cycle(self, report: CycleReport, started: float) -> CycleReport:
        report.duration_seconds = time.time() - started
        self.cycles_completed += 1
        self.last_report = report

        logger.info("\n%s", format_cycle_summary(
            cycle_id=report.cycle_id,
            symbols_analyzed=len(report.analyzed),
            signals_emitted=len(report.emitted),
            signals_rejected=len(report.rejections),
            symbols_skipped=len(report.skipped),
            symbols_failed=len(report.errors),
            duration_sec=report.duration_seconds,
            rejection_breakdown=report.rejection_breakdown(),
        ))
        self.telemetry.log_event(create_cycle_completed_event(
            cycle_id=report.cycle_id,
            symbols_analyzed=len(report.analyzed),
            signals_emitted=len(report.emitted),
            signals_rejected=len(report.rejections),
            symbols_skipped=len(report.skipped),
            duration_seconds=report.duration_seconds,
            timestamp=self._clock(),
        ))
        return report

    def status(self) -> Dict[str, Any]:
        now = self._clock()
        return {
            'state': self.state.value,
            'cycles_completed': self.cycles_completed,
            'last_cycle': self.last_report.to_dict() if self.last_report else None,
            'cooldowns': self.cooldowns.status(now),
            'tracking': self.outcome_tracker.stats(),
            'notifications': self.dispatcher.stats() if self.dispatcher else None,
        }
