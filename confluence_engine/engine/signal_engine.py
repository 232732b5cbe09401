"""
SignalEngine - wires every component and owns the engine lifecycle.

All state lives on this object; nothing is module-global, so several
engines (e.g. in tests) can coexist.
"""
import logging
from dataclasses import asdict
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from confluence_engine.analysis.pressure_zones import PressureZoneDetector
from confluence_engine.bot.notifications.notification_manager import NotificationDispatcher
from confluence_engine.bot.telemetry.events import create_engine_started_event, create_engine_stopped_event
from confluence_engine.bot.telemetry.logger import TelemetryLogger
from confluence_engine.contracts.data_contract import FundamentalProvider, MarketDataProvider
from confluence_engine.contracts.notification_contract import Notifier
from confluence_engine.contracts.store_contract import SignalStore
from confluence_engine.engine.context import CycleReport
from confluence_engine.engine.cooldown_manager import CooldownManager
from confluence_engine.engine.scheduler import Scheduler, SchedulerState, utc_now
from confluence_engine.learning.learning_engine import LearningEngine
from confluence_engine.learning.outcome_tracker import OutcomeTracker
from confluence_engine.risk.risk_validator import RiskValidator
from confluence_engine.services.timeframe_analyzer import TimeframeAnalyzer
from confluence_engine.shared.config.defaults import (
    DEFAULT_THRESHOLDS,
    DEFAULT_WINDOWS,
    EngineConfig,
    GlobalThresholds,
    WindowSizes,
)
from confluence_engine.shared.models.signals import ExitReason, SignalOutcome
from confluence_engine.strategy.confluence.aggregator import ConfluenceAggregator

logger = logging.getLogger(__name__)


class SignalEngine:
    """
    Top-level engine.

    Usage:
        engine = SignalEngine(config, market_data, fundamentals, store, notifier)
        engine.start()
        ...
        engine.stop()
    """

    def __init__(
        self,
        config: EngineConfig,
        market_data: MarketDataProvider,
        fundamentals: FundamentalProvider,
        store: SignalStore,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = utc_now,
        thresholds: Optional[GlobalThresholds] = None,
        windows: Optional[WindowSizes] = None,
        telemetry: Optional[TelemetryLogger] = None,
        cooldowns: Optional[CooldownManager] = None,
    ):
        self.config = config
        self.store = store
        self.thresholds = thresholds or DEFAULT_THRESHOLDS
        self.windows = windows or DEFAULT_WINDOWS
        self.telemetry = telemetry or TelemetryLogger()
        self._clock = clock
        self._started = False

        self.learning_engine = LearningEngine(
            store=store,
            recent_window=config.recent_outcome_window,
            persistence_retries=config.persistence_retries,
            persistence_backoff=config.persistence_backoff,
            clock=clock,
        )
        self.outcome_tracker = OutcomeTracker(
            store,
            self.learning_engine,
            timeout_hours=config.signal_timeout_hours,
            persistence_retries=config.persistence_retries,
            persistence_backoff=config.persistence_backoff,
            clock=clock,
        )
        self.cooldowns = cooldowns or CooldownManager(
            global_cooldown_minutes=config.global_cooldown_minutes,
            symbol_cooldown_minutes=config.symbol_cooldown_minutes,
            daily_quota=config.daily_quota,
            storage_path=config.cooldown_state_path,
        )
        self.dispatcher = (
            NotificationDispatcher(notifier, max_queue=config.notification_queue_size)
            if notifier is not None else None
        )
        self.scheduler = Scheduler(
            config=config,
            market_data=market_data,
            fundamentals=fundamentals,
            analyzer=TimeframeAnalyzer(self.thresholds, self.windows),
            pressure_detector=PressureZoneDetector(self.windows.pressure_window, self.thresholds),
            aggregator=ConfluenceAggregator(
                min_confluences=config.min_confluences,
                min_elite_confidence=config.min_elite_confidence,
                sentiment_conflict_threshold=config.sentiment_conflict_threshold,
                planning_timeframe=config.planning_timeframe,
                thresholds=self.thresholds,
                clock=clock,
            ),
            validator=RiskValidator(min_rr=config.min_rr, thresholds=self.thresholds, clock=clock),
            learning_engine=self.learning_engine,
            outcome_tracker=self.outcome_tracker,
            cooldowns=self.cooldowns,
            store=store,
            dispatcher=self.dispatcher,
            telemetry=self.telemetry,
            clock=clock,
        )

    @property
    def state(self) -> SchedulerState:
        return self.scheduler.state

    def prepare(self):
        """Restore learned weights and pending signals from the store."""
        if self._started:
            return
        self.learning_engine.rebuild_from_history()
        self.outcome_tracker.load_pending()
        if self.dispatcher is not None:
            self.dispatcher.start()
        self._started = True

    def start(self):
        """Restore state and start the periodic scheduler."""
        self.prepare()
        self.scheduler.start()
        self.telemetry.log_event(create_engine_started_event(
            self.config.watchlist,
            {k: v for k, v in asdict(self.config).items() if not k.startswith('telegram')},
            timestamp=self._clock(),
        ))
        logger.info("🚀 Signal engine started (%d symbols)", len(self.config.watchlist))

    def run_once(self) -> CycleReport:
        """Run a single cycle immediately, without the stabilization window."""
        self.prepare()
        return self.scheduler.run_cycle()

    def stop(self, timeout: Optional[float] = None, reason: str = "user_requested") -> bool:
        stopped = self.scheduler.stop(timeout)
        if self.dispatcher is not None:
            self.dispatcher.stop()
        self._started = False
        self.telemetry.log_event(create_engine_stopped_event(reason, timestamp=self._clock()))
        logger.info("Signal engine stopped (%s)", reason)
        return stopped

    def close_signal(self, signal_id: str, exit_price: float,
                     exit_reason: ExitReason = ExitReason.MANUAL) -> SignalOutcome:
        """Manually close an open signal."""
        return self.outcome_tracker.close(signal_id, exit_price, exit_reason)

    def status(self) -> Dict[str, Any]:
        status = self.scheduler.status()
        status['learning'] = self.learning_engine.performance_report()
        status['weights_persisted'] = self.learning_engine.weights_persisted
        return status
