"""
Deterministic collaborators for scheduler and engine tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Mapping, Optional, Sequence

from confluence_engine.contracts.notification_contract import Notifier
from confluence_engine.data.adapters.mocks import NeutralFundamentals
from confluence_engine.data.signal_store import InMemorySignalStore
from confluence_engine.engine.cooldown_manager import CooldownManager
from confluence_engine.engine.scheduler import Scheduler
from confluence_engine.learning.learning_engine import LearningEngine
from confluence_engine.learning.outcome_tracker import OutcomeTracker
from confluence_engine.risk.risk_validator import RiskValidator
from confluence_engine.shared.config.defaults import EngineConfig
from confluence_engine.shared.models.data import OHLCV, VolumePoint
from confluence_engine.shared.models.scoring import WYCKOFF, PressureZone, TimeframeScore
from confluence_engine.shared.models.signals import EmittedSignal
from confluence_engine.shared.utils.error_policy import PersistenceFailure
from confluence_engine.strategy.confluence.aggregator import ConfluenceAggregator
from confluence_engine.tests.fixtures.market_data import make_pressure, make_score

CLOCK_START = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = CLOCK_START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class ScriptedAnalyzer:
    """
    Stands in for TimeframeAnalyzer.

    Every timeframe of a symbol gets the same trend and confidence; entry
    follows the last candle close.
    """

    def __init__(
        self,
        trend: str = 'bullish',
        confidence: float = 85.0,
        methods: Sequence[str] = (WYCKOFF,),
        overrides: Optional[Mapping[str, str]] = None,
    ):
        self.trend = trend
        self.confidence = confidence
        self.methods = tuple(methods)
        self.overrides = dict(overrides or {})

    def analyze(self, symbol: str, timeframe: str, price_series: Sequence[OHLCV],
                volume_series: Optional[Sequence[VolumePoint]] = None) -> TimeframeScore:
        trend = self.overrides.get(symbol, self.trend)
        confidence = {'bullish': self.confidence, 'bearish': 100.0 - self.confidence}.get(trend, 50.0)
        return make_score(
            timeframe,
            trend=trend,
            confidence=confidence,
            methods=self.methods if trend != 'neutral' else (),
            symbol=symbol,
            last_close=price_series[-1].close,
            atr=1.0,
        )


class FixedPressureDetector:
    """Always reports a low-pressure zone, so stops come from ATR."""

    def detect(self, symbol: str, price_series: Sequence[OHLCV],
               volume_series: Optional[Sequence[VolumePoint]] = None) -> PressureZone:
        return make_pressure('low', psychological_level=100.0, symbol=symbol)


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent: List[EmittedSignal] = []

    def send(self, signal, reasoning):
        self.sent.append(signal)
        return True


class RaisingNotifier(Notifier):
    def __init__(self):
        self.calls = 0

    def send(self, signal, reasoning):
        self.calls += 1
        raise ConnectionError("chat service down")


class FailingSignalStore(InMemorySignalStore):
    """Rejects every signal write; everything else behaves normally."""

    def __init__(self):
        super().__init__()
        self.attempts = 0

    def append_signal(self, signal, outcome):
        self.attempts += 1
        raise PersistenceFailure("disk full")


def no_sleep(seconds: float) -> None:
    return None


def scheduler_config(**overrides) -> EngineConfig:
    values = dict(
        watchlist=('BTC/USDT', 'ETH/USDT'),
        timeframes=('5m', '15m', '1h', '4h'),
        pressure_timeframe='15m',
        stabilization_seconds=0,
        cycle_period_seconds=0.05,
        max_workers=2,
        cooldown_state_path=None,
        persistence_retries=1,
        persistence_backoff=0.0,
    )
    values.update(overrides)
    return EngineConfig(**values)


def build_scheduler(
    config: EngineConfig,
    market_data,
    clock: FakeClock,
    analyzer=None,
    fundamentals=None,
    store=None,
    dispatcher=None,
    telemetry=None,
) -> Scheduler:
    """Scheduler wired with real decision components and scripted analysis."""
    store = store if store is not None else InMemorySignalStore()
    learning = LearningEngine(store=store, clock=clock, sleep=no_sleep)
    tracker = OutcomeTracker(
        store,
        learning,
        timeout_hours=config.signal_timeout_hours,
        persistence_retries=config.persistence_retries,
        persistence_backoff=config.persistence_backoff,
        clock=clock,
        sleep=no_sleep,
    )
    cooldowns = CooldownManager(
        global_cooldown_minutes=config.global_cooldown_minutes,
        symbol_cooldown_minutes=config.symbol_cooldown_minutes,
        daily_quota=config.daily_quota,
        local_tz=timezone.utc,
    )
    return Scheduler(
        config=config,
        market_data=market_data,
        fundamentals=fundamentals or NeutralFundamentals(),
        analyzer=analyzer or ScriptedAnalyzer(),
        pressure_detector=FixedPressureDetector(),
        aggregator=ConfluenceAggregator(
            min_confluences=config.min_confluences,
            min_elite_confidence=config.min_elite_confidence,
            sentiment_conflict_threshold=config.sentiment_conflict_threshold,
            planning_timeframe=config.planning_timeframe,
            clock=clock,
        ),
        validator=RiskValidator(min_rr=config.min_rr, clock=clock),
        learning_engine=learning,
        outcome_tracker=tracker,
        cooldowns=cooldowns,
        store=store,
        dispatcher=dispatcher,
        telemetry=telemetry,
        clock=clock,
        sleep=no_sleep,
    )


def static_series(symbols: Sequence[str], timeframes: Sequence[str], candles: Sequence[OHLCV]) -> Dict[str, Dict[str, List[OHLCV]]]:
    return {symbol: {tf: list(candles) for tf in timeframes} for symbol in symbols}
