"""
Unit tests for the outcome tracker.

Tests target/stop/timeout closing, single-close semantics, persistence
failures and resumption of pending signals.
"""

import pytest

from confluence_engine.learning.learning_engine import LearningEngine
from confluence_engine.learning.outcome_tracker import OutcomeTracker
from confluence_engine.shared.models.scoring import WYCKOFF
from confluence_engine.shared.models.signals import Action, ExitReason, OutcomeStatus, SignalOutcome
from confluence_engine.shared.utils.error_policy import DataUnavailable
from confluence_engine.tests.fixtures.engine import FailingSignalStore, no_sleep
from confluence_engine.tests.fixtures.market_data import make_signal


@pytest.fixture
def learning(memory_store, clock):
    return LearningEngine(store=memory_store, clock=clock, sleep=no_sleep)


@pytest.fixture
def tracker(memory_store, learning, clock):
    return OutcomeTracker(memory_store, learning, timeout_hours=24, clock=clock, sleep=no_sleep)


def test_track_persists_pending_outcome(tracker, memory_store, clock):
    signal = tracker.track(make_signal("SIG-1", emitted_at=clock.now))

    stored, outcome = memory_store.get_signal("SIG-1")
    assert stored == signal
    assert outcome.outcome == OutcomeStatus.PENDING
    assert signal.persisted is True
    assert [s.id for s in tracker.open_signals()] == ["SIG-1"]


def test_target_hit_closes_as_win(tracker, memory_store, learning, clock):
    tracker.track(make_signal("SIG-1", entry=100.0, emitted_at=clock.now))
    clock.advance(hours=1)

    closed = tracker.check_open_signals(lambda symbol: 103.5)

    assert len(closed) == 1
    outcome = closed[0]
    assert outcome.outcome == OutcomeStatus.WIN
    assert outcome.exit_reason == ExitReason.TARGET_HIT
    assert outcome.profit_percent == pytest.approx(3.5)
    assert memory_store.get_signal("SIG-1")[1] == outcome
    assert tracker.open_signals() == []
    assert learning.performance_report()['total_outcomes'] == 1


def test_learning_record_outcome_closes_through_tracker(tracker, memory_store, learning, clock):
    tracker.track(make_signal("SIG-1", entry=100.0, emitted_at=clock.now))

    outcome = learning.record_outcome("SIG-1", 103.5, ExitReason.TARGET_HIT)

    assert outcome.outcome == OutcomeStatus.WIN
    assert memory_store.get_signal("SIG-1")[1] == outcome
    assert tracker.open_signals() == []
    assert tracker.check_open_signals(lambda symbol: 98.0) == []
    assert memory_store.get_signal("SIG-1")[1].outcome == OutcomeStatus.WIN
    report = learning.performance_report()
    assert report['total_outcomes'] == 1
    assert report['win_rate'] == 1.0


def test_stop_hit_closes_as_loss(tracker, clock):
    tracker.track(make_signal("SIG-1", entry=100.0, emitted_at=clock.now))

    closed = tracker.check_open_signals(lambda symbol: 98.0)

    assert closed[0].outcome == OutcomeStatus.LOSS
    assert closed[0].exit_reason == ExitReason.STOP_LOSS


def test_sell_signal_closes_on_falling_price(tracker, clock):
    tracker.track(make_signal("SIG-1", action=Action.SELL, entry=100.0, emitted_at=clock.now))

    closed = tracker.check_open_signals(lambda symbol: 96.5)

    assert closed[0].exit_reason == ExitReason.TARGET_HIT
    assert closed[0].outcome == OutcomeStatus.WIN


def test_price_between_levels_stays_open_until_timeout(tracker, clock):
    tracker.track(make_signal("SIG-1", entry=100.0, emitted_at=clock.now))

    clock.advance(hours=23)
    assert tracker.check_open_signals(lambda symbol: 100.5) == []

    clock.advance(hours=1)
    closed = tracker.check_open_signals(lambda symbol: 100.5)

    assert closed[0].exit_reason == ExitReason.TIMEOUT
    assert closed[0].outcome == OutcomeStatus.WIN


def test_unavailable_price_leaves_signal_open(tracker, clock):
    tracker.track(make_signal("SIG-1", emitted_at=clock.now))

    def no_price(symbol):
        raise DataUnavailable(symbol, "exchange down")

    assert tracker.check_open_signals(no_price) == []
    assert len(tracker.open_signals()) == 1


def test_signal_closes_exactly_once(tracker, learning, clock):
    tracker.track(make_signal("SIG-1", methods=(WYCKOFF,), emitted_at=clock.now))

    first = tracker.close("SIG-1", 103.0, ExitReason.MANUAL)
    second = tracker.close("SIG-1", 90.0, ExitReason.MANUAL)

    assert second == first
    assert learning.performance_report()['total_outcomes'] == 1


def test_close_unknown_signal_raises(tracker):
    with pytest.raises(KeyError, match="Unknown signal"):
        tracker.close("SIG-missing", 100.0, ExitReason.MANUAL)


def test_store_failure_marks_signal_unpersisted(learning, clock):
    store = FailingSignalStore()
    tracker = OutcomeTracker(store, learning, persistence_retries=2, persistence_backoff=0.0,
                             clock=clock, sleep=no_sleep)

    signal = tracker.track(make_signal("SIG-1", emitted_at=clock.now))

    assert signal.persisted is False
    assert store.attempts == 3
    assert [s.id for s in tracker.open_signals()] == ["SIG-1"]


def test_load_pending_resumes_open_signals(memory_store, learning, clock):
    open_signal = make_signal("SIG-open", emitted_at=clock.now)
    closed_signal = make_signal("SIG-closed", emitted_at=clock.now)
    memory_store.append_signal(open_signal, SignalOutcome(signal_id=open_signal.id))
    memory_store.append_signal(closed_signal, SignalOutcome(signal_id=closed_signal.id))
    tracker = OutcomeTracker(memory_store, learning, clock=clock, sleep=no_sleep)
    tracker.close("SIG-closed", 103.0, ExitReason.MANUAL)

    resumed = OutcomeTracker(memory_store, learning, clock=clock, sleep=no_sleep)

    assert resumed.load_pending() == 1
    assert [s.id for s in resumed.open_signals()] == ["SIG-open"]
    assert resumed.get_signal("SIG-closed").id == "SIG-closed"


def test_stats_summarize_outcomes(tracker, clock):
    tracker.track(make_signal("SIG-1", emitted_at=clock.now))
    tracker.track(make_signal("SIG-2", emitted_at=clock.now))
    tracker.track(make_signal("SIG-3", emitted_at=clock.now))
    tracker.close("SIG-1", 103.0, ExitReason.TARGET_HIT)
    tracker.close("SIG-2", 98.5, ExitReason.STOP_LOSS)

    stats = tracker.stats()

    assert stats['total'] == 3
    assert stats['open'] == 1
    assert stats['closed'] == 2
    assert stats['wins'] == 1
    assert stats['win_rate'] == 0.5
    assert stats['avg_profit_percent'] == pytest.approx(0.75)


def test_timeout_must_be_positive(memory_store, learning):
    with pytest.raises(ValueError, match="timeout_hours must be positive"):
        OutcomeTracker(memory_store, learning, timeout_hours=0)
