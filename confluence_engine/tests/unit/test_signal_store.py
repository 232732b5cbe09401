"""
Tests for signal persistence. Both stores share one contract, so every
test runs against SQLite and the in-memory store.
"""

from datetime import timedelta

import pytest

from confluence_engine.data.signal_store import InMemorySignalStore, SQLiteSignalStore
from confluence_engine.shared.models.scoring import FIBONACCI, WYCKOFF, MethodWeight
from confluence_engine.shared.models.signals import (
    Action,
    ExitReason,
    OutcomeStatus,
    RejectionReason,
    RejectionRecord,
    SignalOutcome,
)
from confluence_engine.shared.utils.error_policy import PersistenceFailure
from confluence_engine.tests.fixtures.market_data import START, make_signal


@pytest.fixture(params=["sqlite", "memory"])
def store(request, tmp_path):
    if request.param == "sqlite":
        return SQLiteSignalStore(str(tmp_path / "db" / "signals.db"))
    return InMemorySignalStore()


def closed(signal_id, price=103.0, at=START + timedelta(hours=2)):
    return SignalOutcome(
        signal_id=signal_id,
        outcome=OutcomeStatus.WIN,
        exit_price=price,
        exit_reason=ExitReason.TARGET_HIT,
        profit_percent=3.0,
        closed_at=at,
    )


def test_append_and_get_round_trip(store):
    signal = make_signal("SIG-1", action=Action.SELL, methods=(WYCKOFF, FIBONACCI))
    store.append_signal(signal, SignalOutcome(signal_id="SIG-1"))

    stored, outcome = store.get_signal("SIG-1")

    assert stored == signal
    assert stored.contributing_methods == frozenset({WYCKOFF, FIBONACCI})
    assert outcome.outcome == OutcomeStatus.PENDING
    assert store.get_signal("SIG-missing") is None


def test_duplicate_signal_id_fails(store):
    signal = make_signal("SIG-1")
    store.append_signal(signal, SignalOutcome(signal_id="SIG-1"))

    with pytest.raises(PersistenceFailure):
        store.append_signal(signal, SignalOutcome(signal_id="SIG-1"))


def test_update_outcome(store):
    store.append_signal(make_signal("SIG-1"), SignalOutcome(signal_id="SIG-1"))

    store.update_outcome(closed("SIG-1"))

    _, outcome = store.get_signal("SIG-1")
    assert outcome == closed("SIG-1")
    assert [s.id for s, _ in store.list_closed()] == ["SIG-1"]


def test_update_unknown_outcome_fails(store):
    with pytest.raises(PersistenceFailure, match="No signal row"):
        store.update_outcome(closed("SIG-missing"))


def test_list_signals_newest_first_with_filters(store):
    for i, symbol in enumerate(["BTC/USDT", "ETH/USDT", "BTC/USDT"]):
        signal = make_signal(f"SIG-{i}", symbol=symbol, emitted_at=START + timedelta(minutes=i))
        store.append_signal(signal, SignalOutcome(signal_id=signal.id))

    assert [s.id for s, _ in store.list_signals()] == ["SIG-2", "SIG-1", "SIG-0"]
    assert [s.id for s, _ in store.list_signals(symbol="BTC/USDT")] == ["SIG-2", "SIG-0"]
    assert [s.id for s, _ in store.list_signals(limit=1)] == ["SIG-2"]


def test_list_closed_in_close_order(store):
    for i in range(3):
        store.append_signal(make_signal(f"SIG-{i}"), SignalOutcome(signal_id=f"SIG-{i}"))
    store.update_outcome(closed("SIG-2", at=START + timedelta(hours=1)))
    store.update_outcome(closed("SIG-0", at=START + timedelta(hours=2)))

    assert [s.id for s, _ in store.list_closed()] == ["SIG-2", "SIG-0"]


def test_rejections_newest_first(store):
    store.append_rejection(RejectionRecord(
        symbol="BTC/USDT", reason=RejectionReason.LOW_CONFIDENCE, timestamp=START,
        measured_value=73.0, threshold=75.0,
    ))
    store.append_rejection(RejectionRecord(
        symbol="ETH/USDT", reason=RejectionReason.NO_CLEAR_DIRECTION, timestamp=START,
        detail="3 bullish vs 3 bearish",
    ))

    rejections = store.list_rejections()

    assert [r.symbol for r in rejections] == ["ETH/USDT", "BTC/USDT"]
    assert rejections[1].measured_value == 73.0
    assert rejections[1].threshold == 75.0
    assert rejections[0].detail == "3 bullish vs 3 bearish"
    assert [r.symbol for r in store.list_rejections(symbol="BTC/USDT")] == ["BTC/USDT"]


def test_weights_upsert_replaces(store):
    store.upsert_weight(MethodWeight(method_name=WYCKOFF, weight=40.0))
    store.upsert_weight(MethodWeight(method_name=FIBONACCI, weight=60.0))
    store.upsert_weight(MethodWeight(method_name=WYCKOFF, weight=45.0, success_rate=0.6, total_signals=5,
                                     last_updated=START))

    weights = {w.method_name: w for w in store.load_weights()}

    assert set(weights) == {WYCKOFF, FIBONACCI}
    assert weights[WYCKOFF].weight == 45.0
    assert weights[WYCKOFF].total_signals == 5
    assert weights[WYCKOFF].last_updated == START


def test_sqlite_store_survives_reopen(tmp_path):
    path = str(tmp_path / "signals.db")
    SQLiteSignalStore(path).append_signal(make_signal("SIG-1"), SignalOutcome(signal_id="SIG-1"))

    reopened = SQLiteSignalStore(path)

    assert reopened.get_signal("SIG-1")[0].id == "SIG-1"
