"""
Tests for the error taxonomy, its guard helpers and rejection-to-exception mapping.
"""

import math
from datetime import datetime, timezone

import pytest

from confluence_engine.shared.models.signals import RejectionReason, RejectionRecord
from confluence_engine.shared.utils.error_policy import (
    DataUnavailable,
    DirectionConflict,
    EngineError,
    InsufficientData,
    ValidationFailed,
    enforce_min_points,
    enforce_positive,
)
from confluence_engine.shared.utils.logging_utils import time_operation

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_data_unavailable_message():
    err = DataUnavailable('BTC/USDT', 'timeout', '1h')

    assert isinstance(err, EngineError)
    assert err.symbol == 'BTC/USDT'
    assert str(err) == "Data unavailable for BTC/USDT 1h: timeout"


def test_enforce_min_points():
    enforce_min_points(50, 50)

    with pytest.raises(InsufficientData, match=r"need 50 points, got 12 \(ETH/USDT 4h\)") as excinfo:
        enforce_min_points(12, 50, "ETH/USDT 4h")

    assert excinfo.value.required == 50
    assert excinfo.value.received == 12


@pytest.mark.parametrize("value", [None, 0, -1.5, math.nan])
def test_enforce_positive_rejects(value):
    with pytest.raises(ValueError, match="atr must be a positive number"):
        enforce_positive(value, "atr")


def test_enforce_positive_passes_value_through():
    assert enforce_positive(2.5, "atr") == 2.5


class TestRejectionToError:
    def test_risk_reward_maps_to_validation_failed(self):
        record = RejectionRecord('BTC/USDT', RejectionReason.POOR_RISK_REWARD, NOW, 1.2, 1.8)

        err = record.to_error()

        assert isinstance(err, ValidationFailed)
        assert err.reason == 'poor-risk-reward'
        assert err.measured == 1.2
        assert err.threshold == 1.8
        assert "measured=1.2, threshold=1.8" in str(err)

    def test_direction_conflict(self):
        record = RejectionRecord('SOL/USDT', RejectionReason.DIRECTION_CONFLICT, NOW, 25.0, 30.0,
                                 "BUY against sentiment 25")

        err = record.to_error()

        assert isinstance(err, DirectionConflict)
        assert str(err) == "SOL/USDT: BUY against sentiment 25"

    def test_errors_are_raisable(self):
        record = RejectionRecord('BTC/USDT', RejectionReason.MISSING_VOLATILITY, NOW)

        with pytest.raises(ValidationFailed, match="missing-volatility"):
            raise record.to_error()


def test_time_operation_records_duration():
    with time_operation("analyze", "BTC/USDT") as timing:
        pass

    assert timing.duration_ms is not None
    assert timing.duration_ms >= 0


def test_time_operation_does_not_swallow_errors():
    with pytest.raises(KeyError):
        with time_operation("analyze"):
            raise KeyError("boom")
