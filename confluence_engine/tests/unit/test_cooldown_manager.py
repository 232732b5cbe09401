"""
Unit tests for emission cooldowns and the daily quota.
"""

import json
from datetime import datetime, timedelta, timezone

import pytest

from confluence_engine.engine.cooldown_manager import REASON_COOLDOWN, REASON_QUOTA, CooldownManager
from confluence_engine.shared.utils.error_policy import CooldownActive, QuotaExhausted

T0 = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)


def make_manager(**kwargs):
    kwargs.setdefault('local_tz', timezone.utc)
    return CooldownManager(**kwargs)


def test_global_cooldown_blocks_every_symbol():
    manager = make_manager(global_cooldown_minutes=3, symbol_cooldown_minutes=30)
    manager.record_emission('BTC/USDT', T0)

    block = manager.check('ETH/USDT', T0 + timedelta(minutes=2))

    assert block.reason == REASON_COOLDOWN
    assert block.scope == 'global'
    assert block.until == T0 + timedelta(minutes=3)
    assert manager.check('ETH/USDT', T0 + timedelta(minutes=3)) is None


def test_symbol_cooldown_outlasts_global():
    manager = make_manager(global_cooldown_minutes=3, symbol_cooldown_minutes=30)
    manager.record_emission('BTC/USDT', T0)

    block = manager.check('BTC/USDT', T0 + timedelta(minutes=10))

    assert block.scope == 'symbol'
    assert block.until == T0 + timedelta(minutes=30)
    assert manager.check('BTC/USDT', T0 + timedelta(minutes=30)) is None


def test_quota_exhaustion_blocks_until_next_day():
    manager = make_manager(global_cooldown_minutes=0, symbol_cooldown_minutes=0, daily_quota=2)
    manager.record_emission('BTC/USDT', T0)
    manager.record_emission('ETH/USDT', T0 + timedelta(minutes=1))

    block = manager.check('SOL/USDT', T0 + timedelta(minutes=2))

    assert block.reason == REASON_QUOTA
    assert block.scope == 'daily'
    assert manager.quota_exhausted(T0 + timedelta(hours=13)) is True

    next_day = datetime(2024, 1, 2, 0, 1, tzinfo=timezone.utc)
    assert manager.quota_exhausted(next_day) is False
    assert manager.check('SOL/USDT', next_day) is None

    manager.record_emission('SOL/USDT', next_day)
    assert manager.status(next_day)['quota_used'] == 1


def test_quota_is_checked_before_cooldowns():
    manager = make_manager(global_cooldown_minutes=60, daily_quota=1)
    manager.record_emission('BTC/USDT', T0)

    assert manager.check('ETH/USDT', T0 + timedelta(minutes=1)).reason == REASON_QUOTA


def test_day_boundary_follows_local_timezone():
    tz = timezone(timedelta(hours=5))
    manager = make_manager(global_cooldown_minutes=0, symbol_cooldown_minutes=0, daily_quota=1, local_tz=tz)
    # 18:00 UTC is 23:00 local; 19:30 UTC is already the next local day
    manager.record_emission('BTC/USDT', datetime(2024, 1, 1, 18, 0, tzinfo=timezone.utc))

    assert manager.quota_exhausted(datetime(2024, 1, 1, 18, 30, tzinfo=timezone.utc)) is True
    assert manager.quota_exhausted(datetime(2024, 1, 1, 19, 30, tzinfo=timezone.utc)) is False


def test_block_converts_to_matching_error():
    manager = make_manager(daily_quota=1)
    manager.record_emission('BTC/USDT', T0)

    quota_block = manager.check('BTC/USDT', T0)
    assert isinstance(quota_block.to_error(), QuotaExhausted)

    manager = make_manager()
    manager.record_emission('BTC/USDT', T0)
    assert isinstance(manager.check('BTC/USDT', T0).to_error(), CooldownActive)


def test_status_reports_active_cooldowns():
    manager = make_manager(global_cooldown_minutes=3, symbol_cooldown_minutes=30, daily_quota=4)
    manager.record_emission('BTC/USDT', T0)

    status = manager.status(T0 + timedelta(minutes=1))

    assert status['quota_used'] == 1
    assert status['quota_remaining'] == 3
    assert status['global_cooldown_until'] == (T0 + timedelta(minutes=3)).isoformat()
    assert list(status['symbol_cooldowns']) == ['BTC/USDT']


def test_clear_symbol_and_clear_all():
    manager = make_manager(global_cooldown_minutes=0, symbol_cooldown_minutes=30)
    manager.record_emission('BTC/USDT', T0)

    manager.clear_symbol('BTC/USDT')
    assert manager.check('BTC/USDT', T0 + timedelta(minutes=1)) is None

    manager.record_emission('ETH/USDT', T0)
    manager.clear_all()
    assert manager.status(T0)['quota_used'] == 0
    assert manager.check('ETH/USDT', T0) is None


def test_state_survives_restart(tmp_path):
    path = str(tmp_path / "state" / "cooldowns.json")
    manager = make_manager(global_cooldown_minutes=3, symbol_cooldown_minutes=30, storage_path=path)
    manager.record_emission('BTC/USDT', T0)

    with open(path) as f:
        saved = json.load(f)
    assert saved['quota_used'] == 1
    assert 'BTC/USDT' in saved['symbols']

    restored = make_manager(global_cooldown_minutes=3, symbol_cooldown_minutes=30, storage_path=path)
    assert restored.check('BTC/USDT', T0 + timedelta(minutes=10)).scope == 'symbol'
    assert restored.status(T0)['quota_used'] == 1


def test_corrupt_state_file_starts_clean(tmp_path):
    path = tmp_path / "cooldowns.json"
    path.write_text("{not json")

    manager = make_manager(storage_path=str(path))

    assert manager.check('BTC/USDT', T0) is None


@pytest.mark.parametrize("state", [
    {'last_emission': 'yesterday', 'symbols': {}, 'quota_day': None, 'quota_used': 0},
    {'last_emission': None, 'symbols': {}, 'quota_day': '2024-13-45', 'quota_used': 1},
    {'last_emission': None, 'symbols': {}, 'quota_day': '2024-01-01', 'quota_used': 'many'},
    ['not', 'a', 'mapping'],
])
def test_malformed_state_values_start_clean(tmp_path, state):
    path = tmp_path / "cooldowns.json"
    path.write_text(json.dumps(state))

    manager = make_manager(global_cooldown_minutes=3, daily_quota=2, storage_path=str(path))

    assert manager.check('BTC/USDT', T0) is None
    assert manager.status(T0)['quota_used'] == 0


def test_invalid_limits_rejected():
    with pytest.raises(ValueError, match="daily_quota"):
        CooldownManager(daily_quota=0)
    with pytest.raises(ValueError, match="non-negative"):
        CooldownManager(global_cooldown_minutes=-1)
