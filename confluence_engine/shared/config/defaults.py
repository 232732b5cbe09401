"""
Default configuration for the confluence signal engine.

Thresholds and window sizes are plain dataclasses with module-level default
instances. EngineConfig can be populated from environment variables
(prefix ``CE_``) via ``EngineConfig.from_env()``.
"""
import os
from dataclasses import dataclass, field, fields
from typing import Dict, Mapping, Optional, Tuple


# Timeframe importance: longer timeframes weigh more
TIMEFRAME_WEIGHTS: Dict[str, float] = {
    '1m': 0.5,
    '5m': 0.7,
    '15m': 0.8,
    '1h': 1.0,
    '4h': 1.2,
    '1d': 1.5,
}


def timeframe_weight(timeframe: str) -> float:
    """Importance weight for a timeframe (1.0 for unknown timeframes)."""
    return TIMEFRAME_WEIGHTS.get(timeframe.lower(), 1.0)


@dataclass
class GlobalThresholds:
    """Analysis and decision thresholds."""
    # Trend classification of per-timeframe confidence
    trend_bullish_threshold: float = 60.0
    trend_bearish_threshold: float = 40.0
    confluence_tag_bonus: float = 10.0

    # Confluence counting
    alignment_min_timeframes: int = 4
    high_confidence_threshold: float = 80.0
    high_confidence_min_timeframes: int = 2
    method_agreement_min_timeframes: int = 2
    fundamental_catalyst_threshold: float = 10.0
    max_composite_confidence: float = 95.0

    # Pressure-zone contribution to composite confidence
    pressure_bonus: Dict[str, float] = field(default_factory=lambda: {
        'extreme': 10.0,
        'high': 7.0,
        'medium': 3.0,
        'low': 0.0,
    })
    candle_bonus_scale: float = 0.2

    # ATR multipliers
    atr_stop_multiplier: float = 1.5
    atr_target_multiplier: float = 3.0
    pressure_stop_buffer_atr: float = 0.5
    pressure_max_stop_atr: float = 3.0

    # Volume anomalies
    volume_surge_multiplier: float = 2.5
    volume_dry_up_multiplier: float = 0.6
    volume_absorption_multiplier: float = 2.0
    absorption_range_ratio: float = 0.7
    volume_confirmation_multiplier: float = 1.3

    # Detector firing thresholds
    volume_node_threshold: float = 80.0
    fib_tolerance_pct: float = 1.0

    def __post_init__(self):
        if self.trend_bearish_threshold >= self.trend_bullish_threshold:
            raise ValueError(
                f"trend_bearish_threshold ({self.trend_bearish_threshold}) must be "
                f"below trend_bullish_threshold ({self.trend_bullish_threshold})"
            )
        if not 0 < self.max_composite_confidence <= 100:
            raise ValueError(
                f"max_composite_confidence must be in (0, 100], got {self.max_composite_confidence}"
            )


@dataclass
class WindowSizes:
    """Indicator calculation window sizes."""
    rsi_period: int = 14
    atr_period: int = 14
    volume_ma_period: int = 20
    trend_sma_period: int = 20

    # Minimum candles before a timeframe gets an opinion
    min_points: int = 50

    # Detector lookbacks
    wyckoff_lookback: int = 50
    structure_swing_lookback: int = 3
    fib_lookback: int = 50
    volume_profile_lookback: int = 100
    volume_profile_bins: int = 24
    divergence_lookback: int = 40
    pressure_window: int = 20


@dataclass
class EngineConfig:
    """Runtime configuration of the engine."""
    watchlist: Tuple[str, ...] = (
        'BTC/USDT', 'ETH/USDT', 'SOL/USDT', 'BNB/USDT', 'XRP/USDT',
        'ADA/USDT', 'AVAX/USDT', 'DOT/USDT', 'LINK/USDT', 'MATIC/USDT',
    )
    timeframes: Tuple[str, ...] = ('1m', '5m', '15m', '1h', '4h', '1d')
    planning_timeframe: str = '1h'
    pressure_timeframe: str = '15m'
    price_limit: int = 200

    min_confluences: int = 3
    min_elite_confidence: float = 75.0
    min_rr: float = 1.8
    sentiment_conflict_threshold: float = 70.0

    daily_quota: int = 4
    global_cooldown_minutes: float = 3.0
    symbol_cooldown_minutes: float = 30.0
    stabilization_seconds: float = 300.0
    cycle_period_seconds: float = 120.0
    max_workers: int = 4
    symbol_timeout_seconds: float = 30.0

    signal_timeout_hours: float = 24.0
    recent_outcome_window: int = 20

    persistence_retries: int = 3
    persistence_backoff: float = 0.5
    notification_queue_size: int = 100

    db_path: str = 'data/signals.db'
    cooldown_state_path: Optional[str] = 'data/cooldowns.json'
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None

    def __post_init__(self):
        if not self.watchlist:
            raise ValueError("watchlist cannot be empty")
        if not self.timeframes:
            raise ValueError("timeframes cannot be empty")
        if self.min_confluences < 1:
            raise ValueError(f"min_confluences must be >= 1, got {self.min_confluences}")
        if not 0 <= self.min_elite_confidence <= 100:
            raise ValueError(f"min_elite_confidence must be in [0, 100], got {self.min_elite_confidence}")
        if self.min_rr <= 0:
            raise ValueError(f"min_rr must be positive, got {self.min_rr}")
        if self.daily_quota < 1:
            raise ValueError(f"daily_quota must be >= 1, got {self.daily_quota}")
        for name in ('global_cooldown_minutes', 'symbol_cooldown_minutes', 'stabilization_seconds'):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")
        if self.cycle_period_seconds <= 0:
            raise ValueError(f"cycle_period_seconds must be positive, got {self.cycle_period_seconds}")
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, prefix: str = 'CE_') -> 'EngineConfig':
        """
        Build a config from environment variables.

        Every field can be overridden with ``<prefix><FIELD_NAME>`` in upper
        case, e.g. ``CE_WATCHLIST=BTC/USDT,ETH/USDT`` or ``CE_DAILY_QUOTA=6``.
        Tuple fields are comma separated. Unset variables keep defaults.
        """
        env = os.environ if environ is None else environ
        overrides = {}
        for f in fields(cls):
            raw = env.get(f"{prefix}{f.name.upper()}")
            if raw is None or raw == '':
                continue
            default = f.default
            if isinstance(default, tuple):
                overrides[f.name] = tuple(s.strip() for s in raw.split(',') if s.strip())
            elif isinstance(default, bool):
                overrides[f.name] = raw.strip().lower() in ('1', 'true', 'yes', 'on')
            elif isinstance(default, int):
                overrides[f.name] = int(raw)
            elif isinstance(default, float):
                overrides[f.name] = float(raw)
            else:
                overrides[f.name] = raw
        return cls(**overrides)


# Default instances
DEFAULT_ENGINE_CONFIG = EngineConfig()
DEFAULT_THRESHOLDS = GlobalThresholds()
DEFAULT_WINDOWS = WindowSizes()
