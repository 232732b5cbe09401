"""
Scoring models produced by the analysis layer.

TimeframeScore and PressureZone are created fresh every analysis cycle and
discarded after aggregation. MethodWeight is long-lived and only ever
replaced by the learning engine.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple

from confluence_engine.shared.models.signals import Action


TRENDS = ('bullish', 'bearish', 'neutral')
PRESSURE_LEVELS = ('extreme', 'high', 'medium', 'low')

# Analysis methods tracked by the learning engine
WYCKOFF = 'wyckoff-accumulation'
SMC_BREAKOUT = 'smc-breakout'
FIBONACCI = 'fibonacci-retracement'
VOLUME_PROFILE = 'volume-profile'
RSI_DIVERGENCE = 'rsi-divergence'
FUNDAMENTAL_CATALYST = 'fundamental-catalyst'

DEFAULT_METHODS: Tuple[str, ...] = (
    WYCKOFF,
    SMC_BREAKOUT,
    FIBONACCI,
    VOLUME_PROFILE,
    RSI_DIVERGENCE,
    FUNDAMENTAL_CATALYST,
)


@dataclass(frozen=True)
class MethodSignal:
    """A detector firing in a direction on one timeframe."""
    method: str
    direction: str
    tag: str

    def __post_init__(self):
        if self.direction not in ('bullish', 'bearish'):
            raise ValueError(f"direction must be bullish or bearish, got {self.direction}")


@dataclass(frozen=True)
class DetectorOutputs:
    """Raw classification of each detector for one timeframe."""
    phase: Optional[str] = None
    structure_type: Optional[str] = None
    fib_level: Optional[float] = None
    volume_profile: Optional[float] = None
    rsi_divergence: Optional[str] = None


@dataclass(frozen=True)
class TimeframeScore:
    """
    Per-timeframe analysis result.

    Attributes:
        symbol: Trading symbol
        timeframe: Timeframe string ('1m' ... '1d')
        confidence: 0-100, above 50 leans bullish, below 50 leans bearish
        trend: 'bullish', 'bearish' or 'neutral'
        confluence_tags: Ordered, de-duplicated human readable tags
        detectors: Raw detector outputs
        method_signals: Detectors that fired, with direction
        insufficient_data: True when the series was too short (no opinion)
        atr: Latest ATR value for the timeframe
        last_close: Latest close
    """
    symbol: str
    timeframe: str
    confidence: float
    trend: str
    confluence_tags: Tuple[str, ...] = ()
    detectors: DetectorOutputs = field(default_factory=DetectorOutputs)
    method_signals: Tuple[MethodSignal, ...] = ()
    insufficient_data: bool = False
    atr: Optional[float] = None
    last_close: Optional[float] = None

    def __post_init__(self):
        if not 0 <= self.confidence <= 100:
            raise ValueError(f"confidence must be 0-100, got {self.confidence}")
        if self.trend not in TRENDS:
            raise ValueError(f"trend must be one of {TRENDS}, got {self.trend}")
        if len(set(self.confluence_tags)) != len(self.confluence_tags):
            raise ValueError("confluence_tags must not contain duplicates")

    @property
    def has_opinion(self) -> bool:
        return not self.insufficient_data

    def directional_confidence(self, action: Action) -> float:
        """Confidence expressed in favour of ``action``."""
        return self.confidence if action == Action.BUY else 100.0 - self.confidence


@dataclass(frozen=True)
class VolumeContext:
    """Volume anomaly flags over the pressure window."""
    surge: bool = False
    dry_up: bool = False
    absorption: bool = False


@dataclass(frozen=True)
class CandleBehavior:
    """Shape and volume classification of the latest candle."""
    pattern: Optional[str]
    body_ratio: float
    upper_wick_ratio: float
    lower_wick_ratio: float
    volume_confirmation: bool
    rejection_signal: bool
    indecision_signal: bool
    momentum_signal: bool

    @property
    def confidence_bonus(self) -> float:
        bonus = 0.0
        if self.pattern:
            bonus += 5
        if self.volume_confirmation:
            bonus += 10
        if self.rejection_signal:
            bonus += 8
        if self.momentum_signal:
            bonus += 12
        return min(bonus, 25.0)


@dataclass(frozen=True)
class PressureZone:
    """
    Emotional pressure around a psychological price level.

    Attributes:
        symbol: Trading symbol
        pressure_level: 'extreme', 'high', 'medium' or 'low'
        score: 0-100
        psychological_level: Nearest round-number price
        resistance_strength: 0-100, how reliably price rejected from above
        support_strength: 0-100, how reliably price bounced from below
        volume_context: Surge / dry-up / absorption flags
        candle: Latest candle behavior, if computed
        insufficient_data: True when the series was too short
    """
    symbol: str
    pressure_level: str
    score: float
    psychological_level: float
    resistance_strength: float = 0.0
    support_strength: float = 0.0
    volume_context: VolumeContext = field(default_factory=VolumeContext)
    candle: Optional[CandleBehavior] = None
    insufficient_data: bool = False

    def __post_init__(self):
        if self.pressure_level not in PRESSURE_LEVELS:
            raise ValueError(f"pressure_level must be one of {PRESSURE_LEVELS}, got {self.pressure_level}")
        if not 0 <= self.score <= 100:
            raise ValueError(f"score must be 0-100, got {self.score}")
        for name in ('resistance_strength', 'support_strength'):
            value = getattr(self, name)
            if not 0 <= value <= 100:
                raise ValueError(f"{name} must be 0-100, got {value}")

    @property
    def bias(self) -> str:
        if self.support_strength > self.resistance_strength:
            return 'bullish'
        if self.resistance_strength > self.support_strength:
            return 'bearish'
        return 'neutral'


@dataclass(frozen=True)
class MethodWeight:
    """
    Learned weight and performance statistics of one analysis method.

    Weights across all active methods are normalized to sum to 100.
    """
    method_name: str
    weight: float
    success_rate: float = 0.0
    total_signals: int = 0
    avg_profit: float = 0.0
    avg_loss: float = 0.0
    profit_factor: float = 1.0
    sharpe_ratio: float = 0.0
    max_drawdown: float = 0.0
    last_updated: Optional[datetime] = None

    def __post_init__(self):
        if self.weight < 0:
            raise ValueError(f"weight cannot be negative, got {self.weight}")
        if not 0 <= self.success_rate <= 1:
            raise ValueError(f"success_rate must be 0-1, got {self.success_rate}")


def uniform_weights(methods: Tuple[str, ...] = DEFAULT_METHODS) -> Tuple[MethodWeight, ...]:
    """Equal weights summing to 100."""
    share = 100.0 / len(methods)
    return tuple(MethodWeight(method_name=m, weight=share) for m in methods)
