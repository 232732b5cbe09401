"""
Logging helpers shared by the decision path and the scheduler.

Rejections and cycle summaries are rendered the same way everywhere so the
log reads as one narrative per cycle.
"""

import time
from typing import Any, Dict, Optional
from loguru import logger


def _format_value(value: Any) -> str:
    return f"{value:.4f}" if isinstance(value, float) else str(value)


def log_rejection(
    symbol: str,
    stage: str,
    reason: str,
    diagnostics: Optional[Dict[str, Any]] = None,
    level: str = "INFO"
) -> None:
    """
    Log why a symbol was dropped at ``stage``.

    ``diagnostics`` entries with a None value are left out, floats are
    printed to four places.
    """
    emit = getattr(logger, level.lower(), logger.info)
    details = {k: v for k, v in (diagnostics or {}).items() if v is not None and v != ""}

    emit(f"🚫 {symbol} rejected at {stage}: {reason}")
    for key, value in details.items():
        emit(f"      • {key}: {_format_value(value)}")


def log_timing(operation_name: str, duration_ms: float, symbol: Optional[str] = None, level: str = "DEBUG") -> None:
    emit = getattr(logger, level.lower(), logger.debug)
    where = f" [{symbol}]" if symbol else ""
    if duration_ms < 100:
        marker = "⚡"
    elif duration_ms < 1000:
        marker = "⏱️"
    else:
        marker = "🐌"
    emit(f"{marker} {operation_name}{where} took {duration_ms:.0f}ms")


def format_cycle_summary(
    cycle_id: int,
    symbols_analyzed: int,
    signals_emitted: int,
    signals_rejected: int,
    symbols_skipped: int,
    symbols_failed: int,
    duration_sec: float,
    rejection_breakdown: Optional[Dict[str, int]] = None
) -> str:
    """Multi-line cycle summary; rejection reasons are listed most frequent first."""
    rule = "=" * 60
    rows = [
        ("Symbols analyzed", symbols_analyzed),
        ("✅ Emitted", signals_emitted),
        ("❌ Rejected", signals_rejected),
        ("⏭️  Skipped", symbols_skipped),
        ("⚠️  Failed", symbols_failed),
        ("⏱️  Duration", f"{duration_sec:.2f}s"),
    ]
    lines = [rule, f"📊 CYCLE {cycle_id} SUMMARY", rule]
    lines += [f"{label + ':':<20}{value}" for label, value in rows]

    if rejection_breakdown:
        lines += ["", "Rejections by reason:"]
        for reason, count in sorted(rejection_breakdown.items(), key=lambda item: item[1], reverse=True):
            lines.append(f"  • {reason}: {count}")

    lines.append(rule)
    return "\n".join(lines)


class TimingContext:
    """Measures a block and logs it through ``log_timing``; exceptions propagate."""

    def __init__(self, operation_name: str, symbol: Optional[str] = None):
        self.operation_name = operation_name
        self.symbol = symbol
        self.start_time = None
        self.duration_ms = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (time.perf_counter() - self.start_time) * 1000
        log_timing(self.operation_name, self.duration_ms, self.symbol)
        return False


def time_operation(operation_name: str, symbol: Optional[str] = None) -> TimingContext:
    """
    Usage:
        with time_operation("timeframe analysis", "BTC/USDT"):
            ...
    """
    return TimingContext(operation_name, symbol)
