"""Engine orchestration: scheduler, cooldowns and the top-level SignalEngine."""

from confluence_engine.engine.cooldown_manager import CooldownBlock, CooldownManager
from confluence_engine.engine.context import CycleReport, SymbolContext, SymbolResult
from confluence_engine.engine.scheduler import Scheduler, SchedulerState
from confluence_engine.engine.signal_engine import SignalEngine

__all__ = [
    'CooldownBlock', 'CooldownManager', 'CycleReport', 'SymbolContext', 'SymbolResult',
    'Scheduler', 'SchedulerState', 'SignalEngine',
]
