"""
Persistence contract.

Signals and rejections are append-only (signal rows are updated in place
with exit fields once); method weights are upserted by method name. All
operations raise PersistenceFailure on storage errors.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from confluence_engine.shared.models.scoring import MethodWeight
from confluence_engine.shared.models.signals import EmittedSignal, RejectionRecord, SignalOutcome


class SignalStore(ABC):
    """Durable store for signal history and learned weights."""

    @abstractmethod
    def append_signal(self, signal: EmittedSignal, outcome: SignalOutcome) -> None:
        """Insert a new signal row together with its (pending) outcome."""

    @abstractmethod
    def update_outcome(self, outcome: SignalOutcome) -> None:
        """Write exit fields onto an existing signal row."""

    @abstractmethod
    def get_signal(self, signal_id: str) -> Optional[Tuple[EmittedSignal, SignalOutcome]]:
        """Fetch a signal and its outcome, or None."""

    @abstractmethod
    def list_signals(self, symbol: Optional[str] = None, limit: Optional[int] = None) -> List[Tuple[EmittedSignal, SignalOutcome]]:
        """Signals newest first."""

    @abstractmethod
    def list_closed(self) -> List[Tuple[EmittedSignal, SignalOutcome]]:
        """Closed signals in closing order (oldest first)."""

    @abstractmethod
    def append_rejection(self, rejection: RejectionRecord) -> None:
        """Append a rejection record."""

    @abstractmethod
    def list_rejections(self, symbol: Optional[str] = None, limit: Optional[int] = None) -> List[RejectionRecord]:
        """Rejections newest first."""

    @abstractmethod
    def upsert_weight(self, weight: MethodWeight) -> None:
        """Insert or replace the weight row for ``weight.method_name``."""

    @abstractmethod
    def load_weights(self) -> List[MethodWeight]:
        """All stored method weights."""
