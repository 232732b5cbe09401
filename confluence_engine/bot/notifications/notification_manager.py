"""
Notification Dispatch

Delivers emitted signals to a Notifier from a bounded queue consumed by a
single worker thread, so a slow or failing transport never blocks a cycle.
A history of the most recent notification events is kept for status views.
"""

from typing import Dict, List, Optional, Any, Sequence
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from enum import Enum
import logging
import queue
import threading

from confluence_engine.contracts.notification_contract import Notifier
from confluence_engine.shared.models.signals import EmittedSignal

logger = logging.getLogger(__name__)


class NotificationStatus(str, Enum):
    QUEUED = "queued"
    SENT = "sent"
    FAILED = "failed"
    DROPPED = "dropped"


@dataclass
class NotificationEvent:
    """A delivery attempt for one signal."""
    signal_id: str
    symbol: str
    status: NotificationStatus
    timestamp: datetime
    title: str
    body: str
    error: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result['timestamp'] = self.timestamp.isoformat()
        result['status'] = self.status.value
        return result


def format_signal_title(signal: EmittedSignal) -> str:
    emoji = "🟢" if signal.action.value == "BUY" else "🔴"
    return f"{emoji} {signal.action.value} {signal.symbol} ({signal.composite_confidence:.0f}%)"


def format_signal_body(signal: EmittedSignal, reasoning: Sequence[str]) -> str:
    lines = [
        f"Entry: {signal.entry:.6g}",
        f"Stop: {signal.stop_loss:.6g}",
        f"Target: {signal.target_price:.6g}",
        f"R:R {signal.risk_reward_ratio:.2f}:1 • {len(signal.confluences)} confluences",
    ]
    lines.extend(f"• {reason}" for reason in reasoning)
    return "\n".join(lines)


class NotificationDispatcher:
    """
    Bounded queue plus worker thread in front of a Notifier.

    Usage:
        dispatcher = NotificationDispatcher(TelegramNotifier(token, chat_id))
        dispatcher.start()
        dispatcher.enqueue(signal, signal.reasoning)
        dispatcher.stop()
    """

    _STOP = object()

    def __init__(self, notifier: Notifier, max_queue: int = 100, history_size: int = 100):
        if max_queue < 1:
            raise ValueError(f"max_queue must be >= 1, got {max_queue}")
        self.notifier = notifier
        self.max_queue = max_queue
        self.history_size = history_size

        self._queue: queue.Queue = queue.Queue(maxsize=max_queue)
        self._events: List[NotificationEvent] = []
        self._events_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

        self.sent = 0
        self.failed = 0
        self.dropped = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.running:
            return
        self._thread = threading.Thread(target=self._worker, name="notification-dispatcher", daemon=True)
        self._thread.start()
        logger.info("Notification dispatcher started (queue size %d)", self.max_queue)

    def stop(self, timeout: Optional[float] = 5.0):
        """Drain queued notifications and stop the worker."""
        if not self.running:
            return
        self._queue.put(self._STOP)
        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.warning("Notification worker did not stop within %ss", timeout)
        else:
            self._thread = None
            logger.info("Notification dispatcher stopped (sent=%d failed=%d dropped=%d)",
                        self.sent, self.failed, self.dropped)

    def enqueue(self, signal: EmittedSignal, reasoning: Sequence[str]) -> bool:
        """
        Queue a signal for delivery.

        Returns:
            False if the queue is full and the notification was dropped
        """
        try:
            self._queue.put_nowait((signal, tuple(reasoning)))
        except queue.Full:
            self.dropped += 1
            logger.warning("Notification queue full, dropping %s %s", signal.id, signal.symbol)
            self._add_event(signal, reasoning, NotificationStatus.DROPPED, error="queue full")
            return False
        return True

    def pending(self) -> int:
        return self._queue.qsize()

    def _worker(self):
        while True:
            item = self._queue.get()
            try:
                if item is self._STOP:
                    return
                signal, reasoning = item
                self._deliver(signal, reasoning)
            finally:
                self._queue.task_done()

    def _deliver(self, signal: EmittedSignal, reasoning: Sequence[str]):
        try:
            ok = self.notifier.send(signal, reasoning)
        except Exception as e:
            self.failed += 1
            logger.error("Notifier raised for %s: %s", signal.id, e, exc_info=True)
            self._add_event(signal, reasoning, NotificationStatus.FAILED, error=str(e))
            return

        if ok:
            self.sent += 1
            self._add_event(signal, reasoning, NotificationStatus.SENT)
        else:
            self.failed += 1
            logger.warning("Notifier reported failure for %s", signal.id)
            self._add_event(signal, reasoning, NotificationStatus.FAILED, error="notifier returned False")

    def _add_event(self, signal: EmittedSignal, reasoning: Sequence[str],
                   status: NotificationStatus, error: Optional[str] = None):
        event = NotificationEvent(
            signal_id=signal.id,
            symbol=signal.symbol,
            status=status,
            timestamp=datetime.now(timezone.utc),
            title=format_signal_title(signal),
            body=format_signal_body(signal, reasoning),
            error=error,
            data={'action': signal.action.value, 'confidence': signal.composite_confidence},
        )
        with self._events_lock:
            self._events.append(event)
            if len(self._events) > self.history_size:
                self._events = self._events[-self.history_size:]

    def get_recent_events(self, limit: int = 20) -> List[Dict[str, Any]]:
        """Recent notification events, newest first."""
        with self._events_lock:
            events = list(reversed(self._events))
        return [event.to_dict() for event in events[:limit]]

    def stats(self) -> Dict[str, int]:
        return {'sent': self.sent, 'failed': self.failed, 'dropped': self.dropped, 'pending': self.pending()}
