"""
Cooldown Manager

Rate limiting for signal emission: a global cooldown after any emission, a
per-symbol cooldown after that symbol emits, and a daily quota that resets at
the local-day boundary. State is optionally persisted as JSON so limits
survive restarts.
"""

import json
import os
import threading
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any, Dict, Optional

from confluence_engine.shared.utils.error_policy import CooldownActive, EngineError, QuotaExhausted

logger = logging.getLogger(__name__)

REASON_COOLDOWN = "cooldown-active"
REASON_QUOTA = "quota-exhausted"


@dataclass(frozen=True)
class CooldownBlock:
    """Why a symbol may not emit right now."""
    reason: str  # cooldown-active | quota-exhausted
    symbol: str
    until: Optional[datetime] = None
    scope: str = "symbol"  # symbol | global | daily

    def to_error(self) -> EngineError:
        if self.reason == REASON_QUOTA:
            return QuotaExhausted(f"Daily quota exhausted ({self.symbol})")
        until = self.until.isoformat() if self.until else "unknown"
        return CooldownActive(f"{self.scope} cooldown active for {self.symbol} until {until}")


class CooldownManager:
    """
    Tracks emission cooldowns and the daily quota.

    Thread-safe; the scheduler checks and records under its own emission lock,
    this lock only protects the internal state.
    """

    def __init__(
        self,
        global_cooldown_minutes: float = 3,
        symbol_cooldown_minutes: float = 30,
        daily_quota: int = 4,
        storage_path: Optional[str] = None,
        local_tz: Optional[tzinfo] = None,
    ):
        """
        Initialize manager.

        Args:
            global_cooldown_minutes: Lockout for every symbol after any emission
            symbol_cooldown_minutes: Lockout for the emitting symbol
            daily_quota: Maximum emissions per local day
            storage_path: JSON file for persistence (None = memory only)
            local_tz: Timezone defining the day boundary (None = system local)
        """
        if daily_quota < 1:
            raise ValueError(f"daily_quota must be >= 1, got {daily_quota}")
        if global_cooldown_minutes < 0 or symbol_cooldown_minutes < 0:
            raise ValueError("cooldown durations must be non-negative")

        self.global_cooldown = timedelta(minutes=global_cooldown_minutes)
        self.symbol_cooldown = timedelta(minutes=symbol_cooldown_minutes)
        self.daily_quota = daily_quota
        self.storage_path = storage_path
        self.local_tz = local_tz

        self._lock = threading.Lock()
        self._last_emission: Optional[datetime] = None
        self._symbol_emissions: Dict[str, datetime] = {}
        self._quota_day: Optional[date] = None
        self._quota_used = 0

        if self.storage_path:
            directory = os.path.dirname(self.storage_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            self._load()

    def _local_day(self, at: datetime) -> date:
        if self.local_tz is not None:
            return at.astimezone(self.local_tz).date()
        return at.astimezone().date()

    def _used_on(self, now: datetime) -> int:
        if self._quota_day != self._local_day(now):
            return 0
        return self._quota_used

    def quota_exhausted(self, now: datetime) -> bool:
        with self._lock:
            return self._used_on(now) >= self.daily_quota

    def check(self, symbol: str, now: datetime) -> Optional[CooldownBlock]:
        """
        Check whether ``symbol`` may emit at ``now``.

        Returns:
            CooldownBlock describing the first limit hit, None if clear
        """
        with self._lock:
            if self._used_on(now) >= self.daily_quota:
                return CooldownBlock(reason=REASON_QUOTA, symbol=symbol, scope="daily")

            if self._last_emission is not None:
                until = self._last_emission + self.global_cooldown
                if now < until:
                    return CooldownBlock(reason=REASON_COOLDOWN, symbol=symbol, until=until, scope="global")

            last = self._symbol_emissions.get(symbol)
            if last is not None:
                until = last + self.symbol_cooldown
                if now < until:
                    return CooldownBlock(reason=REASON_COOLDOWN, symbol=symbol, until=until, scope="symbol")

        return None

    def record_emission(self, symbol: str, at: datetime) -> None:
        """Start the global and symbol cooldowns and consume one quota slot."""
        with self._lock:
            day = self._local_day(at)
            if self._quota_day != day:
                self._quota_day = day
                self._quota_used = 0
            self._quota_used += 1

            if self._last_emission is None or at > self._last_emission:
                self._last_emission = at
            self._symbol_emissions[symbol] = at

            logger.info(
                "Cooldown started: %s until %s (quota %d/%d)",
                symbol, (at + self.symbol_cooldown).strftime("%Y-%m-%d %H:%M"),
                self._quota_used, self.daily_quota,
            )
            self._save()

    def status(self, now: datetime) -> Dict[str, Any]:
        with self._lock:
            used = self._used_on(now)
            global_until = None
            if self._last_emission is not None and now < self._last_emission + self.global_cooldown:
                global_until = (self._last_emission + self.global_cooldown).isoformat()
            symbols = {
                symbol: (at + self.symbol_cooldown).isoformat()
                for symbol, at in self._symbol_emissions.items()
                if now < at + self.symbol_cooldown
            }
        return {
            'quota_used': used,
            'quota_remaining': max(0, self.daily_quota - used),
            'daily_quota': self.daily_quota,
            'global_cooldown_until': global_until,
            'symbol_cooldowns': symbols,
        }

    def clear_symbol(self, symbol: str) -> None:
        """Manually clear a symbol cooldown."""
        with self._lock:
            if self._symbol_emissions.pop(symbol, None) is not None:
                logger.info("Cleared cooldown for %s", symbol)
                self._save()

    def clear_all(self) -> None:
        """Clear every cooldown and reset the quota."""
        with self._lock:
            self._last_emission = None
            self._symbol_emissions.clear()
            self._quota_day = None
            self._quota_used = 0
            logger.info("Cleared all cooldowns")
            self._save()

    def _load(self):
        """Load state from disk."""
        if not os.path.exists(self.storage_path):
            return

        try:
            with open(self.storage_path, 'r') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error("Failed to load cooldowns from %s: %s", self.storage_path, e)
            return

        try:
            last = data.get('last_emission')
            last_emission = _parse_ts(last) if last else None
            symbol_emissions = {}
            for symbol, ts in (data.get('symbols') or {}).items():
                try:
                    symbol_emissions[symbol] = _parse_ts(ts)
                except (TypeError, ValueError):
                    continue
            quota_day = data.get('quota_day')
            quota_day = date.fromisoformat(quota_day) if quota_day else None
            quota_used = int(data.get('quota_used', 0))
        except (AttributeError, TypeError, ValueError) as e:
            logger.error("Malformed cooldown state in %s, starting clean: %s", self.storage_path, e)
            return

        with self._lock:
            self._last_emission = last_emission
            self._symbol_emissions = symbol_emissions
            self._quota_day = quota_day
            self._quota_used = quota_used

        logger.info(
            "Loaded cooldown state from %s (%d symbols, quota used %d)",
            self.storage_path, len(self._symbol_emissions), self._quota_used,
        )

    def _save(self):
        """Save state to disk. Caller holds the lock."""
        if not self.storage_path:
            return
        data = {
            'last_emission': self._last_emission.isoformat() if self._last_emission else None,
            'symbols': {symbol: at.isoformat() for symbol, at in self._symbol_emissions.items()},
            'quota_day': self._quota_day.isoformat() if self._quota_day else None,
            'quota_used': self._quota_used,
        }
        try:
            with open(self.storage_path, 'w') as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            logger.error("Failed to save cooldowns: %s", e)


def _parse_ts(value: str) -> datetime:
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts
