"""Handover window tracking.

Expiration is always recomputed from ``created_at``; timers are only a
latency optimisation. A match whose timer was lost (restart, another
worker) is still expired by the periodic sweep or lazily by the next
read of the match.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import Lock, Timer
from typing import Callable, Optional

from ...clock import Clock, as_utc, isoformat, utcnow
from ...errors import MatchProtocolError
from ...logging_config import get_logger
from .store import MatchRecordStore

logger = get_logger(__name__)

# Outcomes reported by the on_expire callback
EXPIRED = "expired"
ALREADY_CLOSED = "terminal"
NOT_DUE = "not_due"

COUNTDOWN_VISIBLE_HOURS = 24


@dataclass(frozen=True)
class ExpirationStatus:
    created_at: datetime
    expires_at: datetime
    time_remaining: timedelta
    is_expired: bool
    hours_remaining: int

    @property
    def countdown_visible(self) -> bool:
        return self.hours_remaining <= COUNTDOWN_VISIBLE_HOURS

    def to_dict(self) -> dict:
        return {
            "createdAt": isoformat(self.created_at),
            "expiresAt": isoformat(self.expires_at),
            "timeRemaining": int(self.time_remaining.total_seconds() * 1000),
            "timeRemainingLabel": format_time_remaining(self.time_remaining),
            "isExpired": self.is_expired,
            "hoursRemaining": self.hours_remaining,
            "countdownVisible": self.countdown_visible,
        }


def compute_expiration(created_at: datetime, now: datetime, window_hours: int = 48) -> ExpirationStatus:
    created_at = as_utc(created_at)
    now = as_utc(now)
    expires_at = created_at + timedelta(hours=window_hours)
    remaining = expires_at - now
    is_expired = remaining <= timedelta(0)
    if is_expired:
        hours = 0
        remaining = timedelta(0)
    else:
        hours = math.ceil(remaining.total_seconds() / 3600)
    return ExpirationStatus(
        created_at=created_at,
        expires_at=expires_at,
        time_remaining=remaining,
        is_expired=is_expired,
        hours_remaining=hours,
    )


def format_time_remaining(remaining: timedelta) -> str:
    total_minutes = max(0, int(remaining.total_seconds() // 60))
    hours, minutes = divmod(total_minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


class ExpirationScheduler:
    def __init__(
        self,
        store: MatchRecordStore,
        window_hours: int = 48,
        clock: Clock = utcnow,
        timers_enabled: bool = True,
        app=None,
        grace_seconds: float = 1.0,
    ) -> None:
        self.store = store
        self.window_hours = int(window_hours)
        self.clock = clock
        self.timers_enabled = timers_enabled
        self.app = app
        self.grace_seconds = grace_seconds
        # Set by MatchLifecycleManager: callable(match_id) -> EXPIRED | ALREADY_CLOSED | NOT_DUE
        self.on_expire: Optional[Callable[[int], str]] = None
        self._timers: dict[int, Timer] = {}
        self._lock = Lock()

    def expires_at(self, created_at: datetime) -> datetime:
        return as_utc(created_at) + timedelta(hours=self.window_hours)

    def check_expiration(self, created_at: datetime, now: datetime | None = None) -> ExpirationStatus:
        return compute_expiration(created_at, now or self.clock(), self.window_hours)

    def is_due(self, created_at: datetime, now: datetime | None = None) -> bool:
        return self.check_expiration(created_at, now).is_expired

    def start(self, match_id: int, created_at: datetime) -> datetime:
        """Begin tracking ``match_id``; returns when its window closes."""
        expires_at = self.expires_at(created_at)
        if not self.timers_enabled:
            return expires_at
        delay = max(0.0, (expires_at - as_utc(self.clock())).total_seconds()) + self.grace_seconds
        with self._lock:
            previous = self._timers.pop(match_id, None)
            if previous is not None:
                previous.cancel()
            timer = Timer(delay, self._on_timer, args=(match_id,))
            timer.daemon = True
            self._timers[match_id] = timer
            timer.start()
        logger.debug("expiration_timer_armed", match_id=match_id, expires_at=isoformat(expires_at), delay_seconds=round(delay, 1))
        return expires_at

    def cancel(self, match_id: int) -> bool:
        """Stop tracking a match that reached a terminal state. Idempotent."""
        with self._lock:
            timer = self._timers.pop(match_id, None)
        if timer is not None:
            timer.cancel()
            logger.debug("expiration_timer_cancelled", match_id=match_id)
            return True
        return False

    def pending(self) -> list[int]:
        with self._lock:
            return sorted(self._timers)

    def fire(self, match_id: int) -> bool:
        """Run the expiration callback for one match.

        Returns True only for the call that moved the match to ``expired``;
        the status check under the match lock makes later calls no-ops.
        """
        if self.on_expire is None:
            raise RuntimeError("ExpirationScheduler.on_expire is not wired")
        with self._lock:
            timer = self._timers.pop(match_id, None)
        if timer is not None:
            timer.cancel()
        # NOT_DUE means the timer ran early (clock skew); the sweep retries.
        return self.on_expire(match_id) == EXPIRED

    def _on_timer(self, match_id: int) -> None:
        try:
            if self.app is not None:
                with self.app.app_context():
                    self.fire(match_id)
            else:
                self.fire(match_id)
        except MatchProtocolError as exc:
            logger.warning("expiration_timer_failed", match_id=match_id, error=exc.message)
        except Exception:
            logger.exception("expiration_timer_crashed", match_id=match_id)

    def sweep(self, now: datetime | None = None) -> list[int]:
        """Expire every active match whose window has elapsed; returns their ids."""
        if self.on_expire is None:
            raise RuntimeError("ExpirationScheduler.on_expire is not wired")
        now = as_utc(now or self.clock())
        cutoff = now - timedelta(hours=self.window_hours)
        expired: list[int] = []
        for match_id in self.store.active_created_before(cutoff):
            try:
                outcome = self.on_expire(match_id)
            except MatchProtocolError as exc:
                logger.warning("expiration_sweep_item_failed", match_id=match_id, error=exc.message)
                continue
            if outcome == EXPIRED:
                expired.append(match_id)
            if outcome != NOT_DUE:
                self.cancel(match_id)
        if expired:
            logger.info("expiration_sweep_completed", expired=len(expired), match_ids=expired)
        return expired

    def reschedule_pending(self) -> int:
        """Re-arm timers for every active match, e.g. after a restart."""
        count = 0
        for match in self.store.active_matches():
            self.start(int(match.id), match.created_at)
            count += 1
        logger.info("expiration_timers_rescheduled", count=count)
        return count

    def shutdown(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
