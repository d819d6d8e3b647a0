"""Rejection log aggregation and suspicious-behavior flagging."""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from ...clock import Clock, as_utc, isoformat, utcnow
from ...errors import ExpirationError, NotFoundError, ValidationError
from ...logging_config import get_logger
from ...models.rejection import RejectionRecord
from ...models.user import User
from ...models.user_flag import UserFlag
from ..matches.lookups import SqlUserLookup, UserLookup
from ..matches.store import MatchRecordStore
from ..notifications.bus import Notifier

logger = get_logger(__name__)

REJECTION_REASON_LABELS = {
    "not_my_item": "Not my item",
    "wrong_condition": "Wrong condition",
    "already_found": "Already found elsewhere",
    "wrong_location": "Wrong location",
    "incorrect_details": "Incorrect details",
    "item_damaged": "Item damaged",
    "suspicious_behavior": "Suspicious behavior",
    "verification_failed": "Ownership verification failed",
    "handover_cancelled": "Handover cancelled",
    "other": "Other",
}

HIGH_REJECTION_RATE = "high_rejection_rate"
MANUAL = "manual"

TIMEFRAMES: dict[str, Optional[timedelta]] = {
    "week": timedelta(days=7),
    "month": timedelta(days=30),
    "quarter": timedelta(days=90),
    "all": None,
}

RECENT_REASONS_LIMIT = 5
ANALYTICS_RECORD_LIMIT = 500


@dataclass(frozen=True)
class FlagResult:
    flag: UserFlag
    created: bool

    def to_dict(self) -> dict:
        return {
            "flagged": True,
            "created": self.created,
            "flag": flag_to_dict(self.flag),
        }


def flag_to_dict(flag: UserFlag) -> dict:
    return {
        "id": flag.id,
        "userId": flag.user_id,
        "behavior": flag.behavior,
        "reason": flag.reason,
        "flaggedAt": isoformat(flag.flagged_at),
    }


def rejection_to_dict(r: RejectionRecord) -> dict:
    user = r.user
    return {
        "id": r.id,
        "matchId": r.match_id,
        "userId": r.user_id,
        "userName": getattr(user, "name", None) if user else None,
        "reason": r.reason,
        "reasonLabel": REJECTION_REASON_LABELS.get(r.reason, r.reason),
        "details": r.details,
        "rejectedAt": isoformat(r.created_at),
    }


class RejectionAnalytics:
    def __init__(
        self,
        store: MatchRecordStore,
        notifier: Notifier,
        clock: Clock = utcnow,
        threshold: int = 3,
        window_days: int = 30,
        user_lookup: UserLookup | None = None,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.clock = clock
        self.threshold = int(threshold)
        self.window = timedelta(days=int(window_days))
        self.user_lookup = user_lookup or SqlUserLookup()

    @property
    def session(self):
        return self.store.session

    # Writes

    def record_rejection(self, match_id: int, user_id: int | None, reason: str, details: str | None = None) -> RejectionRecord:
        """Append a rejection for an open match in its own transaction."""
        events: list[tuple[str, dict]] = []
        with self.store.locked(self.store.match_key(match_id)):
            with self.store.unit_of_work():
                match = self.store.load(match_id, for_update=True)
                if match is None:
                    raise NotFoundError("Match not found", matchId=match_id)
                if match.is_terminal:
                    raise ExpirationError(f"Match is already {match.status}", matchId=int(match_id), status=match.status)
                record = self.append(match_id, user_id, reason, details, events)
        self._emit(events)
        return record

    def append(
        self,
        match_id: int,
        user_id: int | None,
        reason: str | None,
        details: str | None,
        events: list[tuple[str, dict]],
    ) -> RejectionRecord:
        """Append inside the caller's transaction; flag events go to ``events``."""
        record = RejectionRecord(
            match_id=int(match_id),
            user_id=int(user_id) if user_id is not None else None,
            reason=(reason or "").strip() or "other",
            details=(details or "").strip() or None,
            created_at=self.clock(),
        )
        if user_id is not None:
            # Serializes dismissals by one user so each count sees the previous ones
            self._lock_user(int(user_id))
        self.store.append_rejection(record)
        logger.info("match_rejection_recorded", match_id=match_id, user_id=user_id, reason=record.reason)

        if record.user_id is not None:
            count = self._count_since(record.user_id, as_utc(self.clock()) - self.window)
            if count >= self.threshold:
                self._flag(
                    record.user_id,
                    f"High rejection rate ({self.threshold}+ rejections)",
                    HIGH_REJECTION_RATE,
                    events,
                )
        return record

    def flag_user_for_suspicious_behavior(self, user_id: int, reason: str, behavior: str = MANUAL) -> FlagResult:
        if self.user_lookup.get_user(user_id) is None:
            raise NotFoundError("User not found", userId=user_id)
        if not (reason or "").strip():
            raise ValidationError("A flag reason is required")
        events: list[tuple[str, dict]] = []
        with self.store.unit_of_work():
            result = self._flag(int(user_id), reason.strip(), behavior, events)
        self._emit(events)
        return result

    def _flag(self, user_id: int, reason: str, behavior: str, events: list[tuple[str, dict]]) -> FlagResult:
        self._lock_user(user_id)
        since = as_utc(self.clock()) - self.window
        existing = (
            self.session.query(UserFlag)
            .filter(UserFlag.user_id == user_id, UserFlag.behavior == behavior, UserFlag.flagged_at >= since)
            .order_by(UserFlag.flagged_at.desc())
            .first()
        )
        if existing is not None:
            return FlagResult(existing, created=False)
        flag = UserFlag(user_id=user_id, behavior=behavior, reason=reason, flagged_at=self.clock())
        self.session.add(flag)
        self.session.flush()
        logger.warning("user_flagged", user_id=user_id, behavior=behavior, reason=reason)
        events.append(("user.flagged", {"userId": user_id, "behavior": behavior, "reason": reason, "flagId": flag.id}))
        return FlagResult(flag, created=True)

    def _lock_user(self, user_id: int) -> None:
        """Hold the user's lock (and users row lock) until the transaction ends."""
        self.store.hold_until_commit(self.store.user_key(user_id))
        self.session.query(User.id).filter(User.id == user_id).with_for_update().first()

    def _emit(self, events: list[tuple[str, dict]]) -> None:
        for name, payload in events:
            self.notifier.emit(name, payload)

    # Reads

    def _count_since(self, user_id: int, since: datetime) -> int:
        return (
            self.session.query(RejectionRecord)
            .filter(RejectionRecord.user_id == user_id, RejectionRecord.created_at >= since)
            .count()
        )

    def latest_flag(self, user_id: int) -> UserFlag | None:
        return (
            self.session.query(UserFlag)
            .filter(UserFlag.user_id == user_id)
            .order_by(UserFlag.flagged_at.desc(), UserFlag.id.desc())
            .first()
        )

    def get_user_rejection_stats(self, user_id: int, since: datetime | None = None) -> dict[str, Any]:
        """Aggregate one user's rejections across all matches."""
        q = self.session.query(RejectionRecord).filter(RejectionRecord.user_id == int(user_id))
        if since is not None:
            q = q.filter(RejectionRecord.created_at >= since)
        rows = q.order_by(RejectionRecord.created_at.desc(), RejectionRecord.id.desc()).all()
        flag = self.latest_flag(int(user_id))
        return {
            "userId": int(user_id),
            "count": len(rows),
            "recentReasons": [r.reason for r in rows[:RECENT_REASONS_LIMIT]],
            "reasonCounts": dict(Counter(r.reason for r in rows)),
            "lastRejectionAt": isoformat(rows[0].created_at) if rows else None,
            "isFlagged": flag is not None,
            "flaggedAt": isoformat(flag.flagged_at) if flag else None,
            "flagReason": flag.reason if flag else None,
        }

    def get_rejection_analytics(
        self,
        timeframe: str = "month",
        start: datetime | None = None,
        end: datetime | None = None,
        user_id: int | None = None,
        flagged_only: bool = False,
    ) -> dict[str, Any]:
        """Read-only aggregate for admin tooling."""
        if timeframe not in TIMEFRAMES:
            raise ValidationError(f"Unknown timeframe '{timeframe}'", allowed=sorted(TIMEFRAMES))
        now = as_utc(self.clock())
        if start is None and TIMEFRAMES[timeframe] is not None:
            start = now - TIMEFRAMES[timeframe]
        q = self.session.query(RejectionRecord)
        if start is not None:
            q = q.filter(RejectionRecord.created_at >= start)
        if end is not None:
            q = q.filter(RejectionRecord.created_at <= end)
        if user_id is not None:
            q = q.filter(RejectionRecord.user_id == user_id)
        rows = q.order_by(RejectionRecord.created_at.desc(), RejectionRecord.id.desc()).all()

        users: dict[int, dict[str, Any]] = {}
        for r in rows:
            if r.user_id is None:
                continue
            entry = users.get(int(r.user_id))
            if entry is None:
                flag = self.latest_flag(int(r.user_id))
                entry = users[int(r.user_id)] = {
                    "userId": int(r.user_id),
                    "userName": getattr(r.user, "name", None) if r.user else None,
                    "totalRejections": 0,
                    "rejectionReasons": {},
                    # rows are newest first
                    "lastRejectionAt": isoformat(r.created_at),
                    "isFlagged": flag is not None,
                    "flaggedAt": isoformat(flag.flagged_at) if flag else None,
                    "flagReason": flag.reason if flag else None,
                }
            entry["totalRejections"] += 1
            entry["rejectionReasons"][r.reason] = entry["rejectionReasons"].get(r.reason, 0) + 1

        user_list = sorted(users.values(), key=lambda u: (-u["totalRejections"], u["userId"]))
        flagged_count = sum(1 for u in user_list if u["isFlagged"])
        if flagged_only:
            user_list = [u for u in user_list if u["isFlagged"]]
        return {
            "timeframe": timeframe,
            "startDate": isoformat(start),
            "endDate": isoformat(end),
            "totalRejections": len(rows),
            "uniqueUsers": len(users),
            "flaggedUsers": flagged_count,
            "users": user_list,
            "records": [rejection_to_dict(r) for r in rows[:ANALYTICS_RECORD_LIMIT]],
        }
