"""Match state machine.

    suggested -> confirmed | dismissed | expired
    confirmed -> resolved | dismissed | expired

resolved, dismissed and expired are terminal. Every mutation happens under
the per-match lock inside one database transaction; outward events are
emitted only after the transaction committed.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

from ...clock import Clock, isoformat, utcnow
from ...errors import (
    ConflictError,
    ExpirationError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from ...logging_config import get_logger
from ...models.enums import MATCH_ACTIVE_STATUSES, MATCH_TERMINAL_STATUSES
from ...models.match import Match
from ..notifications.bus import Notifier
from ..rejections.analytics import RejectionAnalytics
from .expiration import ALREADY_CLOSED, EXPIRED, NOT_DUE, ExpirationScheduler, ExpirationStatus
from .lookups import ReportLookup, ReportRef, SqlReportLookup
from .store import MatchRecordStore

logger = get_logger(__name__)

MATCH_STATUSES = ("suggested", "confirmed", "resolved", "dismissed", "expired")

TRANSITIONS: dict[str, frozenset[str]] = {
    "suggested": frozenset({"confirmed", "dismissed", "expired"}),
    "confirmed": frozenset({"resolved", "dismissed", "expired"}),
    "resolved": frozenset(),
    "dismissed": frozenset(),
    "expired": frozenset(),
}

EXPIRED_NOTE = "handover window elapsed"

Events = list[tuple[str, dict]]


def match_payload(match: Match, **extra) -> dict:
    recipients = []
    for report in (match.source_report, match.target_report):
        owner = getattr(report, "owner_user_id", None) if report is not None else None
        if owner is not None:
            recipients.append(int(owner))
    payload = {
        "matchId": int(match.id),
        "status": match.status,
        "sourceReportId": int(match.source_report_id),
        "targetReportId": int(match.target_report_id),
        "recipients": recipients,
    }
    payload.update(extra)
    return payload


class MatchLifecycleManager:
    def __init__(
        self,
        store: MatchRecordStore,
        scheduler: ExpirationScheduler,
        rejections: RejectionAnalytics,
        notifier: Notifier,
        reports: ReportLookup | None = None,
        clock: Clock = utcnow,
        initial_status: str = "confirmed",
    ) -> None:
        if initial_status not in MATCH_ACTIVE_STATUSES:
            raise ValueError(f"initial match status must be one of {sorted(MATCH_ACTIVE_STATUSES)}, got {initial_status!r}")
        self.store = store
        self.scheduler = scheduler
        self.rejections = rejections
        self.notifier = notifier
        self.reports = reports or SqlReportLookup()
        self.clock = clock
        self.initial_status = initial_status
        scheduler.on_expire = self.expire_if_due

    # Transaction plumbing shared with the handover and verification components

    @contextmanager
    def mutating(self, match_id: int) -> Iterator[tuple[Match, Events]]:
        """Lock, load and transact on one match.

        Yields ``(match, events)``; events appended by the body are emitted
        after commit. Raises NotFoundError for unknown ids.
        """
        events: Events = []
        with self.store.locked(self.store.match_key(match_id)):
            with self.store.unit_of_work():
                match = self.store.load(match_id, for_update=True)
                if match is None:
                    raise NotFoundError("Match not found", matchId=match_id)
                yield match, events
        self.dispatch(events)

    def dispatch(self, events: Events) -> None:
        for name, payload in events:
            if name in ("match.resolved", "match.dismissed", "match.expired"):
                self.scheduler.cancel(payload["matchId"])
            self.notifier.emit(name, payload)

    # Operations

    def create_match(
        self,
        source_report_id: int,
        target_report_id: int,
        notes: str | None = None,
        actor_user_id: int | None = None,
    ) -> Match:
        source_report_id, target_report_id = int(source_report_id), int(target_report_id)
        if source_report_id == target_report_id:
            raise ValidationError("A report cannot be matched with itself")
        source = self._require_report(source_report_id, "source")
        target = self._require_report(target_report_id, "target")
        if source.kind == target.kind:
            raise ValidationError(
                "A match must link a lost report with a found report",
                sourceKind=source.kind,
                targetKind=target.kind,
            )

        keys = (self.store.report_key(source_report_id), self.store.report_key(target_report_id))
        expired: Events = []
        with self.store.locked(*keys):
            with self.store.unit_of_work():
                for report_id in (source_report_id, target_report_id):
                    self._release_report(report_id, expired)
                now = self.clock()
                match = Match(
                    source_report_id=source_report_id,
                    target_report_id=target_report_id,
                    status=self.initial_status,
                    source_user_handover_confirmed=False,
                    target_user_handover_confirmed=False,
                    verification_attempts=0,
                    notes=(notes or "").strip() or None,
                    created_at=now,
                    confirmed_at=now if self.initial_status == "confirmed" else None,
                )
                self.store.save(match)
                match_id = int(match.id)
                created_at = match.created_at

        self.dispatch(expired)
        expires_at = self.scheduler.start(match_id, created_at)
        logger.info(
            "match_created",
            match_id=match_id,
            source_report_id=source_report_id,
            target_report_id=target_report_id,
            status=self.initial_status,
            actor_user_id=actor_user_id,
            expires_at=isoformat(expires_at),
        )
        self.dispatch([("match.created", match_payload(match, expiresAt=isoformat(expires_at)))])
        return match

    def _release_report(self, report_id: int, events: Events) -> None:
        """Raise ConflictError unless ``report_id`` is free for a new match.

        Active matches whose window has elapsed are expired on the way; their
        locks stay held until the caller's transaction commits.
        """
        for candidate in self.store.load_by_report_id(report_id, active_only=True):
            self.store.hold_until_commit(self.store.match_key(candidate.id))
            active = self.store.load(int(candidate.id), for_update=True)
            self.expire_locked(active, events)
            if active.is_active:
                raise ConflictError(
                    "Report already has an active match",
                    reportId=report_id,
                    matchId=int(active.id),
                )

    def update_status(
        self,
        match_id: int,
        new_status: str,
        notes: str | None = None,
        rejection_reason: str | None = None,
        reason_details: str | None = None,
        actor_user_id: int | None = None,
    ) -> Match:
        new_status = (new_status or "").strip().lower()
        if new_status not in TRANSITIONS:
            raise ValidationError(f"Unknown match status '{new_status}'", allowed=list(MATCH_STATUSES))
        lapsed = False
        with self.mutating(match_id) as (match, events):
            if self.expire_locked(match, events) == EXPIRED and new_status != "expired":
                lapsed = True
            else:
                self.apply_status(
                    match,
                    new_status,
                    events,
                    notes=notes,
                    rejection_reason=rejection_reason,
                    reason_details=reason_details,
                    actor_user_id=actor_user_id,
                )
        if lapsed:
            raise InvalidTransitionError(
                "Match expired before the status change",
                matchId=int(match_id),
                fromStatus="expired",
                toStatus=new_status,
            )
        return match

    def apply_status(
        self,
        match: Match,
        new_status: str,
        events: Events,
        notes: str | None = None,
        rejection_reason: str | None = None,
        reason_details: str | None = None,
        actor_user_id: int | None = None,
    ) -> bool:
        """Transition ``match`` inside the caller's transaction.

        Returns False for an idempotent repeat of the current status.
        """
        current = match.status
        position = len(events)
        if new_status == current:
            return False
        if current in MATCH_TERMINAL_STATUSES:
            raise InvalidTransitionError(
                f"Match is already {current}",
                matchId=int(match.id),
                fromStatus=current,
                toStatus=new_status,
            )
        if new_status not in TRANSITIONS[current]:
            raise InvalidTransitionError(
                f"Cannot move a {current} match to {new_status}",
                matchId=int(match.id),
                fromStatus=current,
                toStatus=new_status,
            )
        if new_status == "resolved" and not (match.source_user_handover_confirmed and match.target_user_handover_confirmed):
            raise InvalidTransitionError(
                "Both parties must confirm the handover before the match is resolved",
                matchId=int(match.id),
                sourceConfirmed=bool(match.source_user_handover_confirmed),
                targetConfirmed=bool(match.target_user_handover_confirmed),
            )

        now = self.clock()
        match.status = new_status
        if notes is not None and notes.strip():
            match.notes = notes.strip()
        if new_status == "confirmed":
            match.confirmed_at = now
        elif new_status == "resolved":
            match.handover_confirmed_at = now
        if new_status in MATCH_TERMINAL_STATUSES:
            match.closed_at = now
        if new_status == "dismissed":
            reason = (rejection_reason or "").strip() or "other"
            match.rejection_reason = reason
            self.rejections.append(
                int(match.id),
                actor_user_id,
                reason,
                reason_details if reason_details else notes,
                events,
            )
        self.store.save(match)

        logger.info(
            "match_status_changed",
            match_id=int(match.id),
            from_status=current,
            to_status=new_status,
            actor_user_id=actor_user_id,
        )
        if new_status in MATCH_TERMINAL_STATUSES:
            # Ahead of any flag events the rejection log queued.
            events.insert(position, (f"match.{new_status}", match_payload(match, previousStatus=current, notes=match.notes)))
        return True

    def get_match(self, match_id: int) -> Match:
        """Read a match, expiring it first if its window elapsed."""
        match = self.store.load(match_id)
        if match is None:
            raise NotFoundError("Match not found", matchId=match_id)
        if match.is_active and self.scheduler.is_due(match.created_at):
            self.expire_if_due(int(match.id))
            match = self.store.load(match_id, for_update=False)
        return match

    def list_matches(self, report_id: int | None = None, status: str | None = None, limit: int = 200) -> list[Match]:
        if status is not None and status not in TRANSITIONS:
            raise ValidationError(f"Unknown match status '{status}'", allowed=list(MATCH_STATUSES))
        return self.store.list(report_id=report_id, status=status, limit=limit)

    def check_expiration(self, match_id: int) -> ExpirationStatus:
        match = self.get_match(match_id)
        return self.scheduler.check_expiration(match.created_at)

    def expire_if_due(self, match_id: int) -> str:
        """on_expire callback: expire an active match whose window elapsed."""
        with self.mutating(match_id) as (match, events):
            outcome = self.expire_locked(match, events)
        return outcome

    def expire_locked(self, match: Match, events: Events) -> str:
        if match.is_terminal:
            return ALREADY_CLOSED
        if not self.scheduler.is_due(match.created_at):
            return NOT_DUE
        self.apply_status(match, "expired", events, notes=EXPIRED_NOTE)
        logger.info("match_expired", match_id=int(match.id), created_at=isoformat(match.created_at))
        return EXPIRED

    @contextmanager
    def open_match(self, match_id: int) -> Iterator[tuple[Match, Events]]:
        """``mutating`` for operations that need a live match.

        Expires the match first if its window elapsed (committing that), and
        raises ExpirationError for closed matches.
        """
        closed_status: Optional[str] = None
        with self.mutating(match_id) as (match, events):
            self.expire_locked(match, events)
            if match.is_terminal:
                closed_status = match.status
            else:
                yield match, events
        if closed_status is not None:
            raise ExpirationError(f"Match is already {closed_status}", matchId=int(match_id), status=closed_status)

    def _require_report(self, report_id: int, side: str) -> ReportRef:
        ref = self.reports.get_report(report_id)
        if ref is None:
            raise ValidationError(f"Unknown {side} report", reportId=report_id)
        return ref


def match_to_dict(m: Match, expiration: ExpirationStatus | None = None) -> dict:
    out = {
        "id": m.id,
        "sourceReportId": m.source_report_id,
        "targetReportId": m.target_report_id,
        "status": m.status,
        "sourceUserHandoverConfirmed": bool(m.source_user_handover_confirmed),
        "targetUserHandoverConfirmed": bool(m.target_user_handover_confirmed),
        "verificationAttempts": int(m.verification_attempts or 0),
        "ownershipVerified": m.ownership_verified_at is not None,
        "rejectionReason": m.rejection_reason,
        "notes": m.notes,
        "createdAt": isoformat(m.created_at),
        "confirmedAt": isoformat(m.confirmed_at),
        "handoverConfirmedAt": isoformat(m.handover_confirmed_at),
        "closedAt": isoformat(m.closed_at),
    }
    if expiration is not None:
        out["expiresAt"] = isoformat(expiration.expires_at)
        out["expiration"] = expiration.to_dict()
    return out
