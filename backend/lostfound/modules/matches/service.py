"""Builds the match resolution components for an application."""
from __future__ import annotations

from dataclasses import dataclass

from flask import Flask, current_app

from ...clock import Clock, utcnow
from ..notifications.bus import InAppNotifier, Notifier
from ..rejections.analytics import RejectionAnalytics
from .expiration import ExpirationScheduler
from .handover import HandoverConfirmationCoordinator
from .lifecycle import MatchLifecycleManager
from .lookups import ReportLookup, SqlReportLookup, SqlUserLookup, UserLookup
from .store import MatchRecordStore
from .verification import OwnershipVerificationChallenge

EXTENSION_KEY = "match_resolution"


@dataclass
class MatchResolution:
    store: MatchRecordStore
    notifier: Notifier
    scheduler: ExpirationScheduler
    rejections: RejectionAnalytics
    lifecycle: MatchLifecycleManager
    handover: HandoverConfirmationCoordinator
    verification: OwnershipVerificationChallenge


def build_match_resolution(
    app: Flask,
    notifier: Notifier | None = None,
    clock: Clock | None = None,
    reports: ReportLookup | None = None,
    users: UserLookup | None = None,
) -> MatchResolution:
    cfg = app.config
    clock = clock or utcnow
    notifier = notifier or InAppNotifier()
    store = MatchRecordStore()
    scheduler = ExpirationScheduler(
        store,
        window_hours=cfg.get("MATCH_HANDOVER_WINDOW_HOURS", 48),
        clock=clock,
        timers_enabled=bool(cfg.get("MATCH_EXPIRATION_TIMERS_ENABLED", True)),
        app=app,
    )
    rejections = RejectionAnalytics(
        store,
        notifier,
        clock=clock,
        threshold=cfg.get("REJECTION_FLAG_THRESHOLD", 3),
        window_days=cfg.get("REJECTION_ANALYTICS_WINDOW_DAYS", 30),
        user_lookup=users or SqlUserLookup(),
    )
    lifecycle = MatchLifecycleManager(
        store,
        scheduler,
        rejections,
        notifier,
        reports=reports or SqlReportLookup(),
        clock=clock,
        initial_status=cfg.get("MATCH_INITIAL_STATUS", "confirmed"),
    )
    resolution = MatchResolution(
        store=store,
        notifier=notifier,
        scheduler=scheduler,
        rejections=rejections,
        lifecycle=lifecycle,
        handover=HandoverConfirmationCoordinator(lifecycle),
        verification=OwnershipVerificationChallenge(
            lifecycle,
            clock=clock,
            max_attempts=cfg.get("MAX_VERIFICATION_ATTEMPTS", 3),
        ),
    )
    previous = app.extensions.get(EXTENSION_KEY)
    if previous is not None:
        previous.scheduler.shutdown()
    app.extensions[EXTENSION_KEY] = resolution
    return resolution


def get_match_resolution() -> MatchResolution:
    return current_app.extensions[EXTENSION_KEY]
