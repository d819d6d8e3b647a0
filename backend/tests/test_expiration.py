import threading
from datetime import datetime, timedelta, timezone

import pytest

from lostfound.errors import ExpirationError
from lostfound.modules.matches.expiration import (
    ALREADY_CLOSED,
    EXPIRED,
    NOT_DUE,
    ExpirationScheduler,
    compute_expiration,
    format_time_remaining,
)

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def test_compute_expiration_49h_old_is_expired():
    for now in (T0, T0 + timedelta(days=3), T0 + timedelta(days=400)):
        status = compute_expiration(now - timedelta(hours=49), now)
        assert status.is_expired is True
        assert status.hours_remaining == 0
        assert status.time_remaining == timedelta(0)


def test_compute_expiration_rounds_hours_up():
    status = compute_expiration(T0, T0 + timedelta(hours=10, minutes=30))
    assert status.is_expired is False
    assert status.expires_at == T0 + timedelta(hours=48)
    assert status.hours_remaining == 38
    assert status.time_remaining == timedelta(hours=37, minutes=30)


def test_compute_expiration_boundary_is_expired():
    status = compute_expiration(T0, T0 + timedelta(hours=48))
    assert status.is_expired is True


def test_naive_created_at_is_treated_as_utc():
    status = compute_expiration(T0.replace(tzinfo=None), T0 + timedelta(hours=1))
    assert status.expires_at == T0 + timedelta(hours=48)
    assert status.hours_remaining == 47


def test_countdown_visible_only_in_last_day():
    assert compute_expiration(T0, T0 + timedelta(hours=1)).countdown_visible is False
    assert compute_expiration(T0, T0 + timedelta(hours=30)).countdown_visible is True


def test_format_time_remaining():
    assert format_time_remaining(timedelta(hours=5, minutes=12, seconds=40)) == "5h 12m"
    assert format_time_remaining(timedelta(minutes=12)) == "12m"
    assert format_time_remaining(timedelta(seconds=-5)) == "0m"


def test_status_to_dict():
    d = compute_expiration(T0, T0 + timedelta(hours=47)).to_dict()
    assert d["expiresAt"] == (T0 + timedelta(hours=48)).isoformat()
    assert d["timeRemaining"] == 3600 * 1000
    assert d["timeRemainingLabel"] == "1h 0m"
    assert d["isExpired"] is False
    assert d["hoursRemaining"] == 1
    assert d["countdownVisible"] is True


class TestSchedulerUnit:
    def _scheduler(self, outcomes, **kwargs):
        calls = []

        def on_expire(match_id):
            calls.append(match_id)
            return outcomes.pop(0)

        s = ExpirationScheduler(store=None, clock=lambda: T0, timers_enabled=False, **kwargs)
        s.on_expire = on_expire
        return s, calls

    def test_fire_reports_only_the_expiring_call(self):
        s, calls = self._scheduler([EXPIRED, ALREADY_CLOSED])
        assert s.fire(7) is True
        assert s.fire(7) is False
        assert calls == [7, 7]

    def test_fire_not_due_can_retry(self):
        s, calls = self._scheduler([NOT_DUE, EXPIRED])
        assert s.fire(7) is False
        assert s.fire(7) is True
        assert calls == [7, 7]

    def test_cancel_without_timer(self):
        s, calls = self._scheduler([ALREADY_CLOSED])
        assert s.cancel(7) is False
        assert s.fire(7) is False
        assert calls == [7]

    def test_fire_keeps_no_per_match_state(self):
        s, _ = self._scheduler([EXPIRED, ALREADY_CLOSED, ALREADY_CLOSED])
        for match_id in (1, 2, 3):
            s.fire(match_id)
        assert s.pending() == []

    def test_start_without_timers_only_computes(self):
        s, _ = self._scheduler([])
        assert s.start(1, T0) == T0 + timedelta(hours=48)
        assert s.pending() == []

    def test_timer_fires_callback(self):
        fired = threading.Event()
        s = ExpirationScheduler(store=None, clock=lambda: T0 + timedelta(hours=49), timers_enabled=True, grace_seconds=0)

        def on_expire(match_id):
            fired.set()
            return EXPIRED

        s.on_expire = on_expire
        s.start(11, T0)
        assert fired.wait(5)
        s.shutdown()

    def test_cancel_stops_armed_timer(self):
        s = ExpirationScheduler(store=None, clock=lambda: T0, timers_enabled=True)
        s.on_expire = lambda match_id: EXPIRED
        s.start(5, T0)
        assert s.pending() == [5]
        assert s.cancel(5) is True
        assert s.cancel(5) is False
        assert s.pending() == []


class TestExpirationInApp:
    def test_timeout_scenario(self, res, match, clock, notifier):
        match_id = match.id
        clock.advance(hours=48, minutes=1)
        assert res.scheduler.fire(match_id) is True
        m = res.lifecycle.get_match(match_id)
        assert m.status == "expired"
        assert m.notes == "handover window elapsed"
        assert m.closed_at is not None
        assert res.scheduler.fire(match_id) is False
        assert notifier.count("match.expired") == 1

        with pytest.raises(ExpirationError):
            res.handover.confirm_handover(match_id, "source")

    def test_fire_before_window_does_nothing(self, res, match, clock):
        clock.advance(hours=47)
        assert res.scheduler.fire(match.id) is False
        assert res.lifecycle.get_match(match.id).status == "confirmed"

    def test_lazy_expiration_on_read(self, res, match, clock, notifier):
        clock.advance(hours=49)
        m = res.lifecycle.get_match(match.id)
        assert m.status == "expired"
        assert notifier.count("match.expired") == 1
        res.lifecycle.get_match(match.id)
        assert notifier.count("match.expired") == 1

    def test_sweep_expires_only_overdue(self, res, match, make_report, make_user, clock):
        clock.advance(hours=30)
        u1, u2 = make_user(), make_user()
        later = res.lifecycle.create_match(make_report("lost", u1).id, make_report("found", u2).id)
        clock.advance(hours=19)

        assert res.scheduler.sweep() == [match.id]
        assert res.lifecycle.get_match(later.id).status == "confirmed"
        assert res.scheduler.sweep() == []

    def test_sweep_skips_resolved(self, res, match, clock):
        res.handover.confirm_handover(match.id, "source")
        res.handover.confirm_handover(match.id, "target")
        clock.advance(hours=72)
        assert res.scheduler.sweep() == []
        assert res.lifecycle.get_match(match.id).status == "resolved"

    def test_check_expiration_by_id(self, res, match, clock):
        clock.advance(hours=12)
        status = res.lifecycle.check_expiration(match.id)
        assert status.hours_remaining == 36
        assert status.is_expired is False

    def test_reschedule_pending_covers_active_matches(self, res, match, make_report, make_user):
        other = res.lifecycle.create_match(make_report("lost", make_user()).id, make_report("found", make_user()).id)
        res.lifecycle.update_status(other.id, "dismissed")
        assert res.scheduler.reschedule_pending() == 1
