import pytest
from sqlalchemy.exc import OperationalError

from lostfound.errors import ConflictError, InvalidTransitionError, NotFoundError, TransientError, ValidationError
from lostfound.extensions import db
from lostfound.models.rejection import RejectionRecord
from lostfound.modules.matches.lifecycle import MatchLifecycleManager, match_to_dict


def test_create_match_starts_confirmed(match, notifier, lost_report, found_report, owner, finder):
    assert match.status == "confirmed"
    assert match.confirmed_at is not None
    assert match.source_user_handover_confirmed is False
    assert match.target_user_handover_confirmed is False
    assert match.verification_attempts == 0
    assert match.notes == "Looks like mine"

    assert notifier.names() == ["match.created"]
    payload = notifier.events[0][1]
    assert payload["matchId"] == match.id
    assert payload["sourceReportId"] == lost_report.id
    assert payload["targetReportId"] == found_report.id
    assert sorted(payload["recipients"]) == sorted([owner.id, finder.id])
    assert payload["expiresAt"].startswith("2026-03-04T09:00:00")


def test_create_match_rejects_self_match(res, lost_report):
    with pytest.raises(ValidationError):
        res.lifecycle.create_match(lost_report.id, lost_report.id)


def test_create_match_rejects_same_kind(res, make_report, owner, finder):
    a = make_report("lost", owner)
    b = make_report("lost", finder)
    with pytest.raises(ValidationError):
        res.lifecycle.create_match(a.id, b.id)


def test_create_match_rejects_unknown_report(res, lost_report):
    with pytest.raises(ValidationError):
        res.lifecycle.create_match(lost_report.id, 9999)


def test_one_active_match_per_report(res, match, lost_report, make_report, make_user):
    other_found = make_report("found", make_user())
    with pytest.raises(ConflictError):
        res.lifecycle.create_match(lost_report.id, other_found.id)
    # Nothing was written by the rejected attempt
    assert len(res.lifecycle.list_matches(report_id=lost_report.id)) == 1


def test_report_can_be_matched_again_after_dismissal(res, match, lost_report, make_report, make_user):
    res.lifecycle.update_status(match.id, "dismissed", rejection_reason="not_my_item")
    again = res.lifecycle.create_match(lost_report.id, make_report("found", make_user()).id)
    assert again.status == "confirmed"


def test_lapsed_match_does_not_block_its_reports(res, match, lost_report, make_report, make_user, clock, notifier):
    clock.advance(hours=49)
    other_found = make_report("found", make_user())
    again = res.lifecycle.create_match(lost_report.id, other_found.id)

    assert again.status == "confirmed"
    assert res.lifecycle.get_match(match.id).status == "expired"
    assert notifier.names() == ["match.created", "match.expired", "match.created"]
    assert res.scheduler.pending() == []


def test_conflict_keeps_live_match_untouched(res, match, lost_report, make_report, make_user, clock, notifier):
    clock.advance(hours=47)
    with pytest.raises(ConflictError):
        res.lifecycle.create_match(lost_report.id, make_report("found", make_user()).id)
    assert res.lifecycle.get_match(match.id).status == "confirmed"
    assert notifier.count("match.expired") == 0


def test_suggested_initial_status(app, res, lost_report, found_report):
    lifecycle = MatchLifecycleManager(
        res.store,
        res.scheduler,
        res.rejections,
        res.notifier,
        clock=res.lifecycle.clock,
        initial_status="suggested",
    )
    m = lifecycle.create_match(lost_report.id, found_report.id)
    assert m.status == "suggested"
    assert m.confirmed_at is None

    m = lifecycle.update_status(m.id, "confirmed")
    assert m.status == "confirmed"
    assert m.confirmed_at is not None


def test_invalid_initial_status():
    with pytest.raises(ValueError):
        MatchLifecycleManager(None, None, None, None, initial_status="resolved")


def test_unknown_match_is_not_found(res):
    with pytest.raises(NotFoundError):
        res.lifecycle.get_match(404)
    with pytest.raises(NotFoundError):
        res.lifecycle.update_status(404, "dismissed")


def test_unknown_status_is_validation_error(res, match):
    with pytest.raises(ValidationError):
        res.lifecycle.update_status(match.id, "pending_handover")


def test_resolved_requires_both_confirmations(res, match):
    with pytest.raises(InvalidTransitionError):
        res.lifecycle.update_status(match.id, "resolved")
    res.handover.confirm_handover(match.id, "source")
    with pytest.raises(InvalidTransitionError):
        res.lifecycle.update_status(match.id, "resolved")
    assert res.lifecycle.get_match(match.id).status == "confirmed"


def test_confirmed_cannot_go_back_to_suggested(res, match):
    with pytest.raises(InvalidTransitionError):
        res.lifecycle.update_status(match.id, "suggested")


def test_dismiss_appends_rejection_and_emits(res, match, owner, notifier):
    m = res.lifecycle.update_status(
        match.id,
        "dismissed",
        notes="Different serial number",
        rejection_reason="not_my_item",
        actor_user_id=owner.id,
    )
    assert m.status == "dismissed"
    assert m.rejection_reason == "not_my_item"
    assert m.closed_at is not None

    rows = db.session.query(RejectionRecord).filter_by(match_id=match.id).all()
    assert len(rows) == 1
    assert rows[0].user_id == owner.id
    assert rows[0].reason == "not_my_item"
    assert rows[0].details == "Different serial number"

    assert notifier.names() == ["match.created", "match.dismissed"]
    assert notifier.events[-1][1]["previousStatus"] == "confirmed"


def test_dismiss_without_reason_defaults_to_other(res, match):
    m = res.lifecycle.update_status(match.id, "dismissed")
    assert m.rejection_reason == "other"


def test_terminal_same_status_is_noop(res, match, notifier):
    res.lifecycle.update_status(match.id, "dismissed", rejection_reason="not_my_item")
    m = res.lifecycle.update_status(match.id, "dismissed", rejection_reason="wrong_location")
    assert m.rejection_reason == "not_my_item"
    assert notifier.count("match.dismissed") == 1
    assert db.session.query(RejectionRecord).count() == 1


def test_terminal_record_is_immutable(res, match):
    res.lifecycle.update_status(match.id, "dismissed")
    for status in ("confirmed", "resolved", "expired", "suggested"):
        with pytest.raises(InvalidTransitionError):
            res.lifecycle.update_status(match.id, status)
    assert res.lifecycle.get_match(match.id).status == "dismissed"


def test_status_change_after_window_expires_instead(res, match, clock, notifier):
    clock.advance(hours=49)
    with pytest.raises(InvalidTransitionError):
        res.lifecycle.update_status(match.id, "dismissed", rejection_reason="not_my_item")

    m = res.lifecycle.get_match(match.id)
    assert m.status == "expired"
    assert m.rejection_reason is None
    assert db.session.query(RejectionRecord).count() == 0
    assert notifier.count("match.expired") == 1
    assert notifier.count("match.dismissed") == 0


def test_expired_request_after_window_is_accepted(res, match, clock, notifier):
    clock.advance(hours=49)
    m = res.lifecycle.update_status(match.id, "expired")
    assert m.status == "expired"
    assert notifier.count("match.expired") == 1


def test_failed_transition_leaves_no_trace(res, match, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("rejection log unavailable")

    monkeypatch.setattr(res.rejections, "append", boom)
    with pytest.raises(RuntimeError):
        res.lifecycle.update_status(match.id, "dismissed")
    assert res.lifecycle.get_match(match.id).status == "confirmed"
    assert db.session.query(RejectionRecord).count() == 0


def test_list_matches_filters(res, match, make_report, make_user, lost_report):
    other = res.lifecycle.create_match(make_report("lost", make_user()).id, make_report("found", make_user()).id)
    res.lifecycle.update_status(other.id, "dismissed")

    assert {m.id for m in res.lifecycle.list_matches()} == {match.id, other.id}
    assert [m.id for m in res.lifecycle.list_matches(status="dismissed")] == [other.id]
    assert [m.id for m in res.lifecycle.list_matches(report_id=lost_report.id)] == [match.id]
    with pytest.raises(ValidationError):
        res.lifecycle.list_matches(status="bogus")


def test_match_to_dict(res, match):
    d = match_to_dict(match, res.scheduler.check_expiration(match.created_at))
    assert d["status"] == "confirmed"
    assert d["sourceUserHandoverConfirmed"] is False
    assert d["ownershipVerified"] is False
    assert d["expiration"]["hoursRemaining"] == 48
    assert d["expiresAt"] == d["expiration"]["expiresAt"]


def test_storage_failure_is_transient(res, match, monkeypatch):
    def fail():
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    monkeypatch.setattr(db.session, "commit", fail)
    with pytest.raises(TransientError):
        res.lifecycle.update_status(match.id, "dismissed")
    monkeypatch.undo()
    assert res.lifecycle.get_match(match.id).status == "confirmed"
