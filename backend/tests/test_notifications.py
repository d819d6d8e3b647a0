import pytest

from lostfound.models.notification import Notification
from lostfound.modules.notifications.bus import EventEmitter, InAppNotifier, subscribe, unsubscribe
from lostfound.tasks.jobs.matches import run_expiration_sweep


@pytest.fixture
def notifier():
    return InAppNotifier()


def test_emitter_isolates_failing_handlers():
    seen = []
    emitter = EventEmitter()

    def broken(name, payload):
        raise RuntimeError("listener bug")

    emitter.on("match.resolved", broken)
    recorder = emitter.on("*", lambda name, payload: seen.append(name))
    emitter.emit("match.resolved", {"matchId": 1})
    assert seen == ["match.resolved"]

    emitter.off("*", recorder)
    emitter.emit("match.resolved", {"matchId": 1})
    assert seen == ["match.resolved"]


def test_match_events_become_inapp_notifications(res, match, owner, finder):
    rows = Notification.query.order_by(Notification.user_id).all()
    assert [n.user_id for n in rows] == sorted([owner.id, finder.id])
    assert rows[0].title == "New match"
    assert rows[0].event == "match.created"
    assert rows[0].match_id == match.id
    assert rows[0].payload["status"] == "confirmed"
    assert "recipients" not in rows[0].payload


def test_notifications_published_to_open_streams(res, owner, finder, lost_report, found_report):
    q = subscribe(finder.id)
    try:
        m = res.lifecycle.create_match(lost_report.id, found_report.id)
        res.handover.confirm_handover(m.id, "source")
        titles = [q.get_nowait()["notification"]["title"] for _ in range(2)]
        assert titles == ["New match", "Handover confirmed"]
    finally:
        unsubscribe(finder.id, q)


def test_notification_endpoints(client, res, match, finder):
    headers = {"X-User-Id": str(finder.id)}
    res.handover.confirm_handover(match.id, "source")
    body = client.get("/api/v1/notifications", headers=headers).get_json()
    assert body["unreadCount"] == 2
    assert [n["event"] for n in body["notifications"]] == ["match.handover_confirmed", "match.created"]
    notif = body["notifications"][0]
    assert notif["matchId"] == match.id
    assert notif["read"] is False

    resp = client.patch(f"/api/v1/notifications/{notif['id']}/read", headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()["notification"]["read"] is True

    unread = client.get("/api/v1/notifications?unread=1", headers=headers).get_json()
    assert [n["event"] for n in unread["notifications"]] == ["match.created"]

    assert client.post("/api/v1/notifications/read-all", headers=headers).get_json() == {"updated": 1}
    assert client.get("/api/v1/notifications", headers=headers).get_json()["unreadCount"] == 0
    assert client.get("/api/v1/notifications").status_code == 401


def test_expiration_sweep_job(app, res, match, clock):
    match_id = match.id
    clock.advance(hours=50)
    assert run_expiration_sweep(app) == [match_id]
    assert res.lifecycle.get_match(match_id).status == "expired"
    titles = {n.title for n in Notification.query.all()}
    assert "Handover window expired" in titles
