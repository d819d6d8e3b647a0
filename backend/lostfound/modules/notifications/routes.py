from __future__ import annotations

import json
from queue import Empty

from flask import Blueprint, Response, jsonify, request, stream_with_context

from ...clock import utcnow
from ...extensions import db
from ...models.notification import Notification
from ...security import current_user_id
from .bus import notification_to_dict, subscribe, unsubscribe

bp = Blueprint("notifications", __name__, url_prefix="/notifications")

# Seconds between keep-alive comments; below gunicorn's worker timeout
KEEPALIVE_SECONDS = 15


def _json_error(message: str, status: int = 400):
    return jsonify({"error": message}), status


def _unread(uid: int):
    return db.session.query(Notification).filter(Notification.user_id == uid, Notification.read_at.is_(None))


@bp.get("")
def list_notifications():
    """The caller's match notifications, newest first.

    Query: unread=1 (only unread), matchId, limit (1..100, default 20)
    """
    uid = current_user_id()
    if uid is None:
        return _json_error("Authentication required", 401)
    q = db.session.query(Notification).filter(Notification.user_id == uid)
    if request.args.get("unread") in {"1", "true", "yes"}:
        q = q.filter(Notification.read_at.is_(None))
    match_id = request.args.get("matchId")
    if match_id:
        if not match_id.isdigit():
            return _json_error("Invalid matchId")
        q = q.filter(Notification.match_id == int(match_id))
    limit = request.args.get("limit", "20")
    limit = int(limit) if limit.isdigit() else 20
    rows = q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(max(1, min(100, limit))).all()
    return jsonify({
        "notifications": [notification_to_dict(n) for n in rows],
        "unreadCount": _unread(uid).count(),
    })


@bp.patch("/<int:notif_id>/read")
def mark_read(notif_id: int):
    uid = current_user_id()
    if uid is None:
        return _json_error("Authentication required", 401)
    n = db.session.get(Notification, notif_id)
    if n is None:
        return _json_error("Not found", 404)
    if n.user_id != uid:
        return _json_error("Forbidden", 403)
    if n.read_at is None:
        n.read_at = utcnow()
        n.status = "read"
        db.session.commit()
    return jsonify({"notification": notification_to_dict(n)})


@bp.post("/read-all")
def mark_all_read():
    uid = current_user_id()
    if uid is None:
        return _json_error("Authentication required", 401)
    updated = _unread(uid).update({"read_at": utcnow(), "status": "read"}, synchronize_session=False)
    db.session.commit()
    return jsonify({"updated": updated})


@bp.get("/stream")
def stream_notifications():
    """Server-Sent Events stream of the caller's match notifications."""
    uid = current_user_id()
    if uid is None:
        return _json_error("Authentication required", 401)

    q = subscribe(uid)

    def events():
        try:
            yield "retry: 5000\n\n"
            while True:
                try:
                    evt = q.get(timeout=KEEPALIVE_SECONDS)
                except Empty:
                    yield ": keep-alive\n\n"
                    continue
                name = evt.get("notification", {}).get("event") or "notification"
                yield f"event: {name}\ndata: {json.dumps(evt)}\n\n"
        finally:
            unsubscribe(uid, q)

    headers = {
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",
    }
    return Response(stream_with_context(events()), mimetype="text/event-stream", headers=headers)
