from __future__ import annotations

from flask import Blueprint, jsonify, request

from ...schemas.rejection import AnalyticsQuerySchema, FlagUserSchema, RecordRejectionSchema
from ...security import current_user_id, is_admin
from ..matches.routes import guard_match_party
from ..matches.service import get_match_resolution
from .analytics import rejection_to_dict

bp = Blueprint("rejections", __name__, url_prefix="/rejections")


def _json_error(message: str, status: int = 400):
    return jsonify({"error": message}), status


@bp.get("/users/<int:user_id>/stats")
def user_rejection_stats(user_id: int):
    uid = current_user_id()
    if uid is None:
        return _json_error("Authentication required", 401)
    if uid != user_id and not is_admin():
        return _json_error("Forbidden", 403)
    stats = get_match_resolution().rejections.get_user_rejection_stats(user_id)
    return jsonify({"stats": stats})


@bp.post("/users/<int:user_id>/flag")
def flag_user(user_id: int):
    """Manually flag a user for moderation review (admins only).

    Body JSON: { reason: str, behavior?: str }. Flagging again for the same
    behavior inside the analytics window returns the existing flag.
    """
    if not is_admin():
        return _json_error("Admin access required", 403)
    data = FlagUserSchema().load(request.get_json(silent=True) or {})
    result = get_match_resolution().rejections.flag_user_for_suspicious_behavior(
        user_id, data["reason"], behavior=data["behavior"]
    )
    return jsonify(result.to_dict()), 201 if result.created else 200


@bp.post("/matches/<int:match_id>")
def record_rejection(match_id: int):
    """Log a rejection reason for an open match without changing its status.

    Only the match's parties (or an admin) may do this.
    """
    res = get_match_resolution()
    denied = guard_match_party(res.lifecycle.get_match(match_id))
    if denied:
        return denied
    data = RecordRejectionSchema().load(request.get_json(silent=True) or {})
    record = res.rejections.record_rejection(match_id, current_user_id(), data["reason"], data.get("details"))
    return jsonify({"rejection": rejection_to_dict(record)}), 201


@bp.get("/analytics")
def rejection_analytics():
    if not is_admin():
        return _json_error("Admin access required", 403)
    q = AnalyticsQuerySchema().load(request.args)
    report = get_match_resolution().rejections.get_rejection_analytics(
        timeframe=q["timeframe"],
        start=q.get("start_date"),
        end=q.get("end_date"),
        user_id=q.get("user_id"),
        flagged_only=q["flagged_only"],
    )
    return jsonify(report)
