from __future__ import annotations

from flask import Blueprint, jsonify, request

from ...models.match import Match
from ...schemas.match import (
    CancelHandoverSchema,
    CreateMatchSchema,
    HandoverSchema,
    UpdateStatusSchema,
    VerifyOwnershipSchema,
)
from ...security import current_user_id, is_admin
from .lifecycle import match_to_dict
from .service import get_match_resolution

bp = Blueprint("matches", __name__, url_prefix="/matches")


def _json_error(message: str, status: int = 400):
    return jsonify({"error": message}), status


def _body() -> dict:
    return request.get_json(silent=True) or {}


def _owner(match: Match, role: str) -> int | None:
    report = match.report_for(role)
    owner = getattr(report, "owner_user_id", None) if report is not None else None
    return int(owner) if owner is not None else None


def _party_roles(match: Match, uid: int | None) -> set[str]:
    if uid is None:
        return set()
    return {role for role in ("source", "target") if _owner(match, role) == uid}


def guard_match_party(match: Match, role: str | None = None):
    """401/403 response unless the caller is a party to ``match`` (or admin).

    With ``role`` the caller must own that side specifically.
    """
    uid = current_user_id()
    if uid is None:
        return _json_error("Authentication required", 401)
    if is_admin():
        return None
    roles = _party_roles(match, uid)
    if role is not None and role not in roles:
        return _json_error(f"Only the {role} party can do this", 403)
    if not roles:
        return _json_error("Not a party to this match", 403)
    return None


def _match_response(m: Match, status: int = 200):
    res = get_match_resolution()
    expiration = res.scheduler.check_expiration(m.created_at) if m.created_at else None
    return jsonify({"match": match_to_dict(m, expiration)}), status


@bp.post("")
def create_match():
    """Link a lost report with a found report.

    Body JSON: { sourceReportId: int, targetReportId: int, notes?: str }
    The caller initiates the match and must own the source report.
    """
    uid = current_user_id()
    if uid is None:
        return _json_error("Authentication required", 401)
    data = CreateMatchSchema().load(_body())
    res = get_match_resolution()
    if not is_admin():
        source = res.lifecycle.reports.get_report(data["source_report_id"])
        if source is not None and source.owner_id != uid:
            return _json_error("You can only start matches from your own report", 403)
    m = res.lifecycle.create_match(
        data["source_report_id"],
        data["target_report_id"],
        notes=data.get("notes"),
        actor_user_id=uid,
    )
    return _match_response(m, 201)


@bp.get("")
def list_matches():
    # Optional filters: reportId, status, limit
    report_id = request.args.get("reportId")
    status = request.args.get("status") or None
    try:
        limit = int(request.args.get("limit", 200))
    except (TypeError, ValueError):
        limit = 200
    rid = None
    if report_id:
        try:
            rid = int(report_id)
        except (TypeError, ValueError):
            return _json_error("Invalid reportId", 400)
    res = get_match_resolution()
    rows = res.lifecycle.list_matches(report_id=rid, status=status, limit=limit)
    return jsonify({"matches": [match_to_dict(m, res.scheduler.check_expiration(m.created_at)) for m in rows]})


@bp.get("/<int:match_id>")
def get_match(match_id: int):
    m = get_match_resolution().lifecycle.get_match(match_id)
    return _match_response(m)


@bp.get("/<int:match_id>/expiration")
def match_expiration(match_id: int):
    res = get_match_resolution()
    m = res.lifecycle.get_match(match_id)
    status = res.scheduler.check_expiration(m.created_at)
    return jsonify({"matchId": m.id, "status": m.status, "expiration": status.to_dict()})


@bp.patch("/<int:match_id>/status")
def update_match_status(match_id: int):
    """Move a match through its lifecycle.

    Body JSON: { status, notes?, rejectionReason?, reasonDetails? }
    Repeating the current terminal status is answered with the unchanged match.
    """
    res = get_match_resolution()
    m = res.lifecycle.get_match(match_id)
    denied = guard_match_party(m)
    if denied:
        return denied
    data = UpdateStatusSchema().load(_body())
    m = res.lifecycle.update_status(
        match_id,
        data["status"],
        notes=data.get("notes"),
        rejection_reason=data.get("rejection_reason"),
        reason_details=data.get("reason_details"),
        actor_user_id=current_user_id(),
    )
    return _match_response(m)


@bp.post("/<int:match_id>/handover")
def confirm_handover(match_id: int):
    res = get_match_resolution()
    data = HandoverSchema().load(_body())
    denied = guard_match_party(res.lifecycle.get_match(match_id), data["role"])
    if denied:
        return denied
    m = res.handover.confirm_handover(match_id, data["role"], actor_user_id=current_user_id())
    return _match_response(m)


@bp.post("/<int:match_id>/handover/cancel")
def cancel_handover(match_id: int):
    res = get_match_resolution()
    data = CancelHandoverSchema().load(_body())
    denied = guard_match_party(res.lifecycle.get_match(match_id), data["role"])
    if denied:
        return denied
    m = res.handover.cancel_handover(match_id, data["role"], data["reason"], details=data.get("details"))
    return _match_response(m)


@bp.get("/<int:match_id>/verification/question")
def next_security_question(match_id: int):
    res = get_match_resolution()
    denied = guard_match_party(res.lifecycle.get_match(match_id))
    if denied:
        return denied
    prompt = res.verification.get_next_security_question(match_id)
    return jsonify({"question": prompt.to_dict()})


@bp.post("/<int:match_id>/verification")
def verify_ownership(match_id: int):
    res = get_match_resolution()
    denied = guard_match_party(res.lifecycle.get_match(match_id))
    if denied:
        return denied
    data = VerifyOwnershipSchema().load(_body())
    result = res.verification.verify_ownership(match_id, data["answer"], actor_user_id=current_user_id())
    return jsonify({"verification": result.to_dict()})
