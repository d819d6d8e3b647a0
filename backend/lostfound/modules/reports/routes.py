from __future__ import annotations

from flask import Blueprint, jsonify, request

from ...extensions import db
from ...models.report import Report
from ...schemas.match import SecurityQuestionCreateSchema
from ...security import current_user_id, is_admin
from ..matches.service import get_match_resolution
from ..matches.verification import SUGGESTED_QUESTIONS

bp = Blueprint("reports", __name__, url_prefix="/reports")


def _json_error(message: str, status: int = 400):
    return jsonify({"error": message}), status


def _owned_report(report_id: int):
    """(report, None) when the caller owns the report or is admin, else (None, error response)."""
    uid = current_user_id()
    if uid is None:
        return None, _json_error("Authentication required", 401)
    report = db.session.get(Report, report_id)
    if report is None:
        return None, _json_error("Report not found", 404)
    if not is_admin() and report.owner_user_id != uid:
        return None, _json_error("Only the reporter can manage security questions", 403)
    return report, None


@bp.get("/security-questions/suggestions")
def suggested_questions():
    return jsonify({"suggestions": SUGGESTED_QUESTIONS})


@bp.get("/<int:report_id>/security-questions")
def list_security_questions(report_id: int):
    # Answers never leave the server; owners see question texts only.
    report, err = _owned_report(report_id)
    if err:
        return err
    rows = get_match_resolution().verification.list_security_questions(report.id)
    return jsonify({
        "questions": [
            {"id": q.id, "question": q.question, "createdAt": q.created_at.isoformat() if q.created_at else None}
            for q in rows
        ]
    })


@bp.post("/<int:report_id>/security-questions")
def add_security_question(report_id: int):
    report, err = _owned_report(report_id)
    if err:
        return err
    data = SecurityQuestionCreateSchema().load(request.get_json(silent=True) or {})
    q = get_match_resolution().verification.add_security_question(report.id, data["question"], data["answer"])
    return jsonify({"question": {"id": q.id, "reportId": q.report_id, "question": q.question}}), 201
