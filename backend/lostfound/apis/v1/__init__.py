from __future__ import annotations

from flask import Blueprint, Flask, current_app, g, request

from ...extensions import db
from ...models.user import User
from ...modules.matches.routes import bp as matches_bp
from ...modules.notifications.routes import bp as notifications_bp
from ...modules.rejections.routes import bp as rejections_bp
from ...modules.reports.routes import bp as reports_bp
from ...security import verify_token


def _identify() -> tuple[int | None, str | None]:
    """(user id, token role) claimed by the request.

    Signed bearer tokens are always honoured. With DEBUG on, `X-User-Id: <id>`
    and `Authorization: User <id>` are accepted for local testing.
    """
    header = request.headers.get("Authorization") or ""
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer":
        return verify_token(value.strip())
    if not current_app.config.get("DEBUG"):
        return None, None
    raw = (request.headers.get("X-User-Id") or (value if scheme.lower() == "user" else "")).strip()
    if raw.isdigit() and int(raw) > 0:
        return int(raw), None
    return None, None


def load_current_user() -> None:
    uid, token_role = _identify()
    user = db.session.get(User, uid) if uid is not None else None
    g.current_user = user
    g.current_user_id = int(user.id) if user is not None else None
    # A role carried by the token takes precedence over the stored one
    g.current_user_role = token_role or (str(user.role) if user is not None else None)


def register_api(app: Flask) -> None:
    api_v1 = Blueprint("api_v1", __name__, url_prefix="/api/v1")
    api_v1.before_request(load_current_user)

    for bp in (matches_bp, reports_bp, rejections_bp, notifications_bp):
        api_v1.register_blueprint(bp)

    app.register_blueprint(api_v1)
