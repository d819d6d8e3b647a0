from __future__ import annotations

from typing import Optional, Tuple

from flask import current_app, g
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer


def _serializer() -> URLSafeTimedSerializer:
    # Salt keeps these tokens from validating as any other signed value
    return URLSafeTimedSerializer(secret_key=current_app.config["SECRET_KEY"], salt="lostfound-auth")


def issue_token(user_id: int, role: str = "student") -> str:
    """Issue a signed bearer token: {"uid": int, "role": str}."""
    return _serializer().dumps({"uid": int(user_id), "role": str(role or "student")})


def verify_token(token: str) -> Tuple[Optional[int], Optional[str]]:
    """Return (user_id, role) for a valid token, else (None, None)."""
    max_age = int(current_app.config.get("AUTH_TOKEN_MAX_AGE", 60 * 60 * 24 * 30))
    try:
        data = _serializer().loads(token, max_age=max_age)
    except (BadSignature, SignatureExpired):
        return (None, None)
    if not isinstance(data, dict):
        return (None, None)
    try:
        uid = int(data["uid"])
    except (KeyError, TypeError, ValueError):
        return (None, None)
    role = data.get("role")
    return (uid, str(role) if role is not None else None)


def current_user_id() -> int | None:
    uid = getattr(g, "current_user_id", None)
    return int(uid) if uid is not None else None


def is_admin() -> bool:
    if getattr(g, "current_user_id", None) is None:
        return False
    return str(getattr(g, "current_user_role", "") or "").lower() == "admin"
