from sqlalchemy import func
from ..extensions import db
from .enums import role_enum


class User(db.Model):
    """Minimal user row; identity management lives outside this service."""

    __tablename__ = "users"

    id = db.Column(db.BigInteger().with_variant(db.Integer, "sqlite"), primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    name = db.Column(db.String(120))
    role = db.Column(role_enum, nullable=False, server_default="student")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())

    reports = db.relationship(
        "Report",
        back_populates="owner",
        foreign_keys="Report.owner_user_id",
        lazy=True,
    )
    notifications = db.relationship(
        "Notification",
        back_populates="user",
        lazy=True,
        cascade="all, delete-orphan",
    )
    flags = db.relationship(
        "UserFlag",
        back_populates="user",
        lazy=True,
        cascade="all, delete-orphan",
    )
