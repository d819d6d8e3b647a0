from sqlalchemy import Index, func
from sqlalchemy.dialects.postgresql import JSONB
from ..extensions import db
from .enums import notification_channel_enum, notification_status_enum


class Notification(db.Model):
    """In-app notice about a protocol event, one row per recipient."""

    __tablename__ = "notifications"

    id = db.Column(db.BigInteger().with_variant(db.Integer, "sqlite"), primary_key=True)
    user_id = db.Column(db.BigInteger, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    match_id = db.Column(db.BigInteger, db.ForeignKey("matches.id", ondelete="CASCADE"))
    # Event name, e.g. "match.resolved"
    event = db.Column(db.String(64), nullable=False)
    channel = db.Column(notification_channel_enum, nullable=False, server_default="inapp")
    status = db.Column(notification_status_enum, nullable=False, server_default="sent")
    title = db.Column(db.String(200), nullable=False)
    body = db.Column(db.Text)
    payload = db.Column(db.JSON().with_variant(JSONB(), "postgresql"))
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    read_at = db.Column(db.DateTime(timezone=True))

    user = db.relationship("User", back_populates="notifications")
    match = db.relationship("Match")

    __table_args__ = (
        Index("idx_notifications_user_read", "user_id", "read_at"),
        Index("idx_notifications_match", "match_id"),
    )
