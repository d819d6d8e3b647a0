from sqlalchemy import func, Index
from ..extensions import db


class RejectionRecord(db.Model):
    """Append-only log of match dismissals; rows are never updated or deleted."""

    __tablename__ = "match_rejections"

    id = db.Column(db.BigInteger().with_variant(db.Integer, "sqlite"), primary_key=True)
    match_id = db.Column(db.BigInteger, db.ForeignKey("matches.id", ondelete="RESTRICT"), nullable=False)
    # Null for dismissals nobody in particular caused
    user_id = db.Column(db.BigInteger, db.ForeignKey("users.id", ondelete="SET NULL"))
    reason = db.Column(db.String(120), nullable=False)
    details = db.Column(db.Text)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())

    match = db.relationship("Match", back_populates="rejections")
    user = db.relationship("User", foreign_keys=[user_id])

    __table_args__ = (
        Index("idx_rejections_user_created", "user_id", "created_at"),
        Index("idx_rejections_match", "match_id"),
    )
