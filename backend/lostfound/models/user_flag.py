from sqlalchemy import func, Index
from ..extensions import db


class UserFlag(db.Model):
    __tablename__ = "user_flags"

    id = db.Column(db.BigInteger().with_variant(db.Integer, "sqlite"), primary_key=True)
    user_id = db.Column(db.BigInteger, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    # Behavior class, e.g. "high_rejection_rate" or "manual"
    behavior = db.Column(db.String(80), nullable=False)
    reason = db.Column(db.Text, nullable=False)
    flagged_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())

    user = db.relationship("User", back_populates="flags")

    __table_args__ = (
        Index("idx_user_flags_user_behavior", "user_id", "behavior", "flagged_at"),
    )
