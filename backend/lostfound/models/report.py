from sqlalchemy import func, Index
from ..extensions import db
from .enums import report_kind_enum, report_status_enum


class Report(db.Model):
    """A lost or found report, as far as match resolution needs to know it."""

    __tablename__ = "reports"

    id = db.Column(db.BigInteger().with_variant(db.Integer, "sqlite"), primary_key=True)
    owner_user_id = db.Column(db.BigInteger, db.ForeignKey("users.id", ondelete="SET NULL"))
    kind = db.Column(report_kind_enum, nullable=False)
    title = db.Column(db.String(200), nullable=False, server_default="")
    status = db.Column(report_status_enum, nullable=False, server_default="open")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())

    owner = db.relationship("User", back_populates="reports", foreign_keys=[owner_user_id])
    security_questions = db.relationship(
        "SecurityQuestion",
        back_populates="report",
        cascade="all, delete-orphan",
        order_by="SecurityQuestion.id",
    )

    __table_args__ = (
        Index("idx_reports_kind_status", "kind", "status"),
    )
