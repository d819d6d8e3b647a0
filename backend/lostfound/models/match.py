from sqlalchemy import false, func, Index
from ..extensions import db
from .enums import match_status_enum, MATCH_ACTIVE_STATUSES, MATCH_TERMINAL_STATUSES


class Match(db.Model):
    """A proposed link between a lost report and a found report.

    Only MatchLifecycleManager (and the components it drives) mutate rows of
    this table; everything else reads.
    """

    __tablename__ = "matches"

    id = db.Column(db.BigInteger().with_variant(db.Integer, "sqlite"), primary_key=True)
    source_report_id = db.Column(db.BigInteger, db.ForeignKey("reports.id", ondelete="CASCADE"), nullable=False)
    target_report_id = db.Column(db.BigInteger, db.ForeignKey("reports.id", ondelete="CASCADE"), nullable=False)
    status = db.Column(match_status_enum, nullable=False, server_default="suggested")
    source_user_handover_confirmed = db.Column(db.Boolean, nullable=False, default=False, server_default=false())
    target_user_handover_confirmed = db.Column(db.Boolean, nullable=False, default=False, server_default=false())
    verification_attempts = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    rejection_reason = db.Column(db.String(120))
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    confirmed_at = db.Column(db.DateTime(timezone=True))
    handover_confirmed_at = db.Column(db.DateTime(timezone=True))
    ownership_verified_at = db.Column(db.DateTime(timezone=True))
    closed_at = db.Column(db.DateTime(timezone=True))
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    source_report = db.relationship("Report", foreign_keys=[source_report_id])
    target_report = db.relationship("Report", foreign_keys=[target_report_id])
    rejections = db.relationship("RejectionRecord", back_populates="match", order_by="RejectionRecord.id")
    challenges = db.relationship(
        "VerificationChallenge",
        back_populates="match",
        cascade="all, delete-orphan",
        order_by="VerificationChallenge.id",
    )

    __table_args__ = (
        Index("idx_matches_source", "source_report_id"),
        Index("idx_matches_target", "target_report_id"),
        Index("idx_matches_status_created", "status", "created_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in MATCH_TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self.status in MATCH_ACTIVE_STATUSES

    def handover_confirmed(self, role: str) -> bool:
        return bool(getattr(self, f"{role}_user_handover_confirmed"))

    def report_for(self, role: str):
        return self.source_report if role == "source" else self.target_report
