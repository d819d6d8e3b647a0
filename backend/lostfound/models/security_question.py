from sqlalchemy import func, Index
from ..extensions import db


class SecurityQuestion(db.Model):
    """Private ownership-verification question attached to a report.

    Only a password hash of the normalized answer is stored.
    """

    __tablename__ = "security_questions"

    id = db.Column(db.BigInteger().with_variant(db.Integer, "sqlite"), primary_key=True)
    report_id = db.Column(db.BigInteger, db.ForeignKey("reports.id", ondelete="CASCADE"), nullable=False)
    question = db.Column(db.String(300), nullable=False)
    answer_hash = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())

    report = db.relationship("Report", back_populates="security_questions")

    __table_args__ = (
        Index("idx_security_questions_report", "report_id"),
    )


class VerificationChallenge(db.Model):
    """One issued security question for a match, and how it was answered."""

    __tablename__ = "verification_challenges"

    id = db.Column(db.BigInteger().with_variant(db.Integer, "sqlite"), primary_key=True)
    match_id = db.Column(db.BigInteger, db.ForeignKey("matches.id", ondelete="CASCADE"), nullable=False)
    question_id = db.Column(db.BigInteger, db.ForeignKey("security_questions.id", ondelete="CASCADE"), nullable=False)
    attempt_number = db.Column(db.Integer, nullable=False)
    issued_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    answered_at = db.Column(db.DateTime(timezone=True))
    is_correct = db.Column(db.Boolean)

    match = db.relationship("Match", back_populates="challenges")
    question = db.relationship("SecurityQuestion")

    __table_args__ = (
        Index("idx_challenges_match", "match_id"),
    )
