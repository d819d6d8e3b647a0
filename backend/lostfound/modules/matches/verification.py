"""Ownership verification by security question.

Reporters attach private questions to their reports (answers are stored as
password hashes of the normalized text). A claimant gets one question per
attempt and at most ``max_attempts`` attempts per match; running out
without a correct answer dismisses the match.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from werkzeug.security import check_password_hash, generate_password_hash

from ...clock import Clock, utcnow
from ...errors import (
    ExpirationError,
    NotFoundError,
    ValidationError,
    VerificationExhaustedError,
)
from ...extensions import db
from ...logging_config import get_logger
from ...models.match import Match
from ...models.report import Report
from ...models.security_question import SecurityQuestion, VerificationChallenge
from .lifecycle import Events, MatchLifecycleManager

logger = get_logger(__name__)

VERIFICATION_FAILED_NOTE = "ownership verification failed — max attempts exceeded"
VERIFICATION_FAILED_REASON = "verification_failed"

SUGGESTED_QUESTIONS = [
    "What color is the item?",
    "What brand/manufacturer is it?",
    "What is a distinctive mark or serial number?",
    "Where did you originally purchase it?",
    "What is the item's specific model or version?",
    "What accessory came with the item?",
    "How much did you pay for it?",
    "When did you purchase it?",
    "What is unique about this item compared to similar ones?",
    "What is the item's condition?",
]


def normalize_answer(answer: str | None) -> str:
    return (answer or "").strip().lower()


@dataclass(frozen=True)
class SecurityQuestionPrompt:
    question_id: int
    question_text: str
    attempt_number: int

    def to_dict(self) -> dict:
        return {
            "questionId": self.question_id,
            "questionText": self.question_text,
            "attemptNumber": self.attempt_number,
        }


@dataclass(frozen=True)
class VerificationResult:
    is_correct: bool
    attempts_remaining: int

    def to_dict(self) -> dict:
        return {"isCorrect": self.is_correct, "attemptsRemaining": self.attempts_remaining}


class OwnershipVerificationChallenge:
    def __init__(self, lifecycle: MatchLifecycleManager, clock: Clock = utcnow, max_attempts: int = 3) -> None:
        self.lifecycle = lifecycle
        self.clock = clock
        self.max_attempts = int(max_attempts)

    @property
    def session(self):
        return self.lifecycle.store.session

    # Question management (report owners)

    def add_security_question(self, report_id: int, question: str, answer: str) -> SecurityQuestion:
        question = (question or "").strip()
        normalized = normalize_answer(answer)
        if not question:
            raise ValidationError("Question is required")
        if not normalized:
            raise ValidationError("Answer is required")
        report = db.session.get(Report, int(report_id))
        if report is None:
            raise NotFoundError("Report not found", reportId=report_id)
        row = SecurityQuestion(report_id=report.id, question=question, answer_hash=generate_password_hash(normalized))
        db.session.add(row)
        self.lifecycle.store.commit()
        logger.info("security_question_added", report_id=int(report.id), question_id=int(row.id))
        return row

    def list_security_questions(self, report_id: int) -> list[SecurityQuestion]:
        return (
            self.session.query(SecurityQuestion)
            .filter(SecurityQuestion.report_id == int(report_id))
            .order_by(SecurityQuestion.id)
            .all()
        )

    def questions_for(self, match: Match) -> list[SecurityQuestion]:
        """Questions of the found-side report, else of the lost-side report."""
        reports = [r for r in (match.source_report, match.target_report) if r is not None]
        reports.sort(key=lambda r: 0 if r.kind == "found" else 1)
        for report in reports:
            questions = self.list_security_questions(int(report.id))
            if questions:
                return questions
        return []

    # Challenge flow

    def get_next_security_question(self, match_id: int) -> SecurityQuestionPrompt:
        closed_status: Optional[str] = None
        prompt: Optional[SecurityQuestionPrompt] = None
        with self.lifecycle.mutating(match_id) as (match, events):
            self.lifecycle.expire_locked(match, events)
            if match.is_terminal:
                closed_status = match.status
            else:
                prompt = self._issue(match)
        if closed_status is not None:
            raise NotFoundError(
                f"No security question available: match is {closed_status}",
                matchId=int(match_id),
                status=closed_status,
            )
        return prompt

    def _issue(self, match: Match) -> SecurityQuestionPrompt:
        attempts = int(match.verification_attempts or 0)
        if attempts >= self.max_attempts:
            raise VerificationExhaustedError("Maximum verification attempts reached", matchId=int(match.id))
        questions = self.questions_for(match)
        if not questions:
            raise NotFoundError("No security questions are configured for this match", matchId=int(match.id))
        attempt_number = attempts + 1
        issued = list(match.challenges)

        latest = issued[-1] if issued else None
        if latest is not None and latest.attempt_number == attempt_number and latest.answered_at is None:
            # Same attempt asked again (retry); hand out the same question.
            return SecurityQuestionPrompt(int(latest.question_id), latest.question.question, attempt_number)

        question = self._pick(questions, issued)
        challenge = VerificationChallenge(
            question_id=int(question.id),
            attempt_number=attempt_number,
            issued_at=self.clock(),
        )
        match.challenges.append(challenge)
        self.session.flush()
        logger.info("security_question_issued", match_id=int(match.id), question_id=int(question.id), attempt_number=attempt_number)
        return SecurityQuestionPrompt(int(question.id), question.question, attempt_number)

    @staticmethod
    def _pick(questions: list[SecurityQuestion], issued: list[VerificationChallenge]) -> SecurityQuestion:
        issued_ids = [int(c.question_id) for c in issued]
        for q in questions:
            if int(q.id) not in issued_ids:
                return q
        # Everything was asked already: least recently asked, never the previous one.
        last_asked = {qid: pos for pos, qid in enumerate(issued_ids)}
        candidates = questions
        if len(questions) > 1 and issued_ids:
            candidates = [q for q in questions if int(q.id) != issued_ids[-1]]
        return min(candidates, key=lambda q: last_asked.get(int(q.id), -1))

    def verify_ownership(self, match_id: int, answer: str, actor_user_id: int | None = None) -> VerificationResult:
        normalized = normalize_answer(answer)
        if not normalized:
            raise ValidationError("An answer is required")
        exhausted = False
        closed_status: Optional[str] = None
        result: Optional[VerificationResult] = None
        with self.lifecycle.mutating(match_id) as (match, events):
            if int(match.verification_attempts or 0) >= self.max_attempts:
                exhausted = True
            else:
                self.lifecycle.expire_locked(match, events)
                if match.is_terminal:
                    closed_status = match.status
                else:
                    result = self._check(match, normalized, actor_user_id, events)
        if exhausted:
            raise VerificationExhaustedError("Maximum verification attempts reached", matchId=int(match_id))
        if closed_status is not None:
            raise ExpirationError(f"Match is already {closed_status}", matchId=int(match_id), status=closed_status)
        return result

    def _check(self, match: Match, normalized: str, actor_user_id: int | None, events: Events) -> VerificationResult:
        challenges = list(match.challenges)
        if not challenges:
            raise ValidationError("Request a security question before answering", matchId=int(match.id))
        challenge = challenges[-1]
        is_correct = check_password_hash(challenge.question.answer_hash, normalized)

        now = self.clock()
        match.verification_attempts = int(match.verification_attempts or 0) + 1
        if challenge.answered_at is None:
            challenge.answered_at = now
        challenge.is_correct = is_correct
        if is_correct and match.ownership_verified_at is None:
            match.ownership_verified_at = now
        self.lifecycle.store.save(match)

        attempts_remaining = max(0, self.max_attempts - int(match.verification_attempts))
        logger.info(
            "verification_attempt",
            match_id=int(match.id),
            attempt=int(match.verification_attempts),
            correct=is_correct,
            attempts_remaining=attempts_remaining,
            actor_user_id=actor_user_id,
        )
        if not is_correct and attempts_remaining == 0 and match.ownership_verified_at is None:
            self._dismiss_for_failure(match, actor_user_id, events)
        return VerificationResult(is_correct=is_correct, attempts_remaining=attempts_remaining)

    def dismiss_match_due_to_verification_failure(self, match_id: int, actor_user_id: int | None = None) -> Match:
        return self.lifecycle.update_status(
            match_id,
            "dismissed",
            VERIFICATION_FAILED_NOTE,
            rejection_reason=VERIFICATION_FAILED_REASON,
            actor_user_id=actor_user_id,
        )

    def _dismiss_for_failure(self, match: Match, actor_user_id: int | None, events: Events) -> None:
        logger.warning("verification_exhausted", match_id=int(match.id), actor_user_id=actor_user_id)
        self.lifecycle.apply_status(
            match,
            "dismissed",
            events,
            notes=VERIFICATION_FAILED_NOTE,
            rejection_reason=VERIFICATION_FAILED_REASON,
            actor_user_id=actor_user_id,
        )
