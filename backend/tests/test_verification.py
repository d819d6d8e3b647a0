import pytest

from lostfound.errors import (
    ExpirationError,
    NotFoundError,
    ValidationError,
    VerificationExhaustedError,
)
from lostfound.extensions import db
from lostfound.models.rejection import RejectionRecord
from lostfound.models.security_question import SecurityQuestion
from lostfound.modules.matches.verification import SUGGESTED_QUESTIONS, normalize_answer


@pytest.fixture
def questions(res, found_report):
    v = res.verification
    return [
        v.add_security_question(found_report.id, "What color is the item?", "Navy Blue"),
        v.add_security_question(found_report.id, "What brand is it?", "Jansport"),
    ]


def _wrong(res, match_id):
    res.verification.get_next_security_question(match_id)
    return res.verification.verify_ownership(match_id, "definitely wrong")


def test_normalize_answer():
    assert normalize_answer("  Navy BLUE ") == "navy blue"
    assert normalize_answer(None) == ""


def test_suggested_questions_available():
    assert "What color is the item?" in SUGGESTED_QUESTIONS


def test_answer_is_stored_hashed(res, questions):
    row = db.session.get(SecurityQuestion, questions[0].id)
    assert "navy" not in row.answer_hash.lower()


def test_question_prompt_shape(res, match, questions):
    prompt = res.verification.get_next_security_question(match.id)
    assert prompt.attempt_number == 1
    assert prompt.question_id == questions[0].id
    assert prompt.to_dict() == {
        "questionId": questions[0].id,
        "questionText": "What color is the item?",
        "attemptNumber": 1,
    }


def test_retry_returns_same_question(res, match, questions):
    a = res.verification.get_next_security_question(match.id)
    b = res.verification.get_next_security_question(match.id)
    assert a == b


def test_questions_rotate_without_immediate_repeat(res, match, questions):
    first = res.verification.get_next_security_question(match.id)
    res.verification.verify_ownership(match.id, "nope")
    second = res.verification.get_next_security_question(match.id)
    assert second.question_id != first.question_id
    assert second.attempt_number == 2
    res.verification.verify_ownership(match.id, "nope")
    third = res.verification.get_next_security_question(match.id)
    assert third.question_id != second.question_id
    assert third.attempt_number == 3


def test_correct_answer_is_case_insensitive(res, match, questions):
    res.verification.get_next_security_question(match.id)
    result = res.verification.verify_ownership(match.id, "  navy blue")
    assert result.is_correct is True
    assert result.attempts_remaining == 2
    m = res.lifecycle.get_match(match.id)
    assert m.status == "confirmed"
    assert m.verification_attempts == 1
    assert m.ownership_verified_at is not None


def test_verification_bound(res, match, questions, notifier):
    results = [_wrong(res, match.id) for _ in range(2)]
    assert [r.attempts_remaining for r in results] == [2, 1]
    assert res.lifecycle.get_match(match.id).status == "confirmed"

    last = _wrong(res, match.id)
    assert last.is_correct is False
    assert last.attempts_remaining == 0

    m = res.lifecycle.get_match(match.id)
    assert m.status == "dismissed"
    assert "verification failed" in m.notes
    assert m.rejection_reason == "verification_failed"
    assert m.verification_attempts == 3
    assert notifier.count("match.dismissed") == 1
    assert db.session.query(RejectionRecord).filter_by(reason="verification_failed").count() == 1

    with pytest.raises(VerificationExhaustedError):
        res.verification.verify_ownership(match.id, "navy blue")
    assert res.lifecycle.get_match(match.id).verification_attempts == 3

    with pytest.raises(NotFoundError):
        res.verification.get_next_security_question(match.id)


def test_correct_after_misses_does_not_dismiss(res, match, questions):
    _wrong(res, match.id)
    _wrong(res, match.id)
    prompt = res.verification.get_next_security_question(match.id)
    answer = "navy blue" if prompt.question_id == questions[0].id else "jansport"
    result = res.verification.verify_ownership(match.id, answer)
    assert result.is_correct is True
    assert result.attempts_remaining == 0
    assert res.lifecycle.get_match(match.id).status == "confirmed"


def test_answer_before_question_is_rejected(res, match, questions):
    with pytest.raises(ValidationError):
        res.verification.verify_ownership(match.id, "navy blue")
    assert res.lifecycle.get_match(match.id).verification_attempts == 0


def test_empty_answer_is_rejected(res, match, questions):
    res.verification.get_next_security_question(match.id)
    with pytest.raises(ValidationError):
        res.verification.verify_ownership(match.id, "   ")


def test_no_questions_configured(res, match):
    with pytest.raises(NotFoundError):
        res.verification.get_next_security_question(match.id)


def test_falls_back_to_lost_report_questions(res, match, lost_report):
    q = res.verification.add_security_question(lost_report.id, "Sticker on the front?", "a fox")
    assert res.verification.get_next_security_question(match.id).question_id == q.id


def test_verify_on_expired_match(res, match, questions, clock):
    res.verification.get_next_security_question(match.id)
    clock.advance(hours=49)
    with pytest.raises(ExpirationError):
        res.verification.verify_ownership(match.id, "navy blue")
    m = res.lifecycle.get_match(match.id)
    assert m.status == "expired"
    assert m.verification_attempts == 0


def test_manual_dismissal_for_verification_failure(res, match):
    m = res.verification.dismiss_match_due_to_verification_failure(match.id)
    assert m.status == "dismissed"
    assert m.rejection_reason == "verification_failed"


def test_add_question_validation(res, found_report):
    with pytest.raises(ValidationError):
        res.verification.add_security_question(found_report.id, "Color?", "   ")
    with pytest.raises(NotFoundError):
        res.verification.add_security_question(999, "Color?", "red")
