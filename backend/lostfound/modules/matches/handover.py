from __future__ import annotations

from ...errors import ExpirationError, InvalidTransitionError, ValidationError
from ...logging_config import get_logger
from ...models.enums import HANDOVER_ROLES
from ...models.match import Match
from .lifecycle import MatchLifecycleManager, match_payload

logger = get_logger(__name__)


def _check_role(role: str) -> str:
    role = (role or "").strip().lower()
    if role not in HANDOVER_ROLES:
        raise ValidationError("role must be 'source' or 'target'", role=role)
    return role


class HandoverConfirmationCoordinator:
    """Two-party handover handshake on top of the lifecycle manager.

    Each side sets its own confirmation flag; the call that observes both
    flags set performs the single ``confirmed -> resolved`` transition while
    still holding the match lock.
    """

    def __init__(self, lifecycle: MatchLifecycleManager) -> None:
        self.lifecycle = lifecycle

    def confirm_handover(self, match_id: int, role: str, actor_user_id: int | None = None) -> Match:
        role = _check_role(role)
        with self.lifecycle.open_match(match_id) as (match, events):
            if match.status != "confirmed":
                raise InvalidTransitionError(
                    "The match must be confirmed before the handover can be confirmed",
                    matchId=int(match.id),
                    status=match.status,
                )
            if match.handover_confirmed(role):
                # Retried request; nothing changes.
                return match
            setattr(match, f"{role}_user_handover_confirmed", True)
            self.lifecycle.store.save(match)
            logger.info("handover_confirmed", match_id=int(match.id), role=role, actor_user_id=actor_user_id)
            events.append(("match.handover_confirmed", match_payload(match, role=role)))

            if match.source_user_handover_confirmed and match.target_user_handover_confirmed:
                self.lifecycle.apply_status(
                    match,
                    "resolved",
                    events,
                    notes="Both parties confirmed the handover",
                    actor_user_id=actor_user_id,
                )
        return match

    def cancel_handover(self, match_id: int, role: str, reason: str, details: str | None = None) -> Match:
        """Dismiss the match on behalf of one party; the rejection is attributed to that party."""
        role = _check_role(role)
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A cancellation reason is required")
        closed_status = None
        with self.lifecycle.mutating(match_id) as (match, events):
            self.lifecycle.expire_locked(match, events)
            if match.status == "dismissed":
                # Retried cancellation
                return match
            if match.is_terminal:
                closed_status = match.status
            else:
                report = match.report_for(role)
                user_id = int(report.owner_user_id) if report is not None and report.owner_user_id is not None else None
                self.lifecycle.apply_status(
                    match,
                    "dismissed",
                    events,
                    notes=f"Handover cancelled by {role} user",
                    rejection_reason=reason,
                    reason_details=details,
                    actor_user_id=user_id,
                )
                logger.info("handover_cancelled", match_id=int(match.id), role=role, user_id=user_id, reason=reason)
        if closed_status is not None:
            raise ExpirationError(f"Match is already {closed_status}", matchId=int(match_id), status=closed_status)
        return match
