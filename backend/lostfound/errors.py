"""Error taxonomy of the match resolution protocol.

Components raise these; the application turns them into
``{"error": <message>, "kind": <kind>}`` responses with the matching
HTTP status (see ``register_error_handlers``).
"""
from __future__ import annotations

from typing import Any

from flask import Flask, jsonify
from marshmallow import ValidationError as SchemaValidationError

from .logging_config import get_logger

logger = get_logger(__name__)


class MatchProtocolError(Exception):
    kind = "error"
    status_code = 400

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        body: dict[str, Any] = {"error": self.message, "kind": self.kind}
        if self.context:
            body["details"] = self.context
        return body


class ValidationError(MatchProtocolError):
    """Malformed or self-contradictory input."""

    kind = "validation"
    status_code = 400


class NotFoundError(MatchProtocolError):
    kind = "not_found"
    status_code = 404


class ConflictError(MatchProtocolError):
    """A report already participates in an active match."""

    kind = "conflict"
    status_code = 409


class InvalidTransitionError(MatchProtocolError):
    kind = "invalid_transition"
    status_code = 409


class ExpirationError(MatchProtocolError):
    """Operation attempted on an expired or otherwise closed match."""

    kind = "expired"
    status_code = 410


class VerificationExhaustedError(MatchProtocolError):
    kind = "verification_exhausted"
    status_code = 423


class TransientError(MatchProtocolError):
    """Storage failure; safe to retry with the same request."""

    kind = "transient"
    status_code = 503


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(MatchProtocolError)
    def _protocol_error(err: MatchProtocolError):
        if isinstance(err, TransientError):
            logger.warning("transient_error", message=err.message, **err.context)
        return jsonify(err.to_dict()), err.status_code

    @app.errorhandler(SchemaValidationError)
    def _schema_error(err: SchemaValidationError):
        return jsonify({"error": "Invalid request body", "kind": ValidationError.kind, "details": err.messages}), 400
