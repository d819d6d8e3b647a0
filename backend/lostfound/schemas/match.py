from marshmallow import EXCLUDE, Schema, fields, validate

from ..models.enums import HANDOVER_ROLES

MATCH_STATUS_CHOICES = ("suggested", "confirmed", "resolved", "dismissed", "expired")


class _RequestSchema(Schema):
    class Meta:
        unknown = EXCLUDE


class CreateMatchSchema(_RequestSchema):
    source_report_id = fields.Int(required=True, data_key="sourceReportId")
    target_report_id = fields.Int(required=True, data_key="targetReportId")
    notes = fields.Str(load_default=None, allow_none=True, validate=validate.Length(max=2000))


class UpdateStatusSchema(_RequestSchema):
    status = fields.Str(required=True, validate=validate.OneOf(MATCH_STATUS_CHOICES))
    notes = fields.Str(load_default=None, allow_none=True, validate=validate.Length(max=2000))
    rejection_reason = fields.Str(load_default=None, allow_none=True, data_key="rejectionReason", validate=validate.Length(max=120))
    reason_details = fields.Str(load_default=None, allow_none=True, data_key="reasonDetails", validate=validate.Length(max=2000))


class HandoverSchema(_RequestSchema):
    role = fields.Str(required=True, validate=validate.OneOf(HANDOVER_ROLES))


class CancelHandoverSchema(HandoverSchema):
    reason = fields.Str(required=True, validate=validate.Length(min=1, max=120))
    details = fields.Str(load_default=None, allow_none=True, validate=validate.Length(max=2000))


class VerifyOwnershipSchema(_RequestSchema):
    answer = fields.Str(required=True, validate=validate.Length(min=1, max=500))


class SecurityQuestionCreateSchema(_RequestSchema):
    question = fields.Str(required=True, validate=validate.Length(min=1, max=300))
    answer = fields.Str(required=True, validate=validate.Length(min=1, max=500))
