from datetime import timezone

from marshmallow import EXCLUDE, Schema, fields, validate

from ..modules.rejections.analytics import TIMEFRAMES


class FlagUserSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    reason = fields.Str(required=True, validate=validate.Length(min=1, max=500))
    behavior = fields.Str(load_default="manual", validate=validate.Length(min=1, max=80))


class RecordRejectionSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    reason = fields.Str(required=True, validate=validate.Length(min=1, max=120))
    details = fields.Str(load_default=None, allow_none=True, validate=validate.Length(max=2000))


class AnalyticsQuerySchema(Schema):
    class Meta:
        unknown = EXCLUDE

    timeframe = fields.Str(load_default="month", validate=validate.OneOf(sorted(TIMEFRAMES)))
    start_date = fields.AwareDateTime(load_default=None, data_key="startDate", default_timezone=timezone.utc)
    end_date = fields.AwareDateTime(load_default=None, data_key="endDate", default_timezone=timezone.utc)
    user_id = fields.Int(load_default=None, data_key="userId")
    flagged_only = fields.Bool(load_default=False, data_key="flaggedOnly")
