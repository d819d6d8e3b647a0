from sqlalchemy import Enum

# Named ENUM types: native on Postgres, VARCHAR on other dialects (SQLite in tests).

role_enum = Enum("student", "admin", name="role_enum")
report_kind_enum = Enum("lost", "found", name="report_kind_enum")
report_status_enum = Enum("open", "matched", "resolved", "closed", name="report_status_enum")
match_status_enum = Enum(
    "suggested",
    "confirmed",
    "resolved",
    "dismissed",
    "expired",
    name="match_status_enum",
)
notification_channel_enum = Enum("email", "push", "inapp", name="notification_channel_enum")
notification_status_enum = Enum("sent", "read", name="notification_status_enum")

MATCH_ACTIVE_STATUSES = frozenset({"suggested", "confirmed"})
MATCH_TERMINAL_STATUSES = frozenset({"resolved", "dismissed", "expired"})
HANDOVER_ROLES = ("source", "target")
