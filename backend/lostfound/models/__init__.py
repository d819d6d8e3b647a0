# Import every model so SQLAlchemy relationship strings resolve and
# db.create_all() / migrations see the full schema.
from .user import User
from .report import Report
from .match import Match
from .rejection import RejectionRecord
from .user_flag import UserFlag
from .security_question import SecurityQuestion, VerificationChallenge
from .notification import Notification

__all__ = [
    "User",
    "Report",
    "Match",
    "RejectionRecord",
    "UserFlag",
    "SecurityQuestion",
    "VerificationChallenge",
    "Notification",
]
