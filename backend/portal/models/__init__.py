from portal.models.user import User, UserBadge
from portal.models.result import ExamMode, TestResult

__all__ = [
    "User",
    "UserBadge",
    "ExamMode",
    "TestResult",
]
