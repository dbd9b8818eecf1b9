from authguard.models.login_attempt import FailureReason, LoginAttempt
from authguard.models.user import User

__all__ = [
    "FailureReason",
    "LoginAttempt",
    "User",
]
