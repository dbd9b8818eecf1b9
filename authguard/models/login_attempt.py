"""
Login attempt history for account lockout and audit.

One row per sign-in attempt, successful or not. Rows are never updated;
lockout is derived from the rows inside the trailing lockout window.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from authguard.db.base import Base


class FailureReason(str, Enum):
    """Why an attempt failed. Recorded for audit, never returned to callers as-is."""

    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    EMPTY_PASSWORD = "EMPTY_PASSWORD"
    INVALID_EMAIL = "INVALID_EMAIL"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    INVALID_PASSWORD = "INVALID_PASSWORD"


class LoginAttempt(Base):
    """A single recorded sign-in attempt."""

    __tablename__ = "login_attempts"
    __table_args__ = (
        Index("ix_login_attempts_email_occurred_at", "email", "occurred_at"),
        Index("ix_login_attempts_occurred_at", "occurred_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    origin_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    succeeded: Mapped[bool] = mapped_column(Boolean, nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(String(32), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        outcome = "success" if self.succeeded else self.failure_reason
        return f"<LoginAttempt {self.email} {outcome} at {self.occurred_at}>"
