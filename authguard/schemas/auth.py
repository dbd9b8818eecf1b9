from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    # Plain strings: format checks happen in the sign-in flow so that bad
    # input is recorded as a failed attempt like any other.
    email: str = Field(default="", max_length=1024)
    password: str = Field(default="", max_length=1024)


class UserResponse(BaseModel):
    id: UUID
    name: str
    email: str


class LoginResponse(BaseModel):
    user: UserResponse


class LockoutStatusResponse(BaseModel):
    email: str
    locked: bool
    failed_count: int
    remaining_attempts: int
    lockout_until: datetime | None = None


class LockoutResetResponse(BaseModel):
    email: str
    success: bool = True
