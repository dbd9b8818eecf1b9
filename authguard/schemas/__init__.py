from authguard.schemas.auth import (
    LockoutResetResponse,
    LockoutStatusResponse,
    LoginRequest,
    LoginResponse,
    UserResponse,
)

__all__ = [
    "LockoutResetResponse",
    "LockoutStatusResponse",
    "LoginRequest",
    "LoginResponse",
    "UserResponse",
]
