from fastapi import APIRouter, Depends, Request

from authguard.api.deps import SignInServiceDep, require_admin
from authguard.core.errors import HTTPError
from authguard.core.result import is_failure
from authguard.schemas.auth import (
    LockoutResetResponse,
    LockoutStatusResponse,
    LoginRequest,
    LoginResponse,
    UserResponse,
)
from authguard.services.login_attempts import normalize_email
from authguard.services.sign_in import SignInRequest
from authguard.utils.request import get_client_ip

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=LoginResponse)
async def login(
    request: LoginRequest,
    http_request: Request,
    service: SignInServiceDep,
):
    outcome = await service.sign_in(
        SignInRequest(
            email=request.email,
            password=request.password,
            origin_key=get_client_ip(http_request),
        )
    )

    if is_failure(outcome):
        raise HTTPError.from_failure(outcome)

    user = outcome.data
    return LoginResponse(user=UserResponse(id=user.id, name=user.name, email=user.email))


@router.get(
    "/lockouts/{email}",
    response_model=LockoutStatusResponse,
    dependencies=[Depends(require_admin)],
)
async def get_lockout_status(email: str, service: SignInServiceDep):
    """Current lockout state for an account."""
    state = await service.attempts.check_lockout(email)
    return LockoutStatusResponse(
        email=normalize_email(email),
        locked=state.is_locked,
        failed_count=state.failed_count,
        remaining_attempts=state.remaining_attempts,
        lockout_until=state.lockout_until,
    )


@router.post(
    "/lockouts/{email}/reset",
    response_model=LockoutResetResponse,
    dependencies=[Depends(require_admin)],
)
async def reset_lockout(email: str, service: SignInServiceDep):
    """Clear an account's failure history, lifting any lockout immediately."""
    await service.attempts.reset_attempts(email)
    return LockoutResetResponse(email=normalize_email(email))


@router.post(
    "/rate-limits/{key}/reset",
    dependencies=[Depends(require_admin)],
)
async def reset_rate_limit(key: str, service: SignInServiceDep):
    """Clear the request counter for an origin key (e.g. a client IP)."""
    await service.rate_limiter.reset(key)
    return {"key": key, "success": True}
