"""
Sign-in orchestration.

Runs one sign-in request through a fixed sequence of checks, stopping at the
first one that fails:

1. origin rate limit (before any per-account state is touched)
2. account lockout
3. input validation
4. user lookup
5. password comparison (against a dummy hash when the user does not exist)
6. attempt recording

The order is part of the security model: rate limiting first means a flood
from one origin can neither lock arbitrary accounts nor burn hashing CPU,
and the dummy comparison keeps "no such user" as slow as "wrong password".

Steps 2 to 6 run under the tracker's per-account guard: a burst of parallel
requests for one account is evaluated one request at a time and gets at
most ``threshold`` password checks before the lockout applies.

Every outcome is returned as ``Success``/``Failure``; no exception escapes
``sign_in``.
"""

import logging
import math
import re
from dataclasses import dataclass
from datetime import timedelta
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from authguard.core.config import Settings
from authguard.core.errors import ErrorCode
from authguard.core.exceptions import DomainError
from authguard.core.result import Failure, Result, failure, success
from authguard.core.security import PasswordHasher
from authguard.models.login_attempt import FailureReason
from authguard.services.login_attempts import (
    LockoutState,
    LoginAttemptTracker,
    SqlAlchemyAttemptStore,
    build_attempt_tracker,
    normalize_email,
)
from authguard.services.rate_limit import RateLimiter, build_rate_limiter
from authguard.services.users import SqlAlchemyUserLookup, UserLookup
from authguard.utils.clock import Clock, system_clock

logger = logging.getLogger(__name__)

MAX_EMAIL_LENGTH = 254
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@.]+$")
FORBIDDEN_EMAIL_CHARS = re.compile(r"[<>\"'&]")


INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"


@dataclass(frozen=True)
class SignInRequest:
    email: str
    password: str
    origin_key: str | None = None


@dataclass(frozen=True)
class UserIdentity:
    id: UUID
    name: str
    email: str


def validate_email(email: str) -> str:
    """Return the normalized email or raise DomainError(INVALID_EMAIL)."""
    value = (email or "").strip()
    if not value:
        raise DomainError("Email is required", ErrorCode.INVALID_EMAIL)
    if len(value) > MAX_EMAIL_LENGTH:
        raise DomainError("Email is too long", ErrorCode.INVALID_EMAIL)
    if not EMAIL_PATTERN.match(value) or ".." in value:
        raise DomainError("Email is not a valid address", ErrorCode.INVALID_EMAIL)
    if FORBIDDEN_EMAIL_CHARS.search(value):
        raise DomainError("Email contains characters that are not allowed", ErrorCode.INVALID_EMAIL)
    return value.lower()


def _ceil_seconds(delta: timedelta) -> int:
    return max(1, math.ceil(delta.total_seconds()))


class SignInService:
    """Authenticates an email/password pair under rate limiting and lockout."""

    def __init__(
        self,
        user_lookup: UserLookup,
        hasher: PasswordHasher,
        attempts: LoginAttemptTracker,
        rate_limiter: RateLimiter,
        clock: Clock = system_clock,
        reset_rate_limit_on_success: bool = False,
    ):
        self.user_lookup = user_lookup
        self.hasher = hasher
        self.attempts = attempts
        self.rate_limiter = rate_limiter
        self.clock = clock
        self.reset_rate_limit_on_success = reset_rate_limit_on_success

    async def sign_in(self, request: SignInRequest) -> Result[UserIdentity]:
        email = normalize_email(request.email)
        try:
            return await self._sign_in(request, email)
        except DomainError as e:
            logger.warning("Sign-in rejected: %s", e.message, extra={"email": email, "code": e.code})
            return failure(e.message, e.code, e.context)
        except Exception:
            logger.exception("Unexpected error during sign-in", extra={"email": email})
            return failure(
                "Sign-in could not be completed. Please try again later.",
                ErrorCode.UNEXPECTED_ERROR,
            )

    async def _sign_in(self, request: SignInRequest, email: str) -> Result[UserIdentity]:
        origin_key = request.origin_key or None

        if origin_key:
            limit = await self.rate_limiter.check_and_record(origin_key)
            if not limit.allowed:
                retry_after = limit.retry_after_seconds or 1
                logger.warning(
                    "Sign-in rate limit exceeded: %d/%d requests",
                    limit.current,
                    limit.limit,
                    extra={"origin_key": origin_key, "retry_after_seconds": retry_after},
                )
                return failure(
                    f"Too many sign-in requests. Try again in {retry_after} seconds.",
                    ErrorCode.RATE_LIMIT_EXCEEDED,
                    {"retry_after_seconds": retry_after},
                )

        # Held until this attempt is recorded, so concurrent requests for one
        # account see each other's failures
        async with self.attempts.guard(email):
            return await self._authenticate(request, email, origin_key)

    async def _authenticate(
        self, request: SignInRequest, email: str, origin_key: str | None
    ) -> Result[UserIdentity]:
        lockout = await self.attempts.check_lockout(email)
        if lockout.is_locked:
            logger.warning(
                "Sign-in refused: account locked",
                extra={"email": email, "failed_count": lockout.failed_count},
            )
            await self.attempts.record_attempt(
                email, succeeded=False, origin_key=origin_key, failure_reason=FailureReason.ACCOUNT_LOCKED
            )
            return self._locked(lockout)

        try:
            email = validate_email(request.email)
        except DomainError as e:
            await self.attempts.record_attempt(
                email[:MAX_EMAIL_LENGTH],
                succeeded=False,
                origin_key=origin_key,
                failure_reason=FailureReason.INVALID_EMAIL,
            )
            return failure(e.message, e.code)

        password = request.password
        if not password or not password.strip():
            await self.attempts.record_attempt(
                email, succeeded=False, origin_key=origin_key, failure_reason=FailureReason.EMPTY_PASSWORD
            )
            return failure("Password is required", ErrorCode.EMPTY_PASSWORD)

        user = await self.user_lookup.find_by_email(email)
        if user is None:
            # Same bcrypt work as a real check so response time does not reveal
            # whether the account exists. The result is irrelevant.
            await self.hasher.compare(password, self.hasher.dummy_hash())
            logger.warning("Sign-in failed: unknown account", extra={"email": email})
            await self.attempts.record_attempt(
                email, succeeded=False, origin_key=origin_key, failure_reason=FailureReason.USER_NOT_FOUND
            )
            return await self._invalid_credentials(email)

        if not await self.hasher.compare(password, user.password_hash):
            logger.warning("Sign-in failed: wrong password", extra={"user_id": str(user.id)})
            await self.attempts.record_attempt(
                email, succeeded=False, origin_key=origin_key, failure_reason=FailureReason.INVALID_PASSWORD
            )
            return await self._invalid_credentials(email)

        await self._record_success(email, origin_key)
        logger.info("Sign-in succeeded", extra={"user_id": str(user.id)})
        return success(UserIdentity(id=user.id, name=user.name, email=user.email))

    async def _invalid_credentials(self, email: str) -> Failure:
        """Failure for a wrong password or unknown account; both read identically."""
        lockout = await self.attempts.check_lockout(email)
        if lockout.is_locked:
            return self._locked(lockout)

        if lockout.remaining_attempts > 0:
            return failure(
                f"{INVALID_CREDENTIALS_MESSAGE}. "
                f"{lockout.remaining_attempts} attempt(s) left before the account is locked.",
                ErrorCode.INVALID_CREDENTIALS,
                {"remaining_attempts": lockout.remaining_attempts},
            )
        return failure(INVALID_CREDENTIALS_MESSAGE, ErrorCode.INVALID_CREDENTIALS)

    def _locked(self, lockout: LockoutState) -> Failure:
        if lockout.lockout_until is None:
            return failure(
                "Account temporarily locked due to too many failed sign-in attempts. Try again later.",
                ErrorCode.ACCOUNT_LOCKED,
            )

        retry_after = _ceil_seconds(lockout.lockout_until - self.clock.now())
        return failure(
            "Account temporarily locked due to too many failed sign-in attempts. "
            f"Try again after {lockout.lockout_until.isoformat()}.",
            ErrorCode.ACCOUNT_LOCKED,
            {
                "lockout_until": lockout.lockout_until.isoformat(),
                "retry_after_seconds": retry_after,
            },
        )

    async def _record_success(self, email: str, origin_key: str | None) -> None:
        # A genuine success is never turned into a failure by bookkeeping errors
        try:
            await self.attempts.record_attempt(email, succeeded=True, origin_key=origin_key)
        except Exception:
            logger.exception("Failed to record successful sign-in", extra={"email": email})

        if self.reset_rate_limit_on_success and origin_key:
            try:
                await self.rate_limiter.reset(origin_key)
            except Exception:
                logger.exception("Failed to reset rate limit after sign-in", extra={"origin_key": origin_key})


def build_sign_in_service(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    clock: Clock = system_clock,
    hasher: PasswordHasher | None = None,
) -> SignInService:
    """Assemble the sign-in service and its collaborators once at startup."""
    return SignInService(
        user_lookup=SqlAlchemyUserLookup(session_factory),
        hasher=hasher or PasswordHasher(settings.BCRYPT_ROUNDS),
        attempts=build_attempt_tracker(settings, SqlAlchemyAttemptStore(session_factory), clock),
        rate_limiter=build_rate_limiter(settings, clock),
        clock=clock,
        reset_rate_limit_on_success=settings.AUTH_RATE_LIMIT_RESET_ON_SUCCESS,
    )
