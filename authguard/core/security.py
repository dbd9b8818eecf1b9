"""
Password hashing.

bcrypt via passlib. Verification is CPU-bound by design, so it runs in a
worker thread to keep the event loop responsive.
"""
import asyncio
import logging

from passlib.context import CryptContext

from authguard.core.config import settings

logger = logging.getLogger(__name__)

# Plaintext behind the dummy hash. Never a valid password for any account:
# nothing is ever hashed and stored with it.
_DUMMY_SECRET = "authguard-timing-equalization-dummy"


class PasswordHasher:
    """Hashes and verifies passwords, and supplies the timing-equalization dummy hash.

    The dummy hash is produced by the same context (scheme and rounds) as
    real stored hashes, so comparing against it costs the same as a real
    verification.
    """

    def __init__(self, rounds: int | None = None):
        self.rounds = rounds or settings.BCRYPT_ROUNDS
        self._context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=self.rounds,
        )
        # Computed up front so the first "no such user" request does not pay
        # for hashing on top of the comparison.
        self._dummy_hash = self._context.hash(_DUMMY_SECRET)

    def hash(self, secret: str) -> str:
        return self._context.hash(secret)

    def dummy_hash(self) -> str:
        """Fixed hash to compare against when no stored hash exists."""
        return self._dummy_hash

    def verify(self, candidate: str, stored_hash: str) -> bool:
        """Synchronous verification. A malformed stored hash never matches."""
        try:
            return self._context.verify(candidate, stored_hash)
        except (ValueError, TypeError) as e:
            logger.warning("Stored password hash could not be verified: %s", type(e).__name__)
            return False

    async def compare(self, candidate: str, stored_hash: str) -> bool:
        return await asyncio.to_thread(self.verify, candidate, stored_hash)
