"""Custom exceptions for authguard."""

from typing import Any


class DomainError(Exception):
    """Raised when a domain rule rejects a value (e.g. a malformed email).

    Carries a machine-readable code that the sign-in flow surfaces to the
    caller as-is.
    """

    def __init__(self, message: str, code: str, context: dict[str, Any] | None = None):
        self.message = message
        self.code = code
        self.context = context
        super().__init__(message)
