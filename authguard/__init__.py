"""Sign-in attempt control: origin rate limiting, account lockout and timing-safe credential checks."""
