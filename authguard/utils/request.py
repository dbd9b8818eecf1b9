"""Request utility functions."""

from fastapi import Request

from authguard.core.config import settings


def get_client_ip(request: Request, trust_proxy_headers: bool | None = None) -> str | None:
    """
    Extract the client IP used as the rate-limit origin key.

    When proxy headers are trusted, checks in order:
    1. X-Forwarded-For (may contain chain: "client, proxy1, proxy2")
    2. X-Real-IP (single IP from nginx)
    Otherwise, or if neither is present, uses the direct connection IP.

    Returns None when no origin can be determined, in which case the
    caller skips origin rate limiting.
    """
    if trust_proxy_headers is None:
        trust_proxy_headers = settings.TRUST_PROXY_HEADERS

    if trust_proxy_headers:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            # First IP in chain is the original client
            client = forwarded.split(",")[0].strip()
            if client:
                return client

        real_ip = request.headers.get("X-Real-IP")
        if real_ip and real_ip.strip():
            return real_ip.strip()

    if request.client and request.client.host:
        return request.client.host

    return None
