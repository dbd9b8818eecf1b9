import secrets
from typing import Annotated

from fastapi import Depends, Header, Request

from authguard.core.config import settings
from authguard.core.errors import forbidden, not_found
from authguard.services.sign_in import SignInService


def get_sign_in_service(request: Request) -> SignInService:
    """The service assembled at startup (see main.lifespan)."""
    return request.app.state.sign_in_service


async def require_admin(
    x_admin_token: Annotated[str | None, Header()] = None,
) -> None:
    """Guard for administrative endpoints. Disabled entirely without ADMIN_API_TOKEN."""
    if not settings.admin_api_enabled:
        raise not_found("Endpoint")

    if not x_admin_token or not secrets.compare_digest(x_admin_token, settings.ADMIN_API_TOKEN):
        raise forbidden("Admin token required")


SignInServiceDep = Annotated[SignInService, Depends(get_sign_in_service)]
