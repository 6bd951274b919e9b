"""
Request helpers shared by the routers.
Services live on app.state; they are created once in the application lifespan.
"""
from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from tunerhub.config import get_settings
from tunerhub.services.urls import base_url_from_headers
from tunerhub.services.usage import normalize_ip

# Rate limiter for admin endpoints
limiter = Limiter(key_func=get_remote_address)


def admin_rate_limit() -> str:
    return f"{get_settings().rate_limit_per_minute}/minute"


def request_base_url(request: Request) -> str:
    """Base URL the client used to reach us (or the configured public one)."""
    settings = request.app.state.settings
    return base_url_from_headers(
        request.headers,
        request.url.scheme,
        request.url.netloc,
        settings.public_base_url,
    )


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return normalize_ip(forwarded)
    return normalize_ip(request.client.host if request.client else "")
