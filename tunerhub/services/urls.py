"""
URL helpers shared by the lineup, guide and relay services.
"""
from typing import Mapping, Optional
from urllib.parse import quote


def relay_route(source: str, name: str) -> str:
    """Proxy-owned path standing in for a channel's upstream address."""
    return f"/stream/{quote(source, safe='')}/{quote(name, safe='')}"


def request_protocol(headers: Mapping[str, str], scheme: str) -> str:
    """Client-facing protocol, honoring reverse proxy headers."""
    protocol = (
        headers.get("x-forwarded-proto")
        or headers.get("x-forwarded-protocol")
        or headers.get("x-url-scheme")
        or ("https" if headers.get("x-forwarded-ssl") == "on" else None)
        or scheme
    )
    # X-Forwarded-Proto may carry a list when several proxies are chained
    return protocol.split(",")[0].strip()


def base_url_from_headers(
    headers: Mapping[str, str],
    scheme: str,
    netloc: str,
    public_base_url: Optional[str] = None,
) -> str:
    """
    Base URL clients should use to reach us, e.g. "https://tv.example.com".
    A configured public base URL always wins.
    """
    if public_base_url:
        return public_base_url.rstrip("/")
    host = headers.get("x-forwarded-host") or headers.get("host") or netloc
    host = host.split(",")[0].strip()
    return f"{request_protocol(headers, scheme)}://{host}"


def proxied_image_url(base_url: str, source: str, original_url: str) -> str:
    """Route an upstream image through our image relay."""
    if not original_url:
        return ""
    return f"{base_url}/images/{quote(source or 'unknown', safe='')}/{quote(original_url, safe='')}"
