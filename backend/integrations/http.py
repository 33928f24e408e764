"""httpx-backed WebhookCaller / ApiCaller.

Makes real HTTP requests for webhook, integration and api_call steps
(and the matching actions). Outbound URLs are checked for SSRF first:
only http(s), no localhost, no private/loopback/reserved IP literals.
"""

import ipaddress
from typing import Optional
from urllib.parse import urlparse

import httpx
import structlog

from app.config import get_settings
from integrations.side_effects import ApiCaller, HttpRequest, HttpResponse, WebhookCaller

logger = structlog.get_logger(__name__)


def _is_private_ip(ip_str: str) -> bool:
    """Check if an IP address is private, loopback or reserved."""
    try:
        ip = ipaddress.ip_address(ip_str)
        return ip.is_private or ip.is_loopback or ip.is_reserved
    except (ValueError, AttributeError):
        return False


def validate_url_safety(url: str, allow_private: bool = False) -> None:
    """Validate URL for SSRF protection.

    Raises:
        ValueError: If URL is unsafe
    """
    parsed = urlparse(url)

    if parsed.scheme.lower() not in ("http", "https"):
        raise ValueError(f"Unsupported scheme: {parsed.scheme!r}. Only HTTP and HTTPS allowed.")

    hostname = parsed.hostname
    if not hostname:
        raise ValueError("URL must have a valid hostname")

    if allow_private:
        return

    if hostname.lower() in ("localhost", "127.0.0.1", "::1"):
        raise ValueError("Connections to localhost are not allowed")

    if _is_private_ip(hostname):
        raise ValueError(f"Connections to private IP {hostname} are not allowed")


class HttpxCaller(WebhookCaller, ApiCaller):
    """Sends HttpRequest objects with an httpx.AsyncClient.

    Args:
        client: Optional pre-built client (tests pass one with a MockTransport).
        allow_private: Skip the private-address check (internal deployments).
        timeout: Seconds for requests that carry no timeout of their own
            (defaults to HTTP_TIMEOUT).
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        allow_private: bool = False,
        timeout: Optional[float] = None,
    ):
        self._client = client
        self._allow_private = allow_private
        self.timeout = timeout or get_settings().HTTP_TIMEOUT

    async def call(self, request: HttpRequest) -> HttpResponse:
        return await self.request(request)

    async def request(self, request: HttpRequest) -> HttpResponse:
        validate_url_safety(request.url, allow_private=self._allow_private)

        timeout = request.timeout or self.timeout
        kwargs: dict = {
            "headers": request.headers or None,
            "params": request.params or None,
            "timeout": timeout,
        }
        if request.body is not None:
            if isinstance(request.body, (dict, list)):
                kwargs["json"] = request.body
            else:
                kwargs["content"] = str(request.body)

        if self._client is not None:
            response = await self._client.request(request.method.upper(), request.url, **kwargs)
        else:
            async with httpx.AsyncClient(follow_redirects=True) as client:
                response = await client.request(request.method.upper(), request.url, **kwargs)

        try:
            body = response.json()
        except ValueError:
            body = response.text

        logger.info(
            "HTTP request completed",
            method=request.method.upper(),
            url=request.url,
            status_code=response.status_code,
        )
        return HttpResponse(
            status_code=response.status_code,
            body=body,
            headers=dict(response.headers),
        )
