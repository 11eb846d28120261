"""
HTTP client factory for standardized AsyncClient configuration
"""
from typing import Optional

import httpx

from utils.config import get_config

_shared_client: Optional[httpx.AsyncClient] = None


def get_async_client(
    timeout: Optional[float] = None,
    max_connections: int = 100,
    max_keepalive: int = 10,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Return an AsyncClient with connection limits and a per-request timeout.

    Every outbound platform call carries this timeout so one unresponsive
    platform cannot stall a whole scheduler tick.

    Args:
        timeout: request timeout in seconds (defaults to HTTP_TIMEOUT_SECONDS)
        max_connections: maximum number of connections
        max_keepalive: maximum number of keep-alive connections
        transport: optional transport override (used by tests)
    """
    if timeout is None:
        timeout = get_config().http_timeout_seconds
    limits = httpx.Limits(max_keepalive_connections=max_keepalive, max_connections=max_connections)
    return httpx.AsyncClient(
        limits=limits,
        timeout=httpx.Timeout(timeout),
        transport=transport,
        headers={"User-Agent": "SocialBridge/1.0"},
    )


def get_shared_client() -> httpx.AsyncClient:
    """Process-wide client reused by adapters and the credential manager"""
    global _shared_client
    if _shared_client is None or _shared_client.is_closed:
        _shared_client = get_async_client()
    return _shared_client


async def close_shared_client() -> None:
    global _shared_client
    if _shared_client is not None and not _shared_client.is_closed:
        await _shared_client.aclose()
    _shared_client = None


def set_shared_client(client: Optional[httpx.AsyncClient]) -> None:
    """Replace the process-wide client (tests inject a MockTransport client)"""
    global _shared_client
    _shared_client = client
