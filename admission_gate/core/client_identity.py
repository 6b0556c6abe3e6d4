"""Client identifier resolution for rate limiting.

The identifier is derived from the proxy-forwarded address chain:

1. ``X-Forwarded-For`` - with no trusted proxies, the left-most entry (the
   address the first hop saw); with ``n`` trusted proxies, the entry ``n``
   positions from the right, i.e. the address appended by the outermost
   trusted proxy.
2. ``X-Real-IP``.
3. The direct connection address.
4. A shared anonymous bucket, so a misconfigured proxy degrades to coarse
   limiting instead of no limiting.

Trust boundary:
    Forwarded headers are controlled by whoever sends the request. A client
    can claim any address, and many users behind one NAT or proxy share an
    address. The resolved identifier is a best-effort discriminator for
    abuse dampening. It must never be used as an authentication or
    authorization boundary.
"""

from __future__ import annotations

import hashlib
from typing import Mapping

from fastapi import Request

FORWARDED_FOR_HEADER = "x-forwarded-for"
REAL_IP_HEADER = "x-real-ip"
DEFAULT_ANONYMOUS_ID = "anonymous"

_PLACEHOLDERS = {"", "unknown"}


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return None if value.lower() in _PLACEHOLDERS else value


def parse_forwarded_for(header_value: str | None) -> list[str]:
    """Split an ``X-Forwarded-For`` value into its non-empty entries.

    Examples:
        >>> parse_forwarded_for("203.0.113.7, 10.0.0.2")
        ['203.0.113.7', '10.0.0.2']
        >>> parse_forwarded_for(" , unknown")
        []
    """
    if not header_value:
        return []
    return [entry for entry in (_clean(part) for part in header_value.split(",")) if entry]


def resolve_client_id(
    headers: Mapping[str, str],
    remote_addr: str | None,
    *,
    trusted_proxy_count: int = 0,
    anonymous_id: str = DEFAULT_ANONYMOUS_ID,
) -> str:
    """Derive a stable client identifier from request metadata.

    Pure function: no I/O, no clock.

    Args:
        headers: Request headers. Lookups are case-insensitive when given a
            Starlette ``Headers`` object; plain dicts should use lower-case keys.
        remote_addr: Address of the direct peer, if known.
        trusted_proxy_count: Number of reverse proxies in front of the service
            that append to ``X-Forwarded-For``.
        anonymous_id: Bucket used when nothing else is available.

    Returns:
        The resolved identifier (never empty).
    """
    chain = parse_forwarded_for(headers.get(FORWARDED_FOR_HEADER))
    if chain:
        if trusted_proxy_count <= 0:
            return chain[0]
        index = max(0, len(chain) - trusted_proxy_count)
        return chain[index]

    real_ip = _clean(headers.get(REAL_IP_HEADER))
    if real_ip:
        return real_ip

    direct = _clean(remote_addr)
    if direct:
        return direct

    return anonymous_id


def client_id_from_request(
    request: Request,
    *,
    trusted_proxy_count: int = 0,
    anonymous_id: str = DEFAULT_ANONYMOUS_ID,
) -> str:
    """Resolve the client identifier for a FastAPI/Starlette request."""

    remote_addr = request.client.host if request.client else None
    return resolve_client_id(
        request.headers,
        remote_addr,
        trusted_proxy_count=trusted_proxy_count,
        anonymous_id=anonymous_id,
    )


def hash_client_id(client_id: str) -> str:
    """Hash the client identifier for logging without exposing addresses."""
    return hashlib.sha256(client_id.encode()).hexdigest()[:16]
