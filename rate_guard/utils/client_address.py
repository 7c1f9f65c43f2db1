from __future__ import annotations

from fastapi import Request

from rate_guard.core.errors import InvalidKeyError

IPV4_MAPPED_PREFIX = "::ffff:"


def normalize_client_key(raw: str | None) -> str:
    """Normalize a client address into a rate limit key.

    Strips surrounding whitespace and the IPv6-mapped IPv4 prefix so that
    ``::ffff:127.0.0.1`` and ``127.0.0.1`` share one counter. Any other
    value is returned unchanged.

    Args:
        raw: Address as reported by the network layer.

    Returns:
        str: Canonical key.

    Raises:
        InvalidKeyError: If nothing usable remains after normalization.

    Examples:
        >>> normalize_client_key("::ffff:127.0.0.1")
        '127.0.0.1'
        >>> normalize_client_key("2001:db8::1")
        '2001:db8::1'
    """
    key = (raw or "").strip()
    if key[: len(IPV4_MAPPED_PREFIX)].lower() == IPV4_MAPPED_PREFIX:
        key = key[len(IPV4_MAPPED_PREFIX):]

    if not key:
        raise InvalidKeyError(
            code="invalid_client_key",
            message="Unable to determine a client address for rate limiting",
            details={"hint": "Check proxy configuration and X-Forwarded-For handling"},
        )
    return key


def extract_client_address(request: Request, *, trust_forwarded_for: bool) -> str | None:
    """Return the raw client address for a request.

    When ``trust_forwarded_for`` is set, the first (original client) entry of
    ``X-Forwarded-For`` wins over the socket peer address.
    """
    if trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first

    return request.client.host if request.client else None
