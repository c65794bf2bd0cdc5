"""Endpoint URL utilities.

Endpoints are identified by their base URL (``https://pds.example.com``).
Registry rows are keyed by the normalised URL and the rate limiter keys its
windows by the lowercase host, so both must be derived through these helpers
rather than ad hoc string manipulation.
"""

from __future__ import annotations

import urllib.parse

_DEFAULT_PORTS = {"http": 80, "https": 443}


class InvalidEndpointError(ValueError):
    """Raised when a string cannot be interpreted as an endpoint URL."""

    def __init__(self, value: str, reason: str) -> None:
        """Record the rejected value and why it was rejected."""
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid endpoint URL {value!r}: {reason}")


def _split(value: str) -> urllib.parse.SplitResult:
    text = value.strip()
    if not text:
        raise InvalidEndpointError(value, "empty")
    if "://" not in text:
        text = f"https://{text}"
    try:
        parts = urllib.parse.urlsplit(text)
        # Port parsing is lazy; force it so a bad port fails here.
        _ = parts.port
    except ValueError as exc:
        raise InvalidEndpointError(value, str(exc)) from exc
    if parts.scheme.lower() not in _DEFAULT_PORTS:
        raise InvalidEndpointError(value, f"unsupported scheme {parts.scheme!r}")
    if not parts.hostname:
        raise InvalidEndpointError(value, "missing host")
    return parts


def _netloc(parts: urllib.parse.SplitResult) -> str:
    host = (parts.hostname or "").lower()
    port = parts.port
    if port is None or port == _DEFAULT_PORTS[parts.scheme.lower()]:
        return host
    return f"{host}:{port}"


def normalize_endpoint_url(value: str) -> str:
    """Return the canonical form of an endpoint URL.

    The scheme and host are lowercased, default ports and trailing slashes are
    dropped, and query strings or fragments are discarded. Bare hostnames are
    assumed to be served over HTTPS.

    Examples
    --------
    >>> normalize_endpoint_url("HTTPS://PDS.Example.com:443/")
    'https://pds.example.com'
    >>> normalize_endpoint_url("pds.example.com")
    'https://pds.example.com'

    """
    parts = _split(value)
    path = parts.path.rstrip("/")
    return f"{parts.scheme.lower()}://{_netloc(parts)}{path}"


def endpoint_key(value: str) -> str:
    """Return the rate-limit key for an endpoint: its lowercase host.

    Examples
    --------
    >>> endpoint_key("https://PDS.example.com/")
    'pds.example.com'

    """
    return _netloc(_split(value))


def endpoint_from_hostname(hostname: str) -> str:
    """Build an HTTPS endpoint URL for a bare hostname."""
    return normalize_endpoint_url(f"https://{hostname.strip().rstrip('/')}")


__all__ = [
    "InvalidEndpointError",
    "endpoint_from_hostname",
    "endpoint_key",
    "normalize_endpoint_url",
]
