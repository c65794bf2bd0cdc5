"""Shared HTTP plumbing for calls to remote endpoints and directories.

Every outbound request goes through :func:`get_json` so transport failures,
non-success statuses and undecodable bodies surface as the same two
exception types regardless of which component made the call.
"""

from __future__ import annotations

import dataclasses
import typing as typ

import httpx
import msgspec

from .env import parse_positive_float

_HTTP_CLIENT_ERROR = 400
_HTTP_SERVER_ERROR = 500


class TransportError(RuntimeError):
    """Raised when a remote call fails or returns a non-success status."""

    def __init__(
        self, message: str, *, url: str | None = None, status_code: int | None = None
    ) -> None:
        """Record the target URL and HTTP status, when there was one."""
        super().__init__(message)
        self.url = url
        self.status_code = status_code

    @classmethod
    def http_error(cls, url: str, status_code: int) -> TransportError:
        """Return an error for a non-2xx response."""
        return cls(f"HTTP {status_code} from {url}", url=url, status_code=status_code)

    @classmethod
    def request_failed(cls, url: str, cause: BaseException) -> TransportError:
        """Return an error for a connection failure or timeout."""
        return cls(f"Request to {url} failed: {type(cause).__name__}: {cause}", url=url)

    @property
    def is_not_found(self) -> bool:
        """Whether the remote reported the resource as missing."""
        return self.status_code == httpx.codes.NOT_FOUND

    @property
    def is_retryable(self) -> bool:
        """Whether retrying the same request may succeed."""
        return self.status_code is None or self.status_code >= _HTTP_SERVER_ERROR or (
            self.status_code == httpx.codes.TOO_MANY_REQUESTS
        )


class ResponseShapeError(RuntimeError):
    """Raised when a response body does not have the expected shape."""

    def __init__(self, message: str, *, url: str | None = None) -> None:
        """Record the URL whose response was malformed."""
        super().__init__(message)
        self.url = url

    @classmethod
    def undecodable(cls, url: str, cause: BaseException) -> ResponseShapeError:
        """Return an error for a body that is not valid JSON."""
        return cls(f"Undecodable response from {url}: {cause}", url=url)

    @classmethod
    def missing(cls, url: str, field: str) -> ResponseShapeError:
        """Return an error for a response lacking *field*."""
        return cls(f"Response from {url} missing expected field: {field}", url=url)


@dataclasses.dataclass(frozen=True, slots=True)
class HttpConfig:
    """Timeouts and identification for outbound requests."""

    timeout_s: float = 10.0
    connect_timeout_s: float = 5.0
    user_agent: str = "outrider/0.1"

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Read ``OUTRIDER_HTTP_TIMEOUT_S`` and ``OUTRIDER_HTTP_CONNECT_TIMEOUT_S``."""
        return cls(
            timeout_s=parse_positive_float("OUTRIDER_HTTP_TIMEOUT_S", 10.0),
            connect_timeout_s=parse_positive_float(
                "OUTRIDER_HTTP_CONNECT_TIMEOUT_S", 5.0
            ),
        )


def build_http_client(config: HttpConfig | None = None) -> httpx.AsyncClient:
    """Create an ``httpx.AsyncClient`` with explicit timeouts."""
    config = config or HttpConfig()
    return httpx.AsyncClient(
        timeout=httpx.Timeout(config.timeout_s, connect=config.connect_timeout_s),
        headers={"User-Agent": config.user_agent, "Accept": "application/json"},
        follow_redirects=True,
    )


async def get_bytes(
    client: httpx.AsyncClient,
    url: str,
    *,
    params: typ.Mapping[str, str | int] | None = None,
) -> bytes:
    """Fetch *url* and return the raw body of a successful response.

    Raises
    ------
    TransportError
        On connection failures, timeouts and non-2xx statuses.

    """
    try:
        response = await client.get(url, params=params)
    except httpx.HTTPError as exc:
        raise TransportError.request_failed(url, exc) from exc
    if response.status_code >= _HTTP_CLIENT_ERROR:
        raise TransportError.http_error(url, response.status_code)
    return response.content


async def get_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    params: typ.Mapping[str, str | int] | None = None,
) -> typ.Any:
    """Fetch *url* and decode its JSON body.

    Raises
    ------
    TransportError
        On connection failures, timeouts and non-2xx statuses.
    ResponseShapeError
        If the body is not valid JSON.

    """
    body = await get_bytes(client, url, params=params)
    try:
        return msgspec.json.decode(body)
    except msgspec.DecodeError as exc:
        raise ResponseShapeError.undecodable(url, exc) from exc


__all__ = [
    "HttpConfig",
    "ResponseShapeError",
    "TransportError",
    "build_http_client",
    "get_bytes",
    "get_json",
]
