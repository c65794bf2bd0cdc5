"""Outrider runtime entrypoint for container deployments.

Builds the ASGI application for Granian. When ``OUTRIDER_DATABASE_URL`` is
set the app includes the registry administration endpoints; otherwise it
starts in health-only mode.

Configuration is driven by environment variables:

- ``OUTRIDER_HOST``: Bind address (default ``0.0.0.0``)
- ``OUTRIDER_PORT``: Listen port (default ``8080``)
- ``OUTRIDER_LOG_LEVEL``: Log level (default ``INFO``)
- ``OUTRIDER_DATABASE_URL``: Database connection URL (optional)

Run the service directly with ``python -m outrider.runtime``.
"""

from __future__ import annotations

import os
import typing as typ

from outrider.common.env import read_str
from outrider.config import DATABASE_URL_ENV
from outrider.logging import configure_from_env, get_logger, log_error, log_info

if typ.TYPE_CHECKING:
    import falcon.asgi

__all__ = ["create_app", "main"]

logger = get_logger(__name__)

_MIN_PORT = 1
_MAX_PORT = 65535


def _parse_port(port_str: str) -> int:
    """Parse and validate a port number string.

    Raises
    ------
    SystemExit
        If port_str is not a valid integer in range 1-65535.

    """
    try:
        port = int(port_str)
        if not (_MIN_PORT <= port <= _MAX_PORT):
            msg = f"port {port} outside valid range {_MIN_PORT}-{_MAX_PORT}"
            raise ValueError(msg)  # noqa: TRY301
    except ValueError as exc:
        log_error(
            logger,
            "Invalid OUTRIDER_PORT value: %r (must be %d-%d): %s",
            port_str,
            _MIN_PORT,
            _MAX_PORT,
            exc,
        )
        raise SystemExit(1) from exc
    return port


def create_app() -> falcon.asgi.App:
    """Create the ASGI application, with registry routes when a database is set."""
    from outrider.api.app import AppDependencies
    from outrider.api.app import create_app as _create_api_app

    database_url = read_str(DATABASE_URL_ENV)
    if database_url is None:
        return _create_api_app()

    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

    from outrider.registry import EndpointRegistry

    engine = create_async_engine(database_url)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    return _create_api_app(AppDependencies(registry=EndpointRegistry(session_factory)))


def main() -> None:
    """Start the Outrider runtime server using Granian."""
    from granian import Granian
    from granian.constants import Interfaces

    host = os.environ.get("OUTRIDER_HOST", "0.0.0.0")  # noqa: S104
    port = _parse_port(os.environ.get("OUTRIDER_PORT", "8080"))
    level = configure_from_env(logger)

    log_info(logger, "Starting Outrider runtime on %s:%d (log_level=%s)", host, port, level)

    server = Granian(
        "outrider.runtime:create_app",
        address=host,
        port=port,
        interface=Interfaces.ASGI,
        factory=True,
    )
    server.serve()


if __name__ == "__main__":
    main()
