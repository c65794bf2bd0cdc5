"""API-level exceptions and the Falcon handlers that map errors to responses.

Usage
-----
Register error handlers on the Falcon app::

    app.add_error_handler(EndpointNotFoundError, handle_endpoint_not_found)
    app.add_error_handler(InvalidInputError, handle_invalid_input)
    app.add_error_handler(RegistryConflictError, handle_registry_conflict)

"""

from __future__ import annotations

import typing as typ

import falcon

if typ.TYPE_CHECKING:
    from falcon.asgi import Request, Response

    from outrider.registry import (
        EndpointNotFoundError,
        RegistryConflictError,
        RegistryStorageError,
    )

__all__ = [
    "InvalidInputError",
    "handle_endpoint_not_found",
    "handle_invalid_input",
    "handle_registry_conflict",
    "handle_registry_storage_error",
]


class InvalidInputError(Exception):
    """Raised for client validation errors that should map to HTTP 400.

    Attributes
    ----------
    reason
        Human-readable description of the validation failure.
    field
        Optional name of the input field that failed validation.

    """

    def __init__(self, reason: str, *, field: str | None = None) -> None:
        """Initialize with a validation reason and optional field name."""
        self.reason = reason
        self.field = field
        message = f"{field}: {reason}" if field is not None else reason
        super().__init__(message)

    @classmethod
    def missing(cls, field: str) -> InvalidInputError:
        """Return an error for a required field that was not supplied."""
        return cls("is required", field=field)


async def handle_endpoint_not_found(
    _req: Request,
    resp: Response,
    ex: EndpointNotFoundError,
    _params: dict[str, typ.Any],
) -> None:
    """Map ``EndpointNotFoundError`` to an HTTP 404 JSON response."""
    resp.status = falcon.HTTP_404
    resp.media = {"title": "Endpoint not found", "description": str(ex)}


async def handle_invalid_input(
    _req: Request,
    resp: Response,
    ex: InvalidInputError,
    _params: dict[str, typ.Any],
) -> None:
    """Map ``InvalidInputError`` to an HTTP 400 JSON response."""
    resp.status = falcon.HTTP_400
    media: dict[str, str] = {"title": "Invalid input", "description": ex.reason}
    if ex.field is not None:
        media["field"] = ex.field
    resp.media = media


async def handle_registry_storage_error(
    _req: Request,
    resp: Response,
    ex: RegistryStorageError,
    _params: dict[str, typ.Any],
) -> None:
    """Map ``RegistryStorageError`` to an HTTP 503 JSON response."""
    resp.status = falcon.HTTP_503
    resp.media = {"title": "Registry unavailable", "description": str(ex)}


async def handle_registry_conflict(
    _req: Request,
    resp: Response,
    ex: RegistryConflictError,
    _params: dict[str, typ.Any],
) -> None:
    """Map ``RegistryConflictError`` to an HTTP 409 JSON response."""
    resp.status = falcon.HTTP_409
    resp.media = {"title": "Endpoint busy", "description": str(ex)}
