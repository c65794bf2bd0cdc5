"""Discovery errors."""

from __future__ import annotations


class DirectoryWalkError(RuntimeError):
    """Raised when a directory walk stops on a transport or shape failure.

    ``cursor`` is the ``createdAt`` of the last fully consumed page; passing
    it as ``after`` resumes the walk without rescanning earlier pages.
    """

    def __init__(self, message: str, *, cursor: str | None, pages: int = 0) -> None:
        """Record the resume cursor and the number of pages already consumed."""
        super().__init__(message)
        self.cursor = cursor
        self.pages = pages

    @classmethod
    def interrupted(
        cls, cause: BaseException, *, cursor: str | None, pages: int
    ) -> DirectoryWalkError:
        """Wrap the failure that interrupted the walk."""
        return cls(
            f"Directory walk interrupted after {pages} pages at cursor {cursor!r}: {cause}",
            cursor=cursor,
            pages=pages,
        )


class IdentityResolutionError(RuntimeError):
    """Raised when an identity cannot be resolved to an endpoint."""

    def __init__(self, message: str, *, identity: str) -> None:
        """Record the identity that failed to resolve."""
        super().__init__(message)
        self.identity = identity

    @classmethod
    def unsupported_method(cls, identity: str) -> IdentityResolutionError:
        """Return an error for an identity method with no resolver."""
        return cls(f"Unsupported identity method: {identity}", identity=identity)

    @classmethod
    def no_endpoint(cls, identity: str) -> IdentityResolutionError:
        """Return an error for a document that advertises no endpoint."""
        return cls(f"Identity {identity} advertises no endpoint", identity=identity)


__all__ = ["DirectoryWalkError", "IdentityResolutionError"]
