"""Exceptions raised by rate-limit counter stores."""

from __future__ import annotations


class RateLimitStoreError(RuntimeError):
    """Raised when the counter store cannot be reached or misbehaves.

    The limiter treats this as a reason to admit the call rather than to
    block traffic.
    """

    def __init__(self, message: str, *, key: str | None = None) -> None:
        """Create the error with the affected store key for correlation."""
        super().__init__(message)
        self.key = key

    @classmethod
    def unavailable(cls, key: str, cause: BaseException) -> RateLimitStoreError:
        """Build an error for a failed store round trip."""
        return cls(f"rate-limit store unavailable for {key}: {cause}", key=key)

    @classmethod
    def unexpected_reply(cls, key: str, reply: object) -> RateLimitStoreError:
        """Build an error for a reply the store script should never produce."""
        return cls(f"unexpected rate-limit store reply for {key}: {reply!r}", key=key)


__all__ = ["RateLimitStoreError"]
