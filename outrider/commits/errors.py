"""Commit parsing errors."""

from __future__ import annotations


class ParseError(ValueError):
    """Base class for failures while turning a commit into operations.

    Carries the repository and commit identifiers when they are known so log
    lines and rejected-commit records can be correlated with the feed.
    """

    def __init__(
        self,
        message: str,
        *,
        repo: str | None = None,
        commit: str | None = None,
        seq: int | None = None,
    ) -> None:
        """Initialise with a message and optional commit context."""
        self.repo = repo
        self.commit = commit
        self.seq = seq
        super().__init__(message)


class FormatError(ParseError):
    """Raised when an operation path or shape is malformed."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        """Initialise with a message and the offending path."""
        self.path = path
        super().__init__(message)

    @classmethod
    def invalid_path(cls, path: str, reason: str) -> FormatError:
        """Return an error for a path that is not ``collection/rkey``."""
        return cls(f"Invalid operation path {path!r}: {reason}", path=path)

    @classmethod
    def invalid_operation(cls, path: str, action: str) -> FormatError:
        """Return an error for an operation whose payload contradicts its action."""
        return cls(
            f"Operation {action} at {path!r} has inconsistent cid/record fields",
            path=path,
        )


class ContentTooLargeError(ParseError):
    """Raised when a commit is flagged as too large to carry its blocks."""

    @classmethod
    def for_commit(cls, repo: str, commit: str, seq: int) -> ContentTooLargeError:
        """Return an error for an oversized commit."""
        return cls(
            f"Commit {commit} (seq {seq}) from {repo} is too large to decode",
            repo=repo,
            commit=commit,
            seq=seq,
        )


class BlockSectionError(ParseError):
    """Raised when a commit's block section cannot be decoded."""

    @classmethod
    def truncated(cls, what: str) -> BlockSectionError:
        """Return an error for a section that ends mid-structure."""
        return cls(f"Block section truncated while reading {what}")

    @classmethod
    def malformed(cls, reason: str) -> BlockSectionError:
        """Return an error for structurally invalid content."""
        return cls(f"Malformed block section: {reason}")


__all__ = [
    "BlockSectionError",
    "ContentTooLargeError",
    "FormatError",
    "ParseError",
]
