"""Turn commit events into ordered, typed operations.

Parsing is deliberately forgiving about content and strict about shape:
oversized commits are rejected outright, malformed paths are reported per
operation, and operations whose bodies are missing from the block section
are returned with their identifier only.
"""

from __future__ import annotations

import typing as typ

from .car import decode_block_section
from .errors import BlockSectionError, ContentTooLargeError, FormatError
from .models import CommitEvent, Operation, RecordPath

if typ.TYPE_CHECKING:
    from .models import RepoOp


def parse_path(path: str) -> RecordPath:
    """Split an operation path into collection and record key.

    Parameters
    ----------
    path:
        Operation path in ``collection/rkey`` format.

    Returns
    -------
    RecordPath
        The decomposed path.

    Raises
    ------
    FormatError
        If the path is empty, lacks a slash, has an empty segment, or has
        more than one slash.

    Examples
    --------
    >>> parse_path("app.example.post/3k2a")
    RecordPath(collection='app.example.post', rkey='3k2a')

    """
    if not path:
        raise FormatError.invalid_path(path, "empty path")
    if path.count("/") != 1:
        raise FormatError.invalid_path(path, "expected exactly one '/'")

    collection, rkey = path.split("/")
    if not collection:
        raise FormatError.invalid_path(path, "empty collection")
    if not rkey:
        raise FormatError.invalid_path(path, "empty record key")
    return RecordPath(collection=collection, rkey=rkey)


def validate_operation(op: Operation) -> bool:
    """Return whether an operation's payload agrees with its action.

    Deletes must carry neither a content identifier nor a body. Creates and
    updates must carry both.
    """
    if op.action == "delete":
        return op.cid is None and op.record is None
    return op.cid is not None and op.record is not None


def _unresolved(op: RepoOp) -> Operation:
    return Operation(action=op.action, path=op.path, cid=op.cid)


def parse_commit(event: CommitEvent) -> list[Operation]:
    """Parse a commit event into operations in declaration order.

    Raises
    ------
    ContentTooLargeError
        If the event is flagged as too large; no operation is inspected.
    BlockSectionError
        If the block section is present but cannot be decoded.

    """
    if event.too_big:
        raise ContentTooLargeError.for_commit(event.repo, event.commit, event.seq)

    if event.blocks is None:
        return [_unresolved(op) for op in event.ops]

    try:
        table = decode_block_section(event.blocks)
    except BlockSectionError as exc:
        exc.repo, exc.commit, exc.seq = event.repo, event.commit, event.seq
        raise

    operations: list[Operation] = []
    for op in event.ops:
        if op.cid is None or op.cid not in table:
            operations.append(_unresolved(op))
            continue
        operations.append(
            Operation(action=op.action, path=op.path, cid=op.cid, record=table[op.cid])
        )
    return operations


__all__ = ["parse_commit", "parse_path", "validate_operation"]
