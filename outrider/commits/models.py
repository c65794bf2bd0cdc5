"""Typed commit events and the operations parsed from them."""

from __future__ import annotations

import dataclasses
import typing as typ

import msgspec

OperationAction = typ.Literal["create", "update", "delete"]


class RepoOp(msgspec.Struct, kw_only=True):
    """Operation as declared by the feed, before block resolution.

    Attributes
    ----------
    action : Literal["create", "update", "delete"]
        Mutation kind.
    path : str
        ``collection/rkey`` path of the record inside the repository.
    cid : str, optional
        Content identifier of the new record revision; absent for deletes.

    """

    action: OperationAction
    path: str
    cid: str | None = None


class CommitEvent(msgspec.Struct, kw_only=True, rename="camel"):
    """One repository's batch of mutations at a sequence point.

    Attributes
    ----------
    repo : str
        Repository identifier (the author's identity).
    commit : str
        Content identifier of the commit object.
    seq : int
        Monotonically increasing sequence number assigned by the feed.
    ops : list[RepoOp]
        Declared operations in application order.
    blocks : bytes, optional
        Content-addressed block section (CAR archive) carrying record bodies.
    too_big : bool
        Set by the feed when the commit exceeded its size limit; the block
        section must then be ignored.
    time : str, optional
        Feed timestamp for the event.

    """

    repo: str
    commit: str
    seq: int
    ops: list[RepoOp] = msgspec.field(default_factory=list)
    blocks: bytes | None = None
    too_big: bool = False
    time: str | None = None


class Operation(msgspec.Struct, frozen=True, kw_only=True):
    """A single parsed mutation.

    ``record`` holds the decoded body when the block section carried it. A
    create or update whose body was unavailable keeps ``record`` as ``None``
    and must be treated as an opaque pointer to ``cid``.
    """

    action: OperationAction
    path: str
    cid: str | None = None
    record: typ.Any = None


@dataclasses.dataclass(frozen=True, slots=True)
class RecordPath:
    """Collection and record key decomposed from an operation path."""

    collection: str
    rkey: str

    def __str__(self) -> str:
        """Return the ``collection/rkey`` form."""
        return f"{self.collection}/{self.rkey}"


@dataclasses.dataclass(frozen=True, slots=True)
class RepoOperation:
    """An operation bound to its repository, ready for downstream storage."""

    repo: str
    seq: int
    collection: str
    rkey: str
    operation: Operation

    @property
    def uri(self) -> str:
        """Return the record identifier ``at://repo/collection/rkey``."""
        return f"at://{self.repo}/{self.collection}/{self.rkey}"


_commit_decoder = msgspec.json.Decoder(CommitEvent)


def decode_commit_event(payload: bytes | str) -> CommitEvent:
    """Decode a JSON commit event; ``blocks`` is base64 on the wire."""
    return _commit_decoder.decode(payload)


__all__ = [
    "CommitEvent",
    "Operation",
    "OperationAction",
    "RecordPath",
    "RepoOp",
    "RepoOperation",
    "decode_commit_event",
]
