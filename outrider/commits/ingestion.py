"""Ordered commit ingestion.

Commits from one repository must reach storage in arrival order so that
last-write-wins holds; commits from different repositories carry no mutual
ordering. :class:`CommitIngestor` gives every repository its own lane (a
bounded queue drained by one task) and lets lanes run concurrently. Lanes
that stay idle are torn down so memory follows the set of active
repositories rather than every repository ever seen.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import typing as typ

from .errors import FormatError, ParseError
from .models import RepoOperation
from .parser import parse_commit, parse_path, validate_operation

if typ.TYPE_CHECKING:
    from .models import CommitEvent, Operation

logger = logging.getLogger(__name__)


class OperationSink(typ.Protocol):
    """Downstream storage that applies parsed operations."""

    async def apply(self, operation: RepoOperation) -> None:
        """Apply one operation; called in commit order per repository."""
        ...


class RejectedCommitSink(typ.Protocol):
    """Receiver for commits that could not be decoded, for backfill."""

    async def reject(self, event: CommitEvent, error: ParseError) -> None:
        """Record that *event* was rejected with *error*."""
        ...


@dataclasses.dataclass(frozen=True, slots=True)
class CommitIngestionConfig:
    """Runtime knobs for commit ingestion."""

    lane_capacity: int = 100
    lane_idle_timeout_s: float = 30.0
    collection_prefixes: tuple[str, ...] | None = None


@dataclasses.dataclass(slots=True)
class CommitIngestionStats:
    """Counters describing ingestion progress."""

    commits_received: int = 0
    commits_applied: int = 0
    commits_rejected: int = 0
    operations_applied: int = 0
    operations_skipped: int = 0
    operations_failed: int = 0
    last_seq: int | None = None


class CommitIngestor:
    """Parse commits and apply their operations in per-repository order."""

    def __init__(
        self,
        sink: OperationSink,
        *,
        rejected_sink: RejectedCommitSink | None = None,
        config: CommitIngestionConfig | None = None,
    ) -> None:
        """Bind the ingestor to its downstream collaborators."""
        self._sink = sink
        self._rejected_sink = rejected_sink
        self._config = config or CommitIngestionConfig()
        self._lanes: dict[str, asyncio.Queue[CommitEvent]] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._mentions: dict[str, None] = {}
        self._stats = CommitIngestionStats()

    async def submit(self, event: CommitEvent) -> None:
        """Queue *event* on its repository lane.

        Waits when the lane is full, which propagates backpressure to the
        feed consumer instead of buffering without bound.
        """
        lane = self._lanes.get(event.repo)
        if lane is None:
            lane = asyncio.Queue(maxsize=self._config.lane_capacity)
            self._lanes[event.repo] = lane
            self._tasks[event.repo] = asyncio.create_task(
                self._run_lane(event.repo, lane), name=f"commit-lane:{event.repo}"
            )
        await lane.put(event)

    async def ingest(self, event: CommitEvent) -> list[RepoOperation]:
        """Parse and apply one commit immediately, returning applied operations.

        Callers using this directly are responsible for ordering commits of
        the same repository; :meth:`submit` does that for them.
        """
        self._stats.commits_received += 1
        self._stats.last_seq = event.seq
        self._mentions[event.repo] = None

        try:
            operations = parse_commit(event)
        except ParseError as exc:
            await self._reject(event, exc)
            return []

        applied: list[RepoOperation] = []
        for operation in operations:
            bound = self._bind(event, operation)
            if bound is None:
                continue
            try:
                await self._sink.apply(bound)
            except Exception:
                self._stats.operations_failed += 1
                logger.exception(
                    "Failed to apply %s %s from repo=%s seq=%d",
                    operation.action,
                    operation.path,
                    event.repo,
                    event.seq,
                )
                continue
            self._stats.operations_applied += 1
            applied.append(bound)

        self._stats.commits_applied += 1
        return applied

    def _bind(self, event: CommitEvent, operation: Operation) -> RepoOperation | None:
        try:
            path = parse_path(operation.path)
        except FormatError as exc:
            self._skip(event, exc)
            return None

        if not self._wants(path.collection):
            return None

        # A create/update without a resolved body is an opaque pointer, not a
        # malformed operation; only contradictory deletes are skipped here.
        if operation.action == "delete" and not validate_operation(operation):
            self._skip(event, FormatError.invalid_operation(operation.path, "delete"))
            return None

        return RepoOperation(
            repo=event.repo,
            seq=event.seq,
            collection=path.collection,
            rkey=path.rkey,
            operation=operation,
        )

    def _wants(self, collection: str) -> bool:
        prefixes = self._config.collection_prefixes
        return prefixes is None or collection.startswith(prefixes)

    def _skip(self, event: CommitEvent, error: FormatError) -> None:
        self._stats.operations_skipped += 1
        logger.warning(
            "Skipping operation in repo=%s commit=%s seq=%d: %s",
            event.repo,
            event.commit,
            event.seq,
            error,
        )

    async def _reject(self, event: CommitEvent, error: ParseError) -> None:
        self._stats.commits_rejected += 1
        logger.warning(
            "Rejected commit repo=%s commit=%s seq=%d error_type=%s: %s",
            event.repo,
            event.commit,
            event.seq,
            type(error).__name__,
            error,
        )
        if self._rejected_sink is not None:
            await self._rejected_sink.reject(event, error)

    async def _run_lane(self, repo: str, lane: asyncio.Queue[CommitEvent]) -> None:
        idle = self._config.lane_idle_timeout_s
        try:
            while True:
                try:
                    event = await asyncio.wait_for(lane.get(), timeout=idle)
                except TimeoutError:
                    if lane.empty():
                        return
                    continue
                try:
                    await self.ingest(event)
                except Exception:
                    logger.exception("Commit lane for repo=%s failed on seq=%d", repo, event.seq)
                finally:
                    lane.task_done()
        finally:
            if self._lanes.get(repo) is lane:
                del self._lanes[repo]
                self._tasks.pop(repo, None)

    async def drain(self) -> None:
        """Wait until every queued commit has been processed."""
        for lane in list(self._lanes.values()):
            await lane.join()

    async def close(self) -> None:
        """Cancel all lanes, abandoning commits that are still queued."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._lanes.clear()
        self._tasks.clear()

    def take_mentions(self) -> list[str]:
        """Return and forget repository identities seen since the last call."""
        mentions = list(self._mentions)
        self._mentions.clear()
        return mentions

    @property
    def active_lanes(self) -> int:
        """Number of repositories with a live lane."""
        return len(self._lanes)

    def stats(self) -> CommitIngestionStats:
        """Return a snapshot of ingestion counters."""
        return dataclasses.replace(self._stats)


__all__ = [
    "CommitIngestionConfig",
    "CommitIngestionStats",
    "CommitIngestor",
    "OperationSink",
    "RejectedCommitSink",
]
