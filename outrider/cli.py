"""Command-line entry points for running Outrider tasks by hand.

Every database-backed subcommand reads ``OUTRIDER_DATABASE_URL`` unless
``--database-url`` is given, creates missing tables and runs one unit of the
same work the Dramatiq actors perform.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import typing as typ
from pathlib import Path

import msgspec
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from outrider.commits import (
    CommitIngestor,
    ParseError,
    decode_commit_event,
    parse_commit,
)
from outrider.common.http import HttpConfig, build_http_client
from outrider.config import AppConfig, ConfigurationError
from outrider.discovery import CancellationToken, DirectoryWalkError
from outrider.factory import OutriderServices, build_services, init_storage
from outrider.logging import configure_from_env, get_logger
from outrider.ratelimit import build_rate_limiter

logger = get_logger(__name__)


def _encode_fallback(value: object) -> str:
    return str(value)


def _print_json(payload: object) -> None:
    print(msgspec.json.encode(payload, enc_hook=_encode_fallback).decode())


async def _with_services[T](
    database_url: str,
    work: typ.Callable[[OutriderServices], typ.Awaitable[T]],
) -> T:
    engine = create_async_engine(database_url)
    try:
        await init_storage(engine)
        session_factory = async_sessionmaker(engine, expire_on_commit=False)
        limiter = build_rate_limiter()
        try:
            async with build_http_client(HttpConfig.from_env()) as http_client:
                return await work(
                    build_services(session_factory, http_client, limiter=limiter)
                )
        finally:
            await limiter.aclose()
    finally:
        await engine.dispose()


async def _discover(services: OutriderServices, args: argparse.Namespace) -> int:
    result = await services.discovery.run_cycle(args.mention or None)
    _print_json(
        {
            "relay_endpoints": result.relay_endpoints,
            "mention_endpoints": result.mention_endpoints,
            "registered": result.registered,
        }
    )
    return 0


async def _walk_directory(services: OutriderServices, args: argparse.Namespace) -> int:
    try:
        result = await services.discovery.walk_directory(
            args.after, max_pages=args.max_pages
        )
    except DirectoryWalkError as exc:
        print(f"Directory walk failed; resume with --after {exc.cursor}", file=sys.stderr)
        return 1
    _print_json(
        {
            "cursor": result.cursor,
            "pages": result.pages,
            "discovered": result.discovered,
            "registered": result.registered,
            "completed": result.completed,
        }
    )
    return 0


async def _scan_tick(services: OutriderServices, args: argparse.Namespace) -> int:
    if args.loop:
        await services.scheduler.run_forever(args.interval, token=CancellationToken())
        return 0
    result = await services.scheduler.tick()
    _print_json(
        {
            "released": result.released,
            "probed": result.probed,
            "probes_succeeded": result.probes_succeeded,
            "selected": result.selected,
            "completed": result.completed,
            "failed": result.failed,
            "deferred": result.deferred,
            "skipped": result.skipped,
        }
    )
    return 0


async def _freshness(services: OutriderServices, args: argparse.Namespace) -> int:
    if args.scan:
        await services.freshness_scan.run()
    await services.freshness_worker.run_once(args.max_jobs)
    _print_json(await services.freshness_worker.metrics())
    return 0


async def _ingest(services: OutriderServices, args: argparse.Namespace) -> int:
    ingestor = CommitIngestor(services.ledger)
    undecodable = 0
    try:
        for path in args.paths:
            try:
                event = decode_commit_event(path.read_bytes())
            except (msgspec.DecodeError, msgspec.ValidationError) as exc:
                print(f"Cannot decode commit event {path}: {exc}", file=sys.stderr)
                undecodable += 1
                continue
            await ingestor.submit(event)
        await ingestor.drain()
    finally:
        await ingestor.close()

    mentions = ingestor.take_mentions()
    payload: dict[str, object] = {"stats": ingestor.stats(), "mentions": mentions}
    if args.discover and mentions:
        # Repositories seen in the feed may live on endpoints not yet known.
        result = await services.discovery.run_cycle(mentions)
        payload["mention_endpoints"] = result.mention_endpoints
        payload["registered"] = result.registered
    _print_json(payload)
    return 1 if undecodable else 0


def _parse_commit_file(path: Path) -> int:
    try:
        event = decode_commit_event(path.read_bytes())
        operations = parse_commit(event)
    except (msgspec.DecodeError, msgspec.ValidationError) as exc:
        print(f"Cannot decode commit event {path}: {exc}", file=sys.stderr)
        return 1
    except ParseError as exc:
        print(f"Commit rejected: {exc}", file=sys.stderr)
        return 1
    _print_json(
        {
            "repo": event.repo,
            "commit": event.commit,
            "seq": event.seq,
            "operations": operations,
        }
    )
    return 0


_DB_COMMANDS: dict[
    str,
    typ.Callable[[OutriderServices, argparse.Namespace], typ.Awaitable[int]],
] = {
    "discover": _discover,
    "walk-directory": _walk_directory,
    "scan-tick": _scan_tick,
    "freshness": _freshness,
    "ingest": _ingest,
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="outrider", description=__doc__)
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy async URL; defaults to OUTRIDER_DATABASE_URL",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    discover = commands.add_parser("discover", help="run one discovery cycle")
    discover.add_argument(
        "--mention",
        action="append",
        default=[],
        help="identity to resolve to an endpoint (repeatable)",
    )

    walk = commands.add_parser("walk-directory", help="walk the identity directory")
    walk.add_argument("--after", default=None, help="cursor to resume from")
    walk.add_argument("--max-pages", type=int, default=None)

    tick = commands.add_parser("scan-tick", help="run the scan scheduler")
    tick.add_argument("--loop", action="store_true", help="tick until interrupted")
    tick.add_argument("--interval", type=float, default=60.0, help="seconds between ticks")

    fresh = commands.add_parser("freshness", help="process freshness jobs")
    fresh.add_argument("--max-jobs", type=int, default=None)
    fresh.add_argument(
        "--scan", action="store_true", help="enqueue stale records before processing"
    )

    ingest = commands.add_parser(
        "ingest", help="apply JSON commit event files to the sync ledger"
    )
    ingest.add_argument("paths", type=Path, nargs="+")
    ingest.add_argument(
        "--discover",
        action="store_true",
        help="resolve the repositories seen to endpoints and register them",
    )

    parse = commands.add_parser("parse-commit", help="decode a JSON commit event file")
    parse.add_argument("path", type=Path)
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run an Outrider subcommand and return its exit code.

    Parameters
    ----------
    argv : list[str] | None, optional
        Command-line arguments. ``None`` defaults to ``sys.argv``.

    Returns
    -------
    int
        0 on success, 1 when the task failed, 2 for missing configuration.

    """
    args = _build_parser().parse_args(argv)
    configure_from_env(logger)

    if args.command == "parse-commit":
        return _parse_commit_file(args.path)

    try:
        database_url = args.database_url or AppConfig.from_env().database_url
    except ConfigurationError as exc:
        print(f"{exc} (or pass --database-url)", file=sys.stderr)
        return 2

    command = _DB_COMMANDS[args.command]

    async def work(services: OutriderServices) -> int:
        return await command(services, args)

    try:
        return asyncio.run(_with_services(database_url, work))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
