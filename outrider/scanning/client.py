"""XRPC calls used to scan endpoints and re-fetch individual records."""

from __future__ import annotations

import dataclasses
import typing as typ

import httpx
import msgspec

from outrider.common.http import ResponseShapeError, TransportError

_RECORD_GONE_ERRORS = frozenset(
    {"RecordNotFound", "RepoNotFound", "RepoDeactivated", "RepoTakendown"}
)


class _RepoSummary(msgspec.Struct):
    did: str
    active: bool = True


class _ListReposResponse(msgspec.Struct):
    repos: list[_RepoSummary] = msgspec.field(default_factory=list)
    cursor: str | None = None


class _RecordView(msgspec.Struct):
    uri: str
    cid: str | None = None
    value: typ.Any = None


class _ListRecordsResponse(msgspec.Struct):
    records: list[_RecordView] = msgspec.field(default_factory=list)
    cursor: str | None = None


class _ErrorBody(msgspec.Struct):
    error: str | None = None
    message: str | None = None


@dataclasses.dataclass(frozen=True, slots=True)
class RemoteRecord:
    """A record as currently served by its endpoint."""

    uri: str
    cid: str | None
    value: typ.Any


@dataclasses.dataclass(frozen=True, slots=True)
class RepoPage:
    """One page of repository identities hosted on an endpoint."""

    repos: list[str]
    cursor: str | None


@dataclasses.dataclass(frozen=True, slots=True)
class RecordPage:
    """One page of records from a repository collection."""

    records: list[RemoteRecord]
    cursor: str | None


def _decode[T](body: bytes, target: type[T], url: str) -> T:
    try:
        return msgspec.json.decode(body, type=target)
    except (msgspec.DecodeError, msgspec.ValidationError) as exc:
        raise ResponseShapeError.undecodable(url, exc) from exc


def _error_name(body: bytes) -> str | None:
    try:
        return msgspec.json.decode(body, type=_ErrorBody).error
    except (msgspec.DecodeError, msgspec.ValidationError):
        return None


class SyncClient:
    """Thin XRPC client shared by the scanner, prober and freshness worker.

    Every call takes the endpoint base URL explicitly; one client (and its
    connection pool) serves all endpoints.
    """

    def __init__(self, http_client: httpx.AsyncClient) -> None:
        """Wrap an ``httpx.AsyncClient`` configured with explicit timeouts."""
        self._http = http_client

    async def _call(
        self, endpoint: str, method: str, params: dict[str, str | int] | None = None
    ) -> tuple[str, httpx.Response]:
        url = f"{endpoint.rstrip('/')}/xrpc/{method}"
        try:
            response = await self._http.get(url, params=params)
        except httpx.HTTPError as exc:
            raise TransportError.request_failed(url, exc) from exc
        return url, response

    async def _call_ok(
        self, endpoint: str, method: str, params: dict[str, str | int] | None = None
    ) -> tuple[str, bytes]:
        url, response = await self._call(endpoint, method, params)
        if response.is_error:
            raise TransportError.http_error(url, response.status_code)
        return url, response.content

    async def describe_server(self, endpoint: str) -> dict[str, typ.Any]:
        """Return the endpoint's server description; used as a liveness probe."""
        url, body = await self._call_ok(endpoint, "com.atproto.server.describeServer")
        described = _decode(body, dict[str, typ.Any], url)
        if "did" not in described:
            raise ResponseShapeError.missing(url, "did")
        return described

    async def list_repos(
        self, endpoint: str, *, cursor: str | None = None, limit: int = 1000
    ) -> RepoPage:
        """Return one page of active repositories hosted on *endpoint*."""
        params: dict[str, str | int] = {"limit": limit}
        if cursor:
            params["cursor"] = cursor
        url, body = await self._call_ok(endpoint, "com.atproto.sync.listRepos", params)
        page = _decode(body, _ListReposResponse, url)
        return RepoPage(
            repos=[repo.did for repo in page.repos if repo.active], cursor=page.cursor
        )

    async def list_records(
        self,
        endpoint: str,
        *,
        repo: str,
        collection: str,
        cursor: str | None = None,
        limit: int = 100,
    ) -> RecordPage:
        """Return one page of records in *collection* of *repo*."""
        params: dict[str, str | int] = {
            "repo": repo,
            "collection": collection,
            "limit": limit,
        }
        if cursor:
            params["cursor"] = cursor
        url, body = await self._call_ok(endpoint, "com.atproto.repo.listRecords", params)
        page = _decode(body, _ListRecordsResponse, url)
        return RecordPage(
            records=[RemoteRecord(uri=r.uri, cid=r.cid, value=r.value) for r in page.records],
            cursor=page.cursor,
        )

    async def get_record(
        self, endpoint: str, *, repo: str, collection: str, rkey: str
    ) -> RemoteRecord | None:
        """Fetch one record, returning ``None`` when the endpoint says it is gone.

        A 404, or a 400 whose XRPC error names a missing record or
        repository, counts as gone. Other failures raise.

        Raises
        ------
        TransportError
            On connection failures, timeouts and other error statuses.

        """
        url, response = await self._call(
            endpoint,
            "com.atproto.repo.getRecord",
            {"repo": repo, "collection": collection, "rkey": rkey},
        )
        if response.status_code == httpx.codes.NOT_FOUND:
            return None
        if response.status_code == httpx.codes.BAD_REQUEST and (
            _error_name(response.content) in _RECORD_GONE_ERRORS
        ):
            return None
        if response.is_error:
            raise TransportError.http_error(url, response.status_code)
        view = _decode(response.content, _RecordView, url)
        return RemoteRecord(uri=view.uri, cid=view.cid, value=view.value)


__all__ = ["RecordPage", "RemoteRecord", "RepoPage", "SyncClient"]
