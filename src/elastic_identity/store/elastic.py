"""
Elasticsearch-backed document store.

Wraps ``AsyncElasticsearch`` (8.x) behind the ``DocumentStore`` protocol and
translates client exceptions into the identity store error hierarchy.

Version contract
----------------
Creates use ``op_type=create``, which fails for an existing id.  Updates and
deletes are guarded with ``if_seq_no`` and ``if_primary_term``: the engine
applies the write only while the document exists and its last write is the
one identified by that pair, otherwise it answers 409.  Versions stay
internal and grow by one per write, so a record read at version ``v`` is
stored at ``v + 1`` after a successful update.

A caller holding only a version (no sequence number) gets a read first: the
document must exist at exactly that version, and the write is then guarded
with the sequence number just read.
"""

from __future__ import annotations

import logging
from typing import Any

from elasticsearch import (
    ApiError,
    AsyncElasticsearch,
    ConflictError,
    NotFoundError,
    TransportError,
)

from elastic_identity.core.errors import (
    DuplicateDocument,
    IdentityStoreError,
    IndexAlreadyExists,
    NotFound,
    StoreError,
    StoreUnavailable,
    VersionConflict,
)
from elastic_identity.settings import Settings
from elastic_identity.store.base import (
    AckResult,
    ExistsResult,
    GetResult,
    OpType,
    SearchHit,
    SearchResult,
    WriteResult,
)

logger = logging.getLogger(__name__)

_UNAVAILABLE_STATUSES = {429, 502, 503, 504}


def _describe(method: str, path: str, response: Any) -> str:
    """Build the diagnostic line for a successful call."""
    meta = getattr(response, "meta", None)
    if meta is None:
        return f"{method} {path} -> ok"
    duration = getattr(meta, "duration", None)
    timing = f" in {duration * 1000:.1f}ms" if isinstance(duration, (int, float)) else ""
    return f"{method} {path} -> {meta.status}{timing}"


def _body(response: Any) -> Any:
    """Return the decoded body of a client response (plain dicts pass through)."""
    return getattr(response, "body", response)


def _write_result(method: str, path: str, response: Any) -> WriteResult:
    body = _body(response)
    return WriteResult(
        id=body["_id"],
        version=body["_version"],
        seq_no=body.get("_seq_no"),
        primary_term=body.get("_primary_term"),
        result=body.get("result", ""),
        debug=_describe(method, path, response),
    )


def _error_type(exc: ApiError) -> str | None:
    body = exc.body
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"].get("type")
    return None


def _translate(exc: Exception, method: str, path: str, *, creating: bool = False) -> IdentityStoreError:
    """Map a client exception onto the identity store error hierarchy."""
    if isinstance(exc, ApiError):
        status = exc.meta.status
        debug = f"{method} {path} -> {status} {_error_type(exc) or ''}".rstrip()
        if isinstance(exc, ConflictError):
            if creating:
                return DuplicateDocument(f"document {path} already exists", debug=debug)
            return VersionConflict(f"version conflict on {path}", debug=debug)
        if isinstance(exc, NotFoundError):
            return NotFound(f"{path} not found", debug=debug)
        if _error_type(exc) == "resource_already_exists_exception":
            return IndexAlreadyExists(f"index for {path} already exists", debug=debug, status=status)
        if status in _UNAVAILABLE_STATUSES:
            return StoreUnavailable(f"store unavailable: {exc}", debug=debug, status=status)
        return StoreError(f"store rejected {method} {path}: {exc}", debug=debug, status=status)
    if isinstance(exc, TransportError):
        return StoreUnavailable(f"store unreachable: {exc}", debug=f"{method} {path} -> {type(exc).__name__}")
    raise TypeError(f"cannot translate {type(exc).__name__}")


class ElasticDocumentStore:
    """``DocumentStore`` over an ``AsyncElasticsearch`` client."""

    def __init__(self, client: AsyncElasticsearch, wait_for_active_shards: str | int | None = "all") -> None:
        self._client = client
        self._wait_for_active_shards = wait_for_active_shards

    @classmethod
    def from_settings(cls, settings: Settings) -> "ElasticDocumentStore":
        """Create a store with its own client built from *settings*."""
        basic_auth = None
        if settings.ELASTICSEARCH_USERNAME is not None:
            basic_auth = (settings.ELASTICSEARCH_USERNAME, settings.ELASTICSEARCH_PASSWORD or "")

        client = AsyncElasticsearch(
            settings.ELASTICSEARCH_URL,
            api_key=settings.ELASTICSEARCH_API_KEY,
            basic_auth=basic_auth,
            request_timeout=settings.ELASTICSEARCH_REQUEST_TIMEOUT,
            max_retries=settings.ELASTICSEARCH_MAX_RETRIES,
            retry_on_timeout=False,
        )
        return cls(client, wait_for_active_shards=settings.IDENTITY_WAIT_FOR_ACTIVE_SHARDS)

    @property
    def client(self) -> AsyncElasticsearch:
        return self._client

    # ------------------------------------------------------------------
    # Index management
    # ------------------------------------------------------------------

    async def index_exists(self, index: str) -> ExistsResult:
        path = f"/{index}"
        try:
            response = await self._client.indices.exists(index=index)
        except (ApiError, TransportError) as exc:
            raise _translate(exc, "HEAD", path) from exc
        return ExistsResult(exists=bool(response), debug=_describe("HEAD", path, response))

    async def create_index(self, index: str, body: dict[str, Any]) -> AckResult:
        path = f"/{index}"
        try:
            response = await self._client.indices.create(
                index=index,
                settings=body.get("settings"),
                mappings=body.get("mappings"),
            )
        except (ApiError, TransportError) as exc:
            raise _translate(exc, "PUT", path) from exc
        return AckResult(acknowledged=bool(_body(response).get("acknowledged")), debug=_describe("PUT", path, response))

    async def delete_index(self, index: str) -> AckResult:
        path = f"/{index}"
        try:
            response = await self._client.indices.delete(index=index)
        except (ApiError, TransportError) as exc:
            raise _translate(exc, "DELETE", path) from exc
        return AckResult(acknowledged=bool(_body(response).get("acknowledged")), debug=_describe("DELETE", path, response))

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def get(self, index: str, doc_id: str) -> GetResult:
        path = f"/{index}/_doc/{doc_id}"
        try:
            response = await self._client.get(index=index, id=doc_id)
        except NotFoundError as exc:
            return GetResult(found=False, id=doc_id, debug=f"GET {path} -> {exc.meta.status}")
        except (ApiError, TransportError) as exc:
            raise _translate(exc, "GET", path) from exc
        body = _body(response)
        return GetResult(
            found=bool(body.get("found")),
            id=body["_id"],
            version=body.get("_version"),
            seq_no=body.get("_seq_no"),
            primary_term=body.get("_primary_term"),
            source=body.get("_source"),
            debug=_describe("GET", path, response),
        )

    async def _guard(
        self,
        index: str,
        doc_id: str,
        method: str,
        path: str,
        version: int | None,
        if_seq_no: int | None,
        if_primary_term: int | None,
        *,
        deleting: bool = False,
    ) -> dict[str, Any]:
        """Return the ``if_seq_no`` / ``if_primary_term`` arguments for a conditional write."""
        if if_seq_no is not None or if_primary_term is not None:
            return {"if_seq_no": if_seq_no, "if_primary_term": if_primary_term}
        if version is None:
            return {}

        current = await self.get(index, doc_id)
        conflict = f"{method} {path} -> 409 version_conflict_engine_exception"
        if not current.found:
            if deleting:
                raise NotFound(f"{path} not found", debug=f"{method} {path} -> 404 not_found")
            raise VersionConflict(f"required version [{version}] but no document was found at {path}", debug=conflict)
        if current.version != version:
            raise VersionConflict(
                f"current version [{current.version}] of {path} is different than the one provided [{version}]",
                debug=conflict,
            )
        return {"if_seq_no": current.seq_no, "if_primary_term": current.primary_term}

    async def put(
        self,
        index: str,
        doc_id: str,
        document: dict[str, Any],
        *,
        op_type: OpType,
        version: int | None = None,
        if_seq_no: int | None = None,
        if_primary_term: int | None = None,
        refresh: bool = True,
    ) -> WriteResult:
        kwargs: dict[str, Any] = {
            "index": index,
            "id": doc_id,
            "document": document,
            "refresh": refresh,
        }
        if self._wait_for_active_shards is not None:
            kwargs["wait_for_active_shards"] = self._wait_for_active_shards

        if op_type == OpType.CREATE:
            path = f"/{index}/_create/{doc_id}"
            try:
                response = await self._client.create(**kwargs)
            except (ApiError, TransportError) as exc:
                raise _translate(exc, "PUT", path, creating=True) from exc
        else:
            path = f"/{index}/_doc/{doc_id}"
            kwargs.update(await self._guard(index, doc_id, "PUT", path, version, if_seq_no, if_primary_term))
            try:
                response = await self._client.index(**kwargs)
            except (ApiError, TransportError) as exc:
                raise _translate(exc, "PUT", path) from exc

        return _write_result("PUT", path, response)

    async def delete(
        self,
        index: str,
        doc_id: str,
        *,
        version: int | None = None,
        if_seq_no: int | None = None,
        if_primary_term: int | None = None,
        refresh: bool = True,
    ) -> WriteResult:
        path = f"/{index}/_doc/{doc_id}"
        kwargs: dict[str, Any] = {"index": index, "id": doc_id, "refresh": refresh}
        if self._wait_for_active_shards is not None:
            kwargs["wait_for_active_shards"] = self._wait_for_active_shards
        guard = await self._guard(
            index, doc_id, "DELETE", path, version, if_seq_no, if_primary_term, deleting=True
        )
        kwargs.update(guard)

        try:
            response = await self._client.delete(**kwargs)
        except ConflictError as exc:
            # A guarded delete of a missing document answers 409, not 404
            if guard and not (await self.get(index, doc_id)).found:
                raise NotFound(f"{path} not found", debug=f"DELETE {path} -> 404 not_found") from exc
            raise _translate(exc, "DELETE", path) from exc
        except (ApiError, TransportError) as exc:
            raise _translate(exc, "DELETE", path) from exc
        return _write_result("DELETE", path, response)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(
        self,
        index: str,
        query: dict[str, Any],
        *,
        version: bool = False,
        size: int | None = None,
        sort: list[dict[str, Any]] | None = None,
        search_after: list[Any] | None = None,
    ) -> SearchResult:
        path = f"/{index}/_search"
        kwargs: dict[str, Any] = {"index": index, "query": query, "version": version}
        if version:
            kwargs["seq_no_primary_term"] = True
        if size is not None:
            kwargs["size"] = size
        if sort is not None:
            kwargs["sort"] = sort
        if search_after is not None:
            kwargs["search_after"] = search_after

        try:
            response = await self._client.search(**kwargs)
        except (ApiError, TransportError) as exc:
            raise _translate(exc, "POST", path) from exc

        body = _body(response)
        hits_block = body.get("hits", {})
        total = hits_block.get("total", 0)
        if isinstance(total, dict):
            total = total.get("value", 0)
        hits = [
            SearchHit(
                id=hit["_id"],
                version=hit.get("_version"),
                seq_no=hit.get("_seq_no"),
                primary_term=hit.get("_primary_term"),
                source=hit.get("_source") or {},
                sort=hit.get("sort"),
            )
            for hit in hits_block.get("hits", [])
        ]
        logger.debug("search %s returned %d of %d hits", index, len(hits), total)
        return SearchResult(
            hits=hits,
            total=total,
            timed_out=bool(body.get("timed_out", False)),
            terminated_early=bool(body.get("terminated_early", False)),
            debug=_describe("POST", path, response),
        )

    async def close(self) -> None:
        await self._client.close()
