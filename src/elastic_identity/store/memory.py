"""
In-memory document store.

Keeps documents in plain dicts and emulates the parts of the search engine
the repository relies on: create-only writes, compare-and-swap on version
and on sequence number, ``term`` / ``bool`` / ``nested`` / ``match_all``
queries, keyword normalizers declared in the index mappings, sorting with
``search_after`` and the default page size.  Everything is lost when the
process exits; it exists for tests and local development.

All mutations happen between two awaits on a single event loop, so each call
is atomic with respect to other coroutines.
"""

from __future__ import annotations

import asyncio
import copy
from typing import Any, NamedTuple

from elastic_identity.core.errors import (
    DuplicateDocument,
    IndexAlreadyExists,
    NotFound,
    StoreError,
    VersionConflict,
)
from elastic_identity.store.base import (
    DEFAULT_SEARCH_SIZE,
    AckResult,
    ExistsResult,
    GetResult,
    OpType,
    SearchHit,
    SearchResult,
    WriteResult,
)


# Single-node emulation: the primary never fails over
PRIMARY_TERM = 1


class _Entry(NamedTuple):
    version: int
    seq_no: int
    source: dict[str, Any]


class _Index:
    """Documents plus the set of field paths that carry a lowercase normalizer."""

    def __init__(self, body: dict[str, Any] | None = None) -> None:
        self.body: dict[str, Any] = body or {}
        self.docs: dict[str, _Entry] = {}
        self._seq_no = -1
        self.normalized_fields: set[str] = set()
        properties = self.body.get("mappings", {}).get("properties", {})
        self._collect_normalized(properties, prefix="")

    def _collect_normalized(self, properties: dict[str, Any], prefix: str) -> None:
        for name, mapping in properties.items():
            path = f"{prefix}{name}"
            if "normalizer" in mapping:
                self.normalized_fields.add(path)
            if "properties" in mapping:
                self._collect_normalized(mapping["properties"], prefix=f"{path}.")

    def next_seq_no(self) -> int:
        """Every write, deletes included, takes the next sequence number."""
        self._seq_no += 1
        return self._seq_no


def _resolve(source: Any, path: str) -> list[Any]:
    """Return every value found at dotted *path*, flattening arrays."""
    values = [source]
    for part in path.split("."):
        found: list[Any] = []
        for value in values:
            if isinstance(value, list):
                found.extend(v.get(part) for v in value if isinstance(v, dict))
            elif isinstance(value, dict):
                found.append(value.get(part))
        values = [v for v in found if v is not None]
    flat: list[Any] = []
    for value in values:
        if isinstance(value, list):
            flat.extend(value)
        else:
            flat.append(value)
    return flat


def _as_list(clause: Any) -> list[Any]:
    if clause is None:
        return []
    return clause if isinstance(clause, list) else [clause]


class InMemoryDocumentStore:
    """Process-local implementation of the ``DocumentStore`` protocol."""

    def __init__(self) -> None:
        self._indexes: dict[str, _Index] = {}
        self.calls: list[tuple[str, str]] = []

    async def _round_trip(self, operation: str, target: str) -> None:
        self.calls.append((operation, target))
        # Yield like a network call would, so concurrent callers interleave
        await asyncio.sleep(0)

    # ------------------------------------------------------------------
    # Index management
    # ------------------------------------------------------------------

    async def index_exists(self, index: str) -> ExistsResult:
        await self._round_trip("index_exists", index)
        exists = index in self._indexes
        return ExistsResult(exists=exists, debug=f"HEAD /{index} -> {200 if exists else 404}")

    async def create_index(self, index: str, body: dict[str, Any]) -> AckResult:
        await self._round_trip("create_index", index)
        if index in self._indexes:
            raise IndexAlreadyExists(
                f"index [{index}] already exists",
                debug=f"PUT /{index} -> 400 resource_already_exists_exception",
                status=400,
            )
        self._indexes[index] = _Index(copy.deepcopy(body))
        return AckResult(debug=f"PUT /{index} -> 200")

    async def delete_index(self, index: str) -> AckResult:
        await self._round_trip("delete_index", index)
        if self._indexes.pop(index, None) is None:
            raise StoreError(
                f"no such index [{index}]",
                debug=f"DELETE /{index} -> 404 index_not_found_exception",
                status=404,
            )
        return AckResult(debug=f"DELETE /{index} -> 200")

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def get(self, index: str, doc_id: str) -> GetResult:
        await self._round_trip("get", f"{index}/{doc_id}")
        idx = self._indexes.get(index)
        entry = idx.docs.get(doc_id) if idx is not None else None
        debug = f"GET /{index}/_doc/{doc_id} -> {404 if entry is None else 200}"
        if entry is None:
            return GetResult(found=False, id=doc_id, debug=debug)
        return GetResult(
            found=True,
            id=doc_id,
            version=entry.version,
            seq_no=entry.seq_no,
            primary_term=PRIMARY_TERM,
            source=copy.deepcopy(entry.source),
            debug=debug,
        )

    @staticmethod
    def _check(
        doc_id: str,
        current: _Entry | None,
        version: int | None,
        if_seq_no: int | None,
        if_primary_term: int | None,
        debug: str,
    ) -> None:
        if version is not None:
            if current is None:
                raise VersionConflict(
                    f"[{doc_id}]: version conflict, required version [{version}] but no document was found",
                    debug=debug,
                )
            if current.version != version:
                raise VersionConflict(
                    f"[{doc_id}]: version conflict, current version [{current.version}] "
                    f"is different than the one provided [{version}]",
                    debug=debug,
                )
        if if_seq_no is not None or if_primary_term is not None:
            if current is None:
                raise VersionConflict(
                    f"[{doc_id}]: version conflict, required seqNo [{if_seq_no}], "
                    f"primary term [{if_primary_term}] but no document was found",
                    debug=debug,
                )
            if current.seq_no != if_seq_no or if_primary_term != PRIMARY_TERM:
                raise VersionConflict(
                    f"[{doc_id}]: version conflict, required seqNo [{if_seq_no}], primary term "
                    f"[{if_primary_term}]. current document has seqNo [{current.seq_no}] "
                    f"and primary term [{PRIMARY_TERM}]",
                    debug=debug,
                )

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
        await self._round_trip("put", f"{index}/{doc_id}")
        # Writing to a missing index creates it without mappings, as the engine does
        idx = self._indexes.setdefault(index, _Index())
        current = idx.docs.get(doc_id)
        path = f"/{index}/_{'create' if op_type == OpType.CREATE else 'doc'}/{doc_id}"
        conflict = f"PUT {path} -> 409 version_conflict_engine_exception"

        if op_type == OpType.CREATE and current is not None:
            raise DuplicateDocument(
                f"[{doc_id}]: version conflict, document already exists (current version [{current.version}])",
                debug=conflict,
            )
        self._check(doc_id, current, version, if_seq_no, if_primary_term, conflict)

        new_version = 1 if current is None else current.version + 1
        seq_no = idx.next_seq_no()
        idx.docs[doc_id] = _Entry(new_version, seq_no, copy.deepcopy(document))
        result = "created" if current is None else "updated"
        return WriteResult(
            id=doc_id,
            version=new_version,
            seq_no=seq_no,
            primary_term=PRIMARY_TERM,
            result=result,
            debug=f"PUT {path} -> {201 if current is None else 200} {result} v{new_version}",
        )

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
        await self._round_trip("delete", f"{index}/{doc_id}")
        idx = self._indexes.get(index)
        current = idx.docs.get(doc_id) if idx is not None else None
        path = f"/{index}/_doc/{doc_id}"

        if current is None:
            raise NotFound(f"[{doc_id}]: document missing", debug=f"DELETE {path} -> 404 not_found")
        self._check(
            doc_id,
            current,
            version,
            if_seq_no,
            if_primary_term,
            f"DELETE {path} -> 409 version_conflict_engine_exception",
        )

        del idx.docs[doc_id]
        return WriteResult(
            id=doc_id,
            version=current.version + 1,
            seq_no=idx.next_seq_no(),
            primary_term=PRIMARY_TERM,
            result="deleted",
            debug=f"DELETE {path} -> 200 deleted v{current.version + 1}",
        )

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
        await self._round_trip("search", index)
        idx = self._indexes.get(index)
        if idx is None:
            raise StoreError(
                f"no such index [{index}]",
                debug=f"POST /{index}/_search -> 404 index_not_found_exception",
                status=404,
            )

        matches = [
            (doc_id, entry)
            for doc_id, entry in idx.docs.items()
            if self._matches(idx, entry.source, query)
        ]
        total = len(matches)

        sort_keys: dict[str, list[Any]] = {}
        if sort:
            fields = [self._sort_field(s) for s in sort]
            for doc_id, entry in matches:
                sort_keys[doc_id] = [self._sort_value(doc_id, entry.source, field) for field, _ in fields]
            for position in reversed(range(len(fields))):
                descending = fields[position][1] == "desc"
                matches.sort(key=lambda m: sort_keys[m[0]][position], reverse=descending)
            if search_after is not None:
                matches = [m for m in matches if self._after(sort_keys[m[0]], search_after, fields)]

        page = matches[: DEFAULT_SEARCH_SIZE if size is None else size]
        hits = [
            SearchHit(
                id=doc_id,
                version=entry.version if version else None,
                seq_no=entry.seq_no if version else None,
                primary_term=PRIMARY_TERM if version else None,
                source=copy.deepcopy(entry.source),
                sort=sort_keys.get(doc_id),
            )
            for doc_id, entry in page
        ]
        return SearchResult(
            hits=hits,
            total=total,
            debug=f"POST /{index}/_search -> 200 {len(hits)} of {total} hits",
        )

    def _matches(self, idx: _Index, source: dict[str, Any], query: dict[str, Any]) -> bool:
        if not query or "match_all" in query:
            return True
        if "term" in query:
            (field, condition), = query["term"].items()
            expected = condition["value"] if isinstance(condition, dict) else condition
            values = _resolve(source, field)
            if field in idx.normalized_fields:
                expected = str(expected).lower()
                values = [str(v).lower() for v in values]
            return expected in values
        if "bool" in query:
            clauses = query["bool"]
            required = _as_list(clauses.get("filter")) + _as_list(clauses.get("must"))
            excluded = _as_list(clauses.get("must_not"))
            return all(self._matches(idx, source, q) for q in required) and not any(
                self._matches(idx, source, q) for q in excluded
            )
        if "nested" in query:
            path = query["nested"]["path"]
            inner = query["nested"]["query"]
            for element in _as_list(source.get(path)):
                if self._matches(idx, {**source, path: element}, inner):
                    return True
            return False
        raise StoreError(f"unsupported query {sorted(query)}", status=400)

    @staticmethod
    def _sort_field(clause: dict[str, Any]) -> tuple[str, str]:
        (field, options), = clause.items()
        order = options.get("order", "asc") if isinstance(options, dict) else options
        return field, order

    @staticmethod
    def _sort_value(doc_id: str, source: dict[str, Any], field: tuple[str, str] | str) -> Any:
        name = field[0] if isinstance(field, tuple) else field
        if name == "_id":
            return doc_id
        values = _resolve(source, name)
        return values[0] if values else ""

    @staticmethod
    def _after(keys: list[Any], search_after: list[Any], fields: list[tuple[str, str]]) -> bool:
        for key, marker, (_, order) in zip(keys, search_after, fields):
            if key == marker:
                continue
            return key > marker if order == "asc" else key < marker
        return False

    async def close(self) -> None:
        """Nothing to release; documents stay readable after close."""
