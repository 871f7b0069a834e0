"""Document store protocol consumed by the repository and provisioner.

A store keeps JSON documents in named indexes.  Each document has an id, a
store-assigned integer version and a sequence number plus primary term that
identify its last write.  Writes may present the version (and sequence
number) they expect and the store rejects them atomically when the document
has moved on or does not exist.

Every result carries a human readable ``debug`` string describing the call,
which is what the trace hook receives.  Failures are raised as the typed
errors of :mod:`elastic_identity.core.errors`, with the same string attached.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Protocol

from pydantic import BaseModel, Field

TraceCallback = Callable[[str], None]

DEFAULT_SEARCH_SIZE = 10


class OpType(str, Enum):
    CREATE = "create"  # fail when the id already exists
    INDEX = "index"  # create or overwrite, subject to the expected version


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

class StoreResult(BaseModel):
    debug: str = ""


class ExistsResult(StoreResult):
    exists: bool


class AckResult(StoreResult):
    acknowledged: bool = True


class GetResult(StoreResult):
    found: bool
    id: str
    version: int | None = None
    seq_no: int | None = None
    primary_term: int | None = None
    source: dict[str, Any] | None = None


class SearchHit(BaseModel):
    id: str
    version: int | None = None
    seq_no: int | None = None
    primary_term: int | None = None
    source: dict[str, Any]
    sort: list[Any] | None = None


class SearchResult(StoreResult):
    hits: list[SearchHit] = Field(default_factory=list)
    total: int = 0
    timed_out: bool = False
    terminated_early: bool = False


class WriteResult(StoreResult):
    id: str
    version: int
    result: str
    seq_no: int | None = None
    primary_term: int | None = None


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------

class DocumentStore(Protocol):
    async def index_exists(self, index: str) -> ExistsResult:
        ...

    async def create_index(self, index: str, body: dict[str, Any]) -> AckResult:
        """Create *index* from a ``{"settings": ..., "mappings": ...}`` body.

        Raises ``IndexAlreadyExists`` when the index is already there.
        """
        ...

    async def delete_index(self, index: str) -> AckResult:
        ...

    async def get(self, index: str, doc_id: str) -> GetResult:
        """Fetch one document; ``found`` is ``False`` when it is missing."""
        ...

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
        """Run a query DSL *query*.

        Hit versions and sequence numbers are only populated when *version*
        is requested.
        """
        ...

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
        """Write a document.

        ``OpType.CREATE`` raises ``DuplicateDocument`` for an existing id.
        With ``OpType.INDEX`` and a *version*, the write only succeeds while
        the document exists and its stored version equals *version*,
        otherwise ``VersionConflict``.  *if_seq_no* and *if_primary_term*,
        when given, must match the last write as well.
        """
        ...

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
        """Delete a document under the same version rule as ``put``.

        Raises ``NotFound`` when the document does not exist.
        """
        ...

    async def close(self) -> None:
        ...
