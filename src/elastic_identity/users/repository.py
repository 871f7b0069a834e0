"""
Versioned document repository for identity records.

One document per user.  Writes present the version last read and the store
rejects them atomically when it has moved on; a ``VersionConflict`` is
surfaced immediately and never retried here.  Callers re-read and retry.

Lookups by name and email go through the same normalization the record
applies when it is written, so exact-match queries are case-insensitive.

The backing index is provisioned lazily by the first operation that reaches
the store.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Awaitable, Generic, TypeVar

from pydantic import BaseModel

from elastic_identity.core.errors import IdentityStoreError, InvalidArgument, NotFound, StoreError
from elastic_identity.core.normalize import normalize_email, normalize_user_name
from elastic_identity.core.trace import Tracer
from elastic_identity.index.provisioner import IndexProvisioner, SeedHook
from elastic_identity.index.schema import describe_index
from elastic_identity.settings import Settings
from elastic_identity.settings import settings as default_settings
from elastic_identity.store.base import DocumentStore, OpType, SearchHit, StoreResult, TraceCallback
from elastic_identity.store.elastic import ElasticDocumentStore
from elastic_identity.users.attributes import UserAttributeMixin
from elastic_identity.users.models import IdentityRecord

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=IdentityRecord)
ResultT = TypeVar("ResultT", bound=StoreResult)

DEFAULT_PAGE_SIZE = 100


class UserPage(BaseModel):
    """One page of ``list_page``; pass ``next_token`` back to continue."""

    records: list[IdentityRecord]
    next_token: str | None = None


class UserRepository(UserAttributeMixin, Generic[RecordT]):
    """CRUD and lookups for identity records over a ``DocumentStore``.

    Parameters
    ----------
    store:
        The document store client.
    index_name:
        Index holding the user documents (default ``"users"``).
    force_recreate:
        Drop and recreate the index on first use.  Destructive.
    strict_not_found:
        Raise ``NotFound`` instead of returning ``None`` for missing users.
    record_cls:
        Record type to materialize; subclasses of ``IdentityRecord`` may
        carry extra fields.
    on_trace:
        Receives the diagnostic line of every store call.
    seed:
        Awaited with ``(store, index_name)`` after the index is created.
    index_body:
        Index settings and mappings; defaults to ``describe_index()``.
    """

    def __init__(
        self,
        store: DocumentStore,
        index_name: str = "users",
        force_recreate: bool = False,
        strict_not_found: bool = False,
        *,
        record_cls: type[RecordT] = IdentityRecord,
        on_trace: TraceCallback | None = None,
        seed: SeedHook | None = None,
        index_body: dict[str, Any] | None = None,
    ) -> None:
        if store is None:
            raise InvalidArgument("store is required")

        self._store = store
        self._tracer = Tracer(on_trace, logger)
        self.provisioner = IndexProvisioner(
            store,
            index_name,
            force_recreate,
            body=index_body,
            on_trace=on_trace,
            seed=seed,
        )
        self.index_name = self.provisioner.index_name
        self.strict_not_found = strict_not_found
        self.record_cls = record_cls

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **kwargs: Any) -> "UserRepository":
        """Build a repository over an Elasticsearch store configured by *settings*."""
        if settings is None:
            settings = default_settings

        kwargs.setdefault(
            "index_body",
            describe_index(settings.IDENTITY_INDEX_SHARDS, settings.IDENTITY_INDEX_REPLICAS),
        )
        return cls(
            ElasticDocumentStore.from_settings(settings),
            index_name=settings.IDENTITY_INDEX_NAME,
            force_recreate=settings.IDENTITY_FORCE_RECREATE,
            strict_not_found=settings.IDENTITY_STRICT_NOT_FOUND,
            **kwargs,
        )

    @property
    def store(self) -> DocumentStore:
        return self._store

    @property
    def index_created(self) -> bool:
        return self.provisioner.index_created

    async def setup(self) -> None:
        """Provision the index now instead of on the first operation."""
        await self.provisioner.ensure()

    async def close(self) -> None:
        await self._store.close()

    async def __aenter__(self) -> "UserRepository[RecordT]":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _call(self, awaitable: Awaitable[ResultT]) -> ResultT:
        """Await one store call and trace its outcome."""
        try:
            result = await awaitable
        except IdentityStoreError as exc:
            self._tracer.error(exc)
            raise
        return self._tracer.result(result)

    def _not_found(self, what: str) -> None:
        if self.strict_not_found:
            raise NotFound(f"No user with {what}")
        return None

    def _from_hit(self, hit: SearchHit) -> RecordT:
        return self.record_cls.from_document(hit.source, hit.id, hit.version, hit.seq_no, hit.primary_term)

    async def _find_one(self, query: dict[str, Any], what: str) -> RecordT | None:
        await self.setup()
        result = await self._call(self._store.search(self.index_name, query, version=True))

        if result.timed_out or result.terminated_early:
            logger.warning("Lookup by %s returned a partial result", what)
            return None
        if not result.hits:
            return self._not_found(what)
        if result.total > 1:
            # Uniqueness is up to the callers; the store does not enforce it
            logger.warning("%d users match %s, using the first hit", result.total, what)

        hit = result.hits[0]
        if hit.version is None:
            raise StoreError(f"Lookup by {what} returned a hit without a version", debug=result.debug)
        return self._from_hit(hit)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, record: RecordT) -> RecordT:
        """Store a new record.

        An id is generated when the record has none.  Fails with
        ``DuplicateDocument`` if the id is taken.  On success the record's
        ``id`` and ``version`` are patched from the write response.
        """
        if record is None:
            raise InvalidArgument("record is required")
        await self.setup()

        doc_id = record.id or uuid.uuid4().hex
        document = record.to_document()
        document["id"] = doc_id

        result = await self._call(
            self._store.put(self.index_name, doc_id, document, op_type=OpType.CREATE, refresh=True)
        )
        record.id = result.id
        record.version = result.version
        record.seq_no = result.seq_no
        record.primary_term = result.primary_term
        logger.debug("Created user %s (%s) at version %d", record.user_name, record.id, record.version)
        return record

    async def update(self, record: RecordT) -> RecordT:
        """Overwrite a record, provided nobody else wrote it since it was read.

        Raises ``VersionConflict`` otherwise, or when the document no longer
        exists (an update never creates one); the record is left untouched.
        """
        if record is None:
            raise InvalidArgument("record is required")
        if not record.id:
            raise InvalidArgument("record.id is required")
        await self.setup()

        result = await self._call(
            self._store.put(
                self.index_name,
                record.id,
                record.to_document(),
                op_type=OpType.INDEX,
                version=record.current_version,
                if_seq_no=record.seq_no,
                if_primary_term=record.primary_term,
                refresh=True,
            )
        )
        record.version = result.version
        record.seq_no = result.seq_no
        record.primary_term = result.primary_term
        logger.debug("Updated user %s to version %d", record.id, record.version)
        return record

    async def delete(self, record: RecordT) -> None:
        """Delete a record at the version it was read at."""
        if record is None:
            raise InvalidArgument("record is required")
        if not record.id:
            raise InvalidArgument("record.id is required")
        if record.version is None:
            raise InvalidArgument("record.version is required")
        await self.setup()

        try:
            await self._call(
                self._store.delete(
                    self.index_name,
                    record.id,
                    version=record.version,
                    if_seq_no=record.seq_no,
                    if_primary_term=record.primary_term,
                    refresh=True,
                )
            )
        except NotFound:
            if self.strict_not_found:
                raise
            logger.info("User %s was already deleted", record.id)
            return
        logger.debug("Deleted user %s", record.id)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def find_by_id(self, user_id: str) -> RecordT | None:
        if not user_id:
            raise InvalidArgument("user_id is required")
        await self.setup()

        result = await self._call(self._store.get(self.index_name, user_id))
        if not result.found or result.source is None:
            return self._not_found(f"id {user_id!r}")
        return self.record_cls.from_document(
            result.source, result.id, result.version, result.seq_no, result.primary_term
        )

    async def find_by_name(self, user_name: str) -> RecordT | None:
        if user_name is None:
            raise InvalidArgument("user_name is required")
        query = {"bool": {"filter": [{"term": {"user_name": normalize_user_name(user_name)}}]}}
        return await self._find_one(query, f"name {user_name!r}")

    async def find_by_email(self, email: str) -> RecordT | None:
        if email is None:
            raise InvalidArgument("email is required")
        query = {"bool": {"filter": [{"term": {"email.address": normalize_email(email)}}]}}
        return await self._find_one(query, f"email {email!r}")

    async def find_by_login(self, login_provider: str, provider_key: str) -> RecordT | None:
        """Find the user holding the (provider, key) pair in any login entry."""
        if login_provider is None:
            raise InvalidArgument("login_provider is required")
        if provider_key is None:
            raise InvalidArgument("provider_key is required")
        query = {
            "nested": {
                "path": "logins",
                "query": {
                    "bool": {
                        "filter": [
                            {"term": {"logins.login_provider": login_provider}},
                            {"term": {"logins.provider_key": provider_key}},
                        ]
                    }
                },
            }
        }
        return await self._find_one(query, f"login {login_provider}/{provider_key}")

    async def list_all(self) -> list[RecordT]:
        """Return the users of one default-sized page of a match-all query.

        Larger collections are truncated; use ``list_page`` to walk them.
        """
        await self.setup()
        result = await self._call(self._store.search(self.index_name, {"match_all": {}}, version=True))
        if result.total > len(result.hits):
            logger.warning("list_all returned %d of %d users", len(result.hits), result.total)
        return [self._from_hit(hit) for hit in result.hits]

    async def list_page(self, size: int = DEFAULT_PAGE_SIZE, after: str | None = None) -> UserPage:
        """Return up to *size* users ordered by id, starting after token *after*."""
        if size <= 0:
            raise InvalidArgument("size must be positive")
        await self.setup()

        result = await self._call(
            self._store.search(
                self.index_name,
                {"match_all": {}},
                version=True,
                size=size,
                sort=[{"id": "asc"}],
                search_after=[after] if after is not None else None,
            )
        )
        records = [self._from_hit(hit) for hit in result.hits]
        next_token = records[-1].id if len(records) == size else None
        return UserPage(records=records, next_token=next_token)
