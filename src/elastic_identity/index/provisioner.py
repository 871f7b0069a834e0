"""
Lazy, once-per-repository provisioning of the backing index.

``ensure_index`` performs a single provisioning pass.  ``IndexProvisioner``
memoizes it behind one shared task so that every concurrent first caller
awaits the same attempt::

    UNINITIALIZED -> INITIALIZING -> READY
                                  -> FAILED   (terminal for this instance)
"""

from __future__ import annotations

import asyncio
import enum
import logging
import re
from typing import Any, Awaitable, Callable

from elastic_identity.core.errors import (
    IdentityStoreError,
    IndexAlreadyExists,
    InvalidArgument,
    SetupFailure,
)
from elastic_identity.core.trace import Tracer
from elastic_identity.index.schema import describe_index
from elastic_identity.store.base import DocumentStore, TraceCallback

logger = logging.getLogger(__name__)

SeedHook = Callable[[DocumentStore, str], Awaitable[None]]

_INDEX_NAME_RE = re.compile(r"^[\[\]a-z0-9\-_.]+$")


class ProvisionState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


def validate_index_name(name: str | None) -> str:
    """Return *name* if it is a legal index name, else raise ``InvalidArgument``."""
    if not name:
        raise InvalidArgument("index_name is required")
    if not _INDEX_NAME_RE.match(name):
        raise InvalidArgument(f"Invalid characters in index name {name!r}, must be all lowercase")
    return name


async def ensure_index(
    store: DocumentStore,
    name: str,
    force_recreate: bool = False,
    *,
    body: dict[str, Any] | None = None,
    on_trace: TraceCallback | None = None,
) -> bool:
    """Make sure index *name* exists.

    With *force_recreate* an existing index is dropped first.  Losing a
    creation race to another process counts as success.

    Returns
    -------
    bool
        ``True`` when this call created the index.

    Raises
    ------
    SetupFailure
        If checking, deleting or creating the index fails.
    """
    tracer = Tracer(on_trace, logger)
    try:
        exists = tracer.result(await store.index_exists(name)).exists

        if exists and force_recreate:
            logger.info("Dropping index '%s' (force recreate)", name)
            tracer.result(await store.delete_index(name))
            exists = False

        if exists:
            logger.debug("Index '%s' already exists", name)
            return False

        try:
            tracer.result(await store.create_index(name, body or describe_index()))
        except IndexAlreadyExists as exc:
            tracer.error(exc)
            logger.info("Index '%s' was created concurrently", name)
            return False
    except IdentityStoreError as exc:
        tracer.error(exc)
        raise SetupFailure(f"Error while creating index '{name}': {exc}", debug=exc.debug) from exc

    logger.info("Created index '%s'", name)
    return True


def _retrieve_exception(task: asyncio.Future[None]) -> None:
    # The failure stays cached on the provisioner even when every waiter was cancelled
    if not task.cancelled():
        task.exception()


class IndexProvisioner:
    """Runs ``ensure_index`` at most once and remembers the outcome.

    Parameters
    ----------
    store:
        The document store holding the index.
    index_name:
        Name of the index (lowercase).
    force_recreate:
        Drop and recreate an existing index.  Destructive; for tests and
        bootstrap only.
    body:
        Index settings and mappings; defaults to ``describe_index()``.
    on_trace:
        Receives the diagnostic line of every store call.
    seed:
        Awaited with ``(store, index_name)`` right after the index has been
        created.  It talks to the store directly because the repository is
        still waiting on provisioning while it runs.
    """

    def __init__(
        self,
        store: DocumentStore,
        index_name: str = "users",
        force_recreate: bool = False,
        *,
        body: dict[str, Any] | None = None,
        on_trace: TraceCallback | None = None,
        seed: SeedHook | None = None,
    ) -> None:
        self.store = store
        self.index_name = validate_index_name(index_name)
        self.force_recreate = force_recreate
        self.index_created = False
        self._body = body
        self._on_trace = on_trace
        self._seed = seed
        self._state = ProvisionState.UNINITIALIZED
        self._task: asyncio.Future[None] | None = None
        self._failure: SetupFailure | None = None

    @property
    def state(self) -> ProvisionState:
        return self._state

    @property
    def failure(self) -> SetupFailure | None:
        return self._failure

    async def ensure(self) -> None:
        """Wait until the index is ready, provisioning it on first call."""
        if self._state is ProvisionState.READY:
            return
        if self._state is ProvisionState.FAILED:
            raise self._failure

        if self._task is None:
            self._state = ProvisionState.INITIALIZING
            self._task = asyncio.ensure_future(self._provision())
            self._task.add_done_callback(_retrieve_exception)
        # A cancelled caller must not cancel the attempt the others await
        await asyncio.shield(self._task)

    async def _provision(self) -> None:
        try:
            created = await ensure_index(
                self.store,
                self.index_name,
                self.force_recreate,
                body=self._body,
                on_trace=self._on_trace,
            )
            if created:
                self.index_created = True
                if self._seed is not None:
                    await self._seed(self.store, self.index_name)
        except SetupFailure as exc:
            self._fail(exc)
            raise
        except Exception as exc:
            failure = SetupFailure(f"Seeding index '{self.index_name}' failed: {exc}")
            self._fail(failure)
            raise failure from exc

        self._state = ProvisionState.READY

    def _fail(self, failure: SetupFailure) -> None:
        logger.error("Provisioning index '%s' failed: %s", self.index_name, failure)
        self._failure = failure
        self._state = ProvisionState.FAILED

    async def delete_index(self) -> bool:
        """Drop the index if this provisioner created it.

        Returns ``True`` when an index was deleted.  The next ``ensure()``
        provisions again.
        """
        if not self.index_created:
            return False

        tracer = Tracer(self._on_trace, logger)
        try:
            tracer.result(await self.store.delete_index(self.index_name))
        except IdentityStoreError as exc:
            tracer.error(exc)
            raise SetupFailure(f"Error while deleting index '{self.index_name}': {exc}", debug=exc.debug) from exc

        logger.info("Deleted index '%s'", self.index_name)
        self.index_created = False
        self._state = ProvisionState.UNINITIALIZED
        self._task = None
        return True
