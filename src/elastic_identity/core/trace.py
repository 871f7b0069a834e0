"""Fan-out of store call diagnostics to the trace callback and the log."""

from __future__ import annotations

import logging
from typing import TypeVar

from elastic_identity.core.errors import IdentityStoreError
from elastic_identity.store.base import StoreResult, TraceCallback

ResultT = TypeVar("ResultT", bound=StoreResult)


class Tracer:
    """Offers the diagnostic string of every store call to *callback*.

    Each line is also logged at DEBUG on *logger*.
    """

    def __init__(self, callback: TraceCallback | None = None, logger: logging.Logger | None = None) -> None:
        self._callback = callback
        self._logger = logger or logging.getLogger(__name__)

    def emit(self, message: str) -> None:
        self._logger.debug("store call: %s", message)
        if self._callback is not None:
            self._callback(message)

    def result(self, result: ResultT) -> ResultT:
        """Trace a successful call and hand its result back."""
        self.emit(result.debug)
        return result

    def error(self, exc: IdentityStoreError) -> None:
        """Trace a failed call.  The caller re-raises."""
        if exc.debug:
            self.emit(exc.debug)
