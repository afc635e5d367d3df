"""Single-occupancy access to the engine process."""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from .aggregator import AnalysisResult, VariantTable

logger = logging.getLogger(__name__)


class PendingRequest:
    """The one search currently awaiting ``bestmove``."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        self.variants = VariantTable()
        self.future: asyncio.Future[AnalysisResult] = asyncio.get_running_loop().create_future()

    def resolve(self, result: AnalysisResult) -> None:
        if not self.future.done():
            self.future.set_result(result)

    def fail(self, exc: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(exc)

    @property
    def done(self) -> bool:
        return self.future.done()


class RequestSerializer:
    """FIFO lock guarding the process input and the pending-request slot.

    ``asyncio.Lock`` hands the lock to waiters in the order they called
    ``acquire``, which gives arrival-order service.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._pending: PendingRequest | None = None

    def locked(self) -> bool:
        return self._lock.locked()

    @property
    def pending(self) -> PendingRequest | None:
        return self._pending

    @asynccontextmanager
    async def hold(self) -> AsyncIterator["RequestSerializer"]:
        """Hold exclusive access for the duration of one request.

        The pending slot is cleared on every exit path before the lock is
        released.
        """
        async with self._lock:
            try:
                yield self
            finally:
                if self._pending is not None:
                    logger.debug("discarding unfinished pending request")
                    self._pending = None

    def open(self, timeout: float) -> PendingRequest:
        if not self._lock.locked():
            raise RuntimeError("open() requires the serializer lock")
        if self._pending is not None:
            raise RuntimeError("a request is already pending")
        self._pending = PendingRequest(timeout)
        return self._pending

    def close(self, pending: PendingRequest) -> None:
        if self._pending is pending:
            self._pending = None
