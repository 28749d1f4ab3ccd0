import asyncio
from typing import Awaitable, Optional, TypeVar

T = TypeVar("T")


class IngestCancelledError(asyncio.CancelledError):
    """Raised when a task's cancellation token fires between or inside phases."""


class CancellationToken:
    """Cooperative cancellation signal checked by the runner, fetcher and repair loop."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise IngestCancelledError(self.reason or "cancelled")

    async def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` but wake up and raise as soon as the token is cancelled."""
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first, in which case the work is cancelled and
        ``IngestCancelledError`` is raised."""
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            self.raise_if_cancelled()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not work.done():
                work.cancel()
        if work not in done:
            self.raise_if_cancelled()
        return work.result()
