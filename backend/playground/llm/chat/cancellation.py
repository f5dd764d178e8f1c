"""Cooperative cancellation for in-flight chat requests."""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from playground.errors import CancellationError

T = TypeVar("T")


class CancellationToken:
    """A one-shot cancellation signal passed down the streaming call chain.

    The transport checks `cancelled` at every fragment boundary and wraps
    each network wait in `guard()` so that a cancel aborts the wait promptly.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> bool:
        """Request cancellation.

        Returns:
            True if this call cancelled the token, False if it already was.
        """
        if self._event.is_set():
            return False
        self._event.set()
        return True

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancellationError("Request was cancelled")

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await an operation unless the token fires first.

        Raises:
            CancellationError: If cancelled before or while waiting. The
                pending operation is cancelled; a result that finished in the
                same tick is closed if it has an `aclose()`.
        """
        self.raise_if_cancelled()

        operation = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self.wait())
        try:
            await asyncio.wait(
                {operation, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            operation.cancel()
            raise
        finally:
            waiter.cancel()

        if self._event.is_set():
            if not operation.done():
                operation.cancel()
            elif not operation.cancelled() and operation.exception() is None:
                await _release(operation.result())
            raise CancellationError("Request was cancelled")

        return operation.result()


async def _release(result: object) -> None:
    """Close a result nobody will consume (e.g. an open streaming response)."""
    aclose = getattr(result, "aclose", None)
    if aclose is not None:
        await aclose()
