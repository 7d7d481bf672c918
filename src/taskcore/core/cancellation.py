"""Cancellation tokens observed at every suspension point.

A :class:`CancellationToken` is handed down from the caller through the
cache, the queue and the retrying executor. Each component awaits through
:meth:`CancellationToken.guard`, which races the awaited work against the
token. When the token fires first, the work is cancelled and
:class:`~taskcore.core.errors.Cancelled` is raised.

Tokens nest: a child token is cancelled with its parent, but cancelling the
child leaves the parent alone. The queue uses this to cancel one slot without
touching the caller's token.

Example::

    token = CancellationToken()
    loop.call_later(5.0, token.cancel, "deadline")
    data = await token.guard(fetch())   # raises Cancelled after 5s
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from taskcore.core.errors import Cancelled

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation signal shared by one unit of work.

    Parameters
    ----------
    parent : CancellationToken | None
        When given, this token is cancelled as soon as the parent is.
    """

    def __init__(self, parent: CancellationToken | None = None) -> None:
        self._cancelled = False
        self._reason: str | None = None
        self._callbacks: list[Callable[[], None]] = []
        self._event = asyncio.Event()
        self._detach_parent: Callable[[], None] | None = None
        if parent is not None:
            self._detach_parent = parent.add_callback(
                lambda: self.cancel(parent.reason)
            )

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> bool:
        """Signal cancellation. Returns False if already cancelled."""
        if self._cancelled:
            return False
        self._cancelled = True
        self._reason = reason
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()
        return True

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run ``callback`` on cancellation (immediately if already cancelled).

        Returns a function that unregisters the callback.
        """
        if self._cancelled:
            callback()
            return lambda: None
        self._callbacks.append(callback)

        def remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return remove

    def detach(self) -> None:
        """Stop following the parent token."""
        if self._detach_parent is not None:
            self._detach_parent()
            self._detach_parent = None

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise Cancelled(self._reason)

    async def wait(self) -> None:
        """Suspend until the token is cancelled."""
        await self._event.wait()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        If the token is cancelled while waiting, the awaitable is cancelled
        and :class:`Cancelled` is raised. If the surrounding task is
        cancelled, the awaitable is cancelled too and ``CancelledError``
        propagates.
        """
        work = asyncio.ensure_future(awaitable)
        if self._cancelled:
            work.cancel()
            raise Cancelled(self._reason)
        if work.done():
            return work.result()

        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            waiter.cancel()
            raise

        if work.done():
            waiter.cancel()
            return work.result()

        work.cancel()
        raise Cancelled(self._reason)

    def __repr__(self) -> str:
        state = f"cancelled, reason={self._reason!r}" if self._cancelled else "active"
        return f"CancellationToken({state})"


async def guarded(awaitable: Awaitable[T], token: CancellationToken | None) -> T:
    """``token.guard(awaitable)``, or a plain await when there is no token."""
    if token is None:
        return await awaitable
    return await token.guard(awaitable)


__all__ = ["CancellationToken", "guarded"]
