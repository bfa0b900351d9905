# © Copyright 2025-2026, Wherobots Inc. - https://wherobots.com
# SPDX-License-Identifier: Apache-2.0

"""Broadcastable cancellation flag used across retries, waits and the connection."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from wherobots_sql.errors import ExecutionAborted

__all__ = ["CancellationSignal"]

_logger = logging.getLogger("wherobots_sql.signal")

_T = TypeVar("_T")

CancelCallback = Callable[[BaseException | None], None]


class CancellationSignal:
    """A one-shot cancellation flag that notifies subscribers when triggered.

    The signal never stops work by itself: subscribers decide how to react.
    :meth:`guard` is the usual subscriber: it cancels the awaitable it
    guards and raises :attr:`reason` in the waiting task.
    """

    __slots__ = ("_callbacks", "_cancelled", "_reason", "_unlinks")

    def __init__(self) -> None:
        """Create an untriggered signal."""
        self._cancelled = False
        self._reason: BaseException | None = None
        self._callbacks: list[CancelCallback] = []
        self._unlinks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        """Whether :meth:`cancel` has been called."""
        return self._cancelled

    @property
    def reason(self) -> BaseException | None:
        """The exception passed to :meth:`cancel`, if any."""
        return self._reason

    def cancel(self, reason: BaseException | None = None) -> None:
        """Trigger the signal and notify every subscriber once.

        Later calls are ignored, so the first reason wins.
        """
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback(reason)
            except Exception:
                _logger.exception("Cancellation callback failed")

    def add_callback(self, callback: CancelCallback) -> Callable[[], None]:
        """Subscribe *callback*; it runs immediately if already cancelled.

        Returns:
            A function that unsubscribes *callback*.  Calling it more than
            once is harmless.

        """
        if self._cancelled:
            callback(self._reason)
            return _noop
        self._callbacks.append(callback)

        def remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return remove

    @classmethod
    def linked(cls, *parents: CancellationSignal | None) -> CancellationSignal:
        """Return a signal that fires as soon as any of *parents* fires.

        ``None`` parents are skipped.  Call :meth:`detach` on the child when
        it is no longer needed so long-lived parents do not accumulate
        callbacks.
        """
        child = cls()
        for parent in parents:
            if parent is None:
                continue
            child._unlinks.append(parent.add_callback(child.cancel))
        return child

    def detach(self) -> None:
        """Unsubscribe this signal from the parents it was linked to."""
        unlinks, self._unlinks = self._unlinks, []
        for unlink in unlinks:
            unlink()

    def raise_if_cancelled(self) -> None:
        """Raise :attr:`reason` (or ``ExecutionAborted``) when triggered."""
        if self._cancelled:
            raise self._reason_error()

    async def guard(self, awaitable: Awaitable[_T]) -> _T:
        """Await *awaitable*, abandoning it if the signal fires first.

        Raises:
            BaseException: :attr:`reason`, or ``ExecutionAborted`` when the
                signal was cancelled without a reason.

        """
        future = asyncio.ensure_future(awaitable)
        if self._cancelled:
            future.cancel()
            raise self._reason_error()

        def on_cancel(_reason: BaseException | None) -> None:
            if not future.done():
                future.cancel()

        remove = self.add_callback(on_cancel)
        try:
            return await future
        except asyncio.CancelledError:
            # Only translate cancellations we caused; a cancelled caller task
            # must still see CancelledError.
            if self._cancelled and future.cancelled():
                current = asyncio.current_task()
                if current is None or not current.cancelling():
                    raise self._reason_error() from None
            raise
        finally:
            remove()

    def _reason_error(self) -> BaseException:
        return self._reason if self._reason is not None else ExecutionAborted()


def _noop() -> None:
    pass
