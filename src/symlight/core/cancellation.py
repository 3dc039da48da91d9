"""Cooperative cancellation tokens for asyncio code.

An operation accepts a single token. Several sources (an explicit cancel,
a timeout) are combined with ``merge_tokens``: whichever fires first cancels
the merged token, and anything awaiting ``token.wait()`` wakes up.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

CANCEL_REASON = "cancelled"
TIMEOUT_REASON = "timeout"


class OperationCancelled(Exception):
    """Raised when an awaited step is interrupted by a cancellation token.

    Attributes:
        reason: Reason recorded by the token that fired.
    """

    def __init__(self, reason: str = CANCEL_REASON):
        self.reason = reason
        super().__init__(f"Operation cancelled ({reason})")


class CancellationToken:
    """A one-shot cancellation flag with listeners.

    Cancelling is idempotent: only the first call records a reason and
    notifies listeners.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self._listeners: list[Callable[[str], None]] = []
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self.reason is not None

    def cancel(self, reason: str = CANCEL_REASON) -> bool:
        """Fire the token. Returns False if it had already fired."""
        if self.reason is not None:
            return False
        self.reason = reason
        self._event.set()
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            listener(reason)
        return True

    def add_listener(self, listener: Callable[[str], None]) -> Callable[[], None]:
        """Register a callback run once on cancellation.

        Returns a function that removes the listener; calling it after the
        token fired is a no-op.
        """
        if self.reason is not None:
            listener(self.reason)
            return lambda: None
        self._listeners.append(listener)

        def remove() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return remove

    async def wait(self) -> str:
        """Block until the token fires, returning its reason."""
        await self._event.wait()
        return self.reason or CANCEL_REASON

    def raise_if_cancelled(self) -> None:
        if self.reason is not None:
            raise OperationCancelled(self.reason)


class LinkedToken(CancellationToken):
    """Token fed by other tokens and timers; ``dispose`` detaches them all."""

    def __init__(self):
        super().__init__()
        self._detach: list[Callable[[], None]] = []

    def link(self, detach: Callable[[], None]) -> None:
        self._detach.append(detach)

    def dispose(self) -> None:
        """Release source listeners and pending timers. Idempotent."""
        detach, self._detach = self._detach, []
        for fn in detach:
            fn()


def merge_tokens(*sources: CancellationToken | None) -> LinkedToken:
    """Combine tokens so that the first one to fire cancels the result.

    ``None`` entries are skipped, which lets callers pass an optional token.

    Args:
        sources: Tokens to listen to.

    Returns:
        A new token; call ``dispose`` on it to detach from the sources.
    """
    merged = LinkedToken()
    for source in sources:
        if source is None:
            continue
        merged.link(source.add_listener(merged.cancel))
    return merged


def attach_timeout(token: LinkedToken, timeout_seconds: float | None) -> None:
    """Cancel ``token`` with the timeout reason after ``timeout_seconds``.

    A missing or non-positive timeout attaches nothing. The timer is
    released by ``token.dispose()``.
    """
    if not timeout_seconds or timeout_seconds <= 0:
        return
    loop = asyncio.get_running_loop()
    handle = loop.call_later(timeout_seconds, token.cancel, TIMEOUT_REASON)
    token.link(handle.cancel)


async def race(awaitable: Awaitable[T], token: CancellationToken) -> T:
    """Await ``awaitable`` unless ``token`` fires first.

    On cancellation the pending operation is cancelled and awaited so the
    underlying resource is released before ``OperationCancelled`` is raised.

    Args:
        awaitable: Operation to run.
        token: Token that interrupts it.

    Returns:
        The result of ``awaitable``.

    Raises:
        OperationCancelled: If the token fired first, or had already fired.
    """
    if token.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise OperationCancelled(token.reason or CANCEL_REASON)
    operation = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait(
            {operation, waiter}, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        operation.cancel()
        waiter.cancel()
        raise

    if operation in done:
        waiter.cancel()
        return operation.result()

    operation.cancel()
    try:
        await operation
    except asyncio.CancelledError:
        pass
    except Exception as e:
        logger.debug(f"Interrupted operation raised during cancellation: {e!r}")
    raise OperationCancelled(token.reason or CANCEL_REASON)
