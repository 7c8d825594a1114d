"""
Cancellation - Race in-flight backend calls against an abort signal.

The abort signal is a plain ``asyncio.Event``. Setting it cancels the
pending HTTP call (or the pending ``__anext__`` of a stream) immediately
instead of waiting for the backend to answer.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable
from typing import TypeVar

from switchyard.config.errors import RequestAbortedError

T = TypeVar("T")

__all__ = ["ensure_not_aborted", "next_chunk", "run_cancellable"]


def ensure_not_aborted(abort: asyncio.Event | None) -> None:
    """Raise if the abort signal has already fired."""
    if abort is not None and abort.is_set():
        raise RequestAbortedError()


async def run_cancellable(
    coro: Awaitable[T],
    abort: asyncio.Event | None,
) -> T:
    """
    Await ``coro`` unless ``abort`` fires first.

    Args:
        coro: Coroutine performing the backend call
        abort: Cancellation signal (None = not cancellable)

    Returns:
        The coroutine's result

    Raises:
        RequestAbortedError: The signal fired before the call finished
    """
    if abort is None:
        return await coro
    if abort.is_set():
        if asyncio.iscoroutine(coro):
            coro.close()
        raise RequestAbortedError()

    work = asyncio.ensure_future(coro)
    stop_waiter = asyncio.ensure_future(abort.wait())
    try:
        done, _ = await asyncio.wait(
            {work, stop_waiter},
            return_when=asyncio.FIRST_COMPLETED,
        )
    except asyncio.CancelledError:
        work.cancel()
        stop_waiter.cancel()
        raise

    if work in done:
        stop_waiter.cancel()
        await asyncio.gather(stop_waiter, return_exceptions=True)
        return work.result()

    work.cancel()
    await asyncio.gather(work, return_exceptions=True)
    raise RequestAbortedError()


async def next_chunk(
    stream: AsyncIterator[T],
    abort: asyncio.Event | None,
) -> T:
    """
    Pull the next item from ``stream``, honouring ``abort``.

    Raises:
        StopAsyncIteration: The stream is exhausted
        RequestAbortedError: The signal fired while waiting
    """
    ensure_not_aborted(abort)
    return await run_cancellable(stream.__anext__(), abort)
