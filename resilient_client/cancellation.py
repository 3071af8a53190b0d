"""Cancellation support for suspension points (rate-limit waits, backoff, sends)."""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Optional

from .errors import Cancelled


async def run_cancellable(
    awaitable: Awaitable[Any],
    cancel: Optional[asyncio.Event],
    state: Any = None,
) -> Any:
    """
    Await ``awaitable`` unless ``cancel`` fires first.

    When the event is set before the awaitable finishes, the awaitable is
    cancelled and Cancelled is raised. A result that is already available
    wins over a simultaneous cancellation.

    Raises:
        Cancelled: The caller's cancellation event was set
    """
    if cancel is None:
        return await awaitable

    if cancel.is_set():
        if inspect.iscoroutine(awaitable):
            awaitable.close()
        raise Cancelled(state)

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        waiter.cancel()
        raise

    if task in done:
        waiter.cancel()
        return task.result()

    task.cancel()
    await asyncio.wait({task})
    if not task.cancelled():
        # Finished while being cancelled; consume the outcome so asyncio does
        # not report it as never retrieved.
        task.exception()
    raise Cancelled(state)


__all__ = ["run_cancellable"]
