"""Race a slow operation against a timer.

Every external call in a turn goes through ``race``: the operation starts
immediately, and whichever of it or the timer settles first decides the
result. A losing operation keeps running in the background until it settles
on its own; its result or exception is retrieved and discarded so it can
neither override the returned fallback nor surface as an unhandled error.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

import structlog

from chatcontext.core.metrics import deadline_fallbacks_total

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Operations that lost their race and are still settling
_background: set[asyncio.Task] = set()


@dataclass(frozen=True)
class DeadlineOutcome(Generic[T]):
    value: T
    timed_out: bool
    elapsed_ms: int


def _discard_late_result(task: asyncio.Task) -> None:
    _background.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("deadline.late_failure", operation=task.get_name(), error=str(exc))
    else:
        logger.debug("deadline.late_result_discarded", operation=task.get_name())


def _abandon(task: asyncio.Task) -> None:
    _background.add(task)
    task.add_done_callback(_discard_late_result)


async def race_with_outcome(
    operation: Callable[[], Awaitable[T]],
    budget_seconds: float,
    fallback: T,
    *,
    label: str = "operation",
) -> DeadlineOutcome[T]:
    """Run ``operation`` against a ``budget_seconds`` timer.

    A non-positive budget returns ``fallback`` without starting the operation.
    Exceptions raised by the operation before the timer fires propagate to the
    caller. If the caller itself is cancelled, the operation is cancelled too.
    """
    started = time.perf_counter()

    def elapsed_ms() -> int:
        return int((time.perf_counter() - started) * 1000)

    if budget_seconds <= 0:
        logger.warning("deadline.zero_budget", operation=label, budget_seconds=budget_seconds)
        deadline_fallbacks_total.labels(operation=label).inc()
        return DeadlineOutcome(fallback, True, 0)

    loop = asyncio.get_running_loop()
    task = asyncio.ensure_future(operation())
    task.set_name(label)
    timer: asyncio.Future[None] = loop.create_future()
    fired = False

    def on_timer() -> None:
        nonlocal fired
        # The operation may have settled in the same loop iteration
        if task.done() or timer.done():
            return
        fired = True
        timer.set_result(None)

    handle = loop.call_later(budget_seconds, on_timer)
    try:
        await asyncio.wait({task, timer}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        handle.cancel()
        if not timer.done():
            timer.cancel()

    if task.done():
        return DeadlineOutcome(task.result(), False, elapsed_ms())

    if fired:
        logger.warning(
            "deadline.timeout",
            operation=label,
            budget_seconds=budget_seconds,
            elapsed_ms=elapsed_ms(),
        )
        deadline_fallbacks_total.labels(operation=label).inc()
    _abandon(task)
    return DeadlineOutcome(fallback, True, elapsed_ms())


async def race(
    operation: Callable[[], Awaitable[T]],
    budget_seconds: float,
    fallback: T,
    *,
    label: str = "operation",
) -> T:
    """Like ``race_with_outcome`` but returns only the value."""
    outcome = await race_with_outcome(operation, budget_seconds, fallback, label=label)
    return outcome.value


def pending_background() -> int:
    """Number of abandoned operations still settling."""
    return len(_background)


async def cancel_background() -> None:
    """Cancel abandoned operations of the running loop and wait for them. Used at shutdown."""
    loop = asyncio.get_running_loop()
    tasks = [task for task in _background if task.get_loop() is loop]
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)
    # Operations left on loops that were closed can never settle
    for task in list(_background):
        if task.get_loop().is_closed():
            _background.discard(task)
