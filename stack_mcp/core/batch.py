"""Batch execution primitives shared by every multi-target operation.

Loading N stacks, checking M images and updating K stacks all reduce to one of
``parallel`` or ``sequential`` with a domain specific coroutine. Both isolate
failures: an item that raises yields a :class:`BatchError` in its slot and the
rest of the batch carries on.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Generic, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_CONCURRENCY = 5


@dataclass(frozen=True)
class BatchError(Generic[T]):
    """Failure of a single batch item, kept in place of its result."""

    error: Exception
    item: T


async def parallel(
    items: Iterable[T],
    fn: Callable[[T], Awaitable[R]],
    concurrency_limit: int = DEFAULT_CONCURRENCY,
) -> list[R | BatchError[T]]:
    """Run ``fn`` over ``items`` in consecutive chunks of ``concurrency_limit``.

    Items inside a chunk run concurrently; a chunk is awaited in full before the
    next one starts. Results come back in the original item order.

    Args:
        items: Items to process
        fn: Coroutine function applied to each item
        concurrency_limit: Chunk size, i.e. the maximum number of outstanding calls

    Returns:
        One entry per item, either the result of ``fn`` or a BatchError
    """
    if concurrency_limit < 1:
        raise ValueError(f"concurrency_limit must be at least 1, got {concurrency_limit}")

    pending = list(items)
    results: list[R | BatchError[T]] = []

    async def _call(item: T) -> R:
        return await fn(item)

    for start in range(0, len(pending), concurrency_limit):
        chunk = pending[start : start + concurrency_limit]
        outcomes = await asyncio.gather(*(_call(item) for item in chunk), return_exceptions=True)

        for item, outcome in zip(chunk, outcomes, strict=True):
            if isinstance(outcome, Exception):
                logger.warning(
                    "Batch item failed",
                    item=str(item),
                    error=str(outcome),
                    error_type=type(outcome).__name__,
                )
                results.append(BatchError(outcome, item))
            elif isinstance(outcome, BaseException):
                # Cancellation and interpreter exits are not item failures
                raise outcome
            else:
                results.append(outcome)

    return results


async def sequential(
    items: Iterable[T],
    fn: Callable[[T], Awaitable[R]],
    delay: float | None = None,
) -> list[R | BatchError[T]]:
    """Run ``fn`` over ``items`` strictly one after another.

    Args:
        items: Items to process
        fn: Coroutine function applied to each item
        delay: Optional pause in seconds between consecutive items

    Returns:
        One entry per item, either the result of ``fn`` or a BatchError
    """
    results: list[R | BatchError[T]] = []

    for index, item in enumerate(items):
        if index and delay:
            await asyncio.sleep(delay)
        try:
            results.append(await fn(item))
        except Exception as e:
            logger.warning(
                "Batch item failed",
                item=str(item),
                error=str(e),
                error_type=type(e).__name__,
            )
            results.append(BatchError(e, item))

    return results


async def first_success(
    candidates: Iterable[T],
    attempt: Callable[[T], Awaitable[R]],
    accept: Callable[[R], bool] = bool,
) -> tuple[T, R] | None:
    """Try ``candidates`` in order and return the first accepted outcome.

    A candidate whose attempt raises is skipped. Returns ``(candidate, result)``
    for the first accepted result, or ``None`` when every candidate was exhausted.
    """
    for candidate in candidates:
        try:
            result = await attempt(candidate)
        except Exception as e:
            logger.debug("Fallback candidate failed", candidate=str(candidate), error=str(e))
            continue
        if accept(result):
            return candidate, result

    return None
