"""Bounded fixed-interval polling for eventually consistent directory objects."""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, TypeVar

from .exceptions import ProvisioningTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def poll_until(
    probe: Callable[[], Awaitable[Optional[T]]],
    *,
    description: str,
    interval: float,
    max_attempts: int,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """Call probe until it returns something other than None.

    Sleeps ``interval`` seconds between attempts, never after the last one.

    Args:
        probe: Async callable returning the object, or None while not visible
        description: Resource name used in log lines and the timeout error
        interval: Seconds to wait between attempts
        max_attempts: Total number of probe calls before giving up
        sleep: Awaitable sleep, injectable for tests
        clock: Monotonic clock used to report elapsed time

    Returns:
        The first non-None probe result

    Raises:
        ProvisioningTimeoutError: If the object is still not visible after
            max_attempts probes
    """
    started = clock()
    for attempt in range(1, max_attempts + 1):
        result = await probe()
        if result is not None:
            if attempt > 1:
                logger.info(f"{description} visible after {attempt} attempts")
            return result
        if attempt < max_attempts:
            logger.info(
                f"Waiting for {description} to become visible "
                f"(attempt {attempt}/{max_attempts}, retrying in {interval:g}s)"
            )
            await sleep(interval)

    elapsed = clock() - started
    logger.error(f"{description} not visible after {max_attempts} attempts")
    raise ProvisioningTimeoutError(
        resource=description, elapsed_seconds=elapsed, attempts=max_attempts
    )
